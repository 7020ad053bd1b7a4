"""Static safety gate for admin-authored regular expressions.

Classifies a pattern as low / medium / high / dangerous by inspecting its
structure, never by running it against data. The classification is a
heuristic, not a proof: the bounded executor in ``safe_regex`` is the
runtime backstop. The validator only classifies; authoring code refuses to
persist invalid or dangerous patterns.

Deterministic -- no I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from src.engine.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from src.engine.safe_regex import syntax_error
from src.models.common import PatternComplexity
from src.models.results import PatternValidationResult
from src.models.rules import MAX_PATTERN_LENGTH

_RANK: dict[PatternComplexity, int] = {
    PatternComplexity.LOW: 0,
    PatternComplexity.MEDIUM: 1,
    PatternComplexity.HIGH: 2,
    PatternComplexity.DANGEROUS: 3,
}

_BRACE_QUANTIFIER = re.compile(r"\{(\d*)(,?)(\d*)\}")


def _max_complexity(a: PatternComplexity, b: PatternComplexity) -> PatternComplexity:
    return a if _RANK[a] >= _RANK[b] else b


@dataclass
class _Quantifier:
    unbounded: bool
    max_repeat: int
    length: int


@dataclass
class _GroupFrame:
    start: int
    has_unbounded: bool = False
    has_alternation: bool = False


@dataclass
class _ScanReport:
    quantifiers: int = 0
    groups: int = 0
    alternations: int = 0
    wildcard_runs: int = 0
    findings: list[tuple[PatternComplexity, str]] = field(default_factory=list)


def _read_quantifier(pattern: str, pos: int) -> _Quantifier | None:
    """Parse a quantifier starting at ``pos`` (including lazy/possessive suffix)."""
    if pos >= len(pattern):
        return None
    ch = pattern[pos]
    if ch in "*+":
        quant = _Quantifier(unbounded=True, max_repeat=-1, length=1)
    elif ch == "?":
        quant = _Quantifier(unbounded=False, max_repeat=1, length=1)
    elif ch == "{":
        m = _BRACE_QUANTIFIER.match(pattern, pos)
        if m is None or (not m.group(1) and not m.group(3)):
            return None
        low, comma, high = m.groups()
        if comma and not high:
            quant = _Quantifier(unbounded=True, max_repeat=-1, length=len(m.group(0)))
        else:
            top = int(high or low)
            quant = _Quantifier(unbounded=False, max_repeat=top, length=len(m.group(0)))
    else:
        return None

    suffix = pos + quant.length
    if suffix < len(pattern) and pattern[suffix] in "?+":
        quant.length += 1
    return quant


def _skip_class(pattern: str, pos: int) -> int:
    """Return the index just past the character class opening at ``pos``."""
    i = pos + 1
    if i < len(pattern) and pattern[i] == "^":
        i += 1
    if i < len(pattern) and pattern[i] == "]":
        i += 1
    while i < len(pattern):
        if pattern[i] == "\\":
            i += 2
            continue
        if pattern[i] == "[":
            i = _skip_class(pattern, i)
            continue
        if pattern[i] == "]":
            return i + 1
        i += 1
    return i


def _group_prefix(pattern: str, pos: int) -> tuple[int, bool]:
    """Skip a group opener at ``pos``; return (next index, opens a real group)."""
    i = pos + 1
    if i >= len(pattern) or pattern[i] != "?":
        return i, True
    i += 1
    rest = pattern[i:]
    if rest[:1] in (":", "=", "!", ">", "|"):
        return i + 1, True
    if rest.startswith(("<=", "<!")):
        return i + 2, True
    if rest.startswith(("P<", "<", "'")):
        close = ">" if rest[0] != "'" else "'"
        end = pattern.find(close, i + 2 if rest[0] == "P" else i + 1)
        return (end + 1 if end != -1 else len(pattern)), True
    if rest.startswith(("P=", "#", "P>", "&", "R")) or rest[:1].isdigit():
        end = pattern.find(")", i)
        return (end + 1 if end != -1 else len(pattern)), False
    # Inline flags: (?i) or scoped (?i:...)
    j = i
    while j < len(pattern) and (pattern[j].isalpha() or pattern[j] == "-"):
        j += 1
    if j < len(pattern) and pattern[j] == ":":
        return j + 1, True
    return (j + 1 if j < len(pattern) else j), False


def _scan(pattern: str) -> _ScanReport:
    report = _ScanReport()
    stack: list[_GroupFrame] = [_GroupFrame(start=-1)]
    i = 0
    previous_atom_is_wildcard = False

    while i < len(pattern):
        ch = pattern[i]

        if ch == "\\":
            i += 2
            is_atom = True
            previous_atom_is_wildcard = False
        elif ch == "[":
            i = _skip_class(pattern, i)
            is_atom = True
            previous_atom_is_wildcard = False
        elif ch == "(":
            i, real_group = _group_prefix(pattern, i)
            if real_group:
                stack.append(_GroupFrame(start=i))
                report.groups += 1
            continue
        elif ch == ")":
            i += 1
            if len(stack) == 1:
                continue
            frame = stack.pop()
            quant = _read_quantifier(pattern, i)
            parent = stack[-1]
            if quant is not None:
                report.quantifiers += 1
                i += quant.length
                _judge_group(report, frame, quant)
                parent.has_unbounded = parent.has_unbounded or quant.unbounded
            parent.has_unbounded = parent.has_unbounded or frame.has_unbounded
            parent.has_alternation = parent.has_alternation or frame.has_alternation
            previous_atom_is_wildcard = False
            continue
        elif ch == "|":
            stack[-1].has_alternation = True
            report.alternations += 1
            i += 1
            continue
        else:
            previous_atom_is_wildcard = ch == "."
            i += 1
            is_atom = ch not in "^$"

        if not is_atom:
            continue
        quant = _read_quantifier(pattern, i)
        if quant is None:
            continue
        report.quantifiers += 1
        i += quant.length
        if quant.unbounded:
            stack[-1].has_unbounded = True
            if previous_atom_is_wildcard:
                report.wildcard_runs += 1

    return report


def _judge_group(report: _ScanReport, frame: _GroupFrame, quant: _Quantifier) -> None:
    """Flag repetition applied to a group that itself repeats or alternates."""
    if frame.has_unbounded and quant.unbounded:
        report.findings.append((
            PatternComplexity.DANGEROUS,
            "Nested quantifier (e.g. '(a+)+') detected - may cause catastrophic backtracking",
        ))
    elif frame.has_unbounded and quant.max_repeat > 1:
        report.findings.append((
            PatternComplexity.HIGH,
            "Repeated group containing an unbounded quantifier - backtracking grows with the repeat count",
        ))
    elif frame.has_alternation and quant.unbounded:
        report.findings.append((
            PatternComplexity.HIGH,
            "Alternation under an unbounded quantifier - overlapping branches can backtrack heavily",
        ))


class PatternValidator:
    """Classifies regex safety with configurable complexity thresholds."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or DEFAULT_ENGINE_CONFIG

    def validate(
        self,
        pattern: str,
        *,
        require_anchors: bool = False,
    ) -> PatternValidationResult:
        """Validate ``pattern`` for syntax and backtracking risk.

        ``require_anchors`` adds a warning (not a rejection) when the pattern
        lacks ``^`` / ``$``; decoder input patterns are expected to be anchored.
        """
        if not pattern:
            return PatternValidationResult(
                valid=True, warnings=[], estimated_complexity=PatternComplexity.LOW,
            )

        if len(pattern) > MAX_PATTERN_LENGTH:
            return PatternValidationResult(
                valid=False,
                warnings=[f"Pattern too long (max {MAX_PATTERN_LENGTH} characters)"],
                estimated_complexity=PatternComplexity.DANGEROUS,
            )

        error = syntax_error(pattern)
        if error is not None:
            return PatternValidationResult(
                valid=False,
                warnings=[f"Invalid regex: {error}"],
                estimated_complexity=PatternComplexity.DANGEROUS,
            )

        report = _scan(pattern)
        warnings: list[str] = []
        complexity = self._count_complexity(report)
        if complexity == PatternComplexity.HIGH:
            warnings.append("Complex pattern - test with various inputs before using")

        if report.wildcard_runs >= 2:
            complexity = _max_complexity(complexity, PatternComplexity.MEDIUM)
            warnings.append("Multiple unbounded wildcards ('.*' / '.+') - consider narrower classes")

        for level, message in report.findings:
            complexity = _max_complexity(complexity, level)
            warnings.append(message)

        if require_anchors and not (pattern.startswith("^") and pattern.endswith("$")):
            warnings.append("Pattern is not anchored with '^' and '$' - it may match inside longer input")

        return PatternValidationResult(
            valid=complexity != PatternComplexity.DANGEROUS,
            warnings=warnings,
            estimated_complexity=complexity,
        )

    def _count_complexity(self, report: _ScanReport) -> PatternComplexity:
        counts = (report.quantifiers, report.groups, report.alternations)
        if any(c > limit for c, limit in zip(counts, self._config.high_complexity_limits)):
            return PatternComplexity.HIGH
        if any(c > limit for c, limit in zip(counts, self._config.medium_complexity_limits)):
            return PatternComplexity.MEDIUM
        return PatternComplexity.LOW


def validate_pattern(
    pattern: str,
    *,
    require_anchors: bool = False,
    config: EngineConfig | None = None,
) -> PatternValidationResult:
    """Validate ``pattern`` with the default (or given) engine config."""
    return PatternValidator(config).validate(pattern, require_anchors=require_anchors)
