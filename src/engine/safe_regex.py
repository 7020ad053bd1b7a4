"""Bounded execution of admin-authored regular expressions.

Every persisted pattern is treated as untrusted. Patterns are compiled with
the ``regex`` library and executed with its ``timeout`` argument so one
pathological pattern cannot stall a shared evaluation pool. Compile errors
and timeouts come back as a ``RegexResult`` carrying an error message; this
module never raises for bad patterns or input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

import regex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegexResult:
    """Outcome of one bounded regex execution."""

    match: regex.Match | None = None
    error: str | None = None
    timed_out: bool = False

    @property
    def matched(self) -> bool:
        return self.match is not None

    @property
    def ok(self) -> bool:
        return self.error is None


@lru_cache(maxsize=512)
def compile_pattern(pattern: str, ignore_case: bool = False) -> regex.Pattern:
    """Compile ``pattern``; raises ``regex.error`` on bad syntax."""
    flags = regex.IGNORECASE if ignore_case else 0
    return regex.compile(pattern, flags)


def bounded_search(
    pattern: str,
    text: str,
    *,
    timeout: float,
    ignore_case: bool = False,
) -> RegexResult:
    """Search ``text`` for ``pattern`` within ``timeout`` seconds."""
    try:
        compiled = compile_pattern(pattern, ignore_case)
    except regex.error as exc:
        return RegexResult(error=f"Pattern error: {exc}")

    try:
        match = compiled.search(text, timeout=timeout)
    except TimeoutError:
        logger.warning(
            "Regex timed out after %.3fs (pattern=%r, input length=%d)",
            timeout,
            pattern,
            len(text),
        )
        return RegexResult(
            error=f"Pattern evaluation exceeded {timeout * 1000:.0f}ms budget",
            timed_out=True,
        )
    return RegexResult(match=match)


def syntax_error(pattern: str) -> str | None:
    """Return the compiler's message if ``pattern`` is not a valid regex."""
    try:
        compile_pattern(pattern)
    except regex.error as exc:
        return str(exc)
    return None
