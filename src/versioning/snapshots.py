"""Pure snapshot helpers for module versioning.

Building, comparing and cloning rule graphs happens here, in memory, so
the versioning service can finish every fallible step before it writes.

Module lifecycle::

    draft -----> published <--+
      |              |        | (re-publish)
      |              +--------+
      v              v
    archived <-------+         (terminal)
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from src.models.common import ModuleStatus, new_uuid7
from src.models.module import (
    CollectionDiff,
    DomainExpertiseModule,
    DomainExpertiseSnapshot,
    ModuleSummary,
    RuleSet,
    VersionComparison,
)

VALID_MODULE_TRANSITIONS: dict[ModuleStatus, frozenset[ModuleStatus]] = {
    ModuleStatus.DRAFT: frozenset({ModuleStatus.PUBLISHED, ModuleStatus.ARCHIVED}),
    ModuleStatus.PUBLISHED: frozenset({ModuleStatus.PUBLISHED, ModuleStatus.ARCHIVED}),
    ModuleStatus.ARCHIVED: frozenset(),
}

_COLLECTIONS = (
    "decoders",
    "lookup_tables",
    "lookup_entries",
    "value_drivers",
    "authenticity_markers",
)


def check_transition(current: ModuleStatus, target: ModuleStatus) -> None:
    """Raise ValueError if ``current -> target`` is not a legal transition."""
    if target not in VALID_MODULE_TRANSITIONS[current]:
        msg = f"Cannot move module from {current.value} to {target.value}."
        raise ValueError(msg)


def build_snapshot(module: DomainExpertiseModule, rule_set: RuleSet) -> DomainExpertiseSnapshot:
    """Deep-copy a module's live rule graph into an immutable snapshot.

    Raises:
        ValueError: If a lookup entry references a table outside the rule set.
    """
    table_ids = {t.id for t in rule_set.lookup_tables}
    orphans = [e.key for e in rule_set.lookup_entries if e.table_id not in table_ids]
    if orphans:
        msg = f"Lookup entries reference tables outside the module: {', '.join(orphans)}"
        raise ValueError(msg)

    return DomainExpertiseSnapshot(
        module=ModuleSummary(
            name=module.name,
            description=module.description,
            category_id=module.category_id,
            applicable_brands=tuple(module.applicable_brands),
        ),
        decoders=tuple(d.model_copy(deep=True) for d in rule_set.decoders),
        lookup_tables=tuple(t.model_copy(deep=True) for t in rule_set.lookup_tables),
        lookup_entries=tuple(e.model_copy(deep=True) for e in rule_set.lookup_entries),
        value_drivers=tuple(v.model_copy(deep=True) for v in rule_set.value_drivers),
        authenticity_markers=tuple(
            m.model_copy(deep=True) for m in rule_set.authenticity_markers
        ),
    )


def _diff(old: tuple[Any, ...], new: tuple[Any, ...]) -> CollectionDiff:
    old_by_id = {item.id: item for item in old}
    new_by_id = {item.id: item for item in new}
    return CollectionDiff(
        added=[i for i in new_by_id if i not in old_by_id],
        removed=[i for i in old_by_id if i not in new_by_id],
        modified=[
            i for i, item in new_by_id.items()
            if i in old_by_id and old_by_id[i].model_dump() != item.model_dump()
        ],
    )


def compare_snapshots(
    old: DomainExpertiseSnapshot,
    new: DomainExpertiseSnapshot,
    *,
    from_version: int,
    to_version: int,
) -> VersionComparison:
    """Added / removed / modified definition ids per collection."""
    return VersionComparison(
        from_version=from_version,
        to_version=to_version,
        **{name: _diff(getattr(old, name), getattr(new, name)) for name in _COLLECTIONS},
    )


def rollback_changelog(version: int, reason: str | None = None) -> str:
    changelog = f"Rolled back to version {version}"
    if reason and reason.strip():
        changelog += f": {reason.strip()}"
    return changelog


def clone_rule_set(rule_set: RuleSet, module_id: UUID) -> RuleSet:
    """Copy a rule set under fresh ids for another module.

    References from decoders to the module's own lookup tables, and from
    entries to their tables, follow the new ids. References to shared
    tables are kept.
    """
    table_ids: dict[UUID, UUID] = {t.id: new_uuid7() for t in rule_set.lookup_tables}

    def remap(table_id: UUID | None) -> UUID | None:
        if table_id is None:
            return None
        return table_ids.get(table_id, table_id)

    return RuleSet(
        lookup_tables=[
            t.model_copy(deep=True, update={"id": table_ids[t.id], "module_id": module_id})
            for t in rule_set.lookup_tables
        ],
        lookup_entries=[
            e.model_copy(deep=True, update={"id": new_uuid7(), "table_id": table_ids[e.table_id]})
            for e in rule_set.lookup_entries
            if e.table_id in table_ids
        ],
        decoders=[
            d.model_copy(
                deep=True,
                update={
                    "id": new_uuid7(),
                    "module_id": module_id,
                    "lookup_table_id": remap(d.lookup_table_id),
                },
            )
            for d in rule_set.decoders
        ],
        value_drivers=[
            v.model_copy(deep=True, update={"id": new_uuid7(), "module_id": module_id})
            for v in rule_set.value_drivers
        ],
        authenticity_markers=[
            m.model_copy(deep=True, update={"id": new_uuid7(), "module_id": module_id})
            for m in rule_set.authenticity_markers
        ],
    )
