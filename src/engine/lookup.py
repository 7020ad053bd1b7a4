"""Lookup table store interface and schema validation.

Decoders resolve reference data (e.g. factory code -> location) through a
``LookupResolver``. The engine only depends on the abstract interface; an
in-memory resolver is built from a rule set or snapshot, and the repository
layer can build one for any module.

Keys are normalized (stripped, upper-cased) on write and on lookup, so a
table never holds two entries whose keys differ only by case.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from src.models.common import FieldType
from src.models.rules import (
    LookupEntry,
    LookupTable,
    LookupValueField,
    normalize_lookup_key,
)

_PY_TYPES: dict[FieldType, tuple[type, ...]] = {
    FieldType.STRING: (str,),
    FieldType.NUMBER: (int, float),
    FieldType.BOOLEAN: (bool,),
}


class LookupResolver(ABC):
    """Keyed reference data consumed by the decoder engine."""

    @abstractmethod
    def lookup(self, table_id: UUID, key: str) -> dict[str, Any] | None:
        """Return the values for ``key`` or ``None`` on a miss."""
        ...

    @abstractmethod
    def table_name(self, table_id: UUID) -> str | None: ...


class InMemoryLookupResolver(LookupResolver):
    """Resolver over already-loaded tables and entries.

    Inactive tables and entries never resolve.
    """

    def __init__(
        self,
        tables: Iterable[LookupTable],
        entries: Iterable[LookupEntry],
    ) -> None:
        self._names: dict[UUID, str] = {}
        self._entries: dict[UUID, dict[str, dict[str, Any]]] = {}
        for table in tables:
            if table.is_active:
                self._names[table.id] = table.name
                self._entries[table.id] = {}
        for entry in entries:
            bucket = self._entries.get(entry.table_id)
            if bucket is not None and entry.is_active:
                bucket[normalize_lookup_key(entry.key)] = dict(entry.values)

    @classmethod
    def from_rule_set(cls, rule_set: Any) -> InMemoryLookupResolver:
        """Build from anything exposing ``lookup_tables`` and ``lookup_entries``."""
        return cls(rule_set.lookup_tables, rule_set.lookup_entries)

    def lookup(self, table_id: UUID, key: str) -> dict[str, Any] | None:
        bucket = self._entries.get(table_id)
        if bucket is None:
            return None
        values = bucket.get(normalize_lookup_key(key))
        return dict(values) if values is not None else None

    def table_name(self, table_id: UUID) -> str | None:
        return self._names.get(table_id)


# ---------------------------------------------------------------------------
# Schema validation
# ---------------------------------------------------------------------------


def validate_value_schema(schema: list[LookupValueField]) -> None:
    """Reject schemas with blank or duplicate field names.

    Raises:
        ValueError: If the schema is malformed.
    """
    seen: set[str] = set()
    for schema_field in schema:
        name = schema_field.name.strip()
        if not name:
            msg = "Each schema field must have a name."
            raise ValueError(msg)
        if name in seen:
            msg = f"Duplicate field name: {name}"
            raise ValueError(msg)
        seen.add(name)


def validate_entry_values(
    values: dict[str, Any],
    schema: list[LookupValueField],
) -> None:
    """Check entry values against the table's value schema.

    Raises:
        ValueError: If a required field is missing or a value has the wrong type.
    """
    for schema_field in schema:
        value = values.get(schema_field.name)
        if value is None:
            if schema_field.required:
                msg = f"Required field '{schema_field.name}' is missing."
                raise ValueError(msg)
            continue
        allowed = _PY_TYPES[schema_field.type]
        # bool is an int subclass; it only satisfies BOOLEAN.
        if isinstance(value, bool) and schema_field.type != FieldType.BOOLEAN:
            ok = False
        else:
            ok = isinstance(value, allowed)
        if not ok:
            msg = (
                f"Field '{schema_field.name}' should be {schema_field.type.value} "
                f"but got {type(value).__name__}."
            )
            raise ValueError(msg)


@dataclass
class ImportResult:
    """Summary of a bulk entry import."""

    created: list[LookupEntry] = field(default_factory=list)
    updated: list[LookupEntry] = field(default_factory=list)
    errors: list[tuple[int, str]] = field(default_factory=list)


def import_entries(
    table: LookupTable,
    existing: Iterable[LookupEntry],
    rows: list[dict[str, Any]],
    *,
    overwrite_existing: bool = False,
) -> ImportResult:
    """Validate ``rows`` ({"key", "values"}) and merge them into a table.

    Per-row problems are collected in ``errors`` as ``(index, message)``;
    valid rows are still imported. Existing entries are returned updated
    (as copies) only when ``overwrite_existing`` is set.
    """
    result = ImportResult()
    by_key = {normalize_lookup_key(e.key): e for e in existing}
    imported: set[str] = set()

    for index, row in enumerate(rows):
        raw_key = row.get("key")
        values = row.get("values")
        if not isinstance(raw_key, str) or not raw_key.strip():
            result.errors.append((index, "Key is required."))
            continue
        if not isinstance(values, dict):
            result.errors.append((index, "Values must be an object."))
            continue
        try:
            validate_entry_values(values, table.value_schema)
        except ValueError as exc:
            result.errors.append((index, str(exc)))
            continue

        key = normalize_lookup_key(raw_key)
        current = by_key.get(key)
        if key in imported:
            result.errors.append((index, f"Duplicate key '{key}' in import."))
            continue
        if current is not None:
            if not overwrite_existing:
                result.errors.append((index, f"Entry with key '{key}' already exists."))
                continue
            updated = current.model_copy(update={"values": dict(values)})
            by_key[key] = updated
            imported.add(key)
            result.updated.append(updated)
            continue

        entry = LookupEntry(table_id=table.id, key=key, values=dict(values))
        by_key[key] = entry
        imported.add(key)
        result.created.append(entry)

    return result
