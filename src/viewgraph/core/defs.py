"""
Core dataclass definitions for the schema graph.

These describe the entities, columns and foreign keys that path expressions
are resolved against. Instances are produced by the registry (or by the
external model parser) and are immutable for the lifetime of a compilation
pass.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class ForeignKeyDef:
    """
    A foreign key as seen from the owning entity.

    Example: Engine.type_id -> EngineType, conceptual name "type".
    """
    column: str  # physical column, e.g. "type_id"
    display_name: str  # conceptual name used in paths, e.g. "type"
    references: str  # referenced entity name


@dataclass(frozen=True)
class ColumnDef:
    """Definition of an entity column."""
    name: str
    type: str = "string"  # string, int, number, date, datetime, bool
    display_name: Optional[str] = None
    references: Optional[str] = None  # FK target entity, if this is an FK column

    # Composite (aggregate-typed) subfield info, e.g. position_latitude:
    # aggregate_source="position", aggregate_field="latitude", aggregate_type="geo"
    aggregate_source: Optional[str] = None
    aggregate_field: Optional[str] = None
    aggregate_type: Optional[str] = None

    is_label: bool = False  # [LABEL] column of its entity
    default: Any = None  # explicit [DEFAULT=x] value only
    has_default: bool = False

    @property
    def is_foreign_key(self) -> bool:
        return self.references is not None

    @property
    def conceptual_name(self) -> str:
        """Name used in paths and labels (display name, else name without _id)."""
        if self.display_name:
            return self.display_name
        if self.is_foreign_key and self.name.endswith("_id"):
            return self.name[:-3]
        return self.name

    def matches(self, segment: str) -> bool:
        """Terminal matching: raw name or display name."""
        return segment == self.name or (self.display_name is not None and segment == self.display_name)

    def matches_fk_segment(self, segment: str) -> bool:
        """Non-terminal matching: display name, raw name, or name + '_id'."""
        if not self.is_foreign_key:
            return False
        return (
            segment == self.conceptual_name
            or segment == self.name
            or self.name == f"{segment}_id"
        )


@dataclass(frozen=True)
class EntityDef:
    """Complete definition of an entity in the schema graph."""
    name: str
    table: str
    columns: tuple[ColumnDef, ...] = field(default_factory=tuple)

    @property
    def foreign_keys(self) -> tuple[ForeignKeyDef, ...]:
        return tuple(
            ForeignKeyDef(column=c.name, display_name=c.conceptual_name, references=c.references)
            for c in self.columns
            if c.is_foreign_key
        )

    def find_column(self, segment: str) -> Optional[ColumnDef]:
        """Find a column by raw name or display name."""
        for col in self.columns:
            if col.matches(segment):
                return col
        return None

    def find_fk_column(self, segment: str) -> Optional[ColumnDef]:
        """Find the FK column a path segment walks through."""
        for col in self.columns:
            if col.matches_fk_segment(segment):
                return col
        return None

    def composite_columns(self, source: str) -> tuple[ColumnDef, ...]:
        """All subfield columns of a composite column (e.g. position -> lat/lon)."""
        return tuple(c for c in self.columns if c.aggregate_source == source)

    def fk_columns_to(self, entity_name: str) -> tuple[ColumnDef, ...]:
        """FK columns on this entity referencing the given entity."""
        return tuple(c for c in self.columns if c.references == entity_name)


@dataclass(frozen=True)
class SchemaGraph:
    """The entity / FK graph all compilation runs against."""
    entities: dict[str, EntityDef] = field(default_factory=dict)

    def __contains__(self, entity_name: str) -> bool:
        return entity_name in self.entities

    def get(self, entity_name: str) -> Optional[EntityDef]:
        return self.entities.get(entity_name)

    def schema_hash(self) -> str:
        """
        Stable hash of the graph.

        Compiled views persist until this value changes.
        """
        payload = {
            name: asdict(entity)
            for name, entity in sorted(self.entities.items())
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
