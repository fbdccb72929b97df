"""
Schema registry - builds the schema graph, views and rules from documents.

The external model parser produces plain dicts (or a YAML file) shaped like:

    entities:
      Engine:
        table: engine
        columns:
          - name: serial_number
            label: true
          - name: type_id
            references: EngineType
            display_name: type
          - name: status
            default: active
      Aircraft:
        columns:
          - name: current_operator_id
            references: Operator
            computed: "[DAILY=Registration[exit_date=null OR exit_date>TODAY].operator]"
    views:
      - name: Engine Status
        base_entity: Engine
        columns: [serial_number, type.designation AS Type]

Usage:
    from viewgraph.core.registry import SchemaRegistry

    registry = SchemaRegistry()
    registry.load(document)
    doc = registry.build()
    doc.graph, doc.views, doc.rules
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .column_parser import parse_computed_annotation
from .defs import ColumnDef, EntityDef, SchemaGraph
from .errors import GraphConfigError
from .spec_types import Rule, ViewSpec
from .utils import to_snake_case

logger = logging.getLogger(__name__)


# =============================================================================
# Document models
# =============================================================================


class AggregateDoc(BaseModel):
    """Composite subfield info of a column."""
    source: str
    field: str
    type: Optional[str] = None


class ColumnDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    type: str = "string"
    display_name: Optional[str] = None
    references: Optional[str] = None
    label: bool = False
    default: Any = None
    aggregate: Optional[AggregateDoc] = None
    computed: Optional[str] = None


class EntityDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    table: Optional[str] = None
    columns: list[Union[str, ColumnDoc]] = Field(default_factory=list)


class ViewgraphDocument(BaseModel):
    """Top-level schema document."""
    entities: dict[str, EntityDoc] = Field(default_factory=dict)
    views: list[ViewSpec] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list)


# =============================================================================
# Registry
# =============================================================================


@dataclass
class SchemaDocument:
    """Everything the compilers need, built from one document."""
    graph: SchemaGraph
    views: list[ViewSpec] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=list)

    @property
    def schema_hash(self) -> str:
        return self.content_hash()

    def content_hash(self, today_sql: Optional[str] = None) -> str:
        """
        Hash of the graph, the view definitions and the TODAY expression.

        Installed views are rebuilt whenever this value changes.
        """
        payload = {
            "graph": self.graph.schema_hash(),
            "views": [view.model_dump(mode="json") for view in self.views],
            "today_sql": today_sql,
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def view(self, name: str) -> Optional[ViewSpec]:
        for view in self.views:
            if view.name == name:
                return view
        return None


class SchemaRegistry:
    """
    Collects entities, views and computed-field rules.

    Entities may be registered directly or loaded from a document; computed
    annotations on columns become Rules targeting that column.
    """

    def __init__(self):
        self._entities: dict[str, EntityDef] = {}
        self._views: list[ViewSpec] = []
        self._rules: list[Rule] = []

    def register_entity(self, entity: EntityDef) -> None:
        if entity.name in self._entities:
            raise GraphConfigError(f"Entity '{entity.name}' registered twice")
        self._entities[entity.name] = entity

    def register_view(self, view: ViewSpec) -> None:
        self._views.append(view)

    def register_rule(self, rule: Rule) -> None:
        self._rules.append(rule)

    def load(self, data: dict[str, Any]) -> None:
        """
        Load a schema document.

        Raises:
            GraphConfigError: document does not validate
        """
        try:
            document = ViewgraphDocument.model_validate(data or {})
        except ValidationError as e:
            raise GraphConfigError(f"Invalid schema document: {e}") from e

        for name, entity_doc in document.entities.items():
            columns = []
            for column in entity_doc.columns:
                if isinstance(column, str):
                    column = ColumnDoc(name=column)
                columns.append(_column_def(column))
                if column.computed:
                    self._rules.append(_computed_rule(column.computed, name, column.name))

            self.register_entity(EntityDef(
                name=name,
                table=entity_doc.table or to_snake_case(name),
                columns=tuple(columns),
            ))

        self._views.extend(document.views)
        self._rules.extend(document.rules)

    def load_file(self, path: Union[str, Path]) -> None:
        """Load a YAML schema document from disk."""
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise GraphConfigError(f"Cannot read schema document {path}: {e}") from e
        self.load(data or {})
        logger.info(
            f"Loaded {path}: {len(self._entities)} entities, "
            f"{len(self._views)} views, {len(self._rules)} computed fields"
        )

    def build(self) -> SchemaDocument:
        """Build the immutable schema document."""
        graph = SchemaGraph(entities=dict(self._entities))
        for rule in self._rules:
            for entity_name in (rule.source_entity, rule.target_entity):
                if entity_name not in graph:
                    logger.warning(f"Computed field {rule.name} references unknown entity '{entity_name}'")
        return SchemaDocument(graph=graph, views=list(self._views), rules=list(self._rules))


def _column_def(column: ColumnDoc) -> ColumnDef:
    aggregate = column.aggregate
    return ColumnDef(
        name=column.name,
        type=column.type,
        display_name=column.display_name,
        references=column.references,
        aggregate_source=aggregate.source if aggregate else None,
        aggregate_field=aggregate.field if aggregate else None,
        aggregate_type=aggregate.type if aggregate else None,
        is_label=column.label,
        default=column.default,
        has_default=column.default is not None,
    )


def _computed_rule(annotation: str, entity: str, column: str) -> Rule:
    try:
        rule = parse_computed_annotation(annotation, entity, column)
    except (ValueError, ValidationError) as e:
        raise GraphConfigError(f"Invalid computed annotation on {entity}.{column}: {e}") from e
    if rule is None:
        raise GraphConfigError(f"Invalid computed annotation on {entity}.{column}: {annotation!r}")
    return rule


def load_schema(source: Union[str, Path, dict[str, Any]]) -> SchemaDocument:
    """Build a SchemaDocument from a dict or a YAML file path."""
    registry = SchemaRegistry()
    if isinstance(source, dict):
        registry.load(source)
    else:
        registry.load_file(source)
    return registry.build()
