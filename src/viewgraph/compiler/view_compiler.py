"""
View compiler - turns ViewSpecs into CREATE VIEW statements.

Every column entry is classified once by the column parser and dispatched:

    PlainColumn / PathColumn  -> PathResolver (outbound LEFT JOINs)
    BackRefColumn             -> BackReferenceCompiler (correlated subquery)
    InvalidColumn             -> dropped with a warning

Joins from all columns are merged into one alias-keyed plan, so
"type.designation" and "type.manufacturer.name" share the j_type join.

Usage:
    compiler = ViewCompiler(schema)
    compiled = compiler.compile(ViewSpec(
        name="Engine Status",
        base_entity="Engine",
        columns=["serial_number", "type.designation AS Type"],
    ))
    compiled.sql
    # CREATE VIEW uv_engine_status AS
    # SELECT b.id,
    #        b.serial_number AS "Serial Number",
    #        j_type.designation AS "Type",
    #        j_type.id AS "_fk_Type"
    # FROM engine b
    # LEFT JOIN engine_type j_type ON b.type_id = j_type.id
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..core.column_parser import (
    BackRefColumn,
    InvalidColumn,
    PathColumn,
    PlainColumn,
    classify_column,
)
from ..core.condition import TODAY_SQL, ConditionTranslator
from ..core.defs import SchemaGraph
from ..core.errors import ConditionSyntaxError, PathResolutionError, ViewCompilationError
from ..core.spec_types import UNSET, ColumnSpec, DefaultSort, ViewSpec
from ..core.utils import quote_label, title_case, to_view_name
from .backref import BackReferenceCompiler
from .path_resolver import JoinPlan, PathResolver

logger = logging.getLogger(__name__)

FK_COLUMN_PREFIX = "_fk_"


@dataclass(frozen=True)
class CompiledColumn:
    """One output column of a compiled view."""
    label: str
    expression: str
    value_type: str
    path: str
    entity: str
    omit: Any = UNSET
    hidden: bool = False  # navigation columns (_fk_*) are not displayed
    fk_entity: Optional[str] = None  # entity the navigation column points to
    aggregate_source: Optional[str] = None
    aggregate_field: Optional[str] = None
    aggregate_type: Optional[str] = None

    def to_sql(self) -> str:
        return f"{self.expression} AS {quote_label(self.label)}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.label,
            "label": self.label,
            "type": self.value_type,
            "path": self.path,
            "entity": self.entity,
        }
        if self.omit is not UNSET:
            data["omit"] = self.omit
        if self.hidden:
            data["hidden"] = True
        if self.fk_entity:
            data["fk_entity"] = self.fk_entity
        if self.aggregate_source:
            data["aggregate_source"] = self.aggregate_source
            data["aggregate_field"] = self.aggregate_field
            data["aggregate_type"] = self.aggregate_type
        return data


@dataclass(frozen=True)
class DroppedColumn:
    """A column entry that could not be compiled."""
    raw: Any
    reason: str


@dataclass(frozen=True)
class CompiledView:
    """Compiled view: SQL text plus metadata for consumers."""
    name: str
    view_name: str
    base_entity: str
    sql: str
    columns: tuple[CompiledColumn, ...]
    joins: tuple[Any, ...] = ()
    dropped: tuple[DroppedColumn, ...] = ()
    default_sort: Optional[DefaultSort] = None
    prefilter: Optional[Any] = None
    required_filter: Optional[list[str]] = None

    @property
    def visible_columns(self) -> tuple[CompiledColumn, ...]:
        return tuple(c for c in self.columns if not c.hidden)

    def column(self, label: str) -> Optional[CompiledColumn]:
        for col in self.columns:
            if col.label == label:
                return col
        return None

    def to_dict(self) -> dict[str, Any]:
        """Metadata describing the view, without the SQL."""
        return {
            "name": self.name,
            "view": self.view_name,
            "base_entity": self.base_entity,
            "columns": [c.to_dict() for c in self.columns],
            "default_sort": self.default_sort.model_dump() if self.default_sort else None,
            "prefilter": self.prefilter,
            "required_filter": self.required_filter,
        }


@dataclass
class ViewCompilationResult:
    """Result of compiling a batch of views."""
    views: list[CompiledView] = field(default_factory=list)
    errors: list[ViewCompilationError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def error_messages(self) -> list[str]:
        return [str(e) for e in self.errors]


class ViewCompiler:
    """
    Compiles ViewSpecs against a SchemaGraph.

    Args:
        schema: The schema graph
        today_sql: SQL expression substituted for TODAY in back-reference conditions
    """

    def __init__(self, schema: SchemaGraph, today_sql: str = TODAY_SQL):
        self.schema = schema
        self.translator = ConditionTranslator(today_sql)
        self.resolver = PathResolver(schema)
        self.backrefs = BackReferenceCompiler(schema, self.translator)

    def compile(self, view: ViewSpec) -> CompiledView:
        """
        Compile a single view.

        Column-level failures drop the column with a warning.

        Raises:
            ViewCompilationError: base entity is unknown
        """
        base = self.schema.get(view.base_entity)
        if base is None:
            raise ViewCompilationError(view.name, f"Unknown base entity '{view.base_entity}'")

        plan = JoinPlan()
        columns: list[CompiledColumn] = []
        dropped: list[DroppedColumn] = []
        labels: set[str] = {"id"}

        for entry in view.columns:
            shape = classify_column(entry)
            try:
                if isinstance(shape, InvalidColumn):
                    raise _Drop(shape.reason)
                if isinstance(shape, BackRefColumn):
                    produced = self._compile_backref(shape, view.base_entity)
                else:
                    produced = self._compile_path(shape, view.base_entity, plan)
            except (_Drop, PathResolutionError, ConditionSyntaxError) as e:
                logger.warning(f"View '{view.name}': dropping column {entry!r}: {e}")
                dropped.append(DroppedColumn(raw=entry, reason=str(e)))
                continue

            rejected: set[str] = set()
            for col in produced:
                if col.hidden and col.label[len(FK_COLUMN_PREFIX):] in rejected:
                    continue
                if col.label in labels:
                    if col.hidden:
                        continue
                    logger.warning(f"View '{view.name}': dropping column {entry!r}: duplicate label '{col.label}'")
                    dropped.append(DroppedColumn(raw=entry, reason=f"duplicate label '{col.label}'"))
                    rejected.add(col.label)
                    continue
                labels.add(col.label)
                columns.append(col)

        view_name = to_view_name(view.name)
        sql = self._render(view_name, base.table, columns, plan, view.filter)
        logger.debug(f"Compiled view {view_name}:\n{sql}")

        return CompiledView(
            name=view.name,
            view_name=view_name,
            base_entity=view.base_entity,
            sql=sql,
            columns=tuple(columns),
            joins=tuple(plan),
            dropped=tuple(dropped),
            default_sort=view.default_sort(),
            prefilter=view.prefilter,
            required_filter=view.required_filter,
        )

    def compile_all(self, views: Iterable[ViewSpec]) -> ViewCompilationResult:
        """Compile every view; a failing view is recorded and the rest continue."""
        result = ViewCompilationResult()
        for view in views:
            try:
                result.views.append(self.compile(view))
            except ViewCompilationError as e:
                logger.error(f"Skipping view: {e}")
                result.errors.append(e)
        return result

    def _compile_path(self, shape: PlainColumn | PathColumn, base_entity: str, plan: JoinPlan) -> list[CompiledColumn]:
        spec = shape.spec
        resolved = self.resolver.resolve(base_entity, spec.path, expand=spec.expand)
        plan.merge(resolved.joins)

        columns = []
        for terminal in resolved.terminals:
            col = terminal.column
            columns.append(CompiledColumn(
                label=self._label(spec, terminal.label, col.aggregate_field if resolved.is_composite else None),
                expression=terminal.expression,
                value_type=col.type,
                path=terminal.path,
                entity=terminal.entity,
                omit=spec.omit,
                aggregate_source=col.aggregate_source if resolved.is_composite else None,
                aggregate_field=col.aggregate_field if resolved.is_composite else None,
                aggregate_type=col.aggregate_type if resolved.is_composite else None,
            ))

        # Navigation column to the row owning the terminal value
        if resolved.joins and not resolved.is_composite:
            label = columns[0].label
            columns.append(CompiledColumn(
                label=f"{FK_COLUMN_PREFIX}{label}",
                expression=f"{resolved.terminal_alias}.id",
                value_type="int",
                path=spec.dotted,
                entity=resolved.entity,
                hidden=True,
                fk_entity=resolved.entity,
            ))
        return columns

    def _compile_backref(self, shape: BackRefColumn, base_entity: str) -> list[CompiledColumn]:
        spec = shape.spec
        outputs = self.backrefs.compile(shape.backref, base_entity, expand=spec.expand)

        columns = []
        for out in outputs:
            label = self._label(spec, out.label, out.aggregate_field)
            columns.append(CompiledColumn(
                label=label,
                expression=out.expression,
                value_type=out.value_type,
                path=out.path,
                entity=out.entity,
                omit=spec.omit,
                aggregate_source=out.aggregate_source,
                aggregate_field=out.aggregate_field,
                aggregate_type=out.aggregate_type,
            ))
            if out.link_expression:
                columns.append(CompiledColumn(
                    label=f"{FK_COLUMN_PREFIX}{label}",
                    expression=out.link_expression,
                    value_type="int",
                    path=out.path,
                    entity=out.link_entity,
                    hidden=True,
                    fk_entity=out.link_entity,
                ))
        return columns

    @staticmethod
    def _label(spec: ColumnSpec, default: str, subfield: Optional[str]) -> str:
        """Explicit label wins; composite subfields append the field name."""
        if not spec.label:
            return default
        if subfield:
            return f"{spec.label} {title_case(subfield)}"
        return spec.label

    @staticmethod
    def _render(
        view_name: str,
        table: str,
        columns: list[CompiledColumn],
        plan: JoinPlan,
        filter_sql: Optional[str],
    ) -> str:
        select = ",\n       ".join(["b.id"] + [c.to_sql() for c in columns])
        lines = [f"CREATE VIEW {view_name} AS", f"SELECT {select}", f"FROM {table} b"]
        if len(plan):
            lines.append(plan.to_sql())
        if filter_sql and filter_sql.strip():
            lines.append(f"WHERE {filter_sql.strip()}")
        return "\n".join(lines)


class _Drop(Exception):
    """Internal signal for a column that was classified as invalid."""
    pass
