"""
Back-reference compiler - correlated subqueries over inbound FKs.

Syntax: Child<fk_field(params)[.outbound.path]

    EngineAllocation<engine(COUNT)
        -> (SELECT COUNT(*) FROM engine_allocation _br WHERE _br.engine_id = b.id)

    EngineAllocation<engine(WHERE end_date=null, LIMIT 1).aircraft.registration
        -> (SELECT _br_aircraft.registration FROM engine_allocation _br
            LEFT JOIN aircraft _br_aircraft ON _br.aircraft_id = _br_aircraft.id
            WHERE _br.engine_id = b.id AND (_br.end_date IS NULL) LIMIT 1)

Exactly one inbound hop is supported; the trailing path may only walk
outbound FKs from the child entity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.condition import ConditionTranslator
from ..core.defs import EntityDef, SchemaGraph
from ..core.errors import PathResolutionError
from ..core.spec_types import BackRefMode, BackReferenceSpec
from .path_resolver import JoinPlan, PathResolver, ResolvedPath


BACKREF_ALIAS = "_br"
LIST_SEPARATOR = ", "


@dataclass(frozen=True)
class BackRefOutput:
    """One output column produced by a back-reference."""
    expression: str  # parenthesized correlated subquery
    label: str
    path: str
    entity: str  # entity owning the selected value
    value_type: str
    link_expression: Optional[str] = None  # subquery for the id of the row owning the value
    link_entity: Optional[str] = None
    aggregate_source: Optional[str] = None
    aggregate_field: Optional[str] = None
    aggregate_type: Optional[str] = None


class BackReferenceCompiler:
    """
    Builds correlated subqueries for back-reference columns.

    Usage:
        compiler = BackReferenceCompiler(schema)
        outputs = compiler.compile(backref_spec, base_entity="Engine")
    """

    def __init__(self, schema: SchemaGraph, translator: Optional[ConditionTranslator] = None):
        self.schema = schema
        self.translator = translator or ConditionTranslator()
        self.resolver = PathResolver(schema, root_alias=BACKREF_ALIAS, alias_prefix=f"{BACKREF_ALIAS}_")

    def compile(
        self,
        backref: BackReferenceSpec,
        base_entity: str,
        expand: bool = False,
    ) -> list[BackRefOutput]:
        """
        Compile a back-reference against the view's base entity.

        Raises:
            PathResolutionError: unknown child, FK not pointing at the base, bad trailing path
            ConditionSyntaxError: malformed WHERE parameter
        """
        dotted = self._describe(backref)
        child = self.schema.get(backref.child_entity)
        if child is None:
            raise PathResolutionError(
                f"Back-reference entity '{backref.child_entity}' not found in schema",
                path=dotted,
                entity=base_entity,
            )

        fk_col = child.find_fk_column(backref.fk_field)
        if fk_col is None:
            raise PathResolutionError(
                f"FK '{backref.fk_field}' not found in entity '{child.name}'",
                path=dotted,
                entity=base_entity,
            )
        if fk_col.references != base_entity:
            raise PathResolutionError(
                f"FK '{backref.fk_field}' in '{child.name}' points to '{fk_col.references}', "
                f"not '{base_entity}'",
                path=dotted,
                entity=base_entity,
            )

        where = self._where_clause(backref, child, fk_col.name)
        order = self._order_clause(backref, child)

        resolved: Optional[ResolvedPath] = None
        if backref.trailing_path:
            resolved = self.resolver.resolve(child.name, backref.trailing_path, expand=expand)

        if backref.mode == BackRefMode.COUNT:
            return [BackRefOutput(
                expression=f"(SELECT COUNT(*) FROM {child.table} {BACKREF_ALIAS} WHERE {where})",
                label="Count",
                path=dotted,
                entity=child.name,
                value_type="number",
            )]

        if resolved is None:
            raise PathResolutionError(
                f"Back-reference in {backref.mode.value} mode requires a target column (.column) or COUNT",
                path=dotted,
                entity=base_entity,
            )

        from_clause = f"{child.table} {BACKREF_ALIAS}"
        joins = JoinPlan(resolved.joins).to_sql(separator=" ")
        if joins:
            from_clause = f"{from_clause} {joins}"

        limit = 1 if backref.limit is None else backref.limit
        outputs = []
        for terminal in resolved.terminals:
            composite = resolved.is_composite
            if backref.mode == BackRefMode.LIST:
                expression = self._list_expression(terminal.expression, from_clause, where, order)
                value_type = "string"
            else:
                expression = (
                    f"(SELECT {terminal.expression} FROM {from_clause} "
                    f"WHERE {where}{order} LIMIT {limit})"
                )
                value_type = terminal.column.type

            link_expression = None
            if backref.mode == BackRefMode.SCALAR and not composite:
                link_expression = (
                    f"(SELECT {resolved.terminal_alias}.id FROM {from_clause} "
                    f"WHERE {where}{order} LIMIT {limit})"
                )

            outputs.append(BackRefOutput(
                expression=expression,
                label=terminal.label,
                path=f"{backref.child_entity}<{backref.fk_field}.{terminal.path}",
                entity=terminal.entity,
                value_type=value_type,
                link_expression=link_expression,
                link_entity=resolved.entity if link_expression else None,
                aggregate_source=terminal.column.aggregate_source if composite else None,
                aggregate_field=terminal.column.aggregate_field if composite else None,
                aggregate_type=terminal.column.aggregate_type if composite else None,
            ))
        return outputs

    @staticmethod
    def _list_expression(expression: str, from_clause: str, where: str, order: str) -> str:
        """GROUP_CONCAT subquery; ordered input goes through a derived table."""
        if not order:
            return f"(SELECT GROUP_CONCAT({expression}, '{LIST_SEPARATOR}') FROM {from_clause} WHERE {where})"
        return (
            f"(SELECT GROUP_CONCAT(_v, '{LIST_SEPARATOR}') FROM "
            f"(SELECT {expression} AS _v FROM {from_clause} WHERE {where}{order}) _l)"
        )

    def _where_clause(self, backref: BackReferenceSpec, child: EntityDef, fk_column: str) -> str:
        """Correlation anchor plus translated WHERE parameters."""
        parts = [f"{BACKREF_ALIAS}.{fk_column} = b.id"]
        for condition in backref.where:
            parts.append(self.translator.translate(
                condition,
                BACKREF_ALIAS,
                resolve=lambda name: _column_name(child, name),
            ))
        return " AND ".join(parts)

    def _order_clause(self, backref: BackReferenceSpec, child: EntityDef) -> str:
        if backref.order_by is None:
            return ""
        column = _column_name(child, backref.order_by.column)
        return f" ORDER BY {BACKREF_ALIAS}.{column} {backref.order_by.direction}"

    @staticmethod
    def _describe(backref: BackReferenceSpec) -> str:
        tail = "." + ".".join(backref.trailing_path) if backref.trailing_path else ""
        return f"{backref.child_entity}<{backref.fk_field}(...){tail}"


def _column_name(entity: EntityDef, name: str) -> str:
    """Map a display name to the physical column name, if known."""
    col = entity.find_column(name)
    return col.name if col is not None else name

