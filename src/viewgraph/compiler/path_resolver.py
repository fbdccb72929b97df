"""
Path resolver - walks dot-paths over the FK graph and builds join plans.

Example: resolving "type.manufacturer.name" on Engine

    LEFT JOIN engine_type j_type ON b.type_id = j_type.id
    LEFT JOIN manufacturer j_type_manufacturer ON j_type.manufacturer_id = j_type_manufacturer.id

    terminal: j_type_manufacturer.name

Join aliases are a pure function of the path prefix, so two column specs
sharing a prefix ("type.name", "type.manufacturer.name") produce the same
alias for "type" and the view compiler keeps exactly one join for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence, Union

from ..core.defs import ColumnDef, EntityDef, SchemaGraph
from ..core.errors import PathResolutionError
from ..core.utils import title_case


@dataclass(frozen=True)
class JoinStep:
    """
    A single outbound FK hop.

    LEFT JOIN {target_table} {target_alias} ON {source_alias}.{fk_column} = {target_alias}.id
    """
    source_alias: str
    fk_column: str
    target_entity: str
    target_table: str
    target_alias: str

    def to_sql(self) -> str:
        return (
            f"LEFT JOIN {self.target_table} {self.target_alias} "
            f"ON {self.source_alias}.{self.fk_column} = {self.target_alias}.id"
        )


@dataclass(frozen=True)
class TerminalColumn:
    """Resolved output column at the end of a path."""
    expression: str  # e.g. "j_type.designation"
    column: ColumnDef
    entity: str
    label: str  # default display label
    path: str  # dotted path of this output (composites get ".{field}")


@dataclass(frozen=True)
class ResolvedPath:
    """Join plan plus terminal column reference(s) for one path."""
    path: str
    joins: tuple[JoinStep, ...]
    terminals: tuple[TerminalColumn, ...]
    entity: str  # entity owning the terminal column(s)
    terminal_alias: str  # alias of the table owning the terminal column(s)

    @property
    def is_composite(self) -> bool:
        return any(t.path != self.path for t in self.terminals)


class JoinPlan:
    """
    Ordered, alias-deduplicated set of join steps.

    Usage:
        plan = JoinPlan()
        plan.merge(resolved.joins)
        plan.to_sql()
    """

    def __init__(self, steps: Iterable[JoinStep] = ()):
        self._steps: dict[str, JoinStep] = {}
        self.merge(steps)

    def merge(self, steps: Iterable[JoinStep]) -> None:
        """Add steps whose alias is not already present (first one wins)."""
        for step in steps:
            if step.target_alias not in self._steps:
                self._steps[step.target_alias] = step

    @property
    def aliases(self) -> list[str]:
        return list(self._steps)

    def __iter__(self) -> Iterator[JoinStep]:
        return iter(self._steps.values())

    def __len__(self) -> int:
        return len(self._steps)

    def to_sql(self, separator: str = "\n") -> str:
        return separator.join(step.to_sql() for step in self)


class PathResolver:
    """
    Resolves dot-paths against a SchemaGraph.

    Usage:
        resolver = PathResolver(schema)
        resolved = resolver.resolve("Engine", "type.manufacturer.name")

    Args:
        schema: The schema graph
        root_alias: Alias of the table the path starts from ("b" for views)
        alias_prefix: Prefix of join aliases ("j_" for views, "_br_" inside back-references)
    """

    def __init__(self, schema: SchemaGraph, root_alias: str = "b", alias_prefix: str = "j_"):
        self.schema = schema
        self.root_alias = root_alias
        self.alias_prefix = alias_prefix

    def alias_for(self, segments: Sequence[str]) -> str:
        """Join alias for a path prefix: ["type", "manufacturer"] -> j_type_manufacturer."""
        return self.alias_prefix + "_".join(segments)

    def entity(self, entity_name: str) -> EntityDef:
        """Look up an entity or raise PathResolutionError."""
        entity = self.schema.get(entity_name)
        if entity is None:
            raise PathResolutionError(f"Entity '{entity_name}' not found in schema", entity=entity_name)
        return entity

    def resolve(
        self,
        base_entity: str,
        path: Union[str, Sequence[str]],
        expand: bool = False,
    ) -> ResolvedPath:
        """
        Resolve a path to its join plan and terminal column(s).

        Args:
            base_entity: Entity the path starts from
            path: Dotted string or segment list; a ".*" suffix requests composite expansion
            expand: Expand the terminal composite column into its subfields

        Raises:
            PathResolutionError: unknown entity, unmatched FK segment, or FK terminal
        """
        if isinstance(path, str):
            if path.endswith(".*"):
                path, expand = path[:-2], True
            segments = path.split(".")
        else:
            segments = list(path)
        dotted = ".".join(segments)

        if not segments or not all(segments):
            raise PathResolutionError("Empty path segment", path=dotted, entity=base_entity)

        current = self.entity(base_entity)
        current_alias = self.root_alias
        joins: list[JoinStep] = []

        # Walk FK chain
        for i, segment in enumerate(segments[:-1]):
            fk_col = current.find_fk_column(segment)
            if fk_col is None:
                raise PathResolutionError(
                    f"FK segment '{segment}' not found in entity '{current.name}'",
                    path=dotted,
                    entity=base_entity,
                )
            target = self.schema.get(fk_col.references)
            if target is None:
                raise PathResolutionError(
                    f"FK target entity '{fk_col.references}' not found in schema",
                    path=dotted,
                    entity=base_entity,
                )

            alias = self.alias_for(segments[: i + 1])
            joins.append(JoinStep(
                source_alias=current_alias,
                fk_column=fk_col.name,
                target_entity=target.name,
                target_table=target.table,
                target_alias=alias,
            ))
            current = target
            current_alias = alias

        terminals = self._resolve_terminal(current, current_alias, segments, expand, dotted, base_entity)

        return ResolvedPath(
            path=dotted,
            joins=tuple(joins),
            terminals=terminals,
            entity=current.name,
            terminal_alias=current_alias,
        )

    def _resolve_terminal(
        self,
        entity: EntityDef,
        alias: str,
        segments: list[str],
        expand: bool,
        dotted: str,
        base_entity: str,
    ) -> tuple[TerminalColumn, ...]:
        """Resolve the last segment to an ordinary column or composite subfields."""
        name = segments[-1]

        if not expand:
            col = entity.find_column(name)
            if col is not None:
                if col.is_foreign_key:
                    raise PathResolutionError(
                        f"Terminal segment '{name}' is a foreign key on '{entity.name}', "
                        f"name a column of '{col.references}' instead",
                        path=dotted,
                        entity=base_entity,
                    )
                return (TerminalColumn(
                    expression=f"{alias}.{col.name}",
                    column=col,
                    entity=entity.name,
                    label=title_case(col.conceptual_name),
                    path=dotted,
                ),)

        # Composite column: one output per declared subfield
        parts = entity.composite_columns(name)
        if not parts:
            what = "No composite columns" if expand else "Terminal column"
            raise PathResolutionError(
                f"{what} '{name}' not found in entity '{entity.name}'",
                path=dotted,
                entity=base_entity,
            )

        return tuple(
            TerminalColumn(
                expression=f"{alias}.{col.name}",
                column=col,
                entity=entity.name,
                label=f"{title_case(name)} {title_case(col.aggregate_field or col.name)}",
                path=f"{dotted}.{col.aggregate_field or col.name}",
            )
            for col in parts
        )
