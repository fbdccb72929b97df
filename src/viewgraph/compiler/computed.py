"""
Computed field compiler - materializes FK / aggregate fields with UPDATE.

A rule such as

    Aircraft.current_operator_id = [DAILY=Registration[exit_date=null OR exit_date>TODAY].operator]

compiles to a write-minimizing statement that only touches rows whose
value actually changes:

    UPDATE aircraft SET current_operator_id = (
        SELECT src.operator_id FROM registration src
        WHERE src.aircraft_id = aircraft.id AND (src.exit_date IS NULL OR src.exit_date > date('now'))
        ORDER BY src.id DESC LIMIT 1
    )
    WHERE current_operator_id IS NOT (<same subquery>)

Aggregate rules ([MAX(end_date)] / [MIN(end_date)]) replace the condition
with an ordering where NULL ranks first for MAX (still active) and last for
MIN.

Rules run one by one. A rule that fails to compile or execute is logged and
counted; the remaining rules still run.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from ..core.condition import TODAY_SQL, ConditionTranslator
from ..core.defs import ColumnDef, EntityDef, SchemaGraph
from ..core.errors import PathResolutionError, RuleExecutionError, ViewgraphError
from ..core.spec_types import Aggregate, Rule, Schedule
from ..core.utils import sql_literal, to_snake_case

logger = logging.getLogger(__name__)

SOURCE_ALIAS = "src"

ExecuteFn = Callable[[str], Union[int, Awaitable[int]]]


@dataclass
class RuleOutcome:
    """Outcome of one rule (or default) within a run."""
    rule: str
    updated: int = 0
    sql: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunResult:
    """Aggregate result of a run over a set of rules."""
    processed: int = 0
    updated: int = 0
    failed: int = 0
    outcomes: list[RuleOutcome] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def record(self, outcome: RuleOutcome) -> None:
        self.processed += 1
        self.outcomes.append(outcome)
        if outcome.ok:
            self.updated += outcome.updated
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "failed": self.failed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "rules": [
                {"rule": o.rule, "updated": o.updated, "error": o.error}
                for o in self.outcomes
            ],
        }


async def call_execute(execute: ExecuteFn, sql: str) -> int:
    """Invoke a sync or async execute capability and return its rowcount."""
    if inspect.iscoroutinefunction(execute):
        rowcount = await execute(sql)
    else:
        rowcount = execute(sql)
        if inspect.iscoroutine(rowcount):
            rowcount = await rowcount
    return int(rowcount or 0)


class ComputedFieldCompiler:
    """
    Compiles Rules into UPDATE statements and runs them.

    Usage:
        compiler = ComputedFieldCompiler(schema)
        sql = compiler.build_update_sql(rule)
        result = await compiler.run_rules(rules, store.execute)

    Args:
        schema: The schema graph
        today_sql: SQL expression substituted for TODAY
    """

    def __init__(self, schema: SchemaGraph, today_sql: str = TODAY_SQL):
        self.schema = schema
        self.translator = ConditionTranslator(today_sql)

    # -------------------------------------------------------------------------
    # SQL generation
    # -------------------------------------------------------------------------

    def build_subquery(self, rule: Rule) -> str:
        """
        Build the correlated subquery computing the new value of a rule.

        Raises:
            PathResolutionError: unknown entity or column
            ConditionSyntaxError: malformed condition
        """
        target = self._entity(rule.target_entity, rule)
        source = self._entity(rule.source_entity, rule)
        value_col = self._source_field(source, rule)
        link = self._link_column(source, target, rule, value_col)

        where = [f"{SOURCE_ALIAS}.{link} = {target.table}.id"]
        if rule.aggregate is not None:
            if value_col.is_foreign_key:
                where.append(f"{SOURCE_ALIAS}.{value_col.name} IS NOT NULL")
            agg = self._column(source, rule.aggregate_field, rule).name
            nulls = f"CASE WHEN {SOURCE_ALIAS}.{agg} IS NULL THEN 1 ELSE 0 END"
            if rule.aggregate == Aggregate.MAX:
                order = f"{nulls} DESC, {SOURCE_ALIAS}.{agg} DESC, {SOURCE_ALIAS}.id DESC"
            else:
                order = f"{nulls} ASC, {SOURCE_ALIAS}.{agg} ASC, {SOURCE_ALIAS}.id DESC"
        else:
            where.append(self.translator.translate(
                rule.condition,
                SOURCE_ALIAS,
                resolve=lambda name: _resolve_name(source, name),
            ))
            order = f"{SOURCE_ALIAS}.id DESC"

        return (
            f"(SELECT {SOURCE_ALIAS}.{value_col.name} FROM {source.table} {SOURCE_ALIAS} "
            f"WHERE {' AND '.join(where)} ORDER BY {order} LIMIT 1)"
        )

    def build_update_sql(self, rule: Rule) -> str:
        """Build the write-minimizing UPDATE for a rule."""
        target = self._entity(rule.target_entity, rule)
        column = self._column(target, rule.target_field, rule).name
        subquery = self.build_subquery(rule)
        return (
            f"UPDATE {target.table} SET {column} = {subquery} "
            f"WHERE {column} IS NOT {subquery}"
        )

    def default_columns(self) -> list[tuple[EntityDef, ColumnDef]]:
        """Columns carrying an explicit default value."""
        return [
            (entity, col)
            for entity in self.schema.entities.values()
            for col in entity.columns
            if col.has_default
        ]

    @staticmethod
    def build_default_sql(entity: EntityDef, column: ColumnDef) -> str:
        """UPDATE that fills NULLs of a column with its explicit default."""
        return (
            f"UPDATE {entity.table} SET {column.name} = {sql_literal(column.default)} "
            f"WHERE {column.name} IS NULL"
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def run_rules(self, rules: Iterable[Rule], execute: ExecuteFn) -> RunResult:
        """
        Compile and execute each rule in order.

        Failures are isolated per rule: they are logged, recorded in the
        result and never raised.
        """
        result = RunResult(started_at=datetime.now())

        for rule in rules:
            outcome = RuleOutcome(rule=rule.name)
            try:
                outcome.sql = self.build_update_sql(rule)
                logger.debug(f"Executing: {outcome.sql}")
                outcome.updated = await call_execute(execute, outcome.sql)
                logger.info(f"Computed {rule.name}: {outcome.updated} rows updated")
            except ViewgraphError as e:
                outcome.error = str(RuleExecutionError(rule.name, str(e)))
                logger.error(outcome.error)
            except Exception as e:
                outcome.error = str(RuleExecutionError(rule.name, str(e)))
                logger.error(outcome.error, exc_info=True)
            result.record(outcome)

        result.finished_at = datetime.now()
        logger.info(
            f"Computed field run finished: processed={result.processed} "
            f"updated={result.updated} failed={result.failed}"
        )
        return result

    async def apply_defaults(self, execute: ExecuteFn) -> RunResult:
        """Fill NULL columns with their explicit defaults, one statement per column."""
        result = RunResult(started_at=datetime.now())

        for entity, column in self.default_columns():
            outcome = RuleOutcome(rule=f"{entity.name}.{column.name}")
            try:
                outcome.sql = self.build_default_sql(entity, column)
                outcome.updated = await call_execute(execute, outcome.sql)
                if outcome.updated:
                    logger.info(f"Applied default to {outcome.rule}: {outcome.updated} rows")
            except Exception as e:
                outcome.error = str(e)
                logger.error(f"Failed to apply default to {outcome.rule}: {e}", exc_info=True)
            result.record(outcome)

        result.finished_at = datetime.now()
        return result

    @staticmethod
    def rules_for(rules: Iterable[Rule], schedule: Schedule = Schedule.DAILY) -> list[Rule]:
        return [r for r in rules if r.schedule == schedule]

    @staticmethod
    def status(rules: Iterable[Rule]) -> dict[str, Any]:
        """Summary of the configured rules."""
        rules = list(rules)
        by_schedule = {s.value: 0 for s in Schedule}
        for rule in rules:
            by_schedule[rule.schedule.value] += 1
        return {
            "total_fields": len(rules),
            "by_schedule": by_schedule,
            "fields": [
                {
                    "entity": r.target_entity,
                    "column": r.target_field,
                    "schedule": r.schedule.value,
                    "rule": r.describe(),
                }
                for r in rules
            ],
        }

    # -------------------------------------------------------------------------
    # Resolution helpers
    # -------------------------------------------------------------------------

    def _entity(self, name: str, rule: Rule) -> EntityDef:
        entity = self.schema.get(name)
        if entity is None:
            raise PathResolutionError(f"Entity '{name}' not found in schema", path=rule.describe(), entity=name)
        return entity

    @staticmethod
    def _column(entity: EntityDef, name: str, rule: Rule) -> ColumnDef:
        col = entity.find_column(name) or entity.find_fk_column(name)
        if col is None:
            raise PathResolutionError(
                f"Column '{name}' not found in entity '{entity.name}'",
                path=rule.describe(),
                entity=entity.name,
            )
        return col

    def _source_field(self, source: EntityDef, rule: Rule) -> ColumnDef:
        """Selected value column; matched like an FK path segment first."""
        col = source.find_fk_column(rule.source_field)
        if col is not None:
            return col
        return self._column(source, rule.source_field, rule)

    def _link_column(self, source: EntityDef, target: EntityDef, rule: Rule, value_col: ColumnDef) -> str:
        """Source column pointing at the target row."""
        if rule.link_field:
            return self._column(source, rule.link_field, rule).name
        candidates = [c for c in source.fk_columns_to(target.name) if c.name != value_col.name]
        if candidates:
            return candidates[0].name
        return f"{to_snake_case(target.name)}_id"


def _resolve_name(entity: EntityDef, name: str) -> str:
    col = entity.find_column(name)
    return col.name if col is not None else name
