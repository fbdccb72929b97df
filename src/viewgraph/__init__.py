"""
Viewgraph - declarative views and computed fields over a foreign-key graph.

Compiles human-authored path expressions into:
- CREATE VIEW statements joining across FKs (with back-reference subqueries)
- write-minimizing UPDATE statements for materialized computed fields
- a midnight scheduler driving the DAILY computed fields

Usage:
    from viewgraph import load_schema, ViewCompiler, ComputedFieldCompiler

    doc = load_schema("schema.yaml")
    views = ViewCompiler(doc.graph).compile_all(doc.views)
    sql = ComputedFieldCompiler(doc.graph).build_update_sql(doc.rules[0])
"""

from __future__ import annotations

__version__ = "0.1.0"

from .compiler import (
    BackReferenceCompiler,
    CompiledColumn,
    CompiledView,
    ComputedFieldCompiler,
    JoinPlan,
    JoinStep,
    PathResolver,
    ResolvedPath,
    RunResult,
    ViewCompilationResult,
    ViewCompiler,
)
from .core import (
    Aggregate,
    BackRefMode,
    BackReferenceSpec,
    ColumnDef,
    ColumnSpec,
    ConditionSyntaxError,
    ConditionTranslator,
    EntityDef,
    GraphConfigError,
    PathResolutionError,
    Rule,
    RuleExecutionError,
    Schedule,
    SchemaDocument,
    SchemaGraph,
    SchemaRegistry,
    ViewCompilationError,
    ViewExecutionError,
    ViewgraphError,
    ViewSpec,
    classify_column,
    load_schema,
    translate_condition,
)
from .runtime import ComputedFieldScheduler, SchedulerState, ViewStore

__all__ = [
    "__version__",
    # Schema
    "ColumnDef",
    "EntityDef",
    "SchemaGraph",
    "SchemaDocument",
    "SchemaRegistry",
    "load_schema",
    # Specs
    "Aggregate",
    "BackRefMode",
    "BackReferenceSpec",
    "ColumnSpec",
    "Rule",
    "Schedule",
    "ViewSpec",
    "classify_column",
    # Compilers
    "ConditionTranslator",
    "translate_condition",
    "PathResolver",
    "ResolvedPath",
    "JoinPlan",
    "JoinStep",
    "BackReferenceCompiler",
    "ViewCompiler",
    "CompiledView",
    "CompiledColumn",
    "ViewCompilationResult",
    "ComputedFieldCompiler",
    "RunResult",
    # Runtime
    "ViewStore",
    "ComputedFieldScheduler",
    "SchedulerState",
    # Errors
    "ViewgraphError",
    "GraphConfigError",
    "PathResolutionError",
    "ConditionSyntaxError",
    "ViewCompilationError",
    "ViewExecutionError",
    "RuleExecutionError",
]
