"""
Core module - schema definitions, specs, parsers and errors.
"""

from __future__ import annotations

from .column_parser import (
    BackRefColumn,
    ColumnShape,
    InvalidColumn,
    PathColumn,
    PlainColumn,
    classify_column,
    parse_backref,
    parse_column_entry,
    parse_computed_annotation,
)
from .condition import TODAY_SQL, ConditionTranslator, translate_condition
from .defs import ColumnDef, EntityDef, ForeignKeyDef, SchemaGraph
from .errors import (
    ConditionSyntaxError,
    GraphConfigError,
    PathResolutionError,
    RuleExecutionError,
    ViewCompilationError,
    ViewExecutionError,
    ViewgraphError,
)
from .registry import SchemaDocument, SchemaRegistry, load_schema
from .spec_types import (
    UNSET,
    Aggregate,
    BackRefMode,
    BackReferenceSpec,
    ColumnSpec,
    DefaultSort,
    OrderBy,
    Rule,
    Schedule,
    ViewSpec,
)

__all__ = [
    # Definitions
    "ColumnDef",
    "EntityDef",
    "ForeignKeyDef",
    "SchemaGraph",
    # Specs
    "UNSET",
    "Aggregate",
    "BackRefMode",
    "BackReferenceSpec",
    "ColumnSpec",
    "DefaultSort",
    "OrderBy",
    "Rule",
    "Schedule",
    "ViewSpec",
    # Parsing
    "BackRefColumn",
    "ColumnShape",
    "InvalidColumn",
    "PathColumn",
    "PlainColumn",
    "classify_column",
    "parse_backref",
    "parse_column_entry",
    "parse_computed_annotation",
    "TODAY_SQL",
    "ConditionTranslator",
    "translate_condition",
    # Registry
    "SchemaDocument",
    "SchemaRegistry",
    "load_schema",
    # Errors
    "ViewgraphError",
    "GraphConfigError",
    "PathResolutionError",
    "ConditionSyntaxError",
    "ViewCompilationError",
    "ViewExecutionError",
    "RuleExecutionError",
]
