"""
Compiler module - path resolution, view and computed-field SQL generation.
"""

from __future__ import annotations

from .backref import BackReferenceCompiler, BackRefOutput
from .computed import ComputedFieldCompiler, RuleOutcome, RunResult
from .path_resolver import JoinPlan, JoinStep, PathResolver, ResolvedPath, TerminalColumn
from .view_compiler import (
    CompiledColumn,
    CompiledView,
    DroppedColumn,
    ViewCompilationResult,
    ViewCompiler,
)

__all__ = [
    "JoinStep",
    "JoinPlan",
    "TerminalColumn",
    "ResolvedPath",
    "PathResolver",
    "BackRefOutput",
    "BackReferenceCompiler",
    "CompiledColumn",
    "CompiledView",
    "DroppedColumn",
    "ViewCompilationResult",
    "ViewCompiler",
    "RuleOutcome",
    "RunResult",
    "ComputedFieldCompiler",
]
