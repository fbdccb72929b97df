"""
Custom exceptions for the viewgraph compiler.
"""

from __future__ import annotations

from typing import Optional


class ViewgraphError(Exception):
    """Base exception for all viewgraph errors."""
    pass


class GraphConfigError(ViewgraphError):
    """Raised when a schema, view or config document is malformed."""
    pass


class PathResolutionError(ViewgraphError):
    """Raised when a dot-path cannot be walked against the schema graph."""

    def __init__(self, message: str, path: Optional[str] = None, entity: Optional[str] = None):
        self.path = path
        self.entity = entity
        location = f" (path: {path!r}, entity: {entity!r})" if path else ""
        super().__init__(f"{message}{location}")


class ConditionSyntaxError(ViewgraphError):
    """Raised when a condition expression does not match the grammar."""

    def __init__(self, condition: str, message: str, position: Optional[int] = None):
        self.condition = condition
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"Invalid condition {condition!r}{where}: {message}")


class ViewCompilationError(ViewgraphError):
    """Raised when a whole view cannot be compiled (e.g. unknown base entity)."""

    def __init__(self, view: str, message: str):
        self.view = view
        super().__init__(f"View '{view}': {message}")


class ViewExecutionError(ViewgraphError):
    """Raised when the store rejects a compiled CREATE VIEW statement."""

    def __init__(self, view: str, message: str):
        self.view = view
        super().__init__(f"Failed to create view '{view}': {message}")


class RuleExecutionError(ViewgraphError):
    """Recorded when a computed-field rule fails to compile or execute."""

    def __init__(self, rule: str, message: str):
        self.rule = rule
        super().__init__(f"Computed field {rule} failed: {message}")
