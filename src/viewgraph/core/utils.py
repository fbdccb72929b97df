"""
Utility functions for viewgraph.

Includes:
- Case conversion (PascalCase -> snake_case)
- SQL-safe view naming
- Display label formatting
- SQL literal / identifier quoting
"""

from __future__ import annotations

import re
from typing import Any


# =============================================================================
# Case conversion utilities
# =============================================================================

# Pre-compiled regex patterns for better performance
_CAMEL_TO_SNAKE_PATTERN = re.compile(r'(?<!^)(?=[A-Z])')
_NON_ALNUM_PATTERN = re.compile(r'[^a-z0-9]+')


def to_snake_case(name: str) -> str:
    """
    Convert PascalCase / camelCase to snake_case.

    Examples:
        EngineAllocation -> engine_allocation
        aircraftType -> aircraft_type
        HTTPResponse -> http_response
    """
    # Handle consecutive uppercase (HTTP -> http)
    result = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', name)
    # Handle standard camelCase
    result = _CAMEL_TO_SNAKE_PATTERN.sub('_', result)
    return result.lower()


def to_view_name(name: str) -> str:
    """
    Convert a human view name to its SQL view name.

    Examples:
        Engine Status -> uv_engine_status
        Fleet / Overview (2024) -> uv_fleet_overview_2024
    """
    slug = _NON_ALNUM_PATTERN.sub('_', name.lower()).strip('_')
    return f"uv_{slug}"


def title_case(name: str) -> str:
    """
    Turn a column name into a display label.

    Examples:
        serial_number -> Serial Number
        msn -> Msn
    """
    return re.sub(r'\b\w', lambda m: m.group(0).upper(), name.replace('_', ' '))


# =============================================================================
# SQL quoting
# =============================================================================


def quote_label(label: str) -> str:
    """Quote an output column label: Engine Type -> "Engine Type"."""
    return '"' + label.replace('"', '""') + '"'


def sql_literal(value: Any) -> str:
    """
    Render a Python value as a SQL literal.

    None -> NULL, bool -> 1/0, numbers as-is, everything else single-quoted.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"
