"""
Pydantic models for view and computed-field specifications.

These are the immutable inputs handed to the compilers once the schema
graph has been loaded: ViewSpec (with its raw column entries), Rule, and
the parsed back-reference parameter AST.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class BackRefMode(str, Enum):
    """Aggregation mode of a back-reference subquery."""
    COUNT = "COUNT"
    LIST = "LIST"
    SCALAR = "SCALAR"


class Aggregate(str, Enum):
    """Tie-break aggregate for computed fields."""
    MAX = "MAX"
    MIN = "MIN"


class Schedule(str, Enum):
    """When a computed field is recalculated."""
    DAILY = "DAILY"
    IMMEDIATE = "IMMEDIATE"
    HOURLY = "HOURLY"
    ON_DEMAND = "ON_DEMAND"


class _Unset:
    """Marker for an OMIT directive that was never given."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


# --- Column specs (output of the classifying parser) ---


@dataclass(frozen=True)
class ColumnSpec:
    """
    One requested view column.

    Input: "type.manufacturer.name AS OEM OMIT n/a"
    Parsed: ColumnSpec(path=("type", "manufacturer", "name"), label="OEM", omit="n/a")

    For back-references the head "Child<fk(params)" is a single path element.
    """
    path: tuple[str, ...]
    label: Optional[str] = None
    omit: Any = UNSET  # UNSET, None (suppress nulls) or a string value
    expand: bool = False  # ".*" suffix: expand a composite column
    raw: str = ""

    @property
    def has_omit(self) -> bool:
        return self.omit is not UNSET

    @property
    def dotted(self) -> str:
        return ".".join(self.path)


# --- Back-reference parameters ---


class OrderBy(BaseModel):
    """ORDER BY directive inside back-reference parameters."""
    column: str
    direction: Literal["ASC", "DESC"] = "ASC"


class BackReferenceSpec(BaseModel):
    """
    Parsed back-reference column.

    Input: "EngineAllocation<engine(WHERE end_date=null, LIMIT 1).aircraft.registration"
    Parsed: child_entity="EngineAllocation", fk_field="engine", mode=SCALAR,
            where="end_date=null", limit=1, trailing_path=["aircraft", "registration"]
    """
    child_entity: str
    fk_field: str
    mode: BackRefMode = BackRefMode.SCALAR
    where: list[str] = Field(default_factory=list)  # raw condition texts, ANDed
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None
    trailing_path: list[str] = Field(default_factory=list)


# --- Views ---


class DefaultSort(BaseModel):
    """Default sort of a view, as consumed by listing UIs."""
    column: str
    order: Literal["asc", "desc"] = "asc"


class ViewSpec(BaseModel):
    """
    A user-defined cross-entity view.

    Example:
    {
        "name": "Engine Status",
        "base_entity": "Engine",
        "columns": ["serial_number", "type.designation AS Type",
                    "EngineAllocation<engine(COUNT) AS Allocations"],
        "filter": "b.status <> 'scrapped'",
        "sort": "serial_number DESC"
    }
    """
    name: str
    base_entity: str
    columns: list[Any] = Field(default_factory=list)  # raw entries: str or {path, label, omit}
    filter: Optional[str] = None  # SQL WHERE clause, passed through
    sort: Optional[Union[str, dict[str, Any]]] = None
    prefilter: Optional[Any] = None
    required_filter: Optional[list[str]] = None

    def default_sort(self) -> Optional[DefaultSort]:
        """Parse sort: "column", "column DESC", or {"column": ..., "order": ...}."""
        if not self.sort:
            return None
        if isinstance(self.sort, str):
            parts = self.sort.split()
            order = parts[1].lower() if len(parts) > 1 else "asc"
            return DefaultSort(column=parts[0], order=order)
        return DefaultSort(
            column=self.sort["column"],
            order=str(self.sort.get("order", "asc")).lower(),
        )


# --- Computed fields ---


class Rule(BaseModel):
    """
    A materialized computed field.

    [DAILY=Registration[exit_date=null OR exit_date>TODAY].operator] on
    Aircraft.current_operator_id becomes:

    Rule(source_entity="Registration", source_field="operator",
         condition="exit_date=null OR exit_date>TODAY",
         target_entity="Aircraft", target_field="current_operator_id",
         schedule=Schedule.DAILY)
    """
    source_entity: str
    source_field: str  # source column selected as the value (FK segment syntax)
    target_entity: str
    target_field: str  # materialized column on the target entity
    link_field: Optional[str] = None  # source column pointing at the target row
    condition: Optional[str] = None
    aggregate: Optional[Aggregate] = None
    aggregate_field: Optional[str] = None
    schedule: Schedule = Schedule.DAILY

    @model_validator(mode="after")
    def _check_mode(self) -> "Rule":
        if (self.condition is None) == (self.aggregate is None):
            raise ValueError("exactly one of condition / aggregate must be set")
        if self.aggregate is not None and not self.aggregate_field:
            raise ValueError("aggregate rules require aggregate_field")
        return self

    @property
    def name(self) -> str:
        return f"{self.target_entity}.{self.target_field}"

    def describe(self) -> str:
        """Render the rule back into annotation syntax."""
        inner = (
            f"{self.aggregate.value}({self.aggregate_field})"
            if self.aggregate is not None
            else self.condition
        )
        return f"[{self.schedule.value}={self.source_entity}[{inner}].{self.source_field}]"
