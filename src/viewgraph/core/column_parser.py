"""
Column entry parser for view definitions.

Every column entry of a view is classified here, once, into a closed set
of shapes that the view compiler dispatches over:

1. Plain column:
   "serial_number"
   "total_cycles AS Cycles OMIT 0"

2. FK path:
   "type.manufacturer.name AS OEM"
   {"path": "type.designation", "label": "Type", "omit": "-"}

3. Back-reference (one inbound hop, optional outbound tail):
   "EngineAllocation<engine(COUNT) AS Allocations"
   "EngineAllocation<engine(WHERE end_date=null, LIMIT 1).aircraft.registration"

4. Invalid: anything else, e.g. "EngineAllocation<engine.aircraft"
   (parentheses are mandatory for back-references).

Composite columns may be expanded with a ".*" suffix: "position.*".

Also parses computed-field annotations:
   [DAILY=Registration[exit_date=null OR exit_date>TODAY].operator]
   [DAILY=EngineAllocation[MAX(end_date)].aircraft]
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from .errors import GraphConfigError
from .spec_types import (
    UNSET,
    Aggregate,
    BackRefMode,
    BackReferenceSpec,
    ColumnSpec,
    OrderBy,
    Rule,
    Schedule,
)


_OMIT_PATTERN = re.compile(r"^(.*?)\s+OMIT\s+(.+)$", re.IGNORECASE)
_AS_PATTERN = re.compile(r"^(.*?)\s+AS\s+(.+)$", re.IGNORECASE)
_BACKREF_PATTERN = re.compile(r"^(\w+)<(\w+)\(([^)]*)\)(?:\.(.+))?$")
_SEGMENT_PATTERN = re.compile(r"^\w+$")

_ORDER_PATTERN = re.compile(r"^ORDER\s+BY\s+(\w+)(?:\s+(ASC|DESC))?$", re.IGNORECASE)
_LIMIT_PATTERN = re.compile(r"^LIMIT\s+(\d+)$", re.IGNORECASE)
_WHERE_PATTERN = re.compile(r"^WHERE\s+(.+)$", re.IGNORECASE)

_COMPUTED_PATTERN = re.compile(
    r"\[(DAILY|IMMEDIATE|HOURLY|ON_DEMAND)=(\w+)\[([^\]]+)\]\.(\w+)\]",
    re.IGNORECASE,
)
_AGGREGATE_PATTERN = re.compile(r"^(MAX|MIN)\((\w+)\)$", re.IGNORECASE)


# =============================================================================
# Column shapes (tagged union)
# =============================================================================


@dataclass(frozen=True)
class PlainColumn:
    """Single column on the base entity."""
    spec: ColumnSpec


@dataclass(frozen=True)
class PathColumn:
    """Dot path walking outbound FKs from the base entity."""
    spec: ColumnSpec


@dataclass(frozen=True)
class BackRefColumn:
    """Correlated subquery over a child entity pointing at the base."""
    spec: ColumnSpec
    backref: BackReferenceSpec


@dataclass(frozen=True)
class InvalidColumn:
    """Entry that is not a recognized column shape; dropped by the compiler."""
    raw: Any
    reason: str


ColumnShape = Union[PlainColumn, PathColumn, BackRefColumn, InvalidColumn]


# =============================================================================
# Entry parsing
# =============================================================================


def _normalize_omit(value: Any) -> Any:
    if value is None:
        return None
    text = str(value).strip()
    return None if text.lower() == "null" else text


def _split_directives(text: str) -> tuple[str, Optional[str], Any]:
    """
    Split "path AS Label OMIT value" into its parts.

    For back-references only text after the parameter list is searched, so
    parameters like "ORDER BY x DESC" are never mistaken for directives.
    """
    head, tail = "", text
    if "<" in text and ")" in text:
        cut = text.rindex(")") + 1
        head, tail = text[:cut], text[cut:]

    omit: Any = UNSET
    omit_match = _OMIT_PATTERN.match(tail)
    if omit_match:
        tail = omit_match.group(1)
        omit = _normalize_omit(omit_match.group(2))

    label = None
    as_match = _AS_PATTERN.match(tail)
    if as_match:
        tail = as_match.group(1)
        label = as_match.group(2).strip()

    return (head + tail).strip(), label, omit


def _split_path(path: str) -> tuple[tuple[str, ...], bool]:
    """Split a path into segments, honouring the back-reference head."""
    expand = False
    if path.endswith(".*"):
        path = path[:-2]
        expand = True

    if "<" in path and ")" in path:
        cut = path.rindex(")") + 1
        head, tail = path[:cut], path[cut:]
        if not tail:
            return (head,), expand
        if not tail.startswith("."):
            # garbage after the parameter list; keep it on the head so it fails to match
            return (path,), expand
        return (head,) + tuple(tail[1:].split(".")), expand

    return tuple(path.split(".")), expand


def parse_column_entry(entry: Any) -> Optional[ColumnSpec]:
    """
    Parse a raw column entry into a ColumnSpec.

    Returns None when the entry is neither a string nor a dict with a path.
    FK paths (more than one segment) default to OMIT null unless OMIT is given.
    """
    if isinstance(entry, dict) and entry.get("path"):
        path, expand = _split_path(str(entry["path"]).strip())
        expand = expand or bool(entry.get("expand", False))
        omit = _normalize_omit(entry["omit"]) if "omit" in entry else UNSET
        label = entry.get("label") or None
        raw = str(entry["path"])
    elif isinstance(entry, str) and entry.strip():
        text, label, omit = _split_directives(entry.strip())
        path, expand = _split_path(text)
        raw = entry
    else:
        return None

    if omit is UNSET and len(path) > 1:
        omit = None

    return ColumnSpec(path=path, label=label, omit=omit, expand=expand, raw=raw)


def parse_backref_params(params: str) -> dict[str, Any]:
    """
    Parse the comma-separated parameter list of a back-reference.

    Supports:
        "COUNT"                     -> {"mode": COUNT}
        "LIST"                      -> {"mode": LIST}
        "WHERE end_date=null"       -> {"where": ["end_date=null"]}
        "ORDER BY start_date DESC"  -> {"order_by": OrderBy(column="start_date", direction="DESC")}
        "LIMIT 1"                   -> {"limit": 1}

    Raises:
        GraphConfigError: unknown or conflicting directive
    """
    result: dict[str, Any] = {"mode": None, "where": [], "order_by": None, "limit": None}

    for part in (p.strip() for p in params.split(",")):
        if not part:
            continue
        upper = part.upper()
        if upper in ("COUNT", "LIST"):
            if result["mode"] is not None:
                raise GraphConfigError(f"Conflicting back-reference modes in ({params})")
            result["mode"] = BackRefMode(upper)
            continue

        where = _WHERE_PATTERN.match(part)
        if where:
            result["where"].append(where.group(1).strip())
            continue

        order = _ORDER_PATTERN.match(part)
        if order:
            result["order_by"] = OrderBy(
                column=order.group(1),
                direction=(order.group(2) or "ASC").upper(),
            )
            continue

        limit = _LIMIT_PATTERN.match(part)
        if limit:
            result["limit"] = int(limit.group(1))
            continue

        raise GraphConfigError(f"Unknown back-reference directive {part!r}")

    return result


def parse_backref(head: str, trailing: tuple[str, ...] = ()) -> Optional[BackReferenceSpec]:
    """
    Parse "Child<fk(params)" plus its trailing path.

    Returns None when the head does not match the back-reference grammar.
    """
    match = _BACKREF_PATTERN.match(head)
    if not match:
        return None

    child, fk_field, params, _ = match.groups()
    parsed = parse_backref_params(params)
    mode = parsed["mode"] or BackRefMode.SCALAR

    return BackReferenceSpec(
        child_entity=child,
        fk_field=fk_field,
        mode=mode,
        where=parsed["where"],
        order_by=parsed["order_by"],
        limit=parsed["limit"],
        trailing_path=list(trailing),
    )


def classify_column(entry: Any) -> ColumnShape:
    """
    Classify a raw column entry into one of the column shapes.

    Never raises: anything unusable becomes InvalidColumn with a reason.
    """
    spec = parse_column_entry(entry)
    if spec is None:
        return InvalidColumn(raw=entry, reason="column entry must be a string or {path, ...}")

    head = spec.path[0]
    if "<" in spec.dotted:
        trailing = spec.path[1:]
        # params may hold <, <= and <> comparisons
        target = head.split("(", 1)[0]
        if any("<" in seg for seg in trailing) or target.count("<") > 1:
            return InvalidColumn(raw=entry, reason="chained back-references are not supported")
        try:
            backref = parse_backref(head, trailing)
        except GraphConfigError as e:
            return InvalidColumn(raw=entry, reason=str(e))
        if backref is None:
            return InvalidColumn(
                raw=entry,
                reason="malformed back-reference (expected Entity<fk(params)[.path])",
            )
        if not all(_SEGMENT_PATTERN.match(seg) for seg in trailing):
            return InvalidColumn(raw=entry, reason="invalid segment in back-reference path")
        return BackRefColumn(spec=spec, backref=backref)

    if not all(_SEGMENT_PATTERN.match(seg) for seg in spec.path):
        return InvalidColumn(raw=entry, reason=f"invalid column path {spec.dotted!r}")

    if len(spec.path) == 1:
        return PlainColumn(spec=spec)
    return PathColumn(spec=spec)


# =============================================================================
# Computed field annotations
# =============================================================================


def parse_computed_annotation(
    annotation: str,
    target_entity: str,
    target_field: str,
) -> Optional[Rule]:
    """
    Parse a computed-field annotation into a Rule.

    Examples:
        [DAILY=Registration[exit_date=null OR exit_date>TODAY].operator]
        [DAILY=EngineAllocation[MAX(end_date)].aircraft]

    Returns None if the text carries no annotation.
    """
    match = _COMPUTED_PATTERN.search(annotation)
    if not match:
        return None

    schedule, source_entity, inner, source_field = match.groups()
    inner = inner.strip()

    aggregate = _AGGREGATE_PATTERN.match(inner)
    if aggregate:
        return Rule(
            source_entity=source_entity,
            source_field=source_field,
            target_entity=target_entity,
            target_field=target_field,
            aggregate=Aggregate(aggregate.group(1).upper()),
            aggregate_field=aggregate.group(2),
            schedule=Schedule(schedule.upper()),
        )

    return Rule(
        source_entity=source_entity,
        source_field=source_field,
        target_entity=target_entity,
        target_field=target_field,
        condition=inner,
        schedule=Schedule(schedule.upper()),
    )
