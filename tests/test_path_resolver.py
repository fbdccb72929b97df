"""Tests for dot-path resolution over the FK graph."""

import pytest

from viewgraph.compiler.path_resolver import JoinPlan, PathResolver
from viewgraph.core.defs import ColumnDef, EntityDef, SchemaGraph
from viewgraph.core.errors import PathResolutionError


@pytest.fixture
def resolver(schema):
    return PathResolver(schema)


def test_plain_column(resolver):
    resolved = resolver.resolve("Engine", "serial_number")
    assert resolved.joins == ()
    assert len(resolved.terminals) == 1
    assert resolved.terminals[0].expression == "b.serial_number"
    assert resolved.terminals[0].label == "Serial Number"


def test_display_name_terminal(resolver):
    resolved = resolver.resolve("Engine", "cycles")
    assert resolved.terminals[0].expression == "b.total_cycles"
    assert resolved.terminals[0].label == "Cycles"


def test_two_hop_path(resolver):
    resolved = resolver.resolve("Engine", "type.manufacturer.name")
    assert [j.to_sql() for j in resolved.joins] == [
        "LEFT JOIN engine_type j_type ON b.type_id = j_type.id",
        "LEFT JOIN manufacturer j_type_manufacturer ON j_type.manufacturer_id = j_type_manufacturer.id",
    ]
    assert resolved.terminals[0].expression == "j_type_manufacturer.name"
    assert resolved.entity == "Manufacturer"
    assert resolved.terminal_alias == "j_type_manufacturer"


@pytest.mark.parametrize("segment", ["type", "type_id"])
def test_fk_segment_by_raw_or_display_name(resolver, segment):
    resolved = resolver.resolve("Engine", f"{segment}.designation")
    assert resolved.joins[0].fk_column == "type_id"


def test_fk_segment_with_id_suffix_rule():
    schema = SchemaGraph(entities={
        "Part": EntityDef(name="Part", table="part", columns=(
            ColumnDef(name="vendor_id", references="Vendor"),
        )),
        "Vendor": EntityDef(name="Vendor", table="vendor", columns=(ColumnDef(name="name"),)),
    })
    resolved = PathResolver(schema).resolve("Part", "vendor.name")
    assert resolved.joins[0].fk_column == "vendor_id"
    assert resolved.joins[0].target_alias == "j_vendor"


def test_identical_paths_give_identical_aliases(resolver):
    first = resolver.resolve("Engine", "type.designation")
    second = resolver.resolve("Engine", "type.manufacturer.name")
    assert first.joins[0] == second.joins[0]


def test_segment_list_input(resolver):
    assert resolver.resolve("Engine", ["type", "designation"]) == resolver.resolve("Engine", "type.designation")


def test_unknown_entity(resolver):
    with pytest.raises(PathResolutionError, match="Entity 'Spaceship' not found"):
        resolver.resolve("Spaceship", "name")


def test_unknown_fk_segment(resolver):
    with pytest.raises(PathResolutionError, match="FK segment 'owner'") as exc_info:
        resolver.resolve("Engine", "owner.name")
    assert exc_info.value.path == "owner.name"
    assert exc_info.value.entity == "Engine"


def test_non_fk_segment_in_middle(resolver):
    with pytest.raises(PathResolutionError):
        resolver.resolve("Engine", "serial_number.name")


def test_unknown_terminal(resolver):
    with pytest.raises(PathResolutionError, match="Terminal column 'nope'"):
        resolver.resolve("Engine", "type.nope")


def test_terminal_fk_is_rejected(resolver):
    with pytest.raises(PathResolutionError, match="foreign key"):
        resolver.resolve("Engine", "type")


def test_empty_segment(resolver):
    with pytest.raises(PathResolutionError):
        resolver.resolve("Engine", "type..designation")


def test_composite_expansion_with_star(resolver):
    resolved = resolver.resolve("Aircraft", "position.*")
    assert resolved.is_composite
    assert [t.expression for t in resolved.terminals] == ["b.position_latitude", "b.position_longitude"]
    assert [t.label for t in resolved.terminals] == ["Position Latitude", "Position Longitude"]
    assert [t.path for t in resolved.terminals] == ["position.latitude", "position.longitude"]


def test_composite_implicit_terminal(resolver):
    resolved = resolver.resolve("Aircraft", "position")
    assert len(resolved.terminals) == 2


def test_composite_through_fk(resolver):
    resolved = resolver.resolve("Engine", "current_aircraft.position", expand=True)
    assert [t.expression for t in resolved.terminals] == [
        "j_current_aircraft.position_latitude",
        "j_current_aircraft.position_longitude",
    ]


def test_expand_on_plain_column_fails(resolver):
    with pytest.raises(PathResolutionError, match="No composite columns"):
        resolver.resolve("Aircraft", "registration.*")


def test_custom_aliases(schema):
    resolver = PathResolver(schema, root_alias="_br", alias_prefix="_br_")
    resolved = resolver.resolve("EngineAllocation", "aircraft.registration")
    assert resolved.joins[0].to_sql() == "LEFT JOIN aircraft _br_aircraft ON _br.aircraft_id = _br_aircraft.id"
    assert resolved.terminals[0].expression == "_br_aircraft.registration"


def test_join_plan_dedups_by_alias(resolver):
    plan = JoinPlan()
    plan.merge(resolver.resolve("Engine", "type.designation").joins)
    plan.merge(resolver.resolve("Engine", "type.manufacturer.name").joins)
    plan.merge(resolver.resolve("Engine", "type.thrust").joins)
    assert plan.aliases == ["j_type", "j_type_manufacturer"]
    assert len(plan) == 2
    assert plan.to_sql().count("LEFT JOIN engine_type") == 1
