"""Tests for the SQLAlchemy-backed store: views, schema hash, distinct values."""

import pytest

from viewgraph.compiler.view_compiler import ViewCompiler
from viewgraph.core.errors import ViewExecutionError
from viewgraph.core.registry import load_schema
from viewgraph.core.spec_types import ViewSpec
from viewgraph.runtime.store import SCHEMA_HASH_KEY, build_distinct_sql


@pytest.fixture
def compiled(fleet):
    return ViewCompiler(fleet.graph).compile_all(fleet.views).views


def rows_by_serial(store):
    rows = store.query("SELECT * FROM uv_engine_status ORDER BY id")
    return {row["Serial Number"]: row for row in rows}


def test_execute_returns_rowcount(store):
    assert store.execute("UPDATE engine SET total_cycles = total_cycles + 1") == 3
    assert store.execute("UPDATE engine SET total_cycles = 0 WHERE id = 99") == 0


def test_install_and_query_view(store, compiled, fleet):
    assert store.install_views(compiled, schema_hash=fleet.schema_hash) is True
    assert store.installed_views() == ["uv_engine_status"]

    rows = rows_by_serial(store)
    first = rows["ESN-1001"]
    assert first["Type"] == "CFM56-5B"
    assert first["OEM"] == "CFM International"
    assert first["Allocations"] == 2
    assert first["Installed On"] == "D-AIPA"
    assert first["_fk_Installed On"] == 1
    assert first["History"] == "D-AIPB, D-AIPA"


def test_backref_empty_results(store, compiled):
    store.install_views(compiled)
    spare = rows_by_serial(store)["ESN-2001"]
    assert spare["Allocations"] == 0
    assert spare["Installed On"] is None
    assert spare["History"] is None
    assert spare["OEM"] == "Pratt & Whitney"


def test_schema_hash_gates_rebuild(store, compiled, fleet):
    assert store.install_views(compiled, schema_hash=fleet.schema_hash) is True
    assert store.get_meta(SCHEMA_HASH_KEY) == fleet.schema_hash
    assert store.install_views(compiled, schema_hash=fleet.schema_hash) is False
    assert store.install_views(compiled, schema_hash=fleet.schema_hash, force=True) is True
    assert store.install_views(compiled, schema_hash="changed") is True
    assert store.get_meta(SCHEMA_HASH_KEY) == "changed"


def test_stale_views_dropped(store, compiled, schema):
    extra = ViewCompiler(schema).compile(ViewSpec(name="Old", base_entity="Engine", columns=["serial_number"]))
    store.install_views(compiled + [extra])
    assert store.installed_views() == ["uv_engine_status", "uv_old"]
    store.install_views(compiled)
    assert store.installed_views() == ["uv_engine_status"]


def test_failing_view_aborts(store, schema):
    good = ViewCompiler(schema).compile(ViewSpec(name="Good", base_entity="Engine", columns=["serial_number"]))
    bad = ViewCompiler(schema).compile(
        ViewSpec(name="Bad", base_entity="Engine", columns=["serial_number"], filter="b.status = = 'x'")
    )
    after = ViewCompiler(schema).compile(ViewSpec(name="After", base_entity="Engine", columns=["serial_number"]))

    with pytest.raises(ViewExecutionError) as exc_info:
        store.install_views([good, bad, after], schema_hash="abc")
    assert exc_info.value.view == "uv_bad"
    assert "uv_after" not in store.installed_views()
    assert store.get_meta(SCHEMA_HASH_KEY) is None


def test_distinct_values(store, compiled):
    store.install_views(compiled)
    assert store.distinct_values("uv_engine_status", "Type") == ["CFM56-5B", "PW1100G"]


def test_distinct_values_by_year(store, schema):
    view = ViewCompiler(schema).compile(ViewSpec(
        name="Registrations", base_entity="Registration", columns=["entry_date", "operator.name AS Operator"],
    ))
    store.install_views([view])
    assert store.distinct_values("uv_registrations", "Entry Date", mode="year") == ["2020", "2024"]
    assert store.distinct_values("uv_registrations", "Entry Date", mode="month") == ["2020-01", "2024-02"]


def test_build_distinct_sql():
    assert build_distinct_sql("uv_x", "Status") == (
        'SELECT DISTINCT "Status" FROM uv_x WHERE "Status" IS NOT NULL ORDER BY "Status"'
    )
    assert build_distinct_sql("uv_x", "Start", mode="year") == (
        "SELECT DISTINCT strftime('%Y', \"Start\") AS value FROM uv_x "
        "WHERE \"Start\" IS NOT NULL ORDER BY value"
    )


def test_build_distinct_sql_rejects_bad_input():
    with pytest.raises(ValueError):
        build_distinct_sql("uv_x; DROP TABLE engine", "Status")
    with pytest.raises(ValueError):
        build_distinct_sql("uv_x", "Status", mode="week")


def test_view_change_triggers_reinstall(store, fleet_document):
    first = load_schema(fleet_document)
    store.install_views(ViewCompiler(first.graph).compile_all(first.views).views, schema_hash=first.schema_hash)

    fleet_document["views"][0]["columns"].append("status AS Engine Status Flag")
    second = load_schema(fleet_document)
    views = ViewCompiler(second.graph).compile_all(second.views).views
    assert second.schema_hash != first.schema_hash
    assert store.install_views(views, schema_hash=second.schema_hash) is True
    assert rows_by_serial(store)["ESN-1001"]["Engine Status Flag"] == "active"
