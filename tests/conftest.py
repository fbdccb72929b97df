"""Shared fixtures: a small fleet-management schema and an in-memory database.

Tests import from the installed viewgraph package.
"""

import copy

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from viewgraph.core.registry import load_schema
from viewgraph.runtime.store import ViewStore


CURRENT_OPERATOR_RULE = (
    "[DAILY=Registration[(entry_date=null OR entry_date<=TODAY) "
    "AND (exit_date=null OR exit_date>TODAY)].operator]"
)
CURRENT_AIRCRAFT_RULE = "[DAILY=EngineAllocation[MAX(end_date)].aircraft]"


FLEET_DOCUMENT = {
    "entities": {
        "Manufacturer": {
            "columns": [
                {"name": "name", "label": True},
                "country",
            ],
        },
        "EngineType": {
            "columns": [
                {"name": "designation", "label": True},
                {"name": "manufacturer_id", "references": "Manufacturer", "display_name": "manufacturer"},
                {"name": "thrust", "type": "number"},
            ],
        },
        "Operator": {
            "columns": [
                {"name": "name", "label": True},
                "icao",
            ],
        },
        "Aircraft": {
            "columns": [
                {"name": "registration", "label": True},
                "msn",
                {
                    "name": "current_operator_id",
                    "references": "Operator",
                    "display_name": "current_operator",
                    "computed": CURRENT_OPERATOR_RULE,
                },
                {
                    "name": "position_latitude",
                    "type": "number",
                    "aggregate": {"source": "position", "field": "latitude", "type": "geo"},
                },
                {
                    "name": "position_longitude",
                    "type": "number",
                    "aggregate": {"source": "position", "field": "longitude", "type": "geo"},
                },
            ],
        },
        "Engine": {
            "columns": [
                {"name": "serial_number", "label": True},
                {"name": "type_id", "references": "EngineType", "display_name": "type"},
                {"name": "status", "default": "active"},
                {"name": "total_cycles", "type": "int", "display_name": "cycles"},
                {
                    "name": "current_aircraft_id",
                    "references": "Aircraft",
                    "display_name": "current_aircraft",
                    "computed": CURRENT_AIRCRAFT_RULE,
                },
            ],
        },
        "Registration": {
            "columns": [
                {"name": "aircraft_id", "references": "Aircraft", "display_name": "aircraft"},
                {"name": "operator_id", "references": "Operator", "display_name": "operator"},
                {"name": "entry_date", "type": "date"},
                {"name": "exit_date", "type": "date"},
            ],
        },
        "EngineAllocation": {
            "columns": [
                {"name": "engine_id", "references": "Engine", "display_name": "engine"},
                {"name": "aircraft_id", "references": "Aircraft", "display_name": "aircraft"},
                {"name": "start_date", "type": "date"},
                {"name": "end_date", "type": "date"},
            ],
        },
    },
    "views": [
        {
            "name": "Engine Status",
            "base_entity": "Engine",
            "columns": [
                "serial_number",
                "type.designation AS Type",
                "type.manufacturer.name AS OEM",
                "EngineAllocation<engine(COUNT) AS Allocations",
                "EngineAllocation<engine(WHERE end_date=null, LIMIT 1).aircraft.registration AS Installed On",
                "EngineAllocation<engine(LIST, ORDER BY start_date).aircraft.registration AS History",
            ],
            "sort": "serial_number DESC",
        },
    ],
}


DDL = [
    "CREATE TABLE manufacturer (id INTEGER PRIMARY KEY, name TEXT, country TEXT)",
    "CREATE TABLE engine_type (id INTEGER PRIMARY KEY, designation TEXT, manufacturer_id INTEGER, thrust REAL)",
    "CREATE TABLE operator (id INTEGER PRIMARY KEY, name TEXT, icao TEXT)",
    "CREATE TABLE aircraft (id INTEGER PRIMARY KEY, registration TEXT, msn TEXT, "
    "current_operator_id INTEGER, position_latitude REAL, position_longitude REAL)",
    "CREATE TABLE engine (id INTEGER PRIMARY KEY, serial_number TEXT, type_id INTEGER, "
    "status TEXT, total_cycles INTEGER, current_aircraft_id INTEGER)",
    "CREATE TABLE registration (id INTEGER PRIMARY KEY, aircraft_id INTEGER, operator_id INTEGER, "
    "entry_date TEXT, exit_date TEXT)",
    "CREATE TABLE engine_allocation (id INTEGER PRIMARY KEY, engine_id INTEGER, aircraft_id INTEGER, "
    "start_date TEXT, end_date TEXT)",
]

SEED = [
    "INSERT INTO manufacturer VALUES (1, 'CFM International', 'France'), (2, 'Pratt & Whitney', 'USA')",
    "INSERT INTO engine_type VALUES (1, 'CFM56-5B', 1, 120.1), (2, 'PW1100G', 2, 147.3)",
    "INSERT INTO operator VALUES (1, 'Lufthansa', 'DLH'), (2, 'Eurowings', 'EWG')",
    "INSERT INTO aircraft VALUES (1, 'D-AIPA', '0070', NULL, 50.03, 8.57), "
    "(2, 'D-AIPB', '0071', NULL, NULL, NULL), (3, 'D-AIPC', '0072', NULL, NULL, NULL)",
    "INSERT INTO engine VALUES (1, 'ESN-1001', 1, 'active', 1200, NULL), "
    "(2, 'ESN-1002', 1, NULL, 800, NULL), (3, 'ESN-2001', 2, 'spare', 0, NULL)",
    "INSERT INTO registration VALUES (1, 1, 1, '2020-01-01', '2024-01-31'), "
    "(2, 1, 2, '2024-02-01', NULL)",
    "INSERT INTO engine_allocation VALUES "
    "(1, 1, 2, '2019-01-01', '2022-06-30'), "
    "(2, 1, 1, '2022-07-01', NULL), "
    "(3, 2, 2, '2021-01-01', '2023-01-01'), "
    "(4, 2, 1, '2020-01-01', '2020-12-31')",
]


@pytest.fixture
def fleet_document():
    return copy.deepcopy(FLEET_DOCUMENT)


@pytest.fixture
def fleet(fleet_document):
    """SchemaDocument for the fleet schema."""
    return load_schema(fleet_document)


@pytest.fixture
def schema(fleet):
    return fleet.graph


@pytest.fixture
def fleet_sql():
    """DDL and seed statements for the fleet database."""
    return DDL + SEED


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across connections."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine, fleet_sql):
    """ViewStore over the seeded fleet database."""
    store = ViewStore(engine=engine)
    for sql in fleet_sql:
        store.execute(sql)
    return store
