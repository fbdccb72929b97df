"""
Relational store - the execute capability the compilers hand SQL to.

Provides:
- Engine configuration from DATABASE_URL / SQL_ECHO
- execute(sql) -> rowcount, one transaction per statement
- View installation gated on the schema hash
- Distinct-value listing over installed views

Usage:
    store = ViewStore()
    store.install_views(result.views, schema_hash=doc.schema_hash)
    rows = store.execute("UPDATE aircraft SET ...")
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Optional, Sequence

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..compiler.view_compiler import CompiledView
from ..core.errors import ViewExecutionError
from ..core.utils import quote_label

logger = logging.getLogger(__name__)

META_TABLE = "_viewgraph_meta"
SCHEMA_HASH_KEY = "schema_hash"
VIEW_PREFIX = "uv_"

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_]\w*$")
_DISTINCT_FORMATS = {"year": "%Y", "month": "%Y-%m"}


def get_database_url() -> str:
    """Get database URL from environment."""
    return os.getenv("DATABASE_URL", "sqlite:///viewgraph.db")


def create_store_engine(url: Optional[str] = None) -> Engine:
    """Create the engine used by ViewStore."""
    return create_engine(
        url or get_database_url(),
        echo=os.getenv("SQL_ECHO", "").lower() == "true",
    )


def build_distinct_sql(view_name: str, label: str, mode: Optional[str] = None) -> str:
    """
    Build the distinct-value query for one view column.

    Args:
        view_name: Installed view (uv_*)
        label: Output column label
        mode: None for raw values, "year" or "month" to bucket dates

    Examples:
        SELECT DISTINCT "Status" FROM uv_engine_status WHERE "Status" IS NOT NULL ORDER BY "Status"
        SELECT DISTINCT strftime('%Y', "Start") AS value FROM uv_x WHERE "Start" IS NOT NULL ORDER BY value
    """
    if not _IDENTIFIER_PATTERN.match(view_name):
        raise ValueError(f"Invalid view name {view_name!r}")
    column = quote_label(label)

    if mode is None:
        return f"SELECT DISTINCT {column} FROM {view_name} WHERE {column} IS NOT NULL ORDER BY {column}"

    fmt = _DISTINCT_FORMATS.get(mode)
    if fmt is None:
        raise ValueError(f"Unknown distinct mode {mode!r}, expected one of {sorted(_DISTINCT_FORMATS)}")
    return (
        f"SELECT DISTINCT strftime('{fmt}', {column}) AS value FROM {view_name} "
        f"WHERE {column} IS NOT NULL ORDER BY value"
    )


class ViewStore:
    """
    SQLAlchemy-backed execution of compiled SQL.

    Args:
        engine: Existing engine (tests pass an in-memory SQLite engine)
        url: Database URL used when no engine is given
    """

    def __init__(self, engine: Optional[Engine] = None, url: Optional[str] = None):
        self.engine = engine or create_store_engine(url)

    def execute(self, sql: str) -> int:
        """Execute one statement in its own transaction and return its rowcount."""
        with self.engine.begin() as conn:
            result = conn.exec_driver_sql(sql)
            return max(result.rowcount, 0)

    def query(self, sql: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        """Run a SELECT and return rows as dicts."""
        with self.engine.connect() as conn:
            result = conn.execute(text(sql), params or {})
            return [dict(row._mapping) for row in result]

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    def _ensure_meta(self, conn) -> None:
        conn.execute(text(
            f"CREATE TABLE IF NOT EXISTS {META_TABLE} (key VARCHAR(64) PRIMARY KEY, value TEXT)"
        ))

    def get_meta(self, key: str) -> Optional[str]:
        with self.engine.begin() as conn:
            self._ensure_meta(conn)
            return conn.execute(
                text(f"SELECT value FROM {META_TABLE} WHERE key = :key"), {"key": key}
            ).scalar()

    def set_meta(self, key: str, value: str) -> None:
        with self.engine.begin() as conn:
            self._ensure_meta(conn)
            conn.execute(text(f"DELETE FROM {META_TABLE} WHERE key = :key"), {"key": key})
            conn.execute(
                text(f"INSERT INTO {META_TABLE} (key, value) VALUES (:key, :value)"),
                {"key": key, "value": value},
            )

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def installed_views(self) -> list[str]:
        return sorted(v for v in inspect(self.engine).get_view_names() if v.startswith(VIEW_PREFIX))

    def install_views(
        self,
        views: Sequence[CompiledView],
        schema_hash: Optional[str] = None,
        force: bool = False,
    ) -> bool:
        """
        Drop and recreate the compiled views.

        Skipped when schema_hash matches the stored hash (unless force).
        Views no longer defined are dropped.

        Returns:
            True if views were (re)installed

        Raises:
            ViewExecutionError: a CREATE VIEW statement failed; installation stops
        """
        if schema_hash and not force and self.get_meta(SCHEMA_HASH_KEY) == schema_hash:
            logger.info("Schema unchanged, keeping installed views")
            return False

        wanted = {v.view_name for v in views}
        for stale in self.installed_views():
            if stale not in wanted:
                self.execute(f"DROP VIEW IF EXISTS {stale}")
                logger.info(f"Dropped stale view {stale}")

        for view in views:
            try:
                with self.engine.begin() as conn:
                    conn.exec_driver_sql(f"DROP VIEW IF EXISTS {view.view_name}")
                    conn.exec_driver_sql(view.sql)
            except SQLAlchemyError as e:
                logger.error(f"Failed to create view {view.view_name}: {e}")
                raise ViewExecutionError(view.view_name, str(e)) from e
            logger.info(f"Created view {view.view_name} ({len(view.visible_columns)} columns)")

        if schema_hash:
            self.set_meta(SCHEMA_HASH_KEY, schema_hash)
        return True

    def distinct_values(self, view_name: str, label: str, mode: Optional[str] = None) -> list[Any]:
        """Distinct non-null values of a view column, sorted."""
        sql = build_distinct_sql(view_name, label, mode)
        with self.engine.connect() as conn:
            return [row[0] for row in conn.exec_driver_sql(sql)]

    def dispose(self) -> None:
        """Close database connections."""
        self.engine.dispose()
