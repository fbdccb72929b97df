"""
Configuration loading for viewgraph projects.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from ..core.condition import TODAY_SQL
from ..core.errors import GraphConfigError

DEFAULT_CONFIG_PATH = "viewgraph.yaml"

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class ViewgraphConfig:
    """Main viewgraph configuration."""
    version: int = 1
    database_url: str = "sqlite:///viewgraph.db"
    schema: str = "schema.yaml"
    today_sql: str = TODAY_SQL
    run_on_startup: bool = True
    log_level: str = "INFO"
    base_dir: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Optional[Path] = None) -> "ViewgraphConfig":
        """Create config from dictionary. $DATABASE_URL overrides database_url."""
        log_level = str(data.get("log_level", "INFO")).upper()
        if log_level not in LOG_LEVELS:
            raise GraphConfigError(f"Invalid log_level {log_level!r}, expected one of {sorted(LOG_LEVELS)}")

        return cls(
            version=int(data.get("version", 1)),
            database_url=os.getenv("DATABASE_URL") or data.get("database_url", "sqlite:///viewgraph.db"),
            schema=data.get("schema", "schema.yaml"),
            today_sql=data.get("today_sql", TODAY_SQL),
            run_on_startup=bool(data.get("run_on_startup", True)),
            log_level=log_level,
            base_dir=base_dir,
        )

    @property
    def schema_path(self) -> Path:
        """Schema document path, relative to the config file."""
        path = Path(self.schema)
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        return path

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for YAML serialization."""
        return {
            "version": self.version,
            "database_url": self.database_url,
            "schema": self.schema,
            "today_sql": self.today_sql,
            "run_on_startup": self.run_on_startup,
            "log_level": self.log_level,
        }

    def save(self, path: Path | str = DEFAULT_CONFIG_PATH) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        content = yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)
        path.write_text(content)


def load_config(path: Path | str = DEFAULT_CONFIG_PATH) -> ViewgraphConfig | None:
    """Load configuration from YAML file."""
    path = Path(path)
    if not path.exists():
        return None

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise GraphConfigError(f"Cannot parse {path}: {e}") from e
    return ViewgraphConfig.from_dict(data or {}, base_dir=path.resolve().parent)
