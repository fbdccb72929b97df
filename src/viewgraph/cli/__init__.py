"""
Viewgraph CLI - project configuration and commands.
"""

from __future__ import annotations

from .config import ViewgraphConfig, load_config

__all__ = ["ViewgraphConfig", "load_config"]
