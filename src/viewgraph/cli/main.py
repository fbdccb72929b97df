#!/usr/bin/env python3
"""
Viewgraph CLI - Main entry point.

Usage:
    viewgraph init                      # Create viewgraph.yaml
    viewgraph views [--install]         # Compile (and install) user views
    viewgraph compute [--dry-run]       # Run DAILY computed fields once
    viewgraph serve                     # Install views, run scheduler until interrupted
    viewgraph status                    # Show computed fields and installed views
    viewgraph distinct <view> <label>   # Distinct values of a view column
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .. import __version__
from ..compiler.computed import ComputedFieldCompiler
from ..compiler.view_compiler import ViewCompiler
from ..core.errors import ViewgraphError
from ..core.registry import SchemaDocument, load_schema
from ..core.spec_types import Schedule
from ..runtime.scheduler import ComputedFieldScheduler
from ..runtime.store import ViewStore
from .config import DEFAULT_CONFIG_PATH, ViewgraphConfig, load_config

logger = logging.getLogger(__name__)


def _load_project(args: argparse.Namespace) -> Optional[tuple[ViewgraphConfig, SchemaDocument]]:
    """Load config and schema document, printing errors."""
    try:
        config = load_config(args.config)
    except ViewgraphError as e:
        print(f"Error: {e}")
        return None
    if not config:
        print(f"Error: {args.config} not found. Run 'viewgraph init' first.")
        return None

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        doc = load_schema(config.schema_path)
    except ViewgraphError as e:
        print(f"Error loading schema: {e}")
        return None
    return config, doc


def cmd_init(args: argparse.Namespace) -> int:
    """Create a default viewgraph.yaml."""
    config_path = Path(args.config)

    if config_path.exists() and not args.force:
        print(f"Error: {config_path} already exists. Use --force to overwrite.")
        return 1

    ViewgraphConfig(database_url=args.database_url, schema=args.schema).save(config_path)
    print(f"Created {config_path}")
    print("Next steps:")
    print(f"  1. Describe entities and views in {args.schema}")
    print("  2. Run 'viewgraph views --install'")
    return 0


def cmd_views(args: argparse.Namespace) -> int:
    """Compile user views, print or install them."""
    project = _load_project(args)
    if not project:
        return 1
    config, doc = project

    views = [v for v in doc.views if not args.view or v.name == args.view]
    if args.view and not views:
        print(f"Error: view '{args.view}' not defined")
        return 1

    result = ViewCompiler(doc.graph, today_sql=config.today_sql).compile_all(views)
    for error in result.error_messages():
        print(f"Error: {error}")

    if args.install:
        store = ViewStore(url=config.database_url)
        try:
            installed = store.install_views(
                result.views, schema_hash=doc.content_hash(config.today_sql), force=args.force
            )
        except ViewgraphError as e:
            print(f"Error: {e}")
            return 1
        finally:
            store.dispose()
        if installed:
            print(f"Installed {len(result.views)} views")
        else:
            print("Schema unchanged, views kept (use --force to rebuild)")
    elif args.json:
        print(json.dumps([v.to_dict() for v in result.views], indent=2, default=str))
    else:
        for view in result.views:
            print(f"{view.sql};\n")
            for dropped in view.dropped:
                print(f"-- dropped {dropped.raw!r}: {dropped.reason}")

    return 0 if result.success else 1


def cmd_compute(args: argparse.Namespace) -> int:
    """Run the DAILY computed fields once."""
    project = _load_project(args)
    if not project:
        return 1
    config, doc = project

    compiler = ComputedFieldCompiler(doc.graph, today_sql=config.today_sql)
    rules = compiler.rules_for(doc.rules, Schedule.DAILY)

    if args.dry_run:
        for rule in rules:
            try:
                print(f"-- {rule.name} = {rule.describe()}\n{compiler.build_update_sql(rule)};\n")
            except ViewgraphError as e:
                print(f"-- {rule.name}: {e}\n")
        return 0

    store = ViewStore(url=config.database_url)
    try:
        if args.defaults:
            defaults = asyncio.run(compiler.apply_defaults(store.execute))
            print(f"Defaults: {defaults.updated} rows updated, {defaults.failed} failed")
        result = asyncio.run(compiler.run_rules(rules, store.execute))
    finally:
        store.dispose()

    print(f"Processed {result.processed} fields, {result.updated} rows updated, {result.failed} failed")
    for outcome in result.outcomes:
        if not outcome.ok:
            print(f"  {outcome.error}")
    return 0 if result.failed == 0 else 1


async def _serve(config: ViewgraphConfig, doc: SchemaDocument) -> None:
    store = ViewStore(url=config.database_url)
    view_result = ViewCompiler(doc.graph, today_sql=config.today_sql).compile_all(doc.views)
    store.install_views(view_result.views, schema_hash=doc.content_hash(config.today_sql))

    compiler = ComputedFieldCompiler(doc.graph, today_sql=config.today_sql)
    await compiler.apply_defaults(store.execute)

    scheduler = ComputedFieldScheduler(
        compiler,
        doc.rules,
        store.execute,
        run_on_startup=config.run_on_startup,
    )
    await scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()
        store.dispose()


def cmd_serve(args: argparse.Namespace) -> int:
    """Install views and run the DAILY scheduler until interrupted."""
    project = _load_project(args)
    if not project:
        return 1
    config, doc = project

    print("Starting viewgraph scheduler (Ctrl+C to stop)...")
    try:
        asyncio.run(_serve(config, doc))
    except KeyboardInterrupt:
        print("Stopped")
    except ViewgraphError as e:
        print(f"Error: {e}")
        return 1
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show computed fields and installed views."""
    project = _load_project(args)
    if not project:
        return 1
    config, doc = project

    status = ComputedFieldCompiler.status(doc.rules)
    store = ViewStore(url=config.database_url)
    try:
        status["installed_views"] = store.installed_views()
        status["schema_hash"] = doc.content_hash(config.today_sql)
        status["installed_schema_hash"] = store.get_meta("schema_hash")
    finally:
        store.dispose()

    print(json.dumps(status, indent=2))
    return 0


def cmd_distinct(args: argparse.Namespace) -> int:
    """Print distinct values of a view column."""
    project = _load_project(args)
    if not project:
        return 1
    config, _ = project

    store = ViewStore(url=config.database_url)
    try:
        values = store.distinct_values(args.view, args.label, mode=args.mode)
    except (ValueError, ViewgraphError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        store.dispose()

    for value in values:
        print(value)
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="viewgraph",
        description="Viewgraph - declarative views and computed fields over an FK graph"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", "-c", default=DEFAULT_CONFIG_PATH, help="Config file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init
    init_parser = subparsers.add_parser("init", help="Create viewgraph.yaml")
    init_parser.add_argument("--database-url", default="sqlite:///viewgraph.db", help="Database URL")
    init_parser.add_argument("--schema", default="schema.yaml", help="Schema document path")
    init_parser.add_argument("--force", "-f", action="store_true", help="Overwrite existing config")

    # views
    views_parser = subparsers.add_parser("views", help="Compile user views")
    views_parser.add_argument("--view", help="Only this view (by name)")
    views_parser.add_argument("--install", action="store_true", help="Create the views in the database")
    views_parser.add_argument("--force", "-f", action="store_true", help="Rebuild even if the schema is unchanged")
    views_parser.add_argument("--json", action="store_true", help="Print view metadata as JSON")

    # compute
    compute_parser = subparsers.add_parser("compute", help="Run DAILY computed fields once")
    compute_parser.add_argument("--dry-run", action="store_true", help="Print UPDATE statements only")
    compute_parser.add_argument("--defaults", action="store_true", help="Apply explicit column defaults first")

    # serve
    subparsers.add_parser("serve", help="Install views and run the DAILY scheduler")

    # status
    subparsers.add_parser("status", help="Show computed fields and installed views")

    # distinct
    distinct_parser = subparsers.add_parser("distinct", help="Distinct values of a view column")
    distinct_parser.add_argument("view", help="View name (uv_*)")
    distinct_parser.add_argument("label", help="Column label")
    distinct_parser.add_argument("--mode", choices=["year", "month"], help="Bucket date values")

    return parser


def app(args: Optional[List[str]] = None) -> int:
    """Main CLI application."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 0

    commands = {
        "init": cmd_init,
        "views": cmd_views,
        "compute": cmd_compute,
        "serve": cmd_serve,
        "status": cmd_status,
        "distinct": cmd_distinct,
    }

    handler = commands.get(parsed.command)
    if handler:
        return handler(parsed)

    parser.print_help()
    return 1


def main() -> None:
    """Entry point for CLI."""
    sys.exit(app())


if __name__ == "__main__":
    main()
