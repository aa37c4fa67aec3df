from __future__ import annotations

import asyncio
import json

import click

from hive_mcp import __version__

DB_PATH_OPTION = click.option(
    "--db-path",
    default="data/hive.db",
    show_default=True,
    help="Path for the SQLite database file.",
)


def _open_database(db_path: str):
    """A store at ``db_path`` using the configured call timeout."""
    from hive_mcp.db.database import Database
    from hive_mcp.utils.config import get_config

    return Database(db_path, timeout=get_config().store_timeout_seconds)


@click.group()
@click.version_option(version=__version__, prog_name="hive-mcp")
def main() -> None:
    """Hive MCP: crowdsourced asset annotation with consensus verification."""


@main.command()
@DB_PATH_OPTION
def init(db_path: str) -> None:
    """Initialize the Hive database."""

    async def _init() -> None:
        db = _open_database(db_path)
        await db.initialize()
        await db.close()
        click.echo(f"Database initialized at {db_path}")

    asyncio.run(_init())


@main.command()
def start() -> None:
    """Start the Hive MCP server."""
    from hive_mcp.server import mcp

    click.echo("Starting Hive MCP Server...")
    mcp.run()


@main.command()
def version() -> None:
    """Print the version and exit."""
    click.echo(f"hive-mcp {__version__}")


@main.command()
@DB_PATH_OPTION
@click.argument("project")
@click.argument("task")
def complete(db_path: str, project: str, task: str) -> None:
    """Run a completion sweep for TASK in PROJECT."""
    from hive_mcp.errors import HiveError
    from hive_mcp.server import build_services

    async def _complete() -> int:
        db = _open_database(db_path)
        await db.initialize()
        try:
            result = await build_services(db).consensus.evaluate_task_completion(project, task)
        except HiveError as exc:
            click.echo(f"Error: {exc}", err=True)
            return 1
        finally:
            await db.close()

        click.echo(f"Verified {len(result.completed)} assets")
        for asset in result.completed:
            click.echo(f"  {asset.id}  {asset.name or asset.url}")
        for err in result.errors:
            click.echo(f"  failed {err.asset_id}: {err.cause}", err=True)
        return 1 if result.errors else 0

    raise SystemExit(asyncio.run(_complete()))


@main.command()
@DB_PATH_OPTION
@click.argument("asset_id")
def recount(db_path: str, asset_id: str) -> None:
    """Rebuild the assignment counters of ASSET_ID."""
    from hive_mcp.errors import HiveError
    from hive_mcp.server import build_services

    async def _recount() -> int:
        db = _open_database(db_path)
        await db.initialize()
        try:
            counts = await build_services(db).ledger.compute_counts(asset_id)
        except HiveError as exc:
            click.echo(f"Error: {exc}", err=True)
            return 1
        finally:
            await db.close()
        click.echo(json.dumps(counts, indent=2, sort_keys=True))
        return 0

    raise SystemExit(asyncio.run(_recount()))


if __name__ == "__main__":
    main()
