#!/usr/bin/env python3
"""
Database management script for StarX mining backend.
"""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from starx_mining.core.config import settings
from starx_mining.core.database import init_database, close_database, DatabaseManager
from starx_mining.core.exceptions import StarxMiningException
from starx_mining.core.logging import setup_logging
from starx_mining.services.mining_processor import run_mining_job

console = Console()
app = typer.Typer(help="Database and mining job management commands")


@app.command()
def init():
    """Initialize database with tables."""
    async def _init():
        setup_logging()
        await init_database()
        try:
            await DatabaseManager.create_tables()
        finally:
            await close_database()
        console.print("✅ Database initialized successfully!")

    asyncio.run(_init())


@app.command()
def drop(yes: bool = typer.Option(False, "--yes", help="Skip confirmation")):
    """Drop all tables."""
    if not yes:
        typer.confirm("This will delete ALL mining data. Continue?", abort=True)

    async def _drop():
        setup_logging()
        await init_database()
        try:
            await DatabaseManager.drop_tables()
        finally:
            await close_database()
        console.print("🗑️ All tables dropped")

    asyncio.run(_drop())


@app.command()
def health():
    """Check database connectivity."""
    async def _health() -> bool:
        setup_logging()
        await init_database()
        try:
            return await DatabaseManager.health_check()
        finally:
            await close_database()

    if asyncio.run(_health()):
        console.print("✅ Database is healthy")
    else:
        console.print("❌ Database is unreachable")
        raise typer.Exit(code=1)


@app.command()
def run():
    """Run one mining credit batch and print its statistics."""
    if settings.store_backend != "database":
        console.print(
            f"❌ STORE_BACKEND={settings.store_backend} keeps users in process memory; "
            "use the HTTP trigger of a running server instead"
        )
        raise typer.Exit(code=1)

    async def _run():
        setup_logging()
        await init_database()
        try:
            return await run_mining_job()
        finally:
            await close_database()

    try:
        stats = asyncio.run(_run())
    except StarxMiningException as e:
        console.print(f"❌ Mining job aborted: {e.message} ({e.code})")
        raise typer.Exit(code=1)

    table = Table(title="Mining job")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key, value in stats.to_dict().items():
        if key != "errors":
            table.add_row(key, str(value))
    console.print(table)

    for error in stats.errors[:10]:
        console.print(f"  ⚠️ {error}")

    if not stats.succeeded:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
