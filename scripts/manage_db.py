#!/usr/bin/env python3
"""
Database and settlement management script for the reward settlement engine.
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

import typer
from rich.console import Console
from rich.table import Table

from reward_settlement.core.database import init_database, close_database, DatabaseManager
from reward_settlement.core.logging import setup_logging, get_logger
from reward_settlement.services.rewards import RewardsProcessor
from reward_settlement.services.rewards.constants import NEW_LOCK_POSITIONS_CHECKPOINT, REWARDS_EPOCH_CHECKPOINT
from reward_settlement.services.rewards.database import RewardsRepository

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Reward settlement management commands")


@app.command()
def init():
    """Initialize database with tables."""
    async def _init():
        setup_logging()
        await init_database()
        await DatabaseManager.create_tables()
        await close_database()
        console.print("✅ Database initialized successfully!")

    asyncio.run(_init())


@app.command()
def drop():
    """Drop all tables."""
    confirm = typer.confirm("Are you sure you want to drop all tables?")
    if not confirm:
        console.print("❌ Operation cancelled")
        return

    async def _drop():
        setup_logging()
        await init_database()
        await DatabaseManager.drop_tables()
        await close_database()
        console.print("🗑️ All tables dropped!")

    asyncio.run(_drop())


@app.command()
def health():
    """Check database health."""
    async def _health():
        setup_logging()
        await init_database()
        try:
            is_healthy = await DatabaseManager.health_check()
        finally:
            await close_database()

        if is_healthy:
            console.print("✅ Database is healthy!")
        else:
            console.print("❌ Database health check failed!")
            sys.exit(1)

    asyncio.run(_health())


@app.command()
def checkpoints():
    """Show the reward pipeline checkpoints."""
    async def _checkpoints():
        setup_logging()
        await init_database()
        repository = RewardsRepository()
        try:
            table = Table(title="Reward checkpoints")
            table.add_column("Checkpoint", style="cyan")
            table.add_column("Value", style="green")
            for name in (REWARDS_EPOCH_CHECKPOINT, NEW_LOCK_POSITIONS_CHECKPOINT):
                table.add_row(name, str(await repository.get_checkpoint(name)))
            console.print(table)
        finally:
            await close_database()

    asyncio.run(_checkpoints())


@app.command("run-once")
def run_once():
    """Settle the next epoch if it is final."""
    async def _run_once():
        setup_logging()
        await init_database()
        try:
            settlement = await RewardsProcessor().process_rewards()
        finally:
            await close_database()

        if settlement is None:
            console.print("⏳ Next epoch is not final yet, nothing settled")
            return

        table = Table(title=f"Epoch {settlement.epoch} settled")
        table.add_column("Asset", style="cyan")
        table.add_column("Root", style="green")
        table.add_column("Leaves", justify="right")
        for tree in settlement.merkle_trees:
            leaves = sum(1 for reward in settlement.rewards if reward.asset == tree.asset)
            table.add_row(tree.asset, tree.root, str(leaves))
        console.print(table)
        console.print(
            f"✅ {len(settlement.rewards)} rewards, {len(settlement.epoch_results)} epoch results, "
            f"{settlement.lock_events_processed} lock events"
        )

    asyncio.run(_run_once())


if __name__ == "__main__":
    app()
