#!/usr/bin/env python3
"""Development scripts for the lottery enrollment core."""

import asyncio
import subprocess
import sys


def worker():
    """Start a Celery worker with the embedded beat scheduler."""
    subprocess.run([
        "celery",
        "-A", "lottery_enrollment.tasks.celery_app:celery_app",
        "worker",
        "--beat",
        "--loglevel", "INFO",
    ])


def init_db():
    """Create the database tables."""
    from lottery_enrollment.database import DatabaseManager
    from lottery_enrollment.utils.logging_config import setup_logging

    setup_logging()

    async def _init():
        db = DatabaseManager()
        await db.initialize(create_tables=True)
        await db.close()

    asyncio.run(_init())


def test():
    """Run the test suite."""
    subprocess.run(["pytest", "tests/"])


def lint():
    """Run linting and type checking."""
    subprocess.run(["black", "lottery_enrollment/"])
    subprocess.run(["mypy", "lottery_enrollment/"])


def format_code():
    """Format code with black."""
    subprocess.run(["black", "lottery_enrollment/", "tests/"])


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts.py <command>")
        print("Commands: worker, init-db, test, lint, format-code")
        sys.exit(1)

    command = sys.argv[1].replace("-", "_")
    if hasattr(sys.modules[__name__], command):
        getattr(sys.modules[__name__], command)()
    else:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)
