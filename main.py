#!/usr/bin/env python
"""Recurra entry point.

Runs the recurring event engine's periodic jobs against a local ledger
database until interrupted.

Usage:
    python main.py [DB_PATH] [--once]

With ``--once`` every job runs a single time and the process exits with
status 0 on success, 75 (EX_TEMPFAIL) if any job asked for a retry and 1 on
permanent failure.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from recurra.app import ApplicationContext
from recurra.data.validation import DatabaseValidationError
from recurra.domain.models import JobResult

EX_TEMPFAIL = 75


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _exit_code(results: dict) -> int:
    values = set(results.values())
    if JobResult.FAILURE in values:
        return 1
    if JobResult.RETRY in values:
        return EX_TEMPFAIL
    return 0


async def _serve(ctx: ApplicationContext) -> None:
    ctx.start_jobs()
    try:
        # Jobs run in their own tasks; park until cancelled (Ctrl+C)
        await asyncio.Event().wait()
    finally:
        await ctx.close()


async def _run_once(ctx: ApplicationContext) -> int:
    try:
        results = await ctx.run_once()
    finally:
        await ctx.close()
    for name, result in results.items():
        print(f"{name}: {result.value}")
    return _exit_code(results)


async def main_async(db_path: Optional[Path], once: bool) -> int:
    ctx = ApplicationContext(db_path=db_path)
    _configure_logging(ctx.settings.logging.level)

    try:
        await ctx.initialize()
    except DatabaseValidationError as e:
        print(f"Error: {e}")
        if e.details:
            print(e.details)
        return 1

    if once:
        return await _run_once(ctx)
    await _serve(ctx)
    return 0


def run() -> None:
    """Parse arguments and run the engine."""
    args = sys.argv[1:]
    once = "--once" in args
    positional = [a for a in args if not a.startswith("--")]
    db_path = Path(positional[0]) if positional else None

    try:
        code = asyncio.run(main_async(db_path, once))
    except KeyboardInterrupt:
        print("Stopped.")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
