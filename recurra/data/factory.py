"""Factory for creating store instances."""

import logging
from pathlib import Path
from typing import Optional, Tuple

from recurra.data.repository import AggregateStore, LedgerStore
from recurra.data.sqlite_repo import SQLiteAggregateStore, SQLiteLedgerStore
from recurra.data.validation import validate_database

logger = logging.getLogger(__name__)


async def create_stores(
    backend: str,
    file_path: Optional[Path] = None,
) -> Tuple[LedgerStore, AggregateStore]:
    """Factory function to create the engine's stores.

    Args:
        backend: Backend type (only "sqlite")
        file_path: Path to database (required for sqlite)

    Returns:
        Tuple of (LedgerStore, AggregateStore). Close the ledger store to
        release the shared connection.

    Raises:
        ValueError: If backend is unknown or required params missing
        DatabaseValidationError: If database file is not compatible

    Example:
        >>> ledger, aggregates = await create_stores("sqlite", Path("recurra.db"))
        >>> due = await ledger.find_due_templates(date.today())
        >>> await ledger.close()
    """
    if backend == "sqlite":
        if not file_path:
            raise ValueError("file_path required for sqlite backend")

        # Validate database before connecting
        validate_database(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        ledger = SQLiteLedgerStore(file_path)
        await ledger.connect()
        logger.debug(f"Opened ledger database {file_path}")

        # Share the session so both stores use one write lock and transaction
        aggregates = SQLiteAggregateStore(ledger.session)
        return ledger, aggregates

    raise ValueError(f"Unknown backend: {backend}")
