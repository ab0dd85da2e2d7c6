"""SQLite implementation of the store interfaces.

Both stores run on one connection, wrapped in an ``SQLiteSession``. Every
write happens inside ``SQLiteSession.transaction()``, which lets one task
at a time hold the write transaction. A task that is already inside a
transaction joins it, so the generator can group an instance insert and
its aggregate increment into a single commit.
"""

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

import aiosqlite

from recurra.data.repository import (
    AggregateNotFoundError,
    AggregateStore,
    AggregateUpdateError,
    DataIntegrityError,
    DuplicateInstanceError,
    LedgerStore,
    StoreUnavailableError,
    TemplateNotFoundError,
)
from recurra.domain.models import (
    AggregateKind,
    DependentAggregate,
    GeneratedInstance,
    RecurringTemplate,
    TemplateKind,
)
from recurra.domain.periods import next_occurrence

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

DUE_TEMPLATES_QUERY = """
    SELECT * FROM recurring_templates
    WHERE is_recurring = 1
    AND next_due_date IS NOT NULL
    AND next_due_date <= ?
    ORDER BY next_due_date, created_at
"""


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _row_id(row: aiosqlite.Row) -> Optional[UUID]:
    try:
        return UUID(row["id"])
    except (TypeError, ValueError):
        return None


class SQLiteSession:
    """A connection shared by the SQLite stores.

    aiosqlite runs every statement on one thread, but BEGIN/COMMIT are
    connection-wide. Without the lock, two tasks interleaving on the
    connection would start a transaction inside another or commit each
    other's half-done work.
    """

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None

    @property
    def in_transaction(self) -> bool:
        return self._owner is not None and self._owner is asyncio.current_task()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the block in a ``BEGIN IMMEDIATE`` transaction.

        Commits when the block exits normally and rolls back on any
        exception, including cancellation. Nested use by the same task
        joins the outer transaction.
        """
        if self.in_transaction:
            yield self.conn
            return

        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                try:
                    await self.conn.execute("BEGIN IMMEDIATE")
                except sqlite3.OperationalError as e:
                    raise StoreUnavailableError(f"Could not start transaction: {e}") from e
                try:
                    yield self.conn
                    await self.conn.commit()
                except BaseException:
                    await self.conn.rollback()
                    raise
            finally:
                self._owner = None


class SQLiteLedgerStore(LedgerStore):
    """SQLite implementation of LedgerStore.

    Owns the connection; the aggregate store shares its session.
    """

    def __init__(self, db_path: Path):
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._session: Optional[SQLiteSession] = None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreUnavailableError("Ledger store is not connected")
        return self._conn

    @property
    def session(self) -> SQLiteSession:
        if self._session is None:
            raise StoreUnavailableError("Ledger store is not connected")
        return self._session

    async def connect(self) -> None:
        """Connect to database and ensure schema exists."""
        try:
            self._conn = await aiosqlite.connect(self._db_path)
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(f"Could not open {self._db_path}: {e}") from e
        self._conn.row_factory = aiosqlite.Row
        await self._ensure_schema()
        self._session = SQLiteSession(self._conn)

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            self._session = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self.session.transaction():
            yield

    async def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        await self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS recurring_templates (
                id TEXT PRIMARY KEY,
                amount TEXT NOT NULL,
                description TEXT NOT NULL,
                category TEXT NOT NULL,
                kind TEXT NOT NULL CHECK (kind IN ('expense', 'income', 'limit_period')),
                anchor_date TEXT NOT NULL,
                interval_days INTEGER,
                next_due_date TEXT,
                aggregate_id TEXT,
                is_recurring INTEGER DEFAULT 1,
                notes TEXT,
                version INTEGER DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_templates_next_due
                ON recurring_templates(next_due_date);

            CREATE TABLE IF NOT EXISTS generated_instances (
                id TEXT PRIMARY KEY,
                template_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                description TEXT NOT NULL,
                category TEXT NOT NULL,
                kind TEXT NOT NULL,
                occurrence_date TEXT NOT NULL,
                aggregate_id TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                UNIQUE(template_id, occurrence_date)
            );

            CREATE INDEX IF NOT EXISTS idx_instances_date
                ON generated_instances(occurrence_date);

            CREATE TABLE IF NOT EXISTS aggregates (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL CHECK (kind IN ('spending_limit', 'savings_project')),
                name TEXT NOT NULL,
                accumulated TEXT NOT NULL DEFAULT '0',
                target_amount TEXT,
                period_days INTEGER,
                period_start TEXT,
                warning_threshold INTEGER DEFAULT 80,
                notifications_enabled INTEGER DEFAULT 1,
                is_active INTEGER DEFAULT 1,
                updated_at TEXT NOT NULL
            );
        """
        )
        await self._conn.commit()
        await self._run_migrations()

    async def _run_migrations(self) -> None:
        """Run database migrations for schema updates."""
        # Add notes column if it doesn't exist (for databases created before it)
        async with self._conn.execute("PRAGMA table_info(generated_instances)") as cursor:
            columns = await cursor.fetchall()
            column_names = [col[1] for col in columns]

        if "notes" not in column_names:
            await self._conn.execute(
                "ALTER TABLE generated_instances ADD COLUMN notes TEXT"
            )
            await self._conn.commit()

    async def _select_due(self, until: date) -> list[aiosqlite.Row]:
        try:
            async with self.connection.execute(DUE_TEMPLATES_QUERY, (until.isoformat(),)) as cursor:
                return await cursor.fetchall()
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(str(e)) from e

    async def find_due_templates(self, as_of: date) -> list[RecurringTemplate]:
        """Get all recurring templates due on or before a date.

        Rows that cannot be loaded are logged and left out; see
        find_unreadable_templates.
        """
        return await self.get_upcoming_templates(as_of)

    async def find_unreadable_templates(self, as_of: date) -> list[DataIntegrityError]:
        """Errors for due rows that find_due_templates leaves out."""
        _, errors = self._load_templates(await self._select_due(as_of))
        return errors

    async def get_upcoming_templates(self, until: date) -> list[RecurringTemplate]:
        """Get recurring templates with next_due_date <= until."""
        templates, errors = self._load_templates(await self._select_due(until))
        for error in errors:
            logger.warning(f"Skipping unreadable template: {error}")
        return templates

    async def create_instance(self, instance: GeneratedInstance) -> UUID:
        """Insert a generated instance; duplicates raise instead of merging."""
        try:
            async with self.session.transaction() as conn:
                try:
                    await conn.execute(
                        """
                        INSERT INTO generated_instances
                        (id, template_id, amount, description, category, kind,
                         occurrence_date, aggregate_id, notes, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            str(instance.id),
                            str(instance.template_id),
                            str(instance.amount),
                            instance.description,
                            instance.category,
                            instance.kind.value,
                            instance.occurrence_date.isoformat(),
                            str(instance.aggregate_id) if instance.aggregate_id else None,
                            instance.notes,
                            instance.created_at.isoformat(),
                        ),
                    )
                except sqlite3.IntegrityError as e:
                    raise DuplicateInstanceError(
                        instance.template_id, instance.occurrence_date
                    ) from e
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(str(e)) from e
        return instance.id

    async def update_template(self, template: RecurringTemplate) -> None:
        """Persist mutable template fields in one UPDATE statement."""
        try:
            async with self.session.transaction() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE recurring_templates SET
                        amount = ?, description = ?, category = ?, kind = ?,
                        interval_days = ?, next_due_date = ?, aggregate_id = ?,
                        is_recurring = ?, notes = ?, version = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        str(template.amount),
                        template.description,
                        template.category,
                        template.kind.value,
                        template.interval_days,
                        _iso(template.next_due_date),
                        str(template.aggregate_id) if template.aggregate_id else None,
                        1 if template.is_recurring else 0,
                        template.notes,
                        template.version,
                        _iso(template.updated_at),
                        str(template.id),
                    ),
                )
                if cursor.rowcount == 0:
                    raise TemplateNotFoundError(f"Template {template.id} no longer exists")
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(str(e)) from e

    async def get_template(self, id: UUID) -> Optional[RecurringTemplate]:
        """Get a single template by ID.

        Raises:
            DataIntegrityError: If the stored row cannot be loaded
        """
        async with self.connection.execute(
            "SELECT * FROM recurring_templates WHERE id = ?", (str(id),)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_template(row) if row else None

    async def get_all_templates(self) -> list[RecurringTemplate]:
        """Get all loadable templates."""
        async with self.connection.execute(
            "SELECT * FROM recurring_templates ORDER BY next_due_date, created_at"
        ) as cursor:
            rows = await cursor.fetchall()
        templates, errors = self._load_templates(rows)
        for error in errors:
            logger.warning(f"Skipping unreadable template: {error}")
        return templates

    async def save_template(self, template: RecurringTemplate) -> RecurringTemplate:
        """Save (insert or update) a template."""
        async with self.session.transaction() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO recurring_templates
                (id, amount, description, category, kind, anchor_date, interval_days,
                 next_due_date, aggregate_id, is_recurring, notes, version, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(template.id),
                    str(template.amount),
                    template.description,
                    template.category,
                    template.kind.value,
                    template.anchor_date.isoformat(),
                    template.interval_days,
                    _iso(template.next_due_date),
                    str(template.aggregate_id) if template.aggregate_id else None,
                    1 if template.is_recurring else 0,
                    template.notes,
                    template.version,
                    template.created_at.isoformat(),
                    _iso(template.updated_at),
                ),
            )
        return template

    async def delete_template(self, id: UUID) -> bool:
        """Delete a template. Generated instances are kept."""
        async with self.session.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM recurring_templates WHERE id = ?", (str(id),)
            )
        return cursor.rowcount > 0

    async def get_instances(self, template_id: Optional[UUID] = None) -> list[GeneratedInstance]:
        """Get generated instances, optionally for one template."""
        query = "SELECT * FROM generated_instances"
        params = []

        if template_id:
            query += " WHERE template_id = ?"
            params.append(str(template_id))

        query += " ORDER BY occurrence_date, created_at"

        async with self.connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_instance(row) for row in rows]

    async def instance_exists(self, template_id: UUID, occurrence_date: date) -> bool:
        """Check if an occurrence has already been materialized."""
        async with self.connection.execute(
            "SELECT 1 FROM generated_instances WHERE template_id = ? AND occurrence_date = ?",
            (str(template_id), occurrence_date.isoformat()),
        ) as cursor:
            return await cursor.fetchone() is not None

    def _load_templates(
        self, rows: Iterable[aiosqlite.Row]
    ) -> tuple[list[RecurringTemplate], list[DataIntegrityError]]:
        """Split rows into loaded templates and the errors of the rest."""
        templates = []
        errors = []
        for row in rows:
            try:
                templates.append(self._row_to_template(row))
            except DataIntegrityError as e:
                errors.append(e)
        return templates, errors

    def _row_to_template(self, row: aiosqlite.Row) -> RecurringTemplate:
        """Convert database row to RecurringTemplate model."""
        try:
            return RecurringTemplate(
                id=UUID(row["id"]),
                amount=Decimal(row["amount"]),
                description=row["description"],
                category=row["category"],
                kind=TemplateKind(row["kind"]),
                anchor_date=date.fromisoformat(row["anchor_date"]),
                interval_days=row["interval_days"],
                next_due_date=(
                    date.fromisoformat(row["next_due_date"]) if row["next_due_date"] else None
                ),
                aggregate_id=UUID(row["aggregate_id"]) if row["aggregate_id"] else None,
                is_recurring=bool(row["is_recurring"]),
                notes=row["notes"],
                version=row["version"],
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=(
                    datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None
                ),
            )
        except (TypeError, ValueError, ArithmeticError) as e:
            raise DataIntegrityError(
                f"Malformed template row {row['id']}: {e}", template_id=_row_id(row)
            ) from e

    def _row_to_instance(self, row: aiosqlite.Row) -> GeneratedInstance:
        """Convert database row to GeneratedInstance model."""
        return GeneratedInstance(
            id=UUID(row["id"]),
            template_id=UUID(row["template_id"]),
            amount=Decimal(row["amount"]),
            description=row["description"],
            category=row["category"],
            kind=TemplateKind(row["kind"]),
            occurrence_date=date.fromisoformat(row["occurrence_date"]),
            aggregate_id=UUID(row["aggregate_id"]) if row["aggregate_id"] else None,
            notes=row["notes"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class SQLiteAggregateStore(AggregateStore):
    """SQLite implementation of AggregateStore."""

    def __init__(self, session: SQLiteSession):
        self._session = session

    @property
    def _conn(self) -> aiosqlite.Connection:
        return self._session.conn

    async def add_amount(self, aggregate_id: UUID, amount: Decimal) -> None:
        """Atomically add ``amount`` to the accumulated value.

        Decimal text columns cannot be incremented in SQL without going
        through floats, so the read and the write run in one transaction
        holding the database write lock. Inside the ledger's transaction
        the update commits together with the rest of it.
        """
        try:
            async with self._session.transaction() as conn:
                async with conn.execute(
                    "SELECT accumulated FROM aggregates WHERE id = ?", (str(aggregate_id),)
                ) as cursor:
                    row = await cursor.fetchone()

                if row is None:
                    raise AggregateNotFoundError(f"Aggregate {aggregate_id} does not exist")

                new_value = max(Decimal(row["accumulated"]) + amount, ZERO)
                await conn.execute(
                    "UPDATE aggregates SET accumulated = ?, updated_at = ? WHERE id = ?",
                    (str(new_value), datetime.now().isoformat(), str(aggregate_id)),
                )
        except sqlite3.Error as e:
            raise AggregateUpdateError(f"Could not update aggregate {aggregate_id}: {e}") from e

    async def get(self, aggregate_id: UUID) -> Optional[DependentAggregate]:
        """Get a single aggregate by ID."""
        async with self._conn.execute(
            "SELECT * FROM aggregates WHERE id = ?", (str(aggregate_id),)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_aggregate(row) if row else None

    async def get_all(self, active_only: bool = False) -> list[DependentAggregate]:
        """Get all aggregates sorted by name."""
        query = "SELECT * FROM aggregates"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY name"

        async with self._conn.execute(query) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_aggregate(row) for row in rows]

    async def save(self, aggregate: DependentAggregate) -> DependentAggregate:
        """Save (insert or update) an aggregate."""
        async with self._session.transaction() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO aggregates
                (id, kind, name, accumulated, target_amount, period_days, period_start,
                 warning_threshold, notifications_enabled, is_active, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(aggregate.id),
                    aggregate.kind.value,
                    aggregate.name,
                    str(aggregate.accumulated),
                    str(aggregate.target_amount) if aggregate.target_amount is not None else None,
                    aggregate.period_days,
                    _iso(aggregate.period_start),
                    aggregate.warning_threshold,
                    1 if aggregate.notifications_enabled else 0,
                    1 if aggregate.is_active else 0,
                    aggregate.updated_at.isoformat(),
                ),
            )
        return aggregate

    async def reset_expired_periods(self, as_of: date) -> int:
        """Zero spending limits whose period ended on or before ``as_of``.

        The new period start stays aligned to whole periods from the old one.
        """
        reset = 0
        try:
            async with self._session.transaction() as conn:
                async with conn.execute(
                    """
                    SELECT id, period_days, period_start FROM aggregates
                    WHERE kind = 'spending_limit'
                    AND is_active = 1
                    AND period_days > 0
                    AND period_start IS NOT NULL
                    """
                ) as cursor:
                    rows = await cursor.fetchall()

                now = datetime.now().isoformat()
                for row in rows:
                    start = date.fromisoformat(row["period_start"])
                    period_end = next_occurrence(start, row["period_days"])
                    if period_end > as_of:
                        continue
                    while period_end <= as_of:
                        start = period_end
                        period_end = next_occurrence(start, row["period_days"])
                    await conn.execute(
                        """
                        UPDATE aggregates
                        SET accumulated = '0', period_start = ?, updated_at = ?
                        WHERE id = ?
                        """,
                        (start.isoformat(), now, row["id"]),
                    )
                    reset += 1
        except sqlite3.Error as e:
            raise AggregateUpdateError(f"Could not reset expired periods: {e}") from e
        return reset

    def _row_to_aggregate(self, row: aiosqlite.Row) -> DependentAggregate:
        """Convert database row to DependentAggregate model."""
        return DependentAggregate(
            id=UUID(row["id"]),
            kind=AggregateKind(row["kind"]),
            name=row["name"],
            accumulated=Decimal(row["accumulated"]),
            target_amount=Decimal(row["target_amount"]) if row["target_amount"] else None,
            period_days=row["period_days"],
            period_start=(
                date.fromisoformat(row["period_start"]) if row["period_start"] else None
            ),
            warning_threshold=row["warning_threshold"],
            notifications_enabled=bool(row["notifications_enabled"]),
            is_active=bool(row["is_active"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
