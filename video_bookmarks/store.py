"""SQLite bookmark store with indexed lookups and atomic units of work."""
import asyncio
import json
import sqlite3
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import aiosqlite

from video_bookmarks.config import IMPORT_POLICIES, get_config
from video_bookmarks.errors import (
    ConstraintViolation,
    StorageError,
    StorageUnavailable,
    ValidationError,
)
from video_bookmarks.schema import (
    FIELD_COLUMNS,
    normalize_record,
    validate_new_record,
    validate_patch,
    validate_tags,
)


SCHEMA_VERSION = 1

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS bookmarks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        subject_id TEXT NOT NULL,
        subject_title TEXT,
        time INTEGER,
        time_label TEXT,
        note TEXT,
        subtitle TEXT,
        tags TEXT,
        color TEXT,
        added_at INTEGER,
        image_data TEXT,
        extra TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_subject_id ON bookmarks(subject_id)",
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_time ON bookmarks(time)",
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_added_at ON bookmarks(added_at)",
)

_COLUMNS = list(FIELD_COLUMNS.values()) + ["extra"]


def _is_lock_error(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


def _map_engine_error(error: sqlite3.Error) -> StorageError:
    if isinstance(error, sqlite3.IntegrityError):
        return ConstraintViolation(str(error))
    if _is_lock_error(error):
        return StorageUnavailable(str(error))
    return StorageError(str(error))


def _record_to_row(record: Dict[str, Any]) -> Dict[str, Any]:
    """Split a record into column values, keeping unknown fields in ``extra``."""
    row: Dict[str, Any] = {}
    for field_name, column in FIELD_COLUMNS.items():
        value = record.get(field_name)
        if field_name == "tags" and value is not None:
            value = json.dumps(value, ensure_ascii=False)
        row[column] = value

    extra = {
        key: value
        for key, value in record.items()
        if key not in FIELD_COLUMNS and key != "id"
    }
    row["extra"] = json.dumps(extra, ensure_ascii=False) if extra else None
    return row


def _row_to_record(row: aiosqlite.Row) -> Dict[str, Any]:
    """Convert a database row back to a record; NULL columns are omitted."""
    record: Dict[str, Any] = {"id": row["id"]}

    if row["extra"]:
        try:
            record.update(json.loads(row["extra"]))
        except json.JSONDecodeError:
            pass

    for field_name, column in FIELD_COLUMNS.items():
        value = row[column]
        if value is None:
            continue
        if field_name == "tags":
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                value = []
        record[field_name] = value

    return record


class BookmarkStore:
    """Async SQLite store owning the authoritative copy of every bookmark.

    One connection is shared by all callers and opened lazily on first use.
    Every operation runs as a unit of work: the connection lock is held, a
    transaction is opened, and it is committed or rolled back as a whole.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        lock_timeout: Optional[float] = None,
        import_policy: Optional[str] = None,
    ):
        """Initialize the bookmark store.

        Args:
            db_path: Path to SQLite database. Defaults to the configured location
            lock_timeout: Seconds to wait on a locked database
            import_policy: 'reject' or 'skip' for invalid items in bulk imports
        """
        store_config = get_config().store
        self.db_path = Path(db_path) if db_path else store_config.resolved_db_path
        self.lock_timeout = lock_timeout if lock_timeout is not None else store_config.lock_timeout
        self.import_policy = import_policy or store_config.import_policy
        if self.import_policy not in IMPORT_POLICIES:
            raise ValueError(f"Unknown import policy: {self.import_policy!r}")

        self._connection: Optional[aiosqlite.Connection] = None
        self._open_lock = asyncio.Lock()
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open the shared connection and bring the schema up to date.

        Safe to call repeatedly; only the first call does any work.

        Raises:
            StorageUnavailable: If the database cannot be opened or is locked
                by another handle for longer than ``lock_timeout``
        """
        async with self._open_lock:
            if self._connection is not None:
                return

            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageUnavailable(f"Cannot create database directory: {e}") from e

            connection = None
            try:
                connection = await aiosqlite.connect(
                    self.db_path,
                    timeout=self.lock_timeout,
                    isolation_level=None,
                )
                connection.row_factory = aiosqlite.Row
                await self._upgrade(connection)
            except sqlite3.Error as e:
                if connection is not None:
                    await connection.close()
                if _is_lock_error(e):
                    print(
                        f"[BookmarkStore] Database {self.db_path} is locked by another connection",
                        file=sys.stderr,
                    )
                    raise StorageUnavailable("Bookmark database is locked by another connection") from e
                raise StorageUnavailable(f"Could not open bookmark database: {e}") from e

            self._connection = connection

    initialize = open

    async def close(self) -> None:
        """Close the database connection once any running unit of work ends."""
        async with self._open_lock, self._lock:
            if self._connection:
                await self._connection.close()
                self._connection = None

    async def _upgrade(self, connection: aiosqlite.Connection) -> None:
        """Run the versioned schema creation step if the file is behind."""
        if await self._schema_version(connection) >= SCHEMA_VERSION:
            return

        await connection.execute("BEGIN IMMEDIATE")
        try:
            # Another handle may have upgraded while we waited for the write lock
            if await self._schema_version(connection) < SCHEMA_VERSION:
                for statement in _SCHEMA_STATEMENTS:
                    await connection.execute(statement)
                await connection.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            await connection.execute("COMMIT")
        except BaseException:
            await connection.execute("ROLLBACK")
            raise

    @staticmethod
    async def _schema_version(connection: aiosqlite.Connection) -> int:
        cursor = await connection.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        return row[0] if row else 0

    @asynccontextmanager
    async def _unit_of_work(self, write: bool = True) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the shared connection inside one transaction.

        Raises:
            ConstraintViolation: On integrity errors
            ValidationError: If an integer parameter does not fit in 64 bits
            StorageError: On any other engine failure, including a failed commit
        """
        await self.open()

        async with self._lock:
            connection = self._connection
            if connection is None:
                raise StorageUnavailable("Bookmark database was closed")

            try:
                await connection.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            except sqlite3.Error as e:
                raise _map_engine_error(e) from e

            try:
                yield connection
            except BaseException as e:
                await self._rollback(connection)
                if isinstance(e, sqlite3.Error):
                    raise _map_engine_error(e) from e
                if isinstance(e, OverflowError):
                    raise ValidationError(f"Value out of range: {e}") from e
                raise

            try:
                await connection.execute("COMMIT")
            except sqlite3.Error as e:
                await self._rollback(connection)
                raise _map_engine_error(e) from e

    @staticmethod
    async def _rollback(connection: aiosqlite.Connection) -> None:
        if not connection.in_transaction:
            return
        try:
            await connection.execute("ROLLBACK")
        except sqlite3.Error as e:
            print(f"[BookmarkStore] Rollback failed: {e}", file=sys.stderr)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @staticmethod
    async def _insert(connection: aiosqlite.Connection, record: Dict[str, Any]) -> int:
        row = _record_to_row(record)
        placeholders = ", ".join("?" for _ in _COLUMNS)
        cursor = await connection.execute(
            f"INSERT INTO bookmarks ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            [row[column] for column in _COLUMNS],
        )
        return cursor.lastrowid

    async def add(self, record: Dict[str, Any]) -> int:
        """Persist a new bookmark.

        Any ``id`` on the incoming record is ignored; the store assigns one.
        Keys written by the original extension (``videoId``, ``videoTitle``)
        are mapped onto the current field names.

        Returns:
            The assigned id

        Raises:
            ValidationError: If subjectId is missing or a field has the wrong type
            ConstraintViolation: If the engine reports a constraint failure
        """
        if isinstance(record, dict):
            record = normalize_record(record)
        validate_new_record(record)

        async with self._unit_of_work() as connection:
            return await self._insert(connection, record)

    async def get(self, bookmark_id: int) -> Optional[Dict[str, Any]]:
        """Get a single bookmark, or None if it does not exist."""
        async with self._unit_of_work(write=False) as connection:
            cursor = await connection.execute(
                "SELECT * FROM bookmarks WHERE id = ?",
                (bookmark_id,),
            )
            row = await cursor.fetchone()

        return _row_to_record(row) if row is not None else None

    async def get_all(self) -> List[Dict[str, Any]]:
        """Get every bookmark. Callers must not rely on the order."""
        async with self._unit_of_work(write=False) as connection:
            cursor = await connection.execute("SELECT * FROM bookmarks ORDER BY id")
            rows = await cursor.fetchall()

        return [_row_to_record(row) for row in rows]

    async def get_by_subject(self, subject_id: str) -> List[Dict[str, Any]]:
        """Get all bookmarks of one subject through the subject index."""
        async with self._unit_of_work(write=False) as connection:
            cursor = await connection.execute(
                "SELECT * FROM bookmarks INDEXED BY idx_bookmarks_subject_id "
                "WHERE subject_id = ? ORDER BY id",
                (subject_id,),
            )
            rows = await cursor.fetchall()

        return [_row_to_record(row) for row in rows]

    async def update(self, bookmark_id: int, patch: Dict[str, Any]) -> bool:
        """Merge ``patch`` over an existing bookmark.

        The read, merge and write happen in one transaction.

        Returns:
            True if updated, False if no bookmark has this id
        """
        validate_patch(patch)

        async with self._unit_of_work() as connection:
            cursor = await connection.execute(
                "SELECT * FROM bookmarks WHERE id = ?",
                (bookmark_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return False

            merged = {**_row_to_record(row), **patch}
            values = _record_to_row(merged)
            assignments = ", ".join(f"{column} = ?" for column in _COLUMNS)
            await connection.execute(
                f"UPDATE bookmarks SET {assignments} WHERE id = ?",
                [values[column] for column in _COLUMNS] + [bookmark_id],
            )

        return True

    async def delete(self, bookmark_id: int) -> bool:
        """Delete a bookmark.

        Returns:
            True if deleted, False if it was already absent
        """
        async with self._unit_of_work() as connection:
            cursor = await connection.execute(
                "DELETE FROM bookmarks WHERE id = ?",
                (bookmark_id,),
            )
            return cursor.rowcount > 0

    async def clear(self) -> int:
        """Delete every bookmark. Returns how many were removed."""
        async with self._unit_of_work() as connection:
            cursor = await connection.execute("DELETE FROM bookmarks")
            return cursor.rowcount

    async def bulk_import(
        self,
        records: Iterable[Any],
        policy: Optional[str] = None,
    ) -> int:
        """Insert many bookmarks in one transaction, ignoring supplied ids.

        Args:
            records: Bookmark dicts, possibly using legacy export keys
            policy: 'reject' fails the whole batch on the first invalid item;
                'skip' leaves invalid items out. Defaults to the store policy

        Returns:
            Number of bookmarks written

        Raises:
            ValidationError: Under 'reject', naming the first invalid item
        """
        policy = policy or self.import_policy
        if policy not in IMPORT_POLICIES:
            raise ValueError(f"Unknown import policy: {policy!r}")

        prepared = []
        for index, item in enumerate(records):
            record = normalize_record(item) if isinstance(item, dict) else item
            try:
                validate_new_record(record)
            except ValidationError as e:
                if policy == "reject":
                    raise ValidationError(f"Item {index}: {e}") from e
                print(f"[BookmarkStore] Skipping import item {index}: {e}", file=sys.stderr)
                continue
            record.pop("id", None)
            prepared.append(record)

        async with self._unit_of_work() as connection:
            for record in prepared:
                await self._insert(connection, record)

        return len(prepared)

    async def set_subject_tags(self, subject_id: str, tags: List[str]) -> int:
        """Replace the tags of every bookmark of a subject.

        Returns:
            Number of bookmarks updated
        """
        validate_tags(tags)

        async with self._unit_of_work() as connection:
            cursor = await connection.execute(
                "UPDATE bookmarks SET tags = ? WHERE subject_id = ?",
                (json.dumps(tags, ensure_ascii=False), subject_id),
            )
            return cursor.rowcount


# Global store instance
_bookmark_store: Optional[BookmarkStore] = None


async def get_bookmark_store() -> BookmarkStore:
    """Get or create the global bookmark store instance.

    Returns:
        Opened BookmarkStore
    """
    global _bookmark_store

    if _bookmark_store is None:
        _bookmark_store = BookmarkStore()
    await _bookmark_store.open()

    return _bookmark_store
