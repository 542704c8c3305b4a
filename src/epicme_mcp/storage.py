"""SQLite storage for journal entries, tags and their links.

Every committed write publishes exactly one ChangeSet on the storage
bus, after the transaction has been committed.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import DuplicateTagError, NotFoundError
from .events import ChangeSet, MutationBus
from .models import Entry, EntryTag, Tag, epoch_now

log = logging.getLogger(__name__)

ENTRY_UPDATE_FIELDS = ("title", "content", "mood", "location", "weather", "is_private", "is_favorite")
TAG_UPDATE_FIELDS = ("name", "description")
# NOT NULL columns: a None update leaves them unchanged
REQUIRED_FIELDS = frozenset({"title", "content", "is_private", "is_favorite", "name"})


def _settable(updates: dict[str, Any], allowed: tuple[str, ...]) -> dict[str, Any]:
    return {
        k: v for k, v in updates.items()
        if k in allowed and not (v is None and k in REQUIRED_FIELDS)
    }


class Database:
    """SQLite-backed store for entries and tags."""

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path, bus: Optional[MutationBus[ChangeSet]] = None):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite file (parent directories are created)
            bus: Bus to publish ChangeSets on (a private one is created if omitted)
        """
        self.db_path = db_path
        self.bus: MutationBus[ChangeSet] = bus if bus is not None else MutationBus("storage")
        self._connection: Optional[sqlite3.Connection] = None
        self._ensure_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._connection is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(str(self.db_path))
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys = ON")
            self._connection.execute("PRAGMA journal_mode = WAL")
        return self._connection

    def _ensure_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        conn = self._get_connection()

        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if cursor.fetchone() is None:
            self._init_schema(conn)
        else:
            cursor = conn.execute("SELECT version FROM schema_version")
            row = cursor.fetchone()
            if row is None or row[0] < self.SCHEMA_VERSION:
                self._init_schema(conn)

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        """Initialize the database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
            INSERT OR IGNORE INTO schema_version (version) VALUES (1);

            CREATE TABLE IF NOT EXISTS entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                mood TEXT,
                location TEXT,
                weather TEXT,
                is_private INTEGER NOT NULL DEFAULT 1,
                is_favorite INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,     -- epoch seconds
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                description TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS entry_tags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entry_id INTEGER NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
                tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
                created_at INTEGER NOT NULL,
                UNIQUE (entry_id, tag_id)
            );

            CREATE INDEX IF NOT EXISTS idx_entries_created ON entries(created_at);
            CREATE INDEX IF NOT EXISTS idx_entry_tags_entry ON entry_tags(entry_id);
            CREATE INDEX IF NOT EXISTS idx_entry_tags_tag ON entry_tags(tag_id);
        """)
        conn.commit()

    def close(self) -> None:
        """Close the database connection.

        Checkpoints the WAL and switches back to DELETE journal mode so no
        file handles are left behind.
        """
        if self._connection is not None:
            try:
                self._connection.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                self._connection.execute("PRAGMA journal_mode = DELETE")
            except sqlite3.Error as e:
                log.debug("Ignoring error while closing %s: %s", self.db_path, e)
            self._connection.close()
            self._connection = None

    def on_change(self, listener: Callable[[ChangeSet], Any]) -> Callable[[], None]:
        """Register a listener for committed writes."""
        return self.bus.subscribe(listener)

    async def _publish(self, entry_ids=(), tag_ids=()) -> None:
        await self.bus.publish(ChangeSet.of(entry_ids, tag_ids))

    # ========== Row conversion ==========

    @staticmethod
    def _row_to_tag(row: sqlite3.Row) -> Tag:
        return Tag(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_entry(row: sqlite3.Row, tags: Optional[list[Tag]] = None) -> Entry:
        return Entry(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            mood=row["mood"],
            location=row["location"],
            weather=row["weather"],
            is_private=bool(row["is_private"]),
            is_favorite=bool(row["is_favorite"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            tags=tags or [],
        )

    def _tags_for(self, entry_id: int) -> list[Tag]:
        conn = self._get_connection()
        cursor = conn.execute(
            """
            SELECT t.* FROM tags t
            JOIN entry_tags et ON et.tag_id = t.id
            WHERE et.entry_id = ?
            ORDER BY et.id
            """,
            (entry_id,),
        )
        return [self._row_to_tag(row) for row in cursor.fetchall()]

    def _entry_exists(self, entry_id: int) -> bool:
        conn = self._get_connection()
        return conn.execute("SELECT 1 FROM entries WHERE id = ?", (entry_id,)).fetchone() is not None

    def _tag_exists(self, tag_id: int) -> bool:
        conn = self._get_connection()
        return conn.execute("SELECT 1 FROM tags WHERE id = ?", (tag_id,)).fetchone() is not None

    async def _require_entry(self, entry_id: int) -> Entry:
        entry = await self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f'Entry with ID "{entry_id}" not found')
        return entry

    async def _require_tag(self, tag_id: int) -> Tag:
        tag = await self.get_tag(tag_id)
        if tag is None:
            raise NotFoundError(f'Tag ID "{tag_id}" not found')
        return tag

    # ========== Entries ==========

    async def create_entry(
        self,
        title: str,
        content: str,
        mood: Optional[str] = None,
        location: Optional[str] = None,
        weather: Optional[str] = None,
        is_private: bool = True,
        is_favorite: bool = False,
        created_at: Optional[int] = None,
    ) -> Entry:
        """Insert a new entry.

        Args:
            created_at: Override the creation timestamp (epoch seconds)

        Returns:
            The stored entry with its assigned id
        """
        conn = self._get_connection()
        now = epoch_now()
        created = created_at if created_at is not None else now
        cursor = conn.execute(
            """
            INSERT INTO entries (title, content, mood, location, weather,
                                 is_private, is_favorite, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (title, content, mood, location, weather, int(is_private), int(is_favorite), created, now),
        )
        conn.commit()
        entry_id = cursor.lastrowid
        await self._publish(entry_ids=[entry_id])
        return await self._require_entry(entry_id)

    async def get_entry(self, entry_id: int) -> Optional[Entry]:
        """Get a single entry, with its tags, or None if not found."""
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM entries WHERE id = ?", (entry_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_entry(row, self._tags_for(entry_id))

    async def get_entries(self) -> list[Entry]:
        """List all entries (with tags) in creation order."""
        conn = self._get_connection()
        tags_by_entry: dict[int, list[Tag]] = {}
        cursor = conn.execute(
            """
            SELECT et.entry_id AS link_entry_id, t.* FROM entry_tags et
            JOIN tags t ON t.id = et.tag_id
            ORDER BY et.id
            """
        )
        for row in cursor.fetchall():
            tags_by_entry.setdefault(row["link_entry_id"], []).append(self._row_to_tag(row))

        cursor = conn.execute("SELECT * FROM entries ORDER BY id")
        return [self._row_to_entry(row, tags_by_entry.get(row["id"])) for row in cursor.fetchall()]

    async def update_entry(self, entry_id: int, **updates: Any) -> Entry:
        """Update the given fields of an entry.

        Fields passed as None are written as NULL, except required ones
        (title, content and the flags), which are left alone like fields
        not passed at all.

        Raises:
            NotFoundError: If the entry does not exist
        """
        if not self._entry_exists(entry_id):
            raise NotFoundError(f'Entry with ID "{entry_id}" not found')

        fields = _settable(updates, ENTRY_UPDATE_FIELDS)
        if fields:
            for flag in ("is_private", "is_favorite"):
                if flag in fields and fields[flag] is not None:
                    fields[flag] = int(fields[flag])
            assignments = ", ".join(f"{name} = ?" for name in fields)
            conn = self._get_connection()
            conn.execute(
                f"UPDATE entries SET {assignments}, updated_at = ? WHERE id = ?",
                (*fields.values(), epoch_now(), entry_id),
            )
            conn.commit()
            await self._publish(entry_ids=[entry_id])

        return await self._require_entry(entry_id)

    async def delete_entry(self, entry_id: int) -> Entry:
        """Delete an entry and its tag links.

        Returns:
            The entry as it was before deletion

        Raises:
            NotFoundError: If the entry does not exist
        """
        existing = await self.get_entry(entry_id)
        if existing is None:
            raise NotFoundError(f'Entry with ID "{entry_id}" not found')

        conn = self._get_connection()
        conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
        conn.commit()
        await self._publish(entry_ids=[entry_id])
        return existing

    # ========== Tags ==========

    async def create_tag(
        self,
        name: str,
        description: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> Tag:
        """Insert a new tag.

        Raises:
            DuplicateTagError: If a tag with this name already exists
        """
        conn = self._get_connection()
        now = epoch_now()
        created = created_at if created_at is not None else now
        try:
            cursor = conn.execute(
                "INSERT INTO tags (name, description, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (name, description, created, now),
            )
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise DuplicateTagError(f'Tag "{name}" already exists') from e
        conn.commit()
        tag_id = cursor.lastrowid
        await self._publish(tag_ids=[tag_id])
        return await self._require_tag(tag_id)

    async def get_tag(self, tag_id: int) -> Optional[Tag]:
        """Get a single tag or None if not found."""
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM tags WHERE id = ?", (tag_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_tag(row)

    async def get_tags(self) -> list[Tag]:
        """List all tags in creation order."""
        conn = self._get_connection()
        cursor = conn.execute("SELECT * FROM tags ORDER BY id")
        return [self._row_to_tag(row) for row in cursor.fetchall()]

    async def update_tag(self, tag_id: int, **updates: Any) -> Tag:
        """Update a tag's name and/or description. A None name is ignored.

        Raises:
            NotFoundError: If the tag does not exist
            DuplicateTagError: If the new name is taken
        """
        if not self._tag_exists(tag_id):
            raise NotFoundError(f'Tag ID "{tag_id}" not found')

        fields = _settable(updates, TAG_UPDATE_FIELDS)
        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            conn = self._get_connection()
            try:
                conn.execute(
                    f"UPDATE tags SET {assignments}, updated_at = ? WHERE id = ?",
                    (*fields.values(), epoch_now(), tag_id),
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise DuplicateTagError(f'Tag "{fields.get("name")}" already exists') from e
            conn.commit()
            await self._publish(tag_ids=[tag_id])

        return await self._require_tag(tag_id)

    async def delete_tag(self, tag_id: int) -> Tag:
        """Delete a tag and detach it from every entry.

        The published ChangeSet includes the entries that lost the tag.

        Raises:
            NotFoundError: If the tag does not exist
        """
        existing = await self.get_tag(tag_id)
        if existing is None:
            raise NotFoundError(f'Tag ID "{tag_id}" not found')

        conn = self._get_connection()
        linked = [
            row["entry_id"]
            for row in conn.execute("SELECT entry_id FROM entry_tags WHERE tag_id = ?", (tag_id,))
        ]
        conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        conn.commit()
        await self._publish(entry_ids=linked, tag_ids=[tag_id])
        return existing

    # ========== Links ==========

    async def add_tag_to_entry(self, entry_id: int, tag_id: int) -> EntryTag:
        """Attach a tag to an entry.

        Attaching an already attached tag is a no-op and publishes nothing.

        Raises:
            NotFoundError: If the entry or the tag does not exist
        """
        if not self._entry_exists(entry_id):
            raise NotFoundError(f'Entry with ID "{entry_id}" not found')
        if not self._tag_exists(tag_id):
            raise NotFoundError(f"Tag {tag_id} not found")

        conn = self._get_connection()
        cursor = conn.execute(
            "INSERT OR IGNORE INTO entry_tags (entry_id, tag_id, created_at) VALUES (?, ?, ?)",
            (entry_id, tag_id, epoch_now()),
        )
        conn.commit()
        if cursor.rowcount > 0:
            await self._publish(entry_ids=[entry_id], tag_ids=[tag_id])
        return EntryTag(entry_id=entry_id, tag_id=tag_id)

    async def get_entry_tags(self, entry_id: int) -> list[Tag]:
        """Tags currently attached to an entry."""
        return self._tags_for(entry_id)

    async def entity_counts(self) -> tuple[int, int]:
        """Full (entry_count, tag_count) recount."""
        conn = self._get_connection()
        entry_count = conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0]
        tag_count = conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0]
        return entry_count, tag_count
