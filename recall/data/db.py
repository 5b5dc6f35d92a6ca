"""
Recall Assistant — SQLite storage.

Two stores share one database file:

* KeyValueDB — the reminder engine's own state (slot pointers, caches,
  saved locations, settings), implementing the KeyValueStore port.
* TaskDB — notes, the user profile and the journal, implementing the
  TaskPort consumed by the geofence engine and the smart notifications.

Both survive bot restarts.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timedelta
from pathlib import Path

from recall.data.models import JournalEntry, PendingTaskDetails, TaskItem, UserProfile

logger = logging.getLogger(__name__)

_PROFILE_FIELDS = ("wake_up_time", "bed_time", "tone", "self_description", "hobbies")


class _SQLiteStore:
    """Connection handling shared by both stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from recall.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class KeyValueDB(_SQLiteStore):
    """SQLite-backed KeyValueStore."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
        logger.debug("Key-value table initialized at %s", self._db_path)

    async def get(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    async def set(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    async def remove(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))


class TaskDB(_SQLiteStore):
    """SQLite-backed notes, profile and journal (TaskPort)."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notes (
                    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
                    transcript         TEXT    NOT NULL,
                    summary            TEXT,
                    note_type          TEXT    NOT NULL DEFAULT 'task',
                    is_reminder        INTEGER NOT NULL DEFAULT 0,
                    is_completed       INTEGER NOT NULL DEFAULT 0,
                    location_category  TEXT,
                    location_completed INTEGER NOT NULL DEFAULT 0,
                    event_date         TEXT,
                    event_location     TEXT,
                    place_search_query TEXT,
                    reminder_at        TEXT,
                    created_at         TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profile (
                    id               INTEGER PRIMARY KEY CHECK (id = 1),
                    wake_up_time     TEXT,
                    bed_time         TEXT,
                    tone             TEXT,
                    self_description TEXT,
                    hobbies          TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS journal (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    category   TEXT NOT NULL,
                    caption    TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)
        logger.debug("Notes/profile/journal tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> TaskItem:
        return TaskItem(
            id=row["id"],
            transcript=row["transcript"],
            summary=row["summary"],
            note_type=row["note_type"],
            is_reminder=bool(row["is_reminder"]),
            is_completed=bool(row["is_completed"]),
            location_category=row["location_category"],
            location_completed=bool(row["location_completed"]),
            event_date=row["event_date"],
            event_location=row["event_location"],
            place_search_query=row["place_search_query"],
            reminder_at=row["reminder_at"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def add_note(
        self,
        transcript: str,
        summary: str | None = None,
        note_type: str = "task",
        is_reminder: bool = False,
        location_category: str | None = None,
        event_date: str | None = None,
        event_location: str | None = None,
        place_search_query: str | None = None,
        reminder_at: datetime | None = None,
    ) -> TaskItem:
        created_at = datetime.now().isoformat(timespec="seconds")
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO notes
                    (transcript, summary, note_type, is_reminder, location_category,
                     event_date, event_location, place_search_query, reminder_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    transcript, summary, note_type, int(is_reminder), location_category,
                    event_date, event_location, place_search_query,
                    reminder_at.isoformat() if reminder_at else None, created_at,
                ),
            )
            note_id = cursor.lastrowid

        logger.info("Note added: #%d (%s%s)", note_id, note_type, ", reminder" if is_reminder else "")
        return TaskItem(
            id=note_id,
            transcript=transcript,
            summary=summary,
            note_type=note_type,
            is_reminder=is_reminder,
            location_category=location_category,
            event_date=event_date,
            event_location=event_location,
            place_search_query=place_search_query,
            reminder_at=reminder_at.isoformat() if reminder_at else None,
            created_at=created_at,
        )

    def get_note(self, note_id: int) -> TaskItem | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
        return self._row_to_item(row) if row else None

    def complete_note(self, note_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE notes SET is_completed = 1 WHERE id = ?", (note_id,),
            )
        return cursor.rowcount > 0

    def set_reminder_at(self, note_id: int, reminder_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE notes SET reminder_at = ? WHERE id = ?",
                (reminder_at.isoformat(timespec="seconds"), note_id),
            )

    def get_upcoming_reminders(self, now: datetime | None = None) -> list[TaskItem]:
        """Open reminder notes whose reminder time is still ahead."""
        now_iso = (now or datetime.now()).isoformat(timespec="seconds")
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM notes
                WHERE is_reminder = 1
                  AND is_completed = 0
                  AND reminder_at IS NOT NULL
                  AND reminder_at > ?
                ORDER BY reminder_at
                """,
                (now_iso,),
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    async def mark_location_completed(self, item_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE notes SET location_completed = 1 WHERE id = ?", (item_id,),
            )
        return cursor.rowcount > 0

    async def get_pending_location_items(self) -> list[TaskItem]:
        """Location-tagged, not yet handled, and not time-based reminders."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM notes
                WHERE location_category IS NOT NULL
                  AND location_completed = 0
                  AND is_reminder = 0
                ORDER BY created_at DESC, id DESC
                """
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    async def get_items_for_categories(self, categories: list[str]) -> list[TaskItem]:
        query = (
            "SELECT * FROM notes WHERE location_completed = 0 AND is_reminder = 0"
        )
        params: list[str] = []
        if categories:
            placeholders = ", ".join("?" for _ in categories)
            query += f" AND location_category IN ({placeholders})"
            params.extend(categories)
        query += " ORDER BY created_at DESC, id DESC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_item(r) for r in rows]

    async def get_todays_tasks(self, limit: int = 10, today: date | None = None) -> list[TaskItem]:
        """Open tasks due today or without a date (future-dated tasks excluded)."""
        today_iso = (today or date.today()).isoformat()
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM notes
                WHERE note_type = 'task'
                  AND is_completed = 0
                  AND (event_date = ? OR event_date IS NULL)
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (today_iso, limit),
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    async def get_pending_task_details(
        self, limit: int = 3, today: date | None = None,
    ) -> PendingTaskDetails:
        today_iso = (today or date.today()).isoformat()
        where = (
            "note_type = 'task' AND is_completed = 0 "
            "AND (event_date = ? OR event_date IS NULL)"
        )
        with self._connect() as conn:
            count = conn.execute(
                f"SELECT COUNT(*) FROM notes WHERE {where}", (today_iso,),
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT transcript FROM notes WHERE {where} "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (today_iso, limit),
            ).fetchall()
        return PendingTaskDetails(transcripts=[r["transcript"] for r in rows], count=count)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def get_profile(self) -> UserProfile | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM profile WHERE id = 1").fetchone()
        if row is None:
            return None
        return UserProfile(**{name: row[name] for name in _PROFILE_FIELDS})

    def update_profile(self, **fields: str | None) -> UserProfile:
        unknown = set(fields) - set(_PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

        with self._connect() as conn:
            conn.execute("INSERT OR IGNORE INTO profile (id) VALUES (1)")
            for name, value in fields.items():
                conn.execute(f"UPDATE profile SET {name} = ? WHERE id = 1", (value,))
            row = conn.execute("SELECT * FROM profile WHERE id = 1").fetchone()

        logger.info("Profile updated: %s", ", ".join(fields))
        return UserProfile(**{name: row[name] for name in _PROFILE_FIELDS})

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def add_journal_entry(
        self, category: str, caption: str = "", created_at: datetime | None = None,
    ) -> JournalEntry:
        created_at = created_at or datetime.now()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO journal (category, caption, created_at) VALUES (?, ?, ?)",
                (category, caption, created_at.isoformat(timespec="seconds")),
            )
        return JournalEntry(
            id=cursor.lastrowid, category=category, caption=caption, created_at=created_at,
        )

    def add_food_entry(self, caption: str, created_at: datetime | None = None) -> JournalEntry:
        return self.add_journal_entry("food", caption, created_at)

    async def get_recent_journal_entries(
        self, days: int, now: datetime | None = None,
    ) -> list[JournalEntry]:
        """Entries from the last `days` days, most recent first."""
        since = (now or datetime.now()) - timedelta(days=days)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM journal WHERE created_at >= ? ORDER BY created_at DESC, id DESC",
                (since.isoformat(timespec="seconds"),),
            ).fetchall()
        return [
            JournalEntry(
                id=r["id"],
                category=r["category"],
                caption=r["caption"],
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]
