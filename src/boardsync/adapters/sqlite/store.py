"""
SQLite Store - The board's SQLite database as a LocalStorePort.

Each ``session()`` opens its own connection and closes it on exit, so a
store can be shared between the polling thread and request handlers.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from boardsync.core.domain.entities import Feature, RemoteLink, Story, utc_timestamp
from boardsync.core.domain.enums import Priority, StoryStatus
from boardsync.core.exceptions import StoreError
from boardsync.core.ports.local_store import LocalStorePort, StoreSession

from .schema import ADDED_COLUMNS, LAST_PUSHED_EXPR, REMOTE_ID_EXPR, SCHEMA


logger = logging.getLogger("SqliteStore")


def _load_json(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring unparseable extensions blob")
        return {}
    return data if isinstance(data, dict) else {}


def _row_to_story(row: sqlite3.Row) -> Story:
    try:
        status = StoryStatus.from_string(row["status"])
    except ValueError:
        logger.warning(f"Story {row['code']} has unknown status '{row['status']}', reading as draft")
        status = StoryStatus.DRAFT
    try:
        priority = Priority.from_string(row["priority"])
    except ValueError:
        priority = Priority.P2

    return Story(
        id=row["id"],
        code=row["code"],
        feature_id=row["feature_id"],
        title=row["title"],
        description=row["description"] or "",
        why=row["why"] or "",
        status=status,
        priority=priority,
        assigned_to=row["assigned_to"],
        estimated_complexity=row["estimated_complexity"],
        extensions=RemoteLink.from_dict(_load_json(row["extensions"])),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_feature(row: sqlite3.Row) -> Feature:
    return Feature(
        id=row["id"],
        code=row["code"],
        name=row["name"],
        description=row["description"] or "",
        story_counter=row["story_counter"],
        extensions=_load_json(row["extensions"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SqliteSession(StoreSession):
    """StoreSession bound to one open connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # -------------------------------------------------------------------------
    # Stories
    # -------------------------------------------------------------------------

    def find_story_by_id(self, story_id: str) -> Story | None:
        row = self.conn.execute("SELECT * FROM stories WHERE id = ?", (story_id,)).fetchone()
        return _row_to_story(row) if row else None

    def find_story_by_remote_id(self, remote_id: int) -> Story | None:
        row = self.conn.execute(
            f"SELECT * FROM stories WHERE {REMOTE_ID_EXPR} = ? LIMIT 1", (int(remote_id),)
        ).fetchone()
        return _row_to_story(row) if row else None

    def find_stories_pending_push(self) -> list[Story]:
        rows = self.conn.execute(
            f"""
            SELECT * FROM stories
            WHERE {REMOTE_ID_EXPR} IS NOT NULL
              AND ({LAST_PUSHED_EXPR} IS NULL OR updated_at > {LAST_PUSHED_EXPR})
            ORDER BY updated_at
            """
        ).fetchall()
        return [_row_to_story(row) for row in rows]

    def insert_story(self, story: Story) -> None:
        self.conn.execute(
            """
            INSERT INTO stories (
                id, code, feature_id, title, description, why, status, priority,
                assigned_to, estimated_complexity, extensions, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                story.id,
                story.code,
                story.feature_id,
                story.title,
                story.description,
                story.why,
                story.status.value,
                story.priority.value,
                story.assigned_to,
                story.estimated_complexity,
                json.dumps(story.extensions.to_dict()),
                story.created_at,
                story.updated_at,
            ),
        )

    def update_story(self, story: Story) -> None:
        self.conn.execute(
            """
            UPDATE stories SET
                title = ?, description = ?, why = ?, status = ?, priority = ?,
                assigned_to = ?, estimated_complexity = ?, extensions = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                story.title,
                story.description,
                story.why,
                story.status.value,
                story.priority.value,
                story.assigned_to,
                story.estimated_complexity,
                json.dumps(story.extensions.to_dict()),
                story.updated_at,
                story.id,
            ),
        )

    def update_story_extensions(
        self, story_id: str, extensions: RemoteLink, touch: bool = False
    ) -> None:
        blob = json.dumps(extensions.to_dict())
        if touch:
            self.conn.execute(
                "UPDATE stories SET extensions = ?, updated_at = ? WHERE id = ?",
                (blob, utc_timestamp(), story_id),
            )
        else:
            self.conn.execute("UPDATE stories SET extensions = ? WHERE id = ?", (blob, story_id))

    # -------------------------------------------------------------------------
    # Features
    # -------------------------------------------------------------------------

    def find_feature_by_code(self, code: str) -> Feature | None:
        row = self.conn.execute("SELECT * FROM features WHERE code = ?", (code,)).fetchone()
        return _row_to_feature(row) if row else None

    def insert_feature(self, feature: Feature) -> None:
        self.conn.execute(
            """
            INSERT INTO features (
                id, code, name, description, story_counter, extensions, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                feature.id,
                feature.code,
                feature.name,
                feature.description,
                feature.story_counter,
                json.dumps(feature.extensions),
                feature.created_at,
                feature.updated_at,
            ),
        )

    def increment_feature_counter(self, feature_id: str) -> int:
        cursor = self.conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute(
                "UPDATE features SET story_counter = story_counter + 1, updated_at = ? WHERE id = ?",
                (utc_timestamp(), feature_id),
            )
            row = cursor.execute(
                "SELECT story_counter FROM features WHERE id = ?", (feature_id,)
            ).fetchone()
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise
        finally:
            cursor.close()

        if row is None:
            raise StoreError(f"Feature {feature_id} not found")
        return int(row[0])


class SqliteStore(LocalStorePort):
    """
    LocalStorePort backed by an SQLite file.

    Connections run in autocommit mode; multi-statement updates use explicit
    transactions.
    """

    BUSY_TIMEOUT = 5.0  # seconds

    def __init__(self, db_path: str | Path, create_schema: bool = True):
        self.db_path = Path(db_path).expanduser()
        self.logger = logger
        if create_schema:
            self.ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.BUSY_TIMEOUT,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def session(self) -> Iterator[SqliteSession]:
        """
        Open a connection for the duration of a ``with`` block.

        Raises:
            StoreError: On any SQLite failure inside the block.
        """
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}", cause=e) from e

        try:
            yield SqliteSession(conn)
        except sqlite3.Error as e:
            raise StoreError(f"Database error: {e}", cause=e) from e
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        """Create missing tables, indexes and columns."""
        with self.session() as db:
            db.conn.executescript(SCHEMA)
            for table, column, definition in ADDED_COLUMNS:
                existing = {row["name"] for row in db.conn.execute(f"PRAGMA table_info({table})")}
                if column not in existing:
                    db.conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
                    self.logger.info(f"Added column {table}.{column}")
        self.logger.debug(f"Schema ready at {self.db_path}")
