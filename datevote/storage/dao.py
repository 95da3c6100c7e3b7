"""SQLite Data Access Object for event documents.

Each event is stored as one JSON document with an integer ``version``. Writes
are conditional on the version that was read, which turns a concurrent
read-modify-write into a ``ConflictError`` instead of a lost update.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from typing import Optional

from datevote.errors import ConflictError
from datevote.models.events import Event
from datevote.storage.codec import event_from_dict, event_to_dict

log = logging.getLogger(__name__)


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str) -> None:
    """Initialize database and ensure tables exist."""
    parent = os.path.dirname(db_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    conn = _connect(db_path)
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS events (
            event_id TEXT PRIMARY KEY,
            version INTEGER NOT NULL,
            channel_id TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            document TEXT NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_events_channel
            ON events(channel_id, created_at DESC)
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS notifications (
            delivery_key TEXT PRIMARY KEY,
            event_id TEXT,
            sent_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.commit()
    conn.close()


def insert_event(db_path: str, event: Event) -> int:
    """Store a brand-new event at version 1. Returns the version."""
    conn = _connect(db_path)
    try:
        conn.execute(
            "INSERT INTO events (event_id, version, channel_id, document) VALUES (?,?,?,?)",
            (
                event.event_id,
                1,
                event.channel_id,
                json.dumps(event_to_dict(event), ensure_ascii=False),
            ),
        )
        conn.commit()
    except sqlite3.IntegrityError:
        raise ConflictError(event.event_id, 0)
    finally:
        conn.close()
    return 1


def load_event(db_path: str, event_id: str) -> Optional[Event]:
    conn = _connect(db_path)
    row = conn.execute(
        "SELECT version, document FROM events WHERE event_id=?", (event_id,)
    ).fetchone()
    conn.close()
    if not row:
        return None
    return event_from_dict(json.loads(row["document"]), version=int(row["version"]))


def save_event(db_path: str, event: Event, expected_version: int) -> int:
    """Write ``event`` only if the stored version is still ``expected_version``.

    Returns the new version; raises ConflictError if someone else wrote first.
    """
    new_version = expected_version + 1
    conn = _connect(db_path)
    try:
        cur = conn.execute(
            "UPDATE events SET version=?, document=?, updated_at=CURRENT_TIMESTAMP"
            " WHERE event_id=? AND version=?",
            (
                new_version,
                json.dumps(event_to_dict(event), ensure_ascii=False),
                event.event_id,
                expected_version,
            ),
        )
        conn.commit()
        if cur.rowcount != 1:
            raise ConflictError(event.event_id, expected_version)
    finally:
        conn.close()
    return new_version


def latest_event_id(db_path: str, channel_id: str) -> Optional[str]:
    """Most recently created event of a channel."""
    conn = _connect(db_path)
    row = conn.execute(
        "SELECT event_id FROM events WHERE channel_id=?"
        " ORDER BY created_at DESC, rowid DESC LIMIT 1",
        (channel_id,),
    ).fetchone()
    conn.close()
    return row["event_id"] if row else None


def notification_sent(db_path: str, delivery_key: str) -> bool:
    conn = _connect(db_path)
    row = conn.execute(
        "SELECT 1 FROM notifications WHERE delivery_key=? LIMIT 1", (delivery_key,)
    ).fetchone()
    conn.close()
    return row is not None


def record_notification(db_path: str, delivery_key: str, event_id: str) -> None:
    conn = _connect(db_path)
    try:
        conn.execute(
            "INSERT OR IGNORE INTO notifications (delivery_key, event_id) VALUES (?,?)",
            (delivery_key, event_id),
        )
        conn.commit()
    finally:
        conn.close()
