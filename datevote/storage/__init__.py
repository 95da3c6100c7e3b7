"""Storage package exposing DAO helpers."""

from .dao import (
    init_db,
    insert_event,
    load_event,
    save_event,
    latest_event_id,
    notification_sent,
    record_notification,
)

__all__ = [
    "init_db",
    "insert_event",
    "load_event",
    "save_event",
    "latest_event_id",
    "notification_sent",
    "record_notification",
]
