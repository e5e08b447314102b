"""Source catalog: where the batch job finds records to scan.

The records themselves (emails, tasks, calendar events, documents) belong to
the host application. The catalog only lists recent ids and renders a record
as plain text for the extractor.

Columns are optional: a host table only needs ``id`` and ``created_at``, and
whatever else it carries is rendered. Address lists (``to_addresses``,
``cc_addresses``, ``attendees``) may hold a JSON array of strings or of
``{"name": ..., "email": ...}`` objects, or plain text.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from .errors import StorageUnavailable, ValidationFailed
from .storage import GraphStorage

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 5000


class SourceCatalog(Protocol):
    def recent_source_ids(self, source_type: str, limit: int) -> List[str]:
        """Newest first."""
        ...

    def load_text(self, source_type: str, source_id: str) -> Optional[str]:
        ...


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def format_address(name: Optional[str], email: Optional[str]) -> Optional[str]:
    """``Name <email>``; a bare name when there is no email."""
    if email:
        return f"{name or 'Unknown'} <{email}>"
    return name or None


def format_address_list(value: Any) -> Optional[str]:
    if not value:
        return None
    items = value
    if isinstance(value, str):
        if not value.lstrip().startswith("["):
            return value
        try:
            items = json.loads(value)
        except ValueError:
            return value
    if not isinstance(items, list):
        return str(items)

    out = []
    for item in items:
        if isinstance(item, dict):
            addr = format_address(item.get("name"), item.get("email"))
        else:
            addr = str(item) if item else None
        if addr:
            out.append(addr)
    return ", ".join(out) or None


def _lines(pairs: List[Tuple[str, Any]]) -> str:
    return "\n".join(f"{label}: {value}" for label, value in pairs if value)


def _render_email(r: Mapping[str, Any]) -> str:
    body = r.get("body")
    return _lines([
        ("From", format_address(r.get("from_name"), r.get("from_email"))),
        ("To", format_address_list(r.get("to_addresses"))),
        ("Cc", format_address_list(r.get("cc_addresses"))),
        ("Subject", r.get("subject")),
        ("Body", body[:MAX_BODY_CHARS] if body else None),
    ])


def _render_task(r: Mapping[str, Any]) -> str:
    return _lines([
        ("Title", r.get("title")),
        ("Description", r.get("description")),
        ("Related Email", r.get("email_subject")),
    ])


def _render_calendar_event(r: Mapping[str, Any]) -> str:
    return _lines([
        ("Event", r.get("summary")),
        ("Location", r.get("location")),
        ("Organizer", format_address(r.get("organizer_name"), r.get("organizer_email"))),
        ("Attendees", format_address_list(r.get("attendees"))),
        ("Description", r.get("description")),
    ])


def _render_kb_document(r: Mapping[str, Any]) -> str:
    return _lines([("Title", r.get("title")), ("Content", r.get("content"))])


# source_type -> (table, renderer)
SOURCE_TABLES: Dict[str, Tuple[str, Callable[[Mapping[str, Any]], str]]] = {
    "email": ("emails", _render_email),
    "task": ("tasks", _render_task),
    "calendar_event": ("calendar_events", _render_calendar_event),
    "kb_document": ("kb_documents", _render_kb_document),
}


def render_source_text(source_type: str, record: Mapping[str, Any]) -> str:
    """Render a source record as ``Label: value`` lines, skipping empty fields."""
    try:
        _, render = SOURCE_TABLES[source_type]
    except KeyError:
        raise ValidationFailed(f"unknown source type: {source_type!r}") from None
    return render(record)


# ---------------------------------------------------------------------------
# SQLite catalog
# ---------------------------------------------------------------------------

class SQLiteSourceCatalog:
    """Reads the host application's source tables from the graph's database."""

    def __init__(self, storage: GraphStorage) -> None:
        self.storage = storage

    def _table(self, source_type: str) -> str:
        try:
            return SOURCE_TABLES[source_type][0]
        except KeyError:
            raise ValidationFailed(f"unknown source type: {source_type!r}") from None

    def recent_source_ids(self, source_type: str, limit: int) -> List[str]:
        table = self._table(source_type)
        try:
            rows = self.storage._get_conn().execute(
                f"SELECT id FROM {table} ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"recent_source_ids({table}): {exc}") from exc
        return [str(r["id"]) for r in rows]

    def load_text(self, source_type: str, source_id: str) -> Optional[str]:
        table = self._table(source_type)
        conn = self.storage._get_conn()
        try:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (source_id,)).fetchone()
            if row is None:
                return None
            record = dict(row)
            # Tasks created from an email carry the email's subject as context.
            if source_type == "task" and record.get("email_id"):
                email = conn.execute(
                    "SELECT subject FROM emails WHERE id = ?", (record["email_id"],),
                ).fetchone()
                if email is not None:
                    record["email_subject"] = email["subject"]
                else:
                    logger.debug("Task %s references missing email %s", source_id, record["email_id"])
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"load_text({table}): {exc}") from exc
        return render_source_text(source_type, record)
