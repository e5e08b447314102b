"""Shared fixtures for entity graph tests."""

from __future__ import annotations

import pytest

from entity_graph.extraction import ExtractionResult
from entity_graph.graph import KnowledgeGraph
from entity_graph.storage import GraphStorage


# ---------------------------------------------------------------------------
# Keep the host environment out of tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in (
        "ENTITY_GRAPH_CONFIG",
        "ENTITY_GRAPH_DB",
        "ENTITY_GRAPH_RESOLVER_POOL",
        "ENTITY_GRAPH_BATCH_SIZE",
        "ENTITY_GRAPH_CONTEXT_MENTIONS",
        "ENTITY_GRAPH_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Storage fixture (temporary DB)
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_storage(tmp_path):
    """Create a fresh GraphStorage backed by a temp SQLite file."""
    s = GraphStorage(db_path=str(tmp_path / "graph.sqlite"))
    yield s
    s.close()


@pytest.fixture
def graph(tmp_storage):
    return KnowledgeGraph(tmp_storage)


# ---------------------------------------------------------------------------
# Host application source tables
# ---------------------------------------------------------------------------

_SOURCE_SCHEMA = """
CREATE TABLE IF NOT EXISTS emails (
    id TEXT PRIMARY KEY, subject TEXT, body TEXT,
    from_name TEXT, from_email TEXT, to_addresses TEXT, cc_addresses TEXT,
    created_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY, title TEXT, description TEXT, email_id TEXT,
    created_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS calendar_events (
    id TEXT PRIMARY KEY, summary TEXT, location TEXT, description TEXT,
    organizer_name TEXT, organizer_email TEXT, attendees TEXT,
    created_at REAL NOT NULL
)
"""


@pytest.fixture
def source_tables(tmp_storage):
    """Create the host's emails/tasks/calendar_events tables; returns an insert helper."""
    conn = tmp_storage._get_conn()
    for stmt in _SOURCE_SCHEMA.split(";"):
        if stmt.strip():
            conn.execute(stmt)
    conn.commit()

    tables = {"email": "emails", "task": "tasks", "calendar_event": "calendar_events"}

    def add(source_type: str, source_id: str, created_at: float, **fields) -> None:
        columns = ["id", "created_at", *fields]
        placeholders = ", ".join("?" for _ in columns)
        conn.execute(
            f"INSERT INTO {tables[source_type]} ({', '.join(columns)}) VALUES ({placeholders})",
            (source_id, created_at, *fields.values()),
        )
        conn.commit()

    return add


# ---------------------------------------------------------------------------
# Sample extraction
# ---------------------------------------------------------------------------

SAMPLE_EXTRACTION = {
    "entities": [
        {"type": "person", "name": "Jennifer Smith", "email": "jen@acme.com",
         "role": "CFO", "confidence": 0.95, "context": "Jennifer from Acme"},
        {"type": "organization", "name": "Acme Corp", "confidence": 0.9,
         "context": "Acme Corp invoice"},
    ],
    "relationships": [
        {"sourceEntityName": "Jennifer Smith", "targetEntityName": "Acme Corp",
         "type": "works_at", "confidence": 0.9, "context": "CFO at Acme"},
    ],
}


@pytest.fixture
def sample_extraction():
    return ExtractionResult.model_validate(SAMPLE_EXTRACTION)
