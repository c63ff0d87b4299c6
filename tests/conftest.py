"""
clubdocs Test Suite — Shared fixtures and configuration.

Every test gets its own in-memory SQLite database seeded with two clubs:

    club 1 "Chess Club"  president: Pat (2)
        Lee (3)    approved leader
        Alice (4)  approved member
        Bob (5)    approved member
        Carol (6)  pending member
    club 2 "Drama Club"  no president
        Dave (7)   approved member

Ann (1) is the global admin and holds no memberships.

Run:  pytest tests/ -v
"""

from __future__ import annotations

import io
from datetime import date, timedelta
from types import SimpleNamespace
from typing import List, Optional

import pytest

TODAY = date(2026, 3, 15)


# ---------------------------------------------------------------------------
# Global state isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset module-level singletons between tests."""
    import clubdocs.engine.config as cfg_mod
    from clubdocs.engine.logging import shutdown_logging

    cfg_mod._config = None
    yield
    cfg_mod._config = None
    shutdown_logging()


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def config(tmp_path):
    from clubdocs.engine.config import ClubDocsConfig, FilesConfig, LoggingConfig

    return ClubDocsConfig(
        files=FilesConfig(upload_dir=str(tmp_path / "uploads")),
        logging=LoggingConfig(directory=str(tmp_path / "logs")),
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    """Fresh in-memory database with all tables."""
    from clubdocs.db.session import close_all_sessions, init_db

    factory = init_db("sqlite://", create_tables=True)
    yield factory
    close_all_sessions()


@pytest.fixture
def ids():
    return SimpleNamespace(
        admin=1, president=2, leader=3, alice=4, bob=5, carol=6, dave=7,
        club=1, other_club=2,
    )


@pytest.fixture
def seeded(session_factory, ids):
    """Users, clubs and memberships. Returns the session factory."""
    from clubdocs.db.models import Club, ClubMembership, User
    from clubdocs.db.session import session_scope

    with session_scope(session_factory) as session:
        session.add_all([
            User(id=ids.admin, email="ann@example.org", first_name="Ann", last_name="Admin", role="admin"),
            User(id=ids.president, email="pat@example.org", first_name="Pat", last_name="President"),
            User(id=ids.leader, email="lee@example.org", first_name="Lee", last_name="Leader"),
            User(id=ids.alice, email="alice@example.org", first_name="Alice", last_name="Ames"),
            User(id=ids.bob, email="bob@example.org", first_name="Bob", last_name="Burns"),
            User(id=ids.carol, email="carol@example.org", first_name="Carol", last_name="Cole"),
            User(id=ids.dave, email="dave@example.org", first_name="Dave", last_name="Diaz"),
        ])
        session.flush()
        session.add_all([
            Club(id=ids.club, name="Chess Club", president_id=ids.president),
            Club(id=ids.other_club, name="Drama Club"),
        ])
        session.flush()
        session.add_all([
            ClubMembership(user_id=ids.leader, club_id=ids.club, role="leader", status="approved"),
            ClubMembership(user_id=ids.alice, club_id=ids.club, role="member", status="approved"),
            ClubMembership(user_id=ids.bob, club_id=ids.club, role="member", status="approved"),
            ClubMembership(user_id=ids.carol, club_id=ids.club, role="member", status="pending"),
            ClubMembership(user_id=ids.dave, club_id=ids.other_club, role="member", status="approved"),
        ])
    return session_factory


@pytest.fixture
def actor_for(seeded):
    """Build an ActorContext for a seeded user id from the membership table."""
    from clubdocs.db.session import session_scope
    from clubdocs.documents.roles import load_actor

    def _make(user_id: int):
        with session_scope(seeded) as session:
            return load_actor(session, user_id)

    return _make


@pytest.fixture
def admin(actor_for, ids):
    return actor_for(ids.admin)


@pytest.fixture
def leader(actor_for, ids):
    return actor_for(ids.leader)


@pytest.fixture
def president(actor_for, ids):
    return actor_for(ids.president)


@pytest.fixture
def alice(actor_for, ids):
    return actor_for(ids.alice)


@pytest.fixture
def bob(actor_for, ids):
    return actor_for(ids.bob)


# ---------------------------------------------------------------------------
# Collaborators and services
# ---------------------------------------------------------------------------

@pytest.fixture
def sink():
    from clubdocs.integrations.notifications import RecordingNotificationSink

    return RecordingNotificationSink()


@pytest.fixture
def file_store(config):
    from clubdocs.integrations.file_store import LocalFileStore

    return LocalFileStore(
        config.files.upload_dir,
        max_upload_size_mb=config.files.max_upload_size_mb,
        allowed_mime_types=config.files.allowed_mime_types,
    )


@pytest.fixture
def service(seeded, file_store, sink, config):
    from clubdocs.documents.service import DocumentService

    return DocumentService(
        seeded, file_store, notification_sink=sink, config=config, today_provider=lambda: TODAY,
    )


@pytest.fixture
def bulk(seeded, file_store, sink, config):
    from clubdocs.documents.bulk import BulkDocumentService

    return BulkDocumentService(
        seeded, file_store, notification_sink=sink, config=config, today_provider=lambda: TODAY,
    )


@pytest.fixture
def make_document(service, admin, ids, sink):
    """Create a club document as the admin; the creation event is cleared."""
    from clubdocs.documents.models import CreateDocumentRequest

    def _make(
        title: str = "Quarterly report",
        assignees: Optional[List[int]] = None,
        due_date: Optional[date] = None,
        club_id: Optional[int] = None,
        **meta,
    ):
        request = CreateDocumentRequest(
            title=title,
            due_date=due_date or TODAY + timedelta(days=7),
            assigned_member_ids=assignees if assignees is not None else [ids.alice, ids.bob],
            **meta,
        )
        view = service.create_document(admin, club_id or ids.club, request)
        sink.clear()
        return view

    return _make


@pytest.fixture
def upload(service, ids):
    """Submit a small PDF against the actor's own assignment."""

    def _upload(actor, document_id: int, content: bytes = b"%PDF-1.4 test", filename: str = "report.pdf",
                club_id: Optional[int] = None):
        return service.submit_assignment(
            actor, club_id or ids.club, document_id,
            io.BytesIO(content), filename, "application/pdf",
        )

    return _upload


@pytest.fixture
def read_document(seeded):
    """Raw ORM read of a document row, bypassing the guard."""
    from clubdocs.db.models import SmartDocument
    from clubdocs.db.session import session_scope

    def _read(document_id: int):
        with session_scope(seeded) as session:
            return session.get(SmartDocument, document_id)

    return _read
