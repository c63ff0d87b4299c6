"""
API wiring — service container and per-request actor resolution.

The gateway in front of this service authenticates the caller and forwards
X-User-Id / X-User-Role. Those headers plus the caller's club_memberships
rows become the ActorContext every operation receives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import sessionmaker

from clubdocs.db.session import init_db, session_scope
from clubdocs.documents.bulk import BulkDocumentService
from clubdocs.documents.roles import load_actor
from clubdocs.documents.service import DocumentService
from clubdocs.engine.config import ClubDocsConfig, get_config
from clubdocs.engine.context import ActorContext
from clubdocs.engine.errors import ClubDocsAuthenticationError
from clubdocs.integrations.file_store import FileStore, LocalFileStore
from clubdocs.integrations.notifications import NotificationSink, build_notification_sink

logger = logging.getLogger("clubdocs.api.dependencies")

VALID_GLOBAL_ROLES = ("member", "admin")


@dataclass
class ServiceContainer:
    config: ClubDocsConfig
    session_factory: sessionmaker
    file_store: FileStore
    documents: DocumentService
    bulk: BulkDocumentService


def build_container(
    config: Optional[ClubDocsConfig] = None,
    session_factory: Optional[sessionmaker] = None,
    file_store: Optional[FileStore] = None,
    notification_sink: Optional[NotificationSink] = None,
    today_provider: Optional[Callable[[], date]] = None,
) -> ServiceContainer:
    """Assemble services from config; any piece can be supplied instead (tests)."""
    config = config or get_config()
    if session_factory is None:
        db = config.database
        session_factory = init_db(
            db.url,
            create_tables=config.environment == "dev",
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            pool_pre_ping=db.pool_pre_ping,
            echo=db.echo,
        )
    if file_store is None:
        file_store = LocalFileStore(
            config.files.upload_dir,
            max_upload_size_mb=config.files.max_upload_size_mb,
            allowed_mime_types=config.files.allowed_mime_types,
        )
    sink = notification_sink or build_notification_sink(config.notifications)
    common = dict(
        session_factory=session_factory,
        file_store=file_store,
        notification_sink=sink,
        config=config,
        today_provider=today_provider,
    )
    return ServiceContainer(
        config=config,
        session_factory=session_factory,
        file_store=file_store,
        documents=DocumentService(**common),
        bulk=BulkDocumentService(**common),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_actor(
    request: Request,
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
) -> ActorContext:
    """Resolve the caller from gateway headers. 401 when they are absent or malformed."""
    if x_user_id is None:
        raise ClubDocsAuthenticationError("X-User-Id header is required")
    role = (x_user_role or "member").lower()
    if role not in VALID_GLOBAL_ROLES:
        raise ClubDocsAuthenticationError(f"Unknown role '{x_user_role}'", role=x_user_role)
    with session_scope(container.session_factory) as session:
        actor = load_actor(
            session,
            x_user_id,
            role=role,
            request_id=getattr(request.state, "request_id", None),
        )
    return actor
