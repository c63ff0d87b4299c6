"""
Status Derivation — aggregate document status from its assignment set.

derive_document_status() is pure: it sees only (submission_status, has_file)
pairs, so the result does not depend on assignment order. First rule wins:

    1. any Needs Revision                          → Open
    2. every assignment Approved (and at least 1)  → Completed
    3. any file, Submitted or Approved             → In Progress
    4. otherwise (including no assignments)        → Open

recompute_document_status() locks the document row (SELECT ... FOR UPDATE, a
no-op on SQLite), re-reads the siblings inside the caller's unit of work and
writes with an UPDATE guarded by the document's version column. Concurrent
recomputes of one document therefore run one after the other, and a writer
that slips past the lock makes the guard miss so the loop re-reads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from clubdocs.db.base import utcnow
from clubdocs.db.models import DocumentAssignment, SmartDocument
from clubdocs.documents.models import DocumentStatus, StatusSource, SubmissionStatus
from clubdocs.engine.errors import ClubDocsConflictError, ClubDocsNotFoundError
from clubdocs.engine.logging import log, log_status_change

logger = logging.getLogger("clubdocs.documents.status")

DEFAULT_MAX_ATTEMPTS = 3

AssignmentState = Tuple[str, bool]


def derive_document_status(states: Iterable[AssignmentState]) -> DocumentStatus:
    """
    Aggregate status for one document.

    Args:
        states: (submission_status, has_file) for every assignment.
    """
    states = list(states)
    statuses = [SubmissionStatus(s) for s, _ in states]

    if SubmissionStatus.NEEDS_REVISION in statuses:
        return DocumentStatus.OPEN
    if statuses and all(s == SubmissionStatus.APPROVED for s in statuses):
        return DocumentStatus.COMPLETED
    for status, (_, has_file) in zip(statuses, states):
        if has_file or status in (SubmissionStatus.SUBMITTED, SubmissionStatus.APPROVED):
            return DocumentStatus.IN_PROGRESS
    return DocumentStatus.OPEN


def is_overdue(due_date: date, status: str, today: date) -> bool:
    """Calendar-day comparison: a document due today is not overdue."""
    return due_date < today and status != DocumentStatus.COMPLETED.value


def today_in(timezone_name: str = "UTC") -> date:
    return datetime.now(ZoneInfo(timezone_name)).date()


# ---------------------------------------------------------------------------
# Recompute
# ---------------------------------------------------------------------------

@dataclass
class RecomputeResult:
    document_id: int
    club_id: int
    old_status: str
    new_status: str
    written: bool
    version: int
    attempts: int = 1

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status


def _document_state_query(document_id: int):
    """Locks the document row so sibling reads start after any earlier writer commits."""
    return (
        select(
            SmartDocument.club_id,
            SmartDocument.status,
            SmartDocument.status_source,
            SmartDocument.version,
        )
        .where(SmartDocument.id == document_id)
        .with_for_update()
    )


def _read_document_state(session: Session, document_id: int) -> Optional[Tuple[int, str, str, int]]:
    """(club_id, status, status_source, version) straight from the row."""
    row = session.execute(_document_state_query(document_id)).first()
    return tuple(row) if row else None


def _read_sibling_states(session: Session, document_id: int) -> List[AssignmentState]:
    rows = session.execute(
        select(DocumentAssignment.submission_status, DocumentAssignment.file_path)
        .where(DocumentAssignment.document_id == document_id)
    ).all()
    return [(status, bool(path)) for status, path in rows]


def recompute_document_status(
    session: Session,
    document_id: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    request_id: Optional[str] = None,
) -> RecomputeResult:
    """
    Re-derive and persist the status of one document.

    Writes only when the derived status differs from the stored one or the
    stored one is a manual override. Re-running on unchanged input performs
    no write.

    Raises:
        ClubDocsNotFoundError: document vanished.
        ClubDocsConflictError: version guard missed max_attempts times.
    """
    for attempt in range(1, max_attempts + 1):
        state = _read_document_state(session, document_id)
        if state is None:
            raise ClubDocsNotFoundError(
                f"Document {document_id} not found", document_id=document_id
            )
        club_id, stored_status, stored_source, seen_version = state
        derived = derive_document_status(_read_sibling_states(session, document_id)).value

        if derived == stored_status and stored_source == StatusSource.DERIVED.value:
            return RecomputeResult(
                document_id, club_id, stored_status, derived,
                written=False, version=seen_version, attempts=attempt,
            )

        result = session.execute(
            update(SmartDocument)
            .where(SmartDocument.id == document_id, SmartDocument.version == seen_version)
            .values(
                status=derived,
                status_source=StatusSource.DERIVED.value,
                version=seen_version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            _expire_cached(session, document_id)
            if derived != stored_status:
                logger.info(
                    f"Document {document_id} status {stored_status} → {derived} "
                    f"(v{seen_version + 1})"
                )
            log(log_status_change(
                document_id=document_id,
                club_id=club_id,
                old_status=stored_status,
                new_status=derived,
                source=StatusSource.DERIVED.value,
                version=seen_version + 1,
                request_id=request_id,
            ))
            return RecomputeResult(
                document_id, club_id, stored_status, derived,
                written=True, version=seen_version + 1, attempts=attempt,
            )

        logger.warning(
            f"Recompute of document {document_id} lost version race at v{seen_version} "
            f"(attempt {attempt}/{max_attempts})"
        )

    raise ClubDocsConflictError(
        f"Document {document_id} changed concurrently; status recompute gave up "
        f"after {max_attempts} attempts",
        document_id=document_id,
        attempts=max_attempts,
    )


def _expire_cached(session: Session, document_id: int) -> None:
    """Drop the stale in-session copy so the next read sees the new row."""
    cached = session.identity_map.get(Session.identity_key(SmartDocument, document_id))
    if cached is not None:
        session.expire(cached)


# ---------------------------------------------------------------------------
# Manual override
# ---------------------------------------------------------------------------

def override_document_status(
    session: Session,
    documents: List[SmartDocument],
    status: DocumentStatus,
    request_id: Optional[str] = None,
) -> List[Tuple[int, str]]:
    """
    Set status on every document in one UPDATE, marking it manual and bumping
    the version. No re-derivation.

    Returns:
        (document_id, old_status) for each document whose status actually changed.
    """
    if not documents:
        return []
    previous = [(d.id, d.club_id, d.status, d.version) for d in documents]
    session.execute(
        update(SmartDocument)
        .where(SmartDocument.id.in_([d.id for d in documents]))
        .values(
            status=status.value,
            status_source=StatusSource.MANUAL.value,
            version=SmartDocument.version + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    changed: List[Tuple[int, str]] = []
    for document_id, club_id, old_status, version in previous:
        _expire_cached(session, document_id)
        log(log_status_change(
            document_id=document_id,
            club_id=club_id,
            old_status=old_status,
            new_status=status.value,
            source=StatusSource.MANUAL.value,
            version=version + 1,
            request_id=request_id,
        ))
        if old_status != status.value:
            changed.append((document_id, old_status))
    return changed
