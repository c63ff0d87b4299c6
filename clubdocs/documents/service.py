"""
Document Service — single-item operations and the assignment state machine.

    Not Submitted  --member submits-->          Submitted
    Submitted      --admin approves-->          Approved
    Submitted      --admin requests revision--> Needs Revision
    Needs Revision --member resubmits-->        Submitted
    Approved       --admin reopens-->           Needs Revision

Each public method is one unit of work: guard, mutate, recompute the
aggregate status, commit. Stored-file cleanup and notifications run only
after the commit succeeds; a new upload is removed again if it fails.
Every mutating method returns the post-mutation DocumentView.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import BinaryIO, Callable, Dict, Generator, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from clubdocs.db.base import utcnow
from clubdocs.db.models import SmartDocument
from clubdocs.db.session import session_scope
from clubdocs.documents.guard import TransitionGuard, can_view_all_assignments
from clubdocs.documents.models import (
    AssignedMemberView,
    CreateDocumentRequest,
    DocumentStatus,
    DocumentView,
    EffectiveRole,
    ReviewSubmissionRequest,
    SetSubmissionStatusRequest,
    SubmissionStatus,
    UpdateDocumentRequest,
    UpdateDocumentStatusRequest,
)
from clubdocs.documents.status import (
    RecomputeResult,
    is_overdue,
    override_document_status,
    recompute_document_status,
    today_in,
)
from clubdocs.documents.store import DocumentStore
from clubdocs.engine.config import ClubDocsConfig, get_config
from clubdocs.engine.context import ActorContext
from clubdocs.engine.errors import (
    ClubDocsConflictError,
    ClubDocsForbiddenError,
    ClubDocsNotFoundError,
    ClubDocsValidationError,
)
from clubdocs.engine.logging import log, log_workflow_event
from clubdocs.integrations.file_store import FileStore
from clubdocs.integrations.notifications import (
    ASSIGNMENT_REVIEWED,
    ASSIGNMENT_SUBMITTED,
    DOCUMENT_CREATED,
    DOCUMENT_DELETED,
    DOCUMENT_STATUS_CHANGED,
    LoggingNotificationSink,
    NotificationDispatcher,
    NotificationEvent,
    NotificationSink,
)

logger = logging.getLogger("clubdocs.documents.service")

REVIEW_TRANSITIONS: Dict[SubmissionStatus, Tuple[SubmissionStatus, ...]] = {
    SubmissionStatus.SUBMITTED: (SubmissionStatus.APPROVED, SubmissionStatus.NEEDS_REVISION),
    SubmissionStatus.APPROVED: (SubmissionStatus.NEEDS_REVISION,),
}

SUBMITTABLE_FROM = (
    SubmissionStatus.NOT_SUBMITTED,
    SubmissionStatus.SUBMITTED,
    SubmissionStatus.NEEDS_REVISION,
)


@dataclass
class PendingEffects:
    """Side effects collected during a unit of work."""
    events: List[NotificationEvent] = field(default_factory=list)
    delete_after_commit: List[str] = field(default_factory=list)
    discard_on_failure: List[str] = field(default_factory=list)


class WorkflowServiceBase:
    """Shared wiring for the single-item and bulk services."""

    def __init__(
        self,
        session_factory: sessionmaker,
        file_store: FileStore,
        notification_sink: Optional[NotificationSink] = None,
        config: Optional[ClubDocsConfig] = None,
        today_provider: Optional[Callable[[], date]] = None,
        guard: Optional[TransitionGuard] = None,
    ):
        self._session_factory = session_factory
        self._file_store = file_store
        self._config = config or get_config()
        self._dispatcher = NotificationDispatcher(notification_sink or LoggingNotificationSink())
        self._today = today_provider or (lambda: today_in(self._config.workflow.timezone))
        self._guard = guard or TransitionGuard()

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    def today(self) -> date:
        return self._today()

    @contextmanager
    def _unit_of_work(self) -> Generator[Tuple[Session, PendingEffects], None, None]:
        effects = PendingEffects()
        try:
            with session_scope(self._session_factory) as session:
                yield session, effects
        except Exception:
            for path in effects.discard_on_failure:
                self._file_store.delete(path)
            raise
        for path in effects.delete_after_commit:
            self._file_store.delete(path)
        self._dispatcher.dispatch(effects.events)

    def _recompute(
        self,
        session: Session,
        document_id: int,
        actor: ActorContext,
        effects: PendingEffects,
    ) -> RecomputeResult:
        result = recompute_document_status(
            session,
            document_id,
            max_attempts=self._config.workflow.max_recompute_attempts,
            request_id=actor.request_id,
        )
        if result.changed:
            effects.events.append(NotificationEvent(
                DOCUMENT_STATUS_CHANGED,
                document_id=document_id,
                club_id=result.club_id,
                actor_id=actor.user_id,
                details={"old_status": result.old_status, "new_status": result.new_status},
            ))
        return result

    def _build_view(
        self,
        store: DocumentStore,
        document: SmartDocument,
        actor: ActorContext,
        role: EffectiveRole,
    ) -> DocumentView:
        """Serialize a document, showing non-leaders only their own assignment."""
        assignments = list(document.assignments)
        if not can_view_all_assignments(role):
            assignments = [a for a in assignments if a.user_id == actor.user_id]
        roles = store.membership_roles(document.club_id, [a.user_id for a in assignments])
        members = [
            AssignedMemberView(
                user_id=a.user_id,
                first_name=a.user.first_name if a.user else None,
                last_name=a.user.last_name if a.user else None,
                avatar=a.user.avatar if a.user else None,
                role=roles.get(a.user_id),
                submission_status=a.submission_status,
                file_path=a.file_path,
                file_name=a.file_name,
                file_size=a.file_size,
                file_mime_type=a.file_mime_type,
                submitted_at=a.submitted_at,
                admin_comment=a.admin_comment,
            )
            for a in assignments
        ]
        return DocumentView(
            id=document.id,
            club_id=document.club_id,
            club_name=document.club.name if document.club else None,
            title=document.title,
            description=document.description or "",
            priority=document.priority,
            type=document.type,
            template_path=document.template_path,
            due_date=document.due_date,
            status=document.status,
            status_source=document.status_source,
            version=document.version,
            created_by=document.created_by,
            creator_first_name=document.creator.first_name if document.creator else None,
            creator_last_name=document.creator.last_name if document.creator else None,
            created_at=document.created_at,
            updated_at=document.updated_at,
            assigned_member_ids=[m.user_id for m in members],
            assigned_members=members,
            is_overdue=is_overdue(document.due_date, document.status, self.today()),
        )

    def _fresh_view(
        self,
        session: Session,
        club_id: int,
        document_id: int,
        actor: ActorContext,
        role: EffectiveRole,
    ) -> DocumentView:
        session.flush()
        session.expire_all()
        store = DocumentStore(session)
        return self._build_view(store, store.get_document(club_id, document_id), actor, role)

    def _log_event(
        self,
        event: str,
        actor: ActorContext,
        club_id: int,
        document_id: int,
        member_id: Optional[int] = None,
        **details,
    ) -> None:
        log(log_workflow_event(
            event=event,
            club_id=club_id,
            user_id=actor.user_id,
            document_id=document_id,
            member_id=member_id,
            request_id=actor.request_id,
            details=details or None,
        ))


class DocumentService(WorkflowServiceBase):
    """Per-document reads, edits, submissions and reviews."""

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def get_document(self, actor: ActorContext, club_id: int, document_id: int) -> DocumentView:
        with session_scope(self._session_factory) as session:
            role = self._guard.require(session, actor, club_id, "get_document")
            store = DocumentStore(session)
            document = store.find_document(club_id, document_id)
            if not can_view_all_assignments(role):
                if document is None or store.get_assignment(document_id, actor.user_id) is None:
                    raise self._guard.hide_document(actor, club_id, document_id, "get_document", role)
            elif document is None:
                raise ClubDocsNotFoundError(
                    "Document not found", club_id=club_id, document_id=document_id
                )
            return self._build_view(store, document, actor, role)

    def list_club_documents(self, actor: ActorContext, club_id: int) -> List[DocumentView]:
        with session_scope(self._session_factory) as session:
            role = self._guard.require(session, actor, club_id, "list_club_documents")
            store = DocumentStore(session)
            return [self._build_view(store, d, actor, role) for d in store.list_club_documents(club_id)]

    def list_assigned_documents(self, actor: ActorContext, club_id: int) -> List[DocumentView]:
        """Documents assigned to the caller. Only the caller's own assignment is shown."""
        with session_scope(self._session_factory) as session:
            self._guard.require(session, actor, club_id, "list_assigned_documents")
            store = DocumentStore(session)
            return [
                self._build_view(store, d, actor, EffectiveRole.MEMBER)
                for d in store.list_assigned(club_id, actor.user_id)
            ]

    # -------------------------------------------------------------------
    # Document lifecycle
    # -------------------------------------------------------------------

    def create_document(
        self,
        actor: ActorContext,
        club_id: int,
        request: CreateDocumentRequest,
    ) -> DocumentView:
        with self._unit_of_work() as (session, effects):
            role = self._guard.require(session, actor, club_id, "create_document")
            store = DocumentStore(session)
            document = store.create_document(
                club_id,
                request,
                request.assigned_member_ids,
                created_by=actor.user_id,
                today=self.today(),
            )
            member_ids = [a.user_id for a in document.assignments]
            effects.events.append(NotificationEvent(
                DOCUMENT_CREATED,
                document_id=document.id,
                club_id=club_id,
                actor_id=actor.user_id,
                details={"title": document.title, "assigned_member_ids": member_ids},
            ))
            self._log_event("document_created", actor, club_id, document.id, assignees=member_ids)
            return self._fresh_view(session, club_id, document.id, actor, role)

    def update_document(
        self,
        actor: ActorContext,
        club_id: int,
        document_id: int,
        request: UpdateDocumentRequest,
    ) -> DocumentView:
        """
        Apply, in order: metadata, assignee-set replacement (recomputes),
        then an explicit status, which wins as a manual override.
        """
        with self._unit_of_work() as (session, effects):
            role = self._guard.require(session, actor, club_id, "update_document")
            store = DocumentStore(session)
            document = store.get_document(club_id, document_id)

            changed = store.apply_metadata(document, request.metadata_changes())
            if request.assigned_member_ids is not None:
                removed = store.replace_assignees(document, request.assigned_member_ids)
                effects.delete_after_commit.extend(removed)
                changed.append("assigned_member_ids")
                self._recompute(session, document_id, actor, effects)
            if request.status is not None:
                self._override(session, store, actor, club_id, document_id, request.status, effects)
                changed.append("status")

            self._log_event("document_updated", actor, club_id, document_id, fields=changed)
            return self._fresh_view(session, club_id, document_id, actor, role)

    def update_document_status(
        self,
        actor: ActorContext,
        club_id: int,
        document_id: int,
        request: UpdateDocumentStatusRequest,
    ) -> DocumentView:
        """Manual override; stays until the next assignment change recomputes."""
        with self._unit_of_work() as (session, effects):
            role = self._guard.require(session, actor, club_id, "update_document_status")
            store = DocumentStore(session)
            store.get_document(club_id, document_id)
            self._override(session, store, actor, club_id, document_id, request.status, effects)
            return self._fresh_view(session, club_id, document_id, actor, role)

    def delete_document(self, actor: ActorContext, club_id: int, document_id: int) -> DocumentView:
        """Delete a document and its assignments. Returns the last view of it."""
        with self._unit_of_work() as (session, effects):
            role = self._guard.require(session, actor, club_id, "delete_document")
            store = DocumentStore(session)
            document = store.get_document(club_id, document_id)
            snapshot = self._build_view(store, document, actor, role)
            effects.delete_after_commit.extend(store.delete_documents([document]))
            effects.events.append(NotificationEvent(
                DOCUMENT_DELETED, document_id=document_id, club_id=club_id, actor_id=actor.user_id,
            ))
            self._log_event("document_deleted", actor, club_id, document_id)
            return snapshot

    # -------------------------------------------------------------------
    # Assignment transitions
    # -------------------------------------------------------------------

    def submit_assignment(
        self,
        actor: ActorContext,
        club_id: int,
        document_id: int,
        data: BinaryIO,
        filename: str,
        mime_type: Optional[str] = None,
    ) -> DocumentView:
        """
        Member uploads (or replaces) the file for their own assignment.

        Raises:
            ClubDocsConflictError: the assignment is already Approved.
        """
        with self._unit_of_work() as (session, effects):
            role = self._guard.require(session, actor, club_id, "submit_assignment")
            store = DocumentStore(session)
            document = store.find_document(club_id, document_id)
            assignment = store.get_assignment(document_id, actor.user_id) if document else None
            if assignment is None:
                if not can_view_all_assignments(role):
                    raise self._guard.hide_document(actor, club_id, document_id, "submit_assignment", role)
                if document is None:
                    raise ClubDocsNotFoundError(
                        "Document not found", club_id=club_id, document_id=document_id
                    )
                raise ClubDocsForbiddenError(
                    "You are not assigned to this document",
                    user_id=actor.user_id,
                    club_id=club_id,
                    document_id=document_id,
                    effective_role=role.value,
                    required_role="assignee",
                )

            current = SubmissionStatus(assignment.submission_status)
            if current not in SUBMITTABLE_FROM:
                raise ClubDocsConflictError(
                    "Submission already approved; ask an administrator to reopen it",
                    club_id=club_id,
                    document_id=document_id,
                    current_state=current.value,
                    requested_state=SubmissionStatus.SUBMITTED.value,
                )

            stored = self._file_store.save(data, filename, mime_type)
            effects.discard_on_failure.append(stored.path)
            if assignment.file_path:
                effects.delete_after_commit.append(assignment.file_path)

            assignment.file_path = stored.path
            assignment.file_name = stored.name
            assignment.file_size = stored.size
            assignment.file_mime_type = stored.mime_type
            assignment.submission_status = SubmissionStatus.SUBMITTED.value
            assignment.submitted_at = utcnow()
            session.flush()

            self._recompute(session, document_id, actor, effects)
            effects.events.append(NotificationEvent(
                ASSIGNMENT_SUBMITTED,
                document_id=document_id,
                club_id=club_id,
                member_id=actor.user_id,
                actor_id=actor.user_id,
                details={"file_name": stored.name, "previous_status": current.value},
            ))
            self._log_event(
                "assignment_submitted", actor, club_id, document_id,
                member_id=actor.user_id, file_size=stored.size,
            )
            return self._fresh_view(session, club_id, document_id, actor, role)

    def set_submission_status(
        self,
        actor: ActorContext,
        club_id: int,
        document_id: int,
        request: SetSubmissionStatusRequest,
    ) -> DocumentView:
        """Leader/admin override: any submission state, no comment."""
        with self._unit_of_work() as (session, effects):
            role = self._guard.require(session, actor, club_id, "set_submission_status")
            store = DocumentStore(session)
            document = store.get_document(club_id, document_id)
            assignment = store.require_assignment(document, request.user_id)

            previous = assignment.submission_status
            assignment.submission_status = request.submission_status.value
            session.flush()
            self._recompute(session, document_id, actor, effects)
            if previous != request.submission_status.value:
                effects.events.append(NotificationEvent(
                    ASSIGNMENT_REVIEWED,
                    document_id=document_id,
                    club_id=club_id,
                    member_id=request.user_id,
                    actor_id=actor.user_id,
                    details={
                        "previous_status": previous,
                        "submission_status": request.submission_status.value,
                        "override": True,
                    },
                ))
            self._log_event(
                "assignment_status_set", actor, club_id, document_id,
                member_id=request.user_id, previous=previous,
                submission_status=request.submission_status.value,
            )
            return self._fresh_view(session, club_id, document_id, actor, role)

    def review_submission(
        self,
        actor: ActorContext,
        club_id: int,
        document_id: int,
        request: ReviewSubmissionRequest,
    ) -> DocumentView:
        """
        Admin approves or requests revision, storing (or clearing) the comment.

        Raises:
            ClubDocsValidationError: target is not Approved / Needs Revision.
            ClubDocsConflictError: the current state has no such arrow.
        """
        target = request.submission_status
        with self._unit_of_work() as (session, effects):
            role = self._guard.require(session, actor, club_id, "review_submission")
            if target not in (SubmissionStatus.APPROVED, SubmissionStatus.NEEDS_REVISION):
                raise ClubDocsValidationError(
                    "Submission status must be 'Approved' or 'Needs Revision'",
                    field="submission_status",
                    club_id=club_id,
                    document_id=document_id,
                )
            store = DocumentStore(session)
            document = store.get_document(club_id, document_id)
            assignment = store.require_assignment(document, request.user_id)

            current = SubmissionStatus(assignment.submission_status)
            if target not in REVIEW_TRANSITIONS.get(current, ()):
                raise ClubDocsConflictError(
                    f"Cannot move a submission from '{current.value}' to '{target.value}'",
                    club_id=club_id,
                    document_id=document_id,
                    current_state=current.value,
                    requested_state=target.value,
                )

            assignment.submission_status = target.value
            assignment.admin_comment = request.comment or None
            session.flush()
            self._recompute(session, document_id, actor, effects)
            effects.events.append(NotificationEvent(
                ASSIGNMENT_REVIEWED,
                document_id=document_id,
                club_id=club_id,
                member_id=request.user_id,
                actor_id=actor.user_id,
                details={
                    "previous_status": current.value,
                    "submission_status": target.value,
                    "comment": assignment.admin_comment,
                },
            ))
            self._log_event(
                "assignment_reviewed", actor, club_id, document_id,
                member_id=request.user_id, previous=current.value, submission_status=target.value,
            )
            return self._fresh_view(session, club_id, document_id, actor, role)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _override(
        self,
        session: Session,
        store: DocumentStore,
        actor: ActorContext,
        club_id: int,
        document_id: int,
        status: DocumentStatus,
        effects: PendingEffects,
    ) -> None:
        session.flush()
        document = store.get_document(club_id, document_id)
        for changed_id, old_status in override_document_status(
            session, [document], status, request_id=actor.request_id
        ):
            effects.events.append(NotificationEvent(
                DOCUMENT_STATUS_CHANGED,
                document_id=changed_id,
                club_id=club_id,
                actor_id=actor.user_id,
                details={"old_status": old_status, "new_status": status.value, "manual": True},
            ))
