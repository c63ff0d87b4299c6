"""
Bulk Operations — status override, assign, delete and export over many documents.

All four require leader or admin, drop repeated ids, refuse an empty id list,
and resolve the whole id set against the caller's club before touching
anything: one foreign or missing id fails the request with a single
not-found error naming how many ids did not match, and nothing changes.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, List, Sequence

from sqlalchemy.orm import Session

from clubdocs.db.session import session_scope
from clubdocs.documents.export import build_export
from clubdocs.documents.models import (
    BulkAssignRequest,
    BulkDeleteRequest,
    BulkExportRequest,
    BulkResult,
    BulkUpdateStatusRequest,
    EffectiveRole,
    ExportResult,
)
from clubdocs.documents.service import WorkflowServiceBase
from clubdocs.documents.status import override_document_status
from clubdocs.documents.store import DocumentStore, dedupe_ids
from clubdocs.engine.context import ActorContext
from clubdocs.engine.errors import ClubDocsError, ClubDocsValidationError
from clubdocs.engine.logging import log, log_bulk_operation
from clubdocs.integrations.notifications import (
    DOCUMENT_DELETED,
    DOCUMENT_STATUS_CHANGED,
    NotificationEvent,
)

logger = logging.getLogger("clubdocs.documents.bulk")


class BulkDocumentService(WorkflowServiceBase):
    """Bulk mutations sharing the single-item guard, store and recompute."""

    def bulk_update_status(
        self,
        actor: ActorContext,
        club_id: int,
        request: BulkUpdateStatusRequest,
    ) -> BulkResult:
        """Manual override on every document in one UPDATE. No re-derivation."""
        ids = dedupe_ids(request.document_ids)
        with self._audited("update_status", actor, club_id, ids):
            with self._unit_of_work() as (session, effects):
                role = self._guard.require(session, actor, club_id, "bulk_update_status")
                store = DocumentStore(session)
                documents = store.load_for_update(club_id, ids)
                changed = override_document_status(
                    session, documents, request.status, request_id=actor.request_id
                )
                for document_id, old_status in changed:
                    effects.events.append(NotificationEvent(
                        DOCUMENT_STATUS_CHANGED,
                        document_id=document_id,
                        club_id=club_id,
                        actor_id=actor.user_id,
                        details={
                            "old_status": old_status,
                            "new_status": request.status.value,
                            "manual": True,
                            "bulk": True,
                        },
                    ))
                return self._result(session, "update_status", actor, role, club_id, ids, len(documents))

    def bulk_assign(
        self,
        actor: ActorContext,
        club_id: int,
        request: BulkAssignRequest,
    ) -> BulkResult:
        """
        Ensure every (document, member) pair has an assignment, then recompute
        each document. Existing assignments keep their submission progress.
        """
        ids = dedupe_ids(request.document_ids)
        with self._audited("assign", actor, club_id, ids):
            with self._unit_of_work() as (session, effects):
                role = self._guard.require(session, actor, club_id, "bulk_assign")
                store = DocumentStore(session)
                documents = store.load_for_update(club_id, ids)
                member_ids = dedupe_ids(request.member_ids)
                if not member_ids:
                    raise ClubDocsValidationError("Member IDs array is required", field="member_ids")
                store.require_approved_members(club_id, member_ids)

                inserted = 0
                for document in documents:
                    for member_id in member_ids:
                        inserted += int(store.upsert_assignment(document.id, member_id))
                session.flush()
                for document in documents:
                    self._recompute(session, document.id, actor, effects)
                logger.info(
                    f"Bulk assign in club {club_id}: {len(documents)} documents × "
                    f"{len(member_ids)} members, {inserted} new assignments"
                )
                return self._result(session, "assign", actor, role, club_id, ids, inserted)

    def bulk_delete(
        self,
        actor: ActorContext,
        club_id: int,
        request: BulkDeleteRequest,
    ) -> BulkResult:
        """Delete documents and their assignments; stored files go after commit."""
        ids = dedupe_ids(request.document_ids)
        with self._audited("delete", actor, club_id, ids):
            with self._unit_of_work() as (session, effects):
                self._guard.require(session, actor, club_id, "bulk_delete")
                store = DocumentStore(session)
                documents = store.load_for_update(club_id, ids)
                effects.delete_after_commit.extend(store.delete_documents(documents))
                for document_id in ids:
                    effects.events.append(NotificationEvent(
                        DOCUMENT_DELETED,
                        document_id=document_id,
                        club_id=club_id,
                        actor_id=actor.user_id,
                        details={"bulk": True},
                    ))
                self._log_bulk("delete", actor, club_id, ids, len(documents))
                return BulkResult(
                    operation="delete",
                    requested=len(ids),
                    affected=len(documents),
                    document_ids=ids,
                )

    def bulk_export(
        self,
        actor: ActorContext,
        club_id: int,
        request: BulkExportRequest,
    ) -> ExportResult:
        ids = dedupe_ids(request.document_ids)
        with self._audited("export", actor, club_id, ids):
            with session_scope(self._session_factory) as session:
                self._guard.require(session, actor, club_id, "bulk_export")
                documents = DocumentStore(session).load_for_update(club_id, ids, lock=False)
                result = build_export(documents, request.format)
                self._log_bulk("export", actor, club_id, ids, result.count)
                return result

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _result(
        self,
        session: Session,
        operation: str,
        actor: ActorContext,
        role: EffectiveRole,
        club_id: int,
        ids: List[int],
        affected: int,
    ) -> BulkResult:
        views = [self._fresh_view(session, club_id, document_id, actor, role) for document_id in ids]
        self._log_bulk(operation, actor, club_id, ids, affected)
        return BulkResult(
            operation=operation,
            requested=len(ids),
            affected=affected,
            document_ids=ids,
            documents=views,
        )

    def _log_bulk(
        self, operation: str, actor: ActorContext, club_id: int, ids: Sequence[int], affected: int
    ) -> None:
        log(log_bulk_operation(
            operation=operation,
            club_id=club_id,
            user_id=actor.user_id,
            requested_ids=list(ids),
            success=True,
            affected=affected,
            request_id=actor.request_id,
        ))

    @contextmanager
    def _audited(
        self, operation: str, actor: ActorContext, club_id: int, ids: Sequence[int]
    ) -> Generator[None, None, None]:
        """Write a failed-bulk entry for any workflow error, then re-raise it."""
        try:
            yield
        except ClubDocsError as e:
            log(log_bulk_operation(
                operation=operation,
                club_id=club_id,
                user_id=actor.user_id,
                requested_ids=list(ids),
                success=False,
                mismatch_count=getattr(e, "mismatch_count", None),
                request_id=actor.request_id,
            ))
            logger.warning(f"Bulk {operation} in club {club_id} failed: {e.message}")
            raise

