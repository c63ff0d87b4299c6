"""
Document & Assignment Store — club-scoped persistence for the workflow.

Every read and write takes the club id; a document id that belongs to
another club is indistinguishable from one that does not exist. The store
never commits: it works inside the caller's session_scope().
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clubdocs.db.base import utcnow
from clubdocs.db.models import ClubMembership, DocumentAssignment, SmartDocument
from clubdocs.documents.models import (
    DocumentMeta,
    DocumentStatus,
    StatusSource,
    SubmissionStatus,
)
from clubdocs.documents.roles import approved_member_ids
from clubdocs.engine.errors import ClubDocsNotFoundError, ClubDocsValidationError

logger = logging.getLogger("clubdocs.documents.store")


def dedupe_ids(ids: Iterable[int]) -> List[int]:
    """Drop repeated ids, keeping first-seen order."""
    return list(dict.fromkeys(ids))


class DocumentStore:
    """Reads and writes smart_documents and document_assignments for one session."""

    def __init__(self, session: Session):
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def find_document(self, club_id: int, document_id: int) -> Optional[SmartDocument]:
        return self._session.execute(
            select(SmartDocument)
            .where(SmartDocument.id == document_id, SmartDocument.club_id == club_id)
            .execution_options(populate_existing=True)
        ).unique().scalar_one_or_none()

    def get_document(self, club_id: int, document_id: int) -> SmartDocument:
        document = self.find_document(club_id, document_id)
        if document is None:
            raise ClubDocsNotFoundError(
                "Document not found", club_id=club_id, document_id=document_id
            )
        return document

    def list_club_documents(self, club_id: int) -> List[SmartDocument]:
        """Newest due date first, then newest created."""
        return list(self._session.execute(
            select(SmartDocument)
            .where(SmartDocument.club_id == club_id)
            .order_by(
                SmartDocument.due_date.desc(),
                SmartDocument.created_at.desc(),
                SmartDocument.id.desc(),
            )
        ).unique().scalars())

    def list_assigned(self, club_id: int, user_id: int) -> List[SmartDocument]:
        """Documents assigned to user_id, soonest due first."""
        return list(self._session.execute(
            select(SmartDocument)
            .join(DocumentAssignment, DocumentAssignment.document_id == SmartDocument.id)
            .where(SmartDocument.club_id == club_id, DocumentAssignment.user_id == user_id)
            .order_by(SmartDocument.due_date.asc(), SmartDocument.id.asc())
        ).unique().scalars())

    def get_assignment(self, document_id: int, user_id: int) -> Optional[DocumentAssignment]:
        return self._session.execute(
            select(DocumentAssignment).where(
                DocumentAssignment.document_id == document_id,
                DocumentAssignment.user_id == user_id,
            )
        ).unique().scalar_one_or_none()

    def require_assignment(self, document: SmartDocument, user_id: int) -> DocumentAssignment:
        assignment = self.get_assignment(document.id, user_id)
        if assignment is None:
            raise ClubDocsNotFoundError(
                "Member assignment not found",
                club_id=document.club_id,
                document_id=document.id,
                user_id=user_id,
            )
        return assignment

    def membership_roles(self, club_id: int, user_ids: Sequence[int]) -> Dict[int, str]:
        """Club membership role per user, for member display."""
        if not user_ids:
            return {}
        rows = self._session.execute(
            select(ClubMembership.user_id, ClubMembership.role).where(
                ClubMembership.club_id == club_id,
                ClubMembership.user_id.in_(list(user_ids)),
            )
        ).all()
        return {user_id: role for user_id, role in rows}

    def load_for_update(
        self,
        club_id: int,
        document_ids: Sequence[int],
        lock: bool = True,
    ) -> List[SmartDocument]:
        """
        Load every requested document of the club, or none.

        Raises:
            ClubDocsValidationError: empty id list.
            ClubDocsNotFoundError: some ids are missing or foreign; nothing loaded.
        """
        ids = dedupe_ids(document_ids)
        if not ids:
            raise ClubDocsValidationError("Document IDs array is required", field="document_ids")
        stmt = (
            select(SmartDocument)
            .where(SmartDocument.club_id == club_id, SmartDocument.id.in_(ids))
            .order_by(SmartDocument.id)
        )
        if lock:
            stmt = stmt.with_for_update(of=SmartDocument)
        documents = list(self._session.execute(stmt).unique().scalars())
        mismatch = len(ids) - len(documents)
        if mismatch:
            raise ClubDocsNotFoundError(
                f"{mismatch} of {len(ids)} documents not found or do not belong to this club",
                club_id=club_id,
                mismatch_count=mismatch,
            )
        return documents

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def require_approved_members(self, club_id: int, member_ids: Sequence[int]) -> List[int]:
        """
        Raises:
            ClubDocsNotFoundError: some ids are not approved members of the club.
        """
        ids = dedupe_ids(member_ids)
        approved = set(approved_member_ids(self._session, club_id, ids))
        mismatch = len(ids) - len(approved)
        if mismatch:
            raise ClubDocsNotFoundError(
                f"{mismatch} of {len(ids)} members not found or are not approved members of this club",
                club_id=club_id,
                mismatch_count=mismatch,
            )
        return ids

    def create_document(
        self,
        club_id: int,
        meta: DocumentMeta,
        assignee_ids: Sequence[int],
        created_by: int,
        today: date,
    ) -> SmartDocument:
        """
        Insert a document in status Open with one Not Submitted assignment per assignee.

        Raises:
            ClubDocsValidationError: blank title, no assignees, due date before today.
            ClubDocsNotFoundError: an assignee is not an approved club member.
        """
        title = (meta.title or "").strip()
        if not title:
            raise ClubDocsValidationError("Title is required", field="title")
        ids = dedupe_ids(assignee_ids)
        if not ids:
            raise ClubDocsValidationError(
                "At least one member must be assigned", field="assigned_member_ids"
            )
        if meta.due_date < today:
            raise ClubDocsValidationError(
                "Due date cannot be in the past",
                field="due_date",
                due_date=meta.due_date.isoformat(),
                today=today.isoformat(),
            )
        self.require_approved_members(club_id, ids)

        document = SmartDocument(
            club_id=club_id,
            title=title,
            description=meta.description or "",
            priority=meta.priority.value,
            type=meta.type.value,
            due_date=meta.due_date,
            template_path=meta.template_path,
            status=DocumentStatus.OPEN.value,
            status_source=StatusSource.DERIVED.value,
            version=1,
            created_by=created_by,
        )
        document.assignments = [
            DocumentAssignment(user_id=user_id, submission_status=SubmissionStatus.NOT_SUBMITTED.value)
            for user_id in ids
        ]
        self._session.add(document)
        self._session.flush()
        logger.info(f"Created document {document.id} in club {club_id} with {len(ids)} assignees")
        return document

    def apply_metadata(self, document: SmartDocument, changes: Dict[str, object]) -> List[str]:
        """Set metadata columns. Returns the names of fields that changed."""
        changed = []
        for field_name, value in changes.items():
            if hasattr(value, "value"):
                value = value.value
            if field_name == "title":
                value = (value or "").strip()
                if not value:
                    raise ClubDocsValidationError("Title cannot be empty", field="title")
            if getattr(document, field_name) != value:
                setattr(document, field_name, value)
                changed.append(field_name)
        if changed:
            document.updated_at = utcnow()
        return changed

    def replace_assignees(self, document: SmartDocument, new_ids: Sequence[int]) -> List[str]:
        """
        Make the assignee set equal new_ids.

        Existing assignments for kept members are untouched; dropped members'
        assignments are deleted and their stored file paths returned so the
        caller can remove the files after commit.
        """
        ids = dedupe_ids(new_ids)
        if not ids:
            raise ClubDocsValidationError(
                "At least one member must be assigned", field="assigned_member_ids"
            )
        self.require_approved_members(document.club_id, ids)

        wanted = set(ids)
        current = {a.user_id: a for a in document.assignments}
        removed_paths: List[str] = []
        for user_id, assignment in current.items():
            if user_id not in wanted:
                if assignment.file_path:
                    removed_paths.append(assignment.file_path)
                document.assignments.remove(assignment)
        for user_id in ids:
            if user_id not in current:
                document.assignments.append(DocumentAssignment(
                    user_id=user_id,
                    submission_status=SubmissionStatus.NOT_SUBMITTED.value,
                ))
        self._session.flush()
        return removed_paths

    def upsert_assignment(self, document_id: int, user_id: int) -> bool:
        """
        Ensure an assignment exists. True if inserted, False if it was already
        there (only updated_at is touched).

        A concurrent insert of the same pair is absorbed by the savepoint and
        treated as already present.
        """
        existing = self.get_assignment(document_id, user_id)
        if existing is not None:
            existing.updated_at = utcnow()
            return False
        try:
            with self._session.begin_nested():
                self._session.add(DocumentAssignment(
                    document_id=document_id,
                    user_id=user_id,
                    submission_status=SubmissionStatus.NOT_SUBMITTED.value,
                ))
        except IntegrityError:
            logger.info(f"Assignment ({document_id}, {user_id}) inserted concurrently, kept existing")
            return False
        return True

    def delete_documents(self, documents: Iterable[SmartDocument]) -> List[str]:
        """Delete documents (assignments cascade). Returns submission file paths."""
        paths: List[str] = []
        for document in documents:
            paths.extend(a.file_path for a in document.assignments if a.file_path)
            self._session.delete(document)
        self._session.flush()
        return paths
