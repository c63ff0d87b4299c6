"""
Transition Guard — role checks shared by the single-item and bulk paths.

OPERATION_ROLES lists which effective roles may run each operation. A caller
whose role in the club is NONE is refused before any document is looked up;
a member asking about a document they are not assigned to is told it does
not exist. Every refusal goes to the security log.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional

from sqlalchemy.orm import Session

from clubdocs.documents.models import EffectiveRole
from clubdocs.documents.roles import load_effective_role
from clubdocs.engine.context import ActorContext
from clubdocs.engine.errors import ClubDocsForbiddenError, ClubDocsNotFoundError
from clubdocs.engine.logging import log, log_security_event

logger = logging.getLogger("clubdocs.documents.guard")

ADMIN_ONLY = frozenset({EffectiveRole.ADMIN})
LEADER_OR_ADMIN = frozenset({EffectiveRole.ADMIN, EffectiveRole.LEADER})
ANY_MEMBER = frozenset({EffectiveRole.ADMIN, EffectiveRole.LEADER, EffectiveRole.MEMBER})

OPERATION_ROLES: Dict[str, FrozenSet[EffectiveRole]] = {
    "create_document": ADMIN_ONLY,
    "review_submission": ADMIN_ONLY,
    "update_document": LEADER_OR_ADMIN,
    "update_document_status": LEADER_OR_ADMIN,
    "delete_document": LEADER_OR_ADMIN,
    "set_submission_status": LEADER_OR_ADMIN,
    "list_club_documents": LEADER_OR_ADMIN,
    "bulk_update_status": LEADER_OR_ADMIN,
    "bulk_assign": LEADER_OR_ADMIN,
    "bulk_delete": LEADER_OR_ADMIN,
    "bulk_export": LEADER_OR_ADMIN,
    "get_document": ANY_MEMBER,
    "list_assigned_documents": ANY_MEMBER,
    "submit_assignment": ANY_MEMBER,
}

_REQUIRED_LABEL = {
    ADMIN_ONLY: "admin",
    LEADER_OR_ADMIN: "leader",
    ANY_MEMBER: "member",
}


def can_view_all_assignments(role: EffectiveRole) -> bool:
    return role in LEADER_OR_ADMIN


class TransitionGuard:
    """Checks an actor's effective role in a club against an operation."""

    def __init__(self, object_type: str = "documents"):
        self._object_type = object_type

    def require(
        self,
        session: Session,
        actor: ActorContext,
        club_id: int,
        operation: str,
    ) -> EffectiveRole:
        """
        Resolve the actor's role and check it against the operation.

        Returns:
            The effective role, for callers that filter views by it.

        Raises:
            ClubDocsForbiddenError: role not permitted (including NONE).
        """
        allowed = OPERATION_ROLES[operation]
        role = load_effective_role(session, actor, club_id)
        if role not in allowed:
            required = _REQUIRED_LABEL[allowed]
            self._record_denial("access_denied", actor, club_id, operation, role, required)
            raise ClubDocsForbiddenError(
                self._denial_message(operation, role, required),
                user_id=actor.user_id,
                club_id=club_id,
                effective_role=role.value,
                required_role=required,
                operation=operation,
            )
        return role

    def hide_document(
        self,
        actor: ActorContext,
        club_id: int,
        document_id: int,
        operation: str,
        role: EffectiveRole,
    ) -> ClubDocsNotFoundError:
        """Log and build the NotFound a member gets for a document not assigned to them."""
        self._record_denial(
            "document_hidden", actor, club_id, operation, role, "assignee", document_id
        )
        return ClubDocsNotFoundError(
            f"Document {document_id} not found",
            club_id=club_id,
            document_id=document_id,
        )

    def _record_denial(
        self,
        event: str,
        actor: ActorContext,
        club_id: int,
        operation: str,
        role: EffectiveRole,
        required: str,
        document_id: Optional[int] = None,
    ) -> None:
        logger.warning(
            f"Denied {operation} for user {actor.user_id} in club {club_id} "
            f"(role={role.value}, required={required})"
        )
        log(log_security_event(
            event=event,
            object_type=self._object_type,
            operation=operation,
            user_id=actor.user_id,
            club_id=club_id,
            effective_role=role.value,
            required_role=required,
            document_id=document_id,
            request_id=actor.request_id,
        ))

    @staticmethod
    def _denial_message(operation: str, role: EffectiveRole, required: str) -> str:
        if role == EffectiveRole.NONE:
            return "You are not a member of this club"
        if required == "admin":
            return f"Only administrators can perform {operation}"
        return f"Only club leaders or administrators can perform {operation}"
