"""
Effective Role — one lookup that every guard decision is made from.

Resolution order (first match wins):
    1. global admin                                  → ADMIN
    2. club president, or approved "leader" membership → LEADER
    3. any other approved membership                 → MEMBER
    4. anything else (pending, rejected, none)       → NONE
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from clubdocs.db.models import Club, ClubMembership, User
from clubdocs.documents.models import EffectiveRole
from clubdocs.engine.context import ActorContext, MembershipInfo

logger = logging.getLogger("clubdocs.documents.roles")


def resolve_effective_role(
    actor: ActorContext,
    club_id: int,
    president_id: Optional[int] = None,
) -> EffectiveRole:
    """Pure resolution from the actor's memberships and the club's president."""
    if actor.is_admin:
        return EffectiveRole.ADMIN

    membership = actor.membership_for(club_id)
    if president_id is not None and president_id == actor.user_id:
        return EffectiveRole.LEADER
    if membership is None or not membership.is_approved:
        return EffectiveRole.NONE
    if membership.role == "leader":
        return EffectiveRole.LEADER
    return EffectiveRole.MEMBER


def load_effective_role(session: Session, actor: ActorContext, club_id: int) -> EffectiveRole:
    """Resolve against the stored club row (president_id)."""
    president_id = session.execute(
        select(Club.president_id).where(Club.id == club_id)
    ).scalar_one_or_none()
    return resolve_effective_role(actor, club_id, president_id)


def load_memberships(session: Session, user_id: int) -> List[MembershipInfo]:
    rows = session.execute(
        select(ClubMembership.club_id, ClubMembership.role, ClubMembership.status)
        .where(ClubMembership.user_id == user_id)
    ).all()
    return [MembershipInfo(club_id=c, role=r, status=s) for c, r, s in rows]


def load_actor(
    session: Session,
    user_id: int,
    role: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ActorContext:
    """
    Build an ActorContext for a user id.

    Args:
        role: Global role asserted by the gateway. When None the stored
              users.role is used (CLI and tests).
    """
    if role is None:
        role = session.execute(
            select(User.role).where(User.id == user_id)
        ).scalar_one_or_none() or "member"
    actor = ActorContext(user_id=user_id, role=role, memberships=load_memberships(session, user_id))
    if request_id:
        actor.request_id = request_id
    return actor


def approved_member_ids(session: Session, club_id: int, user_ids: List[int]) -> List[int]:
    """Subset of user_ids that hold an approved membership in the club."""
    if not user_ids:
        return []
    rows = session.execute(
        select(ClubMembership.user_id).where(
            ClubMembership.club_id == club_id,
            ClubMembership.status == "approved",
            ClubMembership.user_id.in_(user_ids),
        )
    ).scalars().all()
    return list(rows)
