"""
clubdocs Actor Context — who is calling, as supplied by the identity provider.

The HTTP layer builds an ActorContext per request from gateway headers plus
the membership table; the CLI builds one for the --user-id it is given. The
services receive it as an explicit argument and treat it as ground truth.

Usage:
    from clubdocs.engine.context import ActorContext, MembershipInfo
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class MembershipInfo:
    """One row of the caller's club memberships."""

    club_id: int
    role: str  # "member" | "leader"
    status: str  # "pending" | "approved" | "rejected"

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"


@dataclass
class ActorContext:
    """Authenticated caller for one request or CLI invocation."""

    user_id: int
    role: str = "member"  # global role: "member" | "admin"
    memberships: List[MembershipInfo] = field(default_factory=list)
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def membership_for(self, club_id: int) -> Optional[MembershipInfo]:
        for membership in self.memberships:
            if membership.club_id == club_id:
                return membership
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging."""
        return {
            "user_id": self.user_id,
            "role": self.role,
            "memberships": [
                {"club_id": m.club_id, "role": m.role, "status": m.status}
                for m in self.memberships
            ],
            "request_id": self.request_id,
        }
