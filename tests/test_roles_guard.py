"""Unit tests for clubdocs.documents.roles and clubdocs.documents.guard."""

import pytest

from clubdocs.db.session import session_scope
from clubdocs.documents.guard import OPERATION_ROLES, TransitionGuard, can_view_all_assignments
from clubdocs.documents.models import EffectiveRole
from clubdocs.documents.roles import approved_member_ids, load_actor, resolve_effective_role
from clubdocs.engine.context import ActorContext, MembershipInfo
from clubdocs.engine.errors import ClubDocsForbiddenError, ClubDocsNotFoundError
from clubdocs.engine.logging import FileLogger, init_logging, shutdown_logging


class TestResolveEffectiveRole:

    def test_global_admin(self):
        assert resolve_effective_role(ActorContext(user_id=1, role="admin"), 1) == EffectiveRole.ADMIN

    def test_president_without_membership(self):
        actor = ActorContext(user_id=2)
        assert resolve_effective_role(actor, 1, president_id=2) == EffectiveRole.LEADER

    def test_approved_leader(self):
        actor = ActorContext(user_id=3, memberships=[MembershipInfo(1, "leader", "approved")])
        assert resolve_effective_role(actor, 1) == EffectiveRole.LEADER

    def test_approved_member(self):
        actor = ActorContext(user_id=4, memberships=[MembershipInfo(1, "member", "approved")])
        assert resolve_effective_role(actor, 1) == EffectiveRole.MEMBER

    @pytest.mark.parametrize("status", ["pending", "rejected"])
    def test_unapproved_is_none(self, status):
        actor = ActorContext(user_id=6, memberships=[MembershipInfo(1, "leader", status)])
        assert resolve_effective_role(actor, 1) == EffectiveRole.NONE

    def test_other_club_is_none(self):
        actor = ActorContext(user_id=7, memberships=[MembershipInfo(2, "member", "approved")])
        assert resolve_effective_role(actor, 1) == EffectiveRole.NONE


class TestLoadActor:

    def test_loads_stored_role_and_memberships(self, seeded, ids):
        with session_scope(seeded) as session:
            actor = load_actor(session, ids.leader)
        assert actor.role == "member"
        assert actor.membership_for(ids.club) == MembershipInfo(ids.club, "leader", "approved")

    def test_gateway_role_wins(self, seeded, ids):
        with session_scope(seeded) as session:
            actor = load_actor(session, ids.alice, role="admin", request_id="req_1")
        assert actor.is_admin
        assert actor.request_id == "req_1"

    def test_approved_member_ids(self, seeded, ids):
        with session_scope(seeded) as session:
            found = approved_member_ids(session, ids.club, [ids.alice, ids.carol, ids.dave, ids.leader])
        assert sorted(found) == [ids.leader, ids.alice]


class TestTransitionGuard:

    @pytest.mark.parametrize("user,operation,expected", [
        ("admin", "create_document", EffectiveRole.ADMIN),
        ("president", "delete_document", EffectiveRole.LEADER),
        ("leader", "bulk_export", EffectiveRole.LEADER),
        ("alice", "submit_assignment", EffectiveRole.MEMBER),
    ])
    def test_allowed(self, seeded, actor_for, ids, user, operation, expected):
        with session_scope(seeded) as session:
            role = TransitionGuard().require(session, actor_for(getattr(ids, user)), ids.club, operation)
        assert role == expected

    @pytest.mark.parametrize("user,operation,required", [
        ("leader", "create_document", "admin"),
        ("leader", "review_submission", "admin"),
        ("alice", "update_document", "leader"),
        ("alice", "list_club_documents", "leader"),
        ("carol", "get_document", "member"),
        ("dave", "list_assigned_documents", "member"),
    ])
    def test_denied(self, seeded, actor_for, ids, user, operation, required):
        with session_scope(seeded) as session:
            with pytest.raises(ClubDocsForbiddenError) as exc_info:
                TransitionGuard().require(session, actor_for(getattr(ids, user)), ids.club, operation)
        assert exc_info.value.required_role == required
        assert exc_info.value.club_id == ids.club

    def test_non_member_message(self, seeded, actor_for, ids):
        with session_scope(seeded) as session:
            with pytest.raises(ClubDocsForbiddenError, match="not a member"):
                TransitionGuard().require(session, actor_for(ids.dave), ids.club, "get_document")

    def test_denial_written_to_security_log(self, seeded, actor_for, ids, tmp_path):
        init_logging(log_dir=str(tmp_path / "logs"))
        with session_scope(seeded) as session:
            with pytest.raises(ClubDocsForbiddenError):
                TransitionGuard().require(session, actor_for(ids.alice), ids.club, "bulk_delete")
        shutdown_logging()
        entries = FileLogger(str(tmp_path / "logs")).read("documents", "security")
        assert entries[0]["event"] == "access_denied"
        assert entries[0]["operation"] == "bulk_delete"
        assert entries[0]["effective_role"] == "member"

    def test_hide_document_returns_not_found(self, actor_for, seeded, ids):
        err = TransitionGuard().hide_document(actor_for(ids.alice), ids.club, 5, "get_document", EffectiveRole.MEMBER)
        assert isinstance(err, ClubDocsNotFoundError)
        assert err.document_id == 5

    def test_every_operation_has_roles(self):
        assert all(roles for roles in OPERATION_ROLES.values())

    def test_can_view_all_assignments(self):
        assert can_view_all_assignments(EffectiveRole.LEADER)
        assert not can_view_all_assignments(EffectiveRole.MEMBER)
