"""Tests for clubdocs.documents.service — document lifecycle and the assignment state machine."""

import io
from datetime import timedelta

import pytest

from clubdocs.documents.models import (
    CreateDocumentRequest,
    DocumentStatus,
    ReviewSubmissionRequest,
    SetSubmissionStatusRequest,
    SubmissionStatus,
    UpdateDocumentRequest,
    UpdateDocumentStatusRequest,
)
from clubdocs.engine.errors import (
    ClubDocsConflictError,
    ClubDocsForbiddenError,
    ClubDocsNotFoundError,
    ClubDocsValidationError,
)
from clubdocs.integrations.notifications import (
    ASSIGNMENT_REVIEWED,
    ASSIGNMENT_SUBMITTED,
    DOCUMENT_CREATED,
    DOCUMENT_DELETED,
    DOCUMENT_STATUS_CHANGED,
)


def _member(view, user_id):
    return next(m for m in view.assigned_members if m.user_id == user_id)


def _review(user_id, status, comment=None):
    return ReviewSubmissionRequest(user_id=user_id, submission_status=status, comment=comment)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class TestCreateDocument:

    def test_creates_open_with_assignments(self, service, admin, ids, today, sink):
        view = service.create_document(admin, ids.club, CreateDocumentRequest(
            title="  Budget  ",
            priority="High",
            type="Checklist",
            due_date=today + timedelta(days=3),
            assigned_member_ids=[ids.alice, ids.bob, ids.alice],
        ))
        assert view.title == "Budget"
        assert view.status == "Open"
        assert view.status_source == "derived"
        assert view.version == 1
        assert view.club_name == "Chess Club"
        assert view.creator_first_name == "Ann"
        assert view.assigned_member_ids == [ids.alice, ids.bob]
        assert {m.submission_status for m in view.assigned_members} == {"Not Submitted"}
        assert _member(view, ids.alice).first_name == "Alice"
        assert _member(view, ids.alice).role == "member"
        assert not view.is_overdue

        [event] = sink.of_type(DOCUMENT_CREATED)
        assert event.document_id == view.id
        assert event.club_id == ids.club

    def test_due_today_accepted(self, service, admin, ids, today):
        view = service.create_document(admin, ids.club, CreateDocumentRequest(
            title="Today", due_date=today, assigned_member_ids=[ids.alice],
        ))
        assert view.due_date == today
        assert not view.is_overdue

    def test_due_yesterday_rejected(self, service, admin, ids, today):
        with pytest.raises(ClubDocsValidationError) as exc_info:
            service.create_document(admin, ids.club, CreateDocumentRequest(
                title="Late", due_date=today - timedelta(days=1), assigned_member_ids=[ids.alice],
            ))
        assert exc_info.value.field == "due_date"

    def test_empty_assignees_rejected(self, service, admin, ids, today):
        with pytest.raises(ClubDocsValidationError, match="At least one member"):
            service.create_document(admin, ids.club, CreateDocumentRequest(
                title="Nobody", due_date=today, assigned_member_ids=[],
            ))

    def test_blank_title_rejected(self, service, admin, ids, today):
        with pytest.raises(ClubDocsValidationError, match="Title"):
            service.create_document(admin, ids.club, CreateDocumentRequest(
                title="   ", due_date=today, assigned_member_ids=[ids.alice],
            ))

    @pytest.mark.parametrize("outsider", ["carol", "dave"])
    def test_unapproved_assignee_rejected(self, service, admin, ids, today, outsider):
        with pytest.raises(ClubDocsNotFoundError) as exc_info:
            service.create_document(admin, ids.club, CreateDocumentRequest(
                title="X", due_date=today, assigned_member_ids=[ids.alice, getattr(ids, outsider)],
            ))
        assert exc_info.value.mismatch_count == 1

    def test_leader_cannot_create(self, service, leader, ids, today):
        with pytest.raises(ClubDocsForbiddenError):
            service.create_document(leader, ids.club, CreateDocumentRequest(
                title="X", due_date=today, assigned_member_ids=[ids.alice],
            ))

    def test_failed_create_sends_nothing(self, service, admin, ids, today, sink):
        with pytest.raises(ClubDocsValidationError):
            service.create_document(admin, ids.club, CreateDocumentRequest(
                title="X", due_date=today - timedelta(days=1), assigned_member_ids=[ids.alice],
            ))
        assert sink.events == []


# ---------------------------------------------------------------------------
# Reads and visibility
# ---------------------------------------------------------------------------

class TestReads:

    def test_leader_sees_all_assignments(self, service, make_document, president, ids):
        doc = make_document()
        view = service.get_document(president, ids.club, doc.id)
        assert view.assigned_member_ids == [ids.alice, ids.bob]

    def test_member_sees_only_own_assignment(self, service, make_document, alice, ids):
        doc = make_document()
        view = service.get_document(alice, ids.club, doc.id)
        assert view.assigned_member_ids == [ids.alice]
        assert [m.user_id for m in view.assigned_members] == [ids.alice]

    def test_unassigned_member_gets_not_found(self, service, make_document, alice, ids):
        doc = make_document(assignees=[ids.bob])
        with pytest.raises(ClubDocsNotFoundError):
            service.get_document(alice, ids.club, doc.id)

    def test_member_missing_and_hidden_look_the_same(self, service, make_document, alice, ids):
        doc = make_document(assignees=[ids.bob])
        with pytest.raises(ClubDocsNotFoundError) as hidden:
            service.get_document(alice, ids.club, doc.id)
        with pytest.raises(ClubDocsNotFoundError) as missing:
            service.get_document(alice, ids.club, 9999)
        assert hidden.value.message == "Document %d not found" % doc.id
        assert missing.value.message == "Document 9999 not found"

    def test_document_of_other_club_not_found(self, service, make_document, admin, ids):
        doc = make_document()
        with pytest.raises(ClubDocsNotFoundError):
            service.get_document(admin, ids.other_club, doc.id)

    def test_non_member_forbidden(self, service, make_document, actor_for, ids):
        doc = make_document()
        with pytest.raises(ClubDocsForbiddenError):
            service.get_document(actor_for(ids.carol), ids.club, doc.id)

    def test_list_club_documents_order(self, service, make_document, leader, ids, today):
        soon = make_document("Soon", due_date=today + timedelta(days=1))
        later = make_document("Later", due_date=today + timedelta(days=30))
        views = service.list_club_documents(leader, ids.club)
        assert [v.id for v in views] == [later.id, soon.id]

    def test_member_cannot_list_club(self, service, alice, ids):
        with pytest.raises(ClubDocsForbiddenError):
            service.list_club_documents(alice, ids.club)

    def test_list_assigned(self, service, make_document, alice, ids, today):
        later = make_document("Later", due_date=today + timedelta(days=30))
        soon = make_document("Soon", due_date=today + timedelta(days=1))
        make_document("Not mine", assignees=[ids.bob])
        views = service.list_assigned_documents(alice, ids.club)
        assert [v.id for v in views] == [soon.id, later.id]
        assert all(v.assigned_member_ids == [ids.alice] for v in views)

    def test_overdue_flag(self, seeded, file_store, sink, config, make_document, admin, ids, today):
        from clubdocs.documents.service import DocumentService

        doc = make_document(due_date=today)
        tomorrow = DocumentService(
            seeded, file_store, notification_sink=sink, config=config,
            today_provider=lambda: today + timedelta(days=1),
        )
        assert tomorrow.get_document(admin, ids.club, doc.id).is_overdue


# ---------------------------------------------------------------------------
# Submission and review state machine
# ---------------------------------------------------------------------------

class TestSubmitAssignment:

    def test_submit_moves_to_in_progress(self, service, make_document, upload, alice, ids, sink, file_store):
        doc = make_document()
        view = upload(alice, doc.id)
        mine = _member(view, ids.alice)
        assert mine.submission_status == "Submitted"
        assert mine.file_name == "report.pdf"
        assert mine.file_size == len(b"%PDF-1.4 test")
        assert mine.file_mime_type == "application/pdf"
        assert mine.submitted_at is not None
        assert file_store.exists(mine.file_path)
        assert view.status == "In Progress"
        assert view.version == 2

        [submitted] = sink.of_type(ASSIGNMENT_SUBMITTED)
        assert submitted.member_id == ids.alice
        [changed] = sink.of_type(DOCUMENT_STATUS_CHANGED)
        assert changed.details == {"old_status": "Open", "new_status": "In Progress"}

    def test_resubmit_replaces_file(self, make_document, upload, alice, ids, file_store):
        doc = make_document()
        first = _member(upload(alice, doc.id, b"v1"), ids.alice)
        second = _member(upload(alice, doc.id, b"version two", filename="report-v2.pdf"), ids.alice)
        assert second.file_path != first.file_path
        assert second.file_name == "report-v2.pdf"
        assert not file_store.exists(first.file_path)
        assert file_store.exists(second.file_path)

    def test_submit_while_approved_conflicts(self, service, make_document, upload, alice, admin, ids):
        doc = make_document()
        upload(alice, doc.id)
        service.review_submission(admin, ids.club, doc.id, _review(ids.alice, "Approved"))
        with pytest.raises(ClubDocsConflictError) as exc_info:
            upload(alice, doc.id, b"late change")
        assert exc_info.value.current_state == "Approved"

    def test_rejected_upload_is_removed(self, service, make_document, upload, alice, admin, ids, file_store):
        doc = make_document()
        upload(alice, doc.id)
        service.review_submission(admin, ids.club, doc.id, _review(ids.alice, "Approved"))
        before = set(p.name for p in file_store.root.iterdir())
        with pytest.raises(ClubDocsConflictError):
            upload(alice, doc.id, b"late change")
        assert set(p.name for p in file_store.root.iterdir()) == before

    def test_unassigned_member_gets_not_found(self, make_document, upload, alice, ids, file_store):
        doc = make_document(assignees=[ids.bob])
        with pytest.raises(ClubDocsNotFoundError):
            upload(alice, doc.id)
        assert list(file_store.root.iterdir()) == []

    def test_unassigned_leader_forbidden(self, make_document, upload, leader, ids):
        doc = make_document()
        with pytest.raises(ClubDocsForbiddenError, match="not assigned"):
            upload(leader, doc.id)

    def test_disallowed_mime_type(self, service, make_document, alice, ids):
        doc = make_document()
        with pytest.raises(ClubDocsValidationError):
            service.submit_assignment(
                alice, ids.club, doc.id, io.BytesIO(b"MZ"), "tool.exe", "application/x-msdownload",
            )


class TestReviewSubmission:

    def test_scenario_revise_resubmit_approve(self, service, make_document, upload, alice, bob, admin, ids):
        doc = make_document()

        assert upload(alice, doc.id).status == "In Progress"

        view = service.review_submission(
            admin, ids.club, doc.id, _review(ids.alice, "Needs Revision", "Missing totals"),
        )
        assert view.status == "Open"
        assert _member(view, ids.alice).admin_comment == "Missing totals"

        view = upload(alice, doc.id, b"fixed")
        assert view.status == "In Progress"

        view = service.review_submission(admin, ids.club, doc.id, _review(ids.alice, "Approved"))
        assert view.status == "In Progress"
        assert _member(view, ids.alice).admin_comment is None

        upload(bob, doc.id)
        view = service.review_submission(admin, ids.club, doc.id, _review(ids.bob, "Approved"))
        assert view.status == "Completed"
        assert view.status_source == "derived"

    def test_reopen_approved(self, service, make_document, upload, alice, admin, ids):
        doc = make_document(assignees=[ids.alice])
        upload(alice, doc.id)
        assert service.review_submission(admin, ids.club, doc.id, _review(ids.alice, "Approved")).status == "Completed"
        view = service.review_submission(admin, ids.club, doc.id, _review(ids.alice, "Needs Revision"))
        assert view.status == "Open"
        assert upload(alice, doc.id).status == "In Progress"

    def test_review_not_submitted_conflicts(self, service, make_document, admin, ids):
        doc = make_document()
        with pytest.raises(ClubDocsConflictError):
            service.review_submission(admin, ids.club, doc.id, _review(ids.alice, "Approved"))

    def test_review_target_must_be_terminal(self, service, make_document, upload, alice, admin, ids):
        doc = make_document()
        upload(alice, doc.id)
        with pytest.raises(ClubDocsValidationError):
            service.review_submission(admin, ids.club, doc.id, _review(ids.alice, "Not Submitted"))

    def test_leader_cannot_review(self, service, make_document, upload, alice, leader, ids):
        doc = make_document()
        upload(alice, doc.id)
        with pytest.raises(ClubDocsForbiddenError):
            service.review_submission(leader, ids.club, doc.id, _review(ids.alice, "Approved"))

    def test_review_unknown_assignment(self, service, make_document, admin, ids):
        doc = make_document(assignees=[ids.alice])
        with pytest.raises(ClubDocsNotFoundError, match="assignment"):
            service.review_submission(admin, ids.club, doc.id, _review(ids.bob, "Approved"))

    def test_review_event(self, service, make_document, upload, alice, admin, ids, sink):
        doc = make_document()
        upload(alice, doc.id)
        sink.clear()
        service.review_submission(admin, ids.club, doc.id, _review(ids.alice, "Needs Revision", "redo"))
        [event] = sink.of_type(ASSIGNMENT_REVIEWED)
        assert event.member_id == ids.alice
        assert event.details["submission_status"] == "Needs Revision"
        assert event.details["comment"] == "redo"


class TestSetSubmissionStatus:

    def test_leader_sets_any_state(self, service, make_document, leader, ids, sink):
        doc = make_document(assignees=[ids.alice])
        view = service.set_submission_status(
            leader, ids.club, doc.id, SetSubmissionStatusRequest(user_id=ids.alice, submission_status="Approved"),
        )
        assert _member(view, ids.alice).submission_status == "Approved"
        assert view.status == "Completed"
        [event] = sink.of_type(ASSIGNMENT_REVIEWED)
        assert event.details["override"] is True

    def test_member_cannot_set(self, service, make_document, alice, ids):
        doc = make_document()
        with pytest.raises(ClubDocsForbiddenError):
            service.set_submission_status(
                alice, ids.club, doc.id, SetSubmissionStatusRequest(user_id=ids.alice, submission_status="Approved"),
            )


# ---------------------------------------------------------------------------
# Edit, manual status and delete
# ---------------------------------------------------------------------------

class TestUpdateDocument:

    def test_metadata_edit(self, service, make_document, leader, ids, today):
        doc = make_document()
        view = service.update_document(leader, ids.club, doc.id, UpdateDocumentRequest(
            title="Renamed", priority="Low", due_date=today + timedelta(days=2),
        ))
        assert view.title == "Renamed"
        assert view.priority == "Low"
        assert view.due_date == today + timedelta(days=2)
        assert view.assigned_member_ids == [ids.alice, ids.bob]

    def test_replace_assignees_keeps_progress(self, service, make_document, upload, leader, alice, bob, ids, file_store):
        doc = make_document()
        alice_file = _member(upload(alice, doc.id), ids.alice).file_path
        bob_file = _member(upload(bob, doc.id), ids.bob).file_path

        view = service.update_document(leader, ids.club, doc.id, UpdateDocumentRequest(
            assigned_member_ids=[ids.alice, ids.leader],
        ))
        assert view.assigned_member_ids == [ids.alice, ids.leader]
        assert _member(view, ids.alice).submission_status == "Submitted"
        assert _member(view, ids.alice).file_path == alice_file
        assert _member(view, ids.leader).submission_status == "Not Submitted"
        assert file_store.exists(alice_file)
        assert not file_store.exists(bob_file)

    def test_replace_assignees_recomputes(self, service, make_document, upload, admin, alice, ids):
        doc = make_document()
        upload(alice, doc.id)
        service.review_submission(admin, ids.club, doc.id, _review(ids.alice, "Approved"))
        view = service.update_document(admin, ids.club, doc.id, UpdateDocumentRequest(
            assigned_member_ids=[ids.alice],
        ))
        assert view.status == "Completed"

    def test_explicit_status_wins(self, service, make_document, upload, leader, alice, ids):
        doc = make_document()
        upload(alice, doc.id)
        view = service.update_document(leader, ids.club, doc.id, UpdateDocumentRequest(
            assigned_member_ids=[ids.alice], status="Completed",
        ))
        assert view.status == "Completed"
        assert view.status_source == "manual"

    def test_empty_assignee_list_rejected(self, service, make_document, leader, ids):
        doc = make_document()
        with pytest.raises(ClubDocsValidationError):
            service.update_document(leader, ids.club, doc.id, UpdateDocumentRequest(assigned_member_ids=[]))

    def test_member_cannot_edit(self, service, make_document, alice, ids):
        doc = make_document()
        with pytest.raises(ClubDocsForbiddenError):
            service.update_document(alice, ids.club, doc.id, UpdateDocumentRequest(title="Mine now"))


class TestManualStatus:

    def test_override_then_next_change_recomputes(self, service, make_document, upload, leader, alice, ids, sink):
        doc = make_document()
        view = service.update_document_status(
            leader, ids.club, doc.id, UpdateDocumentStatusRequest(status="Completed"),
        )
        assert (view.status, view.status_source) == ("Completed", "manual")
        [event] = sink.of_type(DOCUMENT_STATUS_CHANGED)
        assert event.details["manual"] is True

        view = upload(alice, doc.id)
        assert (view.status, view.status_source) == ("In Progress", "derived")

    def test_override_same_status_emits_no_change(self, service, make_document, leader, ids, sink):
        doc = make_document()
        view = service.update_document_status(leader, ids.club, doc.id, UpdateDocumentStatusRequest(status="Open"))
        assert view.status_source == "manual"
        assert sink.of_type(DOCUMENT_STATUS_CHANGED) == []

    def test_completed_manual_is_not_overdue(self, seeded, file_store, sink, config, service, make_document,
                                             leader, ids, today):
        from clubdocs.documents.service import DocumentService

        doc = make_document(due_date=today)
        service.update_document_status(leader, ids.club, doc.id, UpdateDocumentStatusRequest(status="Completed"))
        later = DocumentService(
            seeded, file_store, notification_sink=sink, config=config,
            today_provider=lambda: today + timedelta(days=5),
        )
        assert not later.get_document(leader, ids.club, doc.id).is_overdue


class TestDeleteDocument:

    def test_delete_removes_document_and_files(self, service, make_document, upload, leader, alice, ids,
                                               file_store, read_document, sink):
        doc = make_document()
        path = _member(upload(alice, doc.id), ids.alice).file_path
        snapshot = service.delete_document(leader, ids.club, doc.id)
        assert snapshot.id == doc.id
        assert read_document(doc.id) is None
        assert not file_store.exists(path)
        [event] = sink.of_type(DOCUMENT_DELETED)
        assert event.document_id == doc.id

    def test_delete_other_club(self, service, make_document, admin, ids, read_document):
        doc = make_document()
        with pytest.raises(ClubDocsNotFoundError):
            service.delete_document(admin, ids.other_club, doc.id)
        assert read_document(doc.id) is not None
