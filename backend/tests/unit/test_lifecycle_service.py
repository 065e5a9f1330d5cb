from datetime import datetime, timezone

import pytest

from manuscripta.core.config import WorkflowConfig
from manuscripta.core.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PaymentRequiredError,
    ValidationError,
)
from manuscripta.models.submission import SubmissionCreate
from manuscripta.services.lifecycle_service import StatusChangedEvent, SubmissionLifecycleService


def _invite(fake_db, submission_id, reviewer_id, status="pending"):
    fake_db.seed(
        "reviews",
        {
            "submission_id": submission_id,
            "reviewer_id": reviewer_id,
            "status": status,
            "invited_at": datetime.now(timezone.utc).isoformat(),
        },
    )


def _pay(fake_db, submission_id, status="paid"):
    fake_db.seed("payments", {"submission_id": submission_id, "status": status, "amount": 299.0})


def test_create_submission_starts_submitted_with_history(lifecycle, fake_db, actors, events):
    payload = SubmissionCreate(
        title="Graph Algorithms",
        abstract="A study of shortest paths in sparse graphs with negative edges.",
        keywords=["graphs"],
    )
    created = lifecycle.create_submission(actors["author"], payload)

    assert created["status"] == "submitted"
    assert created["author_id"] == actors["author"].id
    assert created["revision_count"] == 0
    history = fake_db.rows("submission_timeline", submission_id=created["id"])
    assert [h["event"] for h in history] == ["submitted"]
    assert events[0].to_status == "submitted"
    assert events[0].from_status is None


def test_reviewer_only_account_cannot_create_submission(lifecycle, actors):
    payload = SubmissionCreate(
        title="Graph Algorithms",
        abstract="A study of shortest paths in sparse graphs with negative edges.",
    )
    with pytest.raises(AuthorizationError):
        lifecycle.create_submission(actors["reviewer"], payload)


def test_transition_happy_path_records_history_and_event(lifecycle, fake_db, actors, events, make_submission):
    sub = make_submission("submitted")
    _invite(fake_db, sub["id"], actors["reviewer"].id)

    updated = lifecycle.transition(sub["id"], "UNDER_REVIEW", actors["editor"], "Sent out")

    assert updated["status"] == "under_review"
    history = fake_db.rows("submission_timeline", submission_id=sub["id"])
    assert len(history) == 1
    assert history[0]["from_status"] == "submitted"
    assert history[0]["to_status"] == "under_review"
    assert history[0]["performed_by"] == actors["editor"].id
    assert history[0]["comments"] == "Sent out"
    assert len(events) == 1
    assert isinstance(events[0], StatusChangedEvent)
    assert events[0].submission["status"] == "under_review"


@pytest.mark.parametrize(
    "start,target",
    [
        ("submitted", "accepted"),
        ("submitted", "published"),
        ("rejected", "under_review"),
        ("published", "accepted"),
        ("accepted", "rejected"),
    ],
)
def test_invalid_edges_leave_status_unchanged(lifecycle, fake_db, actors, events, make_submission, start, target):
    sub = make_submission(start)

    with pytest.raises(InvalidTransitionError):
        lifecycle.transition(sub["id"], target, actors["editor"])

    assert fake_db.get("submissions", sub["id"])["status"] == start
    assert fake_db.rows("submission_timeline") == []
    assert events == []


def test_unknown_target_is_validation_error(lifecycle, make_submission, actors):
    sub = make_submission("submitted")
    with pytest.raises(ValidationError):
        lifecycle.transition(sub["id"], "approved", actors["editor"])


def test_missing_submission_is_not_found(lifecycle, actors):
    with pytest.raises(NotFoundError):
        lifecycle.transition("does-not-exist", "under_review", actors["editor"])


def test_author_cannot_take_editor_decisions(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("under_review")
    _invite(fake_db, sub["id"], actors["reviewer"].id, status="completed")

    with pytest.raises(AuthorizationError):
        lifecycle.transition(sub["id"], "accepted", actors["author"])
    assert fake_db.get("submissions", sub["id"])["status"] == "under_review"


def test_under_review_requires_an_active_invitation(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("submitted")
    _invite(fake_db, sub["id"], actors["reviewer"].id, status="declined")

    with pytest.raises(InvalidStateError):
        lifecycle.transition(sub["id"], "under_review", actors["editor"])
    assert fake_db.get("submissions", sub["id"])["status"] == "submitted"


def test_decision_stamps_decided_by(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("under_review")
    updated = lifecycle.transition(sub["id"], "rejected", actors["editor"], "Out of scope")
    assert updated["decided_by"] == actors["editor"].id
    assert updated["decided_at"]


def test_revision_required_sets_deadline(lifecycle, actors, make_submission):
    sub = make_submission("under_review")
    updated = lifecycle.transition(sub["id"], "revision_required", actors["editor"])
    deadline = datetime.fromisoformat(updated["revision_deadline"])
    days = (deadline - datetime.now(timezone.utc)).days
    assert 58 <= days <= 60


def test_publish_without_payment_is_refused(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("accepted")
    _pay(fake_db, sub["id"], status="pending")

    with pytest.raises(PaymentRequiredError) as exc:
        lifecycle.transition(sub["id"], "published", actors["editor"])

    assert exc.value.status_code == 402
    assert fake_db.get("submissions", sub["id"])["status"] == "accepted"


def test_publish_with_payment_assigns_doi(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("accepted")
    _pay(fake_db, sub["id"])

    updated = lifecycle.transition(sub["id"], "published", actors["editor"])

    year = datetime.now(timezone.utc).year
    short = sub["id"].replace("-", "")[:8].lower()
    assert updated["status"] == "published"
    assert updated["doi"] == f"10.5555/manuscripta.{year}.{short}"
    assert updated["published_at"]


def test_publish_keeps_existing_doi(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("accepted", doi="10.1234/existing")
    _pay(fake_db, sub["id"])
    updated = lifecycle.transition(sub["id"], "published", actors["editor"])
    assert updated["doi"] == "10.1234/existing"


def test_publish_requires_proof_when_configured(fake_db, actors, make_submission):
    cfg = WorkflowConfig(
        doi_prefix="10.5555",
        journal_code="manuscripta",
        revision_days=60,
        review_due_days=21,
        require_proof_approval=True,
    )
    service = SubmissionLifecycleService(client=fake_db, workflow_config=cfg, listeners=[], payment_gate=lambda _id: True)
    sub = make_submission("accepted")

    with pytest.raises(InvalidStateError):
        service.transition(sub["id"], "published", actors["editor"])

    service.approve_proof(sub["id"], actors["author"])
    assert service.transition(sub["id"], "published", actors["editor"])["status"] == "published"


def test_concurrent_decision_loser_gets_conflict(lifecycle, fake_db, actors, events, make_submission):
    sub = make_submission("under_review")

    def _other_editor_wins(db):
        db.before_update.pop("submissions")
        for row in db.tables["submissions"]:
            if row["id"] == sub["id"]:
                row["status"] = "rejected"
                row["updated_at"] = datetime.now(timezone.utc).isoformat()

    fake_db.before_update["submissions"] = _other_editor_wins

    with pytest.raises(ConcurrentModificationError) as exc:
        lifecycle.transition(sub["id"], "accepted", actors["editor"])

    assert exc.value.context["current_status"] == "rejected"
    assert fake_db.get("submissions", sub["id"])["status"] == "rejected"
    assert fake_db.rows("submission_timeline") == []
    assert events == []


def test_listener_failure_does_not_roll_back(fake_db, actors, make_submission):
    def _boom(_event):
        raise RuntimeError("mail server down")

    seen = []
    service = SubmissionLifecycleService(client=fake_db, listeners=[_boom, seen.append], payment_gate=lambda _id: True)
    sub = make_submission("under_review")

    updated = service.transition(sub["id"], "accepted", actors["editor"])

    assert updated["status"] == "accepted"
    assert fake_db.get("submissions", sub["id"])["status"] == "accepted"
    assert len(seen) == 1


def test_resubmit_increments_revision_count(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("revision_required", manuscript_files=["v1.pdf"], revision_deadline="2030-01-01T00:00:00+00:00")
    _invite(fake_db, sub["id"], actors["reviewer"].id, status="completed")

    updated = lifecycle.resubmit(sub["id"], actors["author"], comments="Addressed all points", manuscript_files=["v2.pdf"])

    assert updated["status"] == "under_review"
    assert updated["revision_count"] == 1
    assert updated["revision_deadline"] is None
    assert updated["manuscript_files"] == ["v1.pdf", "v2.pdf"]


def test_other_author_cannot_resubmit(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("revision_required", author_id=actors["reviewer2"].id)
    with pytest.raises(AuthorizationError):
        lifecycle.resubmit(sub["id"], actors["author"])


def test_author_cannot_bypass_resubmit_with_direct_transition(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("revision_required", revision_deadline="2030-01-01T00:00:00+00:00")
    _invite(fake_db, sub["id"], actors["reviewer"].id, status="completed")

    with pytest.raises(AuthorizationError):
        lifecycle.transition(sub["id"], "under_review", actors["author"])

    row = fake_db.get("submissions", sub["id"])
    assert row["status"] == "revision_required"
    assert int(row.get("revision_count") or 0) == 0
    assert row["revision_deadline"] == "2030-01-01T00:00:00+00:00"


def test_withdraw_marks_submission_and_blocks_transitions(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("under_review")

    updated = lifecycle.withdraw(sub["id"], actors["author"], reason="Submitted elsewhere")

    assert updated["withdrawn_at"]
    assert updated["status"] == "under_review"
    assert fake_db.rows("submission_timeline", submission_id=sub["id"])[0]["event"] == "withdrawn"
    with pytest.raises(InvalidTransitionError):
        lifecycle.transition(sub["id"], "accepted", actors["editor"])
    with pytest.raises(InvalidTransitionError):
        lifecycle.withdraw(sub["id"], actors["author"])


@pytest.mark.parametrize("status", ["accepted", "published", "rejected"])
def test_withdraw_not_allowed_after_decision(lifecycle, actors, make_submission, status):
    sub = make_submission(status)
    with pytest.raises(InvalidTransitionError):
        lifecycle.withdraw(sub["id"], actors["author"])


def test_withdraw_by_stranger_is_forbidden(lifecycle, actors, make_submission):
    sub = make_submission("submitted")
    with pytest.raises(AuthorizationError):
        lifecycle.withdraw(sub["id"], actors["editor"])


def test_approve_proof_is_idempotent(lifecycle, fake_db, actors, make_submission):
    sub = make_submission("accepted")
    first = lifecycle.approve_proof(sub["id"], actors["author"])
    second = lifecycle.approve_proof(sub["id"], actors["author"])

    assert first["proof_approved_at"] == second["proof_approved_at"]
    events = [h["event"] for h in fake_db.rows("submission_timeline", submission_id=sub["id"])]
    assert events == ["proof_approved"]


def test_approve_proof_requires_accepted(lifecycle, actors, make_submission):
    sub = make_submission("under_review")
    with pytest.raises(InvalidStateError):
        lifecycle.approve_proof(sub["id"], actors["author"])


def test_history_is_hidden_from_other_authors(lifecycle, actors, make_submission):
    sub = make_submission("submitted", author_id=actors["reviewer2"].id)
    with pytest.raises(AuthorizationError):
        lifecycle.get_history(sub["id"], actors["author"])
    assert lifecycle.get_history(sub["id"], actors["editor"]) == []


def test_list_for_author_paginates(lifecycle, actors, make_submission):
    for i in range(3):
        make_submission("submitted", title=f"Paper {i}")
    make_submission("submitted", author_id=actors["reviewer2"].id)

    page = lifecycle.list_for_author(actors["author"], page=2, limit=2)

    assert page["total"] == 3
    assert len(page["data"]) == 1


def test_list_for_editor_filters_by_status(lifecycle, actors, make_submission):
    make_submission("submitted", title="Fresh")
    make_submission("under_review", title="In review A")
    make_submission("under_review", title="In review B", author_id=actors["reviewer2"].id)

    everything = lifecycle.list_for_editor(actors["editor"], status="all")
    in_review = lifecycle.list_for_editor(actors["editor"], status="UNDER_REVIEW", limit=1)

    assert everything["total"] == 3
    assert in_review["total"] == 2
    assert len(in_review["data"]) == 1
    assert in_review["data"][0]["status"] == "under_review"


def test_list_for_editor_requires_view_all_and_known_status(lifecycle, actors):
    with pytest.raises(AuthorizationError):
        lifecycle.list_for_editor(actors["author"])
    with pytest.raises(ValidationError):
        lifecycle.list_for_editor(actors["editor"], status="limbo")
