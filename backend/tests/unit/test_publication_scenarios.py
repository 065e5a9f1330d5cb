"""
端到端业务场景（服务层直调，FakeSupabase + FakeGateway）。
"""

import pytest

from manuscripta.core.errors import InvalidTransitionError, PaymentRequiredError
from manuscripta.models.payment import ConfirmPaymentRequest
from manuscripta.models.review import ReviewSubmitRequest
from manuscripta.models.submission import SubmissionCreate


def test_graph_algorithms_from_submission_to_publication(
    lifecycle, review_service, payment_service, gateway, fake_db, actors
):
    author, editor = actors["author"], actors["editor"]

    sub = lifecycle.create_submission(
        author,
        SubmissionCreate(
            title="Graph Algorithms",
            abstract="A study of shortest paths in sparse graphs with negative edges.",
            keywords=["graphs", "algorithms"],
        ),
    )
    assert sub["status"] == "submitted"

    reviews = []
    for who, recommendation, rating in (("reviewer", "ACCEPT", 5), ("reviewer2", "MINOR_REVISION", 4)):
        invitation = review_service.invite_reviewer(sub["id"], actors[who].id, editor)
        reviews.append((who, invitation, recommendation, rating))
    lifecycle.transition(sub["id"], "UNDER_REVIEW", editor)

    for who, invitation, recommendation, rating in reviews:
        review_service.accept_invitation(invitation["id"], actors[who])
        review_service.submit_review(
            invitation["id"],
            actors[who],
            ReviewSubmitRequest(recommendation=recommendation, rating=rating, author_comments="Solid work."),
        )
    assert fake_db.get("submissions", sub["id"])["status"] == "under_review"

    ctx = review_service.aggregate_for_decision(sub["id"], editor)
    assert ctx["recommendations"]["accept"] == 1
    assert ctx["recommendations"]["minor_revision"] == 1

    lifecycle.transition(sub["id"], "ACCEPTED", editor, "Congratulations")
    with pytest.raises(PaymentRequiredError):
        lifecycle.transition(sub["id"], "PUBLISHED", editor)

    intent = payment_service.create_intent(sub["id"], author)
    gateway.succeed("tx_1")
    confirmed = payment_service.confirm(intent["payment_id"], ConfirmPaymentRequest(transaction_id="tx_1"), author)
    assert confirmed["payment"]["status"] == "paid"

    published = lifecycle.transition(sub["id"], "PUBLISHED", editor)
    assert published["status"] == "published"
    assert published["doi"].startswith("10.5555/manuscripta.")

    replay = payment_service.confirm(intent["payment_id"], ConfirmPaymentRequest(transaction_id="tx_1"), author)
    assert replay["replayed"] is True
    assert len(fake_db.rows("payments", submission_id=sub["id"], status="paid")) == 1

    history = lifecycle.get_history(sub["id"], author)
    assert [(h["from_status"], h["to_status"]) for h in history] == [
        (None, "submitted"),
        ("submitted", "under_review"),
        ("under_review", "accepted"),
        ("accepted", "published"),
    ]


def test_decline_then_submit_is_invalid_transition(review_service, actors, make_submission):
    sub = make_submission("under_review")
    invitation = review_service.invite_reviewer(sub["id"], actors["reviewer"].id, actors["editor"])
    review_service.decline_invitation(invitation["id"], actors["reviewer"])

    with pytest.raises(InvalidTransitionError):
        review_service.submit_review(
            invitation["id"],
            actors["reviewer"],
            ReviewSubmitRequest(recommendation="accept", rating=5),
        )


def test_revision_cycle_then_accept(lifecycle, review_service, fake_db, actors, make_submission):
    sub = make_submission("submitted")
    invitation = review_service.invite_reviewer(sub["id"], actors["reviewer"].id, actors["editor"])
    lifecycle.transition(sub["id"], "under_review", actors["editor"])
    lifecycle.transition(sub["id"], "revision_required", actors["editor"], "Please clarify section 2")

    lifecycle.resubmit(sub["id"], actors["author"], comments="Clarified", manuscript_files=["v2.pdf"])
    after = lifecycle.transition(sub["id"], "accepted", actors["editor"])

    assert after["status"] == "accepted"
    assert after["revision_count"] == 1
    assert fake_db.get("reviews", invitation["id"])["status"] == "pending"


def test_publish_unpaid_is_payment_required(lifecycle, actors, make_submission):
    sub = make_submission("accepted")
    with pytest.raises(PaymentRequiredError):
        lifecycle.transition(sub["id"], "published", actors["editor"])
