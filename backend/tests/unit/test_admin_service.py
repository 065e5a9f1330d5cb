import csv
import io
from datetime import datetime, timezone

import pytest
from openpyxl import load_workbook

from manuscripta.core.errors import AuthorizationError, NotFoundError, ValidationError
from manuscripta.models.admin import AdminListQuery, ComplaintCreate, ComplaintStatus, ComplaintUpdate
from manuscripta.models.user import UserUpdateRequest
from manuscripta.services.admin_service import system_health


@pytest.mark.parametrize(
    "subs,pays,expected",
    [
        (0, 0, "healthy"),
        (20, 10, "healthy"),
        (21, 0, "warning"),
        (0, 11, "warning"),
        (51, 0, "critical"),
        (0, 26, "critical"),
    ],
)
def test_system_health_thresholds(subs, pays, expected):
    assert system_health(subs, pays) == expected


def test_admin_only(admin_service, actors):
    with pytest.raises(AuthorizationError):
        admin_service.stats(actors["editor"])
    with pytest.raises(AuthorizationError):
        admin_service.list_entities("users", AdminListQuery(), actors["author"])


def test_stats_counts_and_revenue(admin_service, fake_db, actors, make_submission):
    make_submission("submitted")
    make_submission("submitted")
    make_submission("published")
    fake_db.seed(
        "payments",
        {"status": "paid", "amount": 299.0},
        {"status": "paid", "amount": 150.5},
        {"status": "pending", "amount": 299.0},
        {"status": "refunded", "amount": 299.0},
    )

    stats = admin_service.stats(actors["admin"])

    assert stats["total_users"] == 5
    assert stats["total_authors"] == 1
    assert stats["total_editors"] == 2
    assert stats["total_reviewers"] == 2
    assert stats["total_submissions"] == 3
    assert stats["pending_submissions"] == 2
    assert stats["published_articles"] == 1
    assert stats["total_revenue"] == 449.5
    assert stats["pending_payments"] == 1
    assert stats["system_health"] == "healthy"


def test_submission_stats_for_current_month(admin_service, actors, make_submission):
    now = datetime(2026, 10, 18, tzinfo=timezone.utc)
    make_submission("accepted", created_at="2026-10-02T00:00:00+00:00")
    make_submission("rejected", created_at="2026-10-03T00:00:00+00:00")
    make_submission("submitted", created_at="2026-10-04T00:00:00+00:00")
    make_submission("published", created_at="2026-09-30T00:00:00+00:00")

    out = admin_service.submission_stats(actors["admin"], period="monthly", now=now)

    assert out["total_submissions"] == 3
    assert out["accepted_submissions"] == 1
    assert out["rejected_submissions"] == 1
    assert out["pending_submissions"] == 1
    assert out["acceptance_rate"] == 33


def test_financial_stats_monthly_buckets(admin_service, fake_db, actors):
    now = datetime(2026, 10, 18, tzinfo=timezone.utc)
    fake_db.seed(
        "payments",
        {"status": "paid", "amount": 299.0, "currency": "INR", "created_at": "2026-10-05T00:00:00+00:00"},
        {"status": "paid", "amount": 100.0, "currency": "USD", "created_at": "2026-01-15T00:00:00+00:00"},
        {"status": "refunded", "amount": 50.0, "currency": "INR", "created_at": "2026-10-06T00:00:00+00:00"},
        {"status": "paid", "amount": 999.0, "currency": "INR", "created_at": "2025-09-30T00:00:00+00:00"},
    )

    out = admin_service.financial_stats(actors["admin"], period="monthly", now=now)

    labels = [b["label"] for b in out["trend"]]
    assert len(labels) == 12
    assert labels[0] == "2025-11"
    assert labels[-1] == "2026-10"
    assert out["totals"]["revenue"] == 399.0
    assert out["totals"]["refunded"] == 50.0
    assert out["totals"]["transactions"] == 3
    assert out["revenue_by_currency"] == {"INR": 299.0, "USD": 100.0}
    assert out["trend"][-1]["paid"] == 299.0


def test_financial_stats_yearly_buckets(admin_service, fake_db, actors):
    now = datetime(2026, 10, 18, tzinfo=timezone.utc)
    fake_db.seed("payments", {"status": "paid", "amount": 10.0, "currency": "INR", "created_at": "2023-03-01T00:00:00+00:00"})
    out = admin_service.financial_stats(actors["admin"], period="yearly", now=now)
    assert [b["label"] for b in out["trend"]] == ["2022", "2023", "2024", "2025", "2026"]
    assert out["trend"][1]["paid"] == 10.0


def test_list_entities_paginates_and_filters(admin_service, actors, make_submission):
    for i in range(5):
        make_submission("submitted", title=f"Graph paper {i}")
    make_submission("accepted", title="Topology notes")

    page = admin_service.list_entities(
        "submissions", AdminListQuery(page=2, limit=2, status="submitted", sort_by="title", sort_order="asc"), actors["admin"]
    )

    assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "total_pages": 3}
    assert [r["title"] for r in page["data"]] == ["Graph paper 2", "Graph paper 3"]

    search = admin_service.list_entities("submissions", AdminListQuery(q="topology"), actors["admin"])
    assert search["pagination"]["total"] == 1


def test_list_users_by_role(admin_service, actors):
    out = admin_service.list_entities("users", AdminListQuery(role="reviewer"), actors["admin"])
    assert {r["email"] for r in out["data"]} == {"reviewer1@example.com", "reviewer2@example.com"}


def test_sort_whitelist(admin_service, actors):
    with pytest.raises(ValidationError) as exc:
        admin_service.list_entities("users", AdminListQuery(sort_by="password_hash"), actors["admin"])
    assert "email" in exc.value.context["allowed"]


def test_get_submission_includes_history_and_payments(admin_service, fake_db, actors, make_submission):
    sub = make_submission("accepted")
    fake_db.seed("submission_timeline", {"submission_id": sub["id"], "event": "status_change", "to_status": "accepted"})
    fake_db.seed("payments", {"submission_id": sub["id"], "status": "pending", "amount": 299.0})

    record = admin_service.get_entity("submissions", sub["id"], actors["admin"])

    assert len(record["history"]) == 1
    assert len(record["payments"]) == 1
    with pytest.raises(NotFoundError):
        admin_service.get_entity("payments", "missing", actors["admin"])


def test_update_user_roles_and_status(admin_service, fake_db, actors):
    updated = admin_service.update_user(
        actors["author"].id,
        UserUpdateRequest(roles=["Author", "reviewer", "author"], account_status="suspended"),
        actors["admin"],
    )
    assert updated["roles"] == ["author", "reviewer"]
    assert updated["account_status"] == "suspended"


def test_admin_cannot_lock_themselves_out(admin_service, actors):
    with pytest.raises(ValidationError):
        admin_service.update_user(actors["admin"].id, UserUpdateRequest(roles=["editor"]), actors["admin"])
    with pytest.raises(ValidationError):
        admin_service.update_user(actors["admin"].id, UserUpdateRequest(account_status="inactive"), actors["admin"])


def test_unknown_role_is_rejected():
    with pytest.raises(ValueError):
        UserUpdateRequest(roles=["superuser"])


def test_complaint_lifecycle(admin_service, actors, make_submission):
    sub = make_submission("published")
    complaint = admin_service.create_complaint(
        ComplaintCreate(subject="Plagiarism concern", description="Section 3 matches an earlier paper.", submission_id=sub["id"]),
        actors["reviewer"],
    )
    assert complaint["status"] == "open"
    assert complaint["reporter_id"] == actors["reviewer"].id

    with pytest.raises(ValidationError):
        admin_service.update_complaint(complaint["id"], ComplaintUpdate(status=ComplaintStatus.RESOLVED), actors["admin"])

    closed = admin_service.update_complaint(
        complaint["id"],
        ComplaintUpdate(status=ComplaintStatus.RESOLVED, resolution="Author added the missing citation."),
        actors["admin"],
    )
    assert closed["status"] == "resolved"
    assert closed["resolved_by"] == actors["admin"].id
    assert closed["resolved_at"]


def test_export_csv(admin_service, fake_db, actors):
    fake_db.seed(
        "payments",
        {"invoice_number": "INV-1", "status": "paid", "amount": 299.0, "currency": "INR"},
        {"invoice_number": "INV-2", "status": "pending", "amount": 299.0, "currency": "INR"},
    )

    filename, media_type, content = admin_service.export_report(
        "payments", AdminListQuery(status="paid"), actors["admin"], fmt="csv"
    )

    assert filename.startswith("payments_") and filename.endswith(".csv")
    assert media_type == "text/csv"
    rows = list(csv.reader(io.StringIO(content.decode("utf-8"))))
    assert rows[0][:2] == ["id", "invoice_number"]
    assert len(rows) == 2
    assert rows[1][1] == "INV-1"


def test_export_xlsx(admin_service, actors):
    filename, media_type, content = admin_service.export_report("users", AdminListQuery(), actors["admin"], fmt="xlsx")

    assert filename.endswith(".xlsx")
    assert media_type.startswith("application/vnd.openxmlformats")
    ws = load_workbook(io.BytesIO(content)).active
    values = list(ws.iter_rows(values_only=True))
    assert values[0][:2] == ("id", "email")
    assert len(values) == 6
    assert ws.title == "Users"


def test_export_rejects_unknown_format(admin_service, actors):
    with pytest.raises(ValidationError):
        admin_service.export_report("users", AdminListQuery(), actors["admin"], fmt="pdf")
