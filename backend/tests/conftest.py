import os
from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import MagicMock

# 中文注释: 必须在 import main 之前设置，auth_utils 在导入时读取 JWT secret
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

import pytest
import pytest_asyncio
from fastapi import Header
from httpx import ASGITransport, AsyncClient

from main import app
from manuscripta.api.v1 import deps
from manuscripta.core.config import PaymentConfig, WorkflowConfig
from manuscripta.core.mail import EmailService
from manuscripta.core.roles import get_current_profile
from manuscripta.models.user import Actor
from manuscripta.services.admin_service import AdminService
from manuscripta.services.issue_service import IssueService
from manuscripta.services.lifecycle_service import SubmissionLifecycleService
from manuscripta.services.maintenance_service import MaintenanceService
from manuscripta.services.notification_service import NotificationService
from manuscripta.services.payment_service import PaymentService
from manuscripta.services.public_service import PublicCatalogService
from manuscripta.services.review_service import ReviewService
from tests.utils.api_client import AUTHOR_ID
from tests.utils.fake_gateway import FakeGateway
from tests.utils.fake_supabase import FakeSupabase

REVIEWER_ID = "22222222-2222-4222-a222-222222222222"
REVIEWER2_ID = "33333333-3333-4333-a333-333333333333"
EDITOR_ID = "44444444-4444-4444-a444-444444444444"
ADMIN_ID = "55555555-5555-4555-a555-555555555555"

# === 全局测试配置 ===
# 中文注释:
# 1. 所有服务都注入 FakeSupabase（内存表），不依赖真实 Supabase。
# 2. API 测试通过 X-Test-User 头切换当前用户（覆盖 get_current_profile）。
# 3. 鉴权链路本身在 test_auth_api.py 里用真实 JWT 覆盖。


@pytest.fixture
def actors() -> dict[str, Actor]:
    return {
        "author": Actor(id=AUTHOR_ID, roles=frozenset({"author"}), email="author@example.com"),
        "reviewer": Actor(id=REVIEWER_ID, roles=frozenset({"reviewer"}), email="reviewer1@example.com"),
        "reviewer2": Actor(id=REVIEWER2_ID, roles=frozenset({"reviewer"}), email="reviewer2@example.com"),
        "editor": Actor(id=EDITOR_ID, roles=frozenset({"editor"}), email="editor@example.com"),
        "admin": Actor(id=ADMIN_ID, roles=frozenset({"admin", "editor"}), email="admin@example.com"),
    }

@pytest.fixture
def fake_db() -> FakeSupabase:
    db = FakeSupabase(unique={"payment_events": ["event_id"]})
    db.seed(
        "user_profiles",
        {"id": AUTHOR_ID, "email": "author@example.com", "full_name": "Ada Author", "roles": ["author"], "account_status": "active"},
        {"id": REVIEWER_ID, "email": "reviewer1@example.com", "full_name": "Rita Reviewer", "roles": ["reviewer"], "account_status": "active"},
        {"id": REVIEWER2_ID, "email": "reviewer2@example.com", "full_name": "Remy Reviewer", "roles": ["reviewer"], "account_status": "active"},
        {"id": EDITOR_ID, "email": "editor@example.com", "full_name": "Eddie Editor", "roles": ["editor"], "account_status": "active"},
        {"id": ADMIN_ID, "email": "admin@example.com", "full_name": "Alex Admin", "roles": ["admin", "editor"], "account_status": "active"},
    )
    return db

@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig(
        doi_prefix="10.5555",
        journal_code="manuscripta",
        revision_days=60,
        review_due_days=21,
        require_proof_approval=False,
    )

@pytest.fixture
def payment_config() -> PaymentConfig:
    return PaymentConfig(
        gateway_secret_key="sk_test_123",
        webhook_secret="whsec_test_123",
        apc_amount=299.0,
        apc_currency="INR",
        webhook_tolerance_seconds=300,
    )

@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()

@pytest.fixture
def email_service() -> MagicMock:
    svc = MagicMock(spec=EmailService)
    svc.send_template_email.return_value = True
    return svc

@pytest.fixture
def events() -> list:
    return []

@pytest.fixture
def lifecycle(fake_db, workflow_config, events) -> SubmissionLifecycleService:
    return SubmissionLifecycleService(client=fake_db, workflow_config=workflow_config, listeners=[events.append])

@pytest.fixture
def review_service(fake_db, workflow_config, email_service) -> ReviewService:
    return ReviewService(client=fake_db, email_service=email_service, workflow_config=workflow_config)

@pytest.fixture
def payment_service(fake_db, gateway, payment_config) -> PaymentService:
    return PaymentService(client=fake_db, gateway=gateway, config=payment_config)

@pytest.fixture
def issue_service(fake_db) -> IssueService:
    return IssueService(fake_db)

@pytest.fixture
def admin_service(fake_db) -> AdminService:
    return AdminService(fake_db)

@pytest.fixture
def public_service(fake_db) -> PublicCatalogService:
    return PublicCatalogService(fake_db)

@pytest.fixture
def make_submission(fake_db):
    """
    直接写入一条稿件（绕过状态机，用于构造任意起点）。
    """

    def _make(status: str = "submitted", *, author_id: str = AUTHOR_ID, title: str = "Graph Algorithms", **extra):
        row = {
            "title": title,
            "abstract": "A study of shortest paths in sparse graphs with negative edges.",
            "keywords": ["graphs"],
            "author_id": author_id,
            "status": status,
            "revision_count": 0,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        row.update(extra)
        return fake_db.seed("submissions", row)[0]

    return _make

@pytest_asyncio.fixture
async def client(
    fake_db,
    actors,
    lifecycle,
    review_service,
    payment_service,
    issue_service,
    admin_service,
    public_service,
) -> AsyncGenerator:
    """
    API 测试客户端：服务依赖全部替换为注入 FakeSupabase 的实例。
    """

    async def _profile(x_test_user: str = Header(default="author")) -> dict:
        actor = actors[x_test_user]
        return {"id": actor.id, "email": actor.email, "roles": sorted(actor.roles), "account_status": "active"}

    app.dependency_overrides[get_current_profile] = _profile
    app.dependency_overrides[deps.get_lifecycle_service] = lambda: lifecycle
    app.dependency_overrides[deps.get_review_service] = lambda: review_service
    app.dependency_overrides[deps.get_payment_service] = lambda: payment_service
    app.dependency_overrides[deps.get_issue_service] = lambda: issue_service
    app.dependency_overrides[deps.get_admin_service] = lambda: admin_service
    app.dependency_overrides[deps.get_public_service] = lambda: public_service
    app.dependency_overrides[deps.get_notification_service] = lambda: NotificationService(fake_db)
    app.dependency_overrides[deps.get_maintenance_service] = lambda: MaintenanceService(fake_db)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
