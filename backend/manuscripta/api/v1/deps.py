"""
服务工厂（FastAPI 依赖）。

中文注释: 每个请求创建一次服务实例，单测通过 app.dependency_overrides 注入 fake client。
"""

from manuscripta.services.admin_service import AdminService
from manuscripta.services.issue_service import IssueService
from manuscripta.services.lifecycle_service import SubmissionLifecycleService
from manuscripta.services.maintenance_service import MaintenanceService
from manuscripta.services.notification_service import NotificationService
from manuscripta.services.payment_service import PaymentService
from manuscripta.services.public_service import PublicCatalogService
from manuscripta.services.review_service import ReviewService


def get_lifecycle_service() -> SubmissionLifecycleService:
    return SubmissionLifecycleService()


def get_review_service() -> ReviewService:
    return ReviewService()


def get_payment_service() -> PaymentService:
    return PaymentService()


def get_issue_service() -> IssueService:
    return IssueService()


def get_admin_service() -> AdminService:
    return AdminService()


def get_notification_service() -> NotificationService:
    return NotificationService()


def get_maintenance_service() -> MaintenanceService:
    return MaintenanceService()


def get_public_service() -> PublicCatalogService:
    return PublicCatalogService()
