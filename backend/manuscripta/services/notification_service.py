from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from manuscripta.core.config import WorkflowConfig
from manuscripta.core.mail import EmailService
from manuscripta.lib.api_client import extract_rows, supabase_admin
from manuscripta.services.notification_composer import compose

if TYPE_CHECKING:
    from manuscripta.services.lifecycle_service import StatusChangedEvent

logger = logging.getLogger("manuscripta.notifications")


class NotificationService:
    """
    通知服务：封装 notifications 表的读写

    中文注释:
    1) 写入失败只记日志并返回 None，通知属于副作用，不能阻断主流程。
    2) 读取按 user_id 过滤，接口层负责传入当前用户。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client if client is not None else supabase_admin

    def create_notification(
        self,
        *,
        user_id: str,
        submission_id: Optional[str],
        type: str,
        title: str,
        content: str,
        action_url: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        if not user_id:
            return None
        if not action_url:
            if type in {"review_invite", "review_reminder"}:
                action_url = "/dashboard?tab=reviewer"
            elif submission_id:
                action_url = f"/dashboard/author/submissions/{submission_id}"
            else:
                action_url = "/dashboard/notifications"
        try:
            res = (
                self.client.table("notifications")
                .insert(
                    {
                        "user_id": user_id,
                        "submission_id": submission_id,
                        "action_url": action_url,
                        "type": type,
                        "title": title,
                        "content": content,
                        "is_read": False,
                    }
                )
                .execute()
            )
            rows = extract_rows(res)
            return rows[0] if rows else None
        except Exception as e:
            logger.warning("[Notifications] create failed (ignored): %s", e)
            return None

    def list_for_user(self, *, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        res = (
            self.client.table("notifications")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return extract_rows(res)

    def mark_read(self, *, user_id: str, notification_id: str) -> Optional[Dict[str, Any]]:
        res = (
            self.client.table("notifications")
            .update({"is_read": True})
            .eq("id", notification_id)
            .eq("user_id", user_id)
            .execute()
        )
        rows = extract_rows(res)
        return rows[0] if rows else None


class NotificationDispatcher:
    """
    状态变更事件的投递端：站内信 + 邮件。

    中文注释:
    - 文案来自 notification_composer.compose（纯函数）；
    - 邮件失败只记录，不同步重试，也不回滚状态流转。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        email_service: Optional[EmailService] = None,
        notifications: Optional[NotificationService] = None,
        workflow_config: Optional[WorkflowConfig] = None,
    ) -> None:
        self.client = client if client is not None else supabase_admin
        self._email = email_service or EmailService(log_client=self.client)
        self.notifications = notifications or NotificationService(self.client)
        self.workflow_config = workflow_config or WorkflowConfig.from_env()

    def _load_author(self, author_id: str) -> Dict[str, Any]:
        try:
            res = (
                self.client.table("user_profiles")
                .select("id,email,full_name")
                .eq("id", author_id)
                .limit(1)
                .execute()
            )
            rows = extract_rows(res)
            return rows[0] if rows else {}
        except Exception as e:
            logger.warning("[Notifications] load author profile failed (ignored): %s", e)
            return {}

    def on_status_changed(self, event: "StatusChangedEvent") -> None:
        submission = event.submission or {}
        author_id = str(submission.get("author_id") or "")
        if not author_id:
            return

        author = self._load_author(author_id)
        author_name = str(author.get("full_name") or author.get("email") or "Author")
        message = compose(
            event.to_status,
            str(submission.get("title") or ""),
            author_name,
            event.submission_id,
            doi=submission.get("doi"),
            publication_date=event.occurred_at.date() if event.to_status == "published" else None,
            revision_days=self.workflow_config.revision_days,
        )
        if message is None:
            return

        self.notifications.create_notification(
            user_id=author_id,
            submission_id=event.submission_id,
            type="status_change",
            title=message.subject,
            content=message.body,
        )

        to_email = str(author.get("email") or "").strip()
        if not to_email:
            return
        try:
            sent = self._email.send_template_email(
                to_email=to_email,
                subject=message.subject,
                template_name="status_update.html",
                context={
                    "paragraphs": message.body.split("\n\n"),
                    "submission_id": event.submission_id,
                },
                text_body=message.body,
            )
            if not sent:
                logger.info("[Notifications] status email not sent: submission=%s", event.submission_id)
        except Exception as e:
            logger.warning("[Notifications] status email failed (ignored): %s", e)
