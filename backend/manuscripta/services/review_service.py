from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from manuscripta.core.config import WorkflowConfig
from manuscripta.core.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    DuplicateInvitationError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from manuscripta.core.mail import EmailService
from manuscripta.core.role_matrix import can_perform_action
from manuscripta.lib.api_client import extract_rows, supabase_admin
from manuscripta.models.review import (
    ACTIVE_REVIEW_STATUSES,
    Recommendation,
    ReviewStatus,
    ReviewSubmitRequest,
    normalize_recommendation,
)
from manuscripta.models.submission import SubmissionStatus, normalize_status
from manuscripta.models.user import Actor
from manuscripta.services.notification_service import NotificationService

logger = logging.getLogger("manuscripta.reviews")

# 可以继续邀请审稿人的稿件状态
INVITABLE_STATUSES = frozenset(
    {
        SubmissionStatus.SUBMITTED.value,
        SubmissionStatus.UNDER_REVIEW.value,
        SubmissionStatus.REVISION_REQUIRED.value,
    }
)


def _parse_ts(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class ReviewService:
    """
    审稿邀请 -> 接受/拒绝 -> 提交报告。

    中文注释:
    - 审稿完成不会推动稿件状态，决策只由编辑通过 lifecycle.transition 完成；
    - COMPLETED 报告不可修改（条件更新 status=in_progress 保证）；
    - 机密意见只出现在编辑视图（aggregate_for_decision）。
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
        self.config = workflow_config or WorkflowConfig.from_env()

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # === lookups ===

    def _get_submission(self, submission_id: str) -> dict[str, Any]:
        rows = extract_rows(
            self.client.table("submissions").select("*").eq("id", submission_id).limit(1).execute()
        )
        if not rows:
            raise NotFoundError("Submission not found", context={"submission_id": submission_id})
        return rows[0]

    def get_review(self, review_id: str) -> dict[str, Any]:
        rows = extract_rows(self.client.table("reviews").select("*").eq("id", review_id).limit(1).execute())
        if not rows:
            raise NotFoundError("Review not found", context={"review_id": review_id})
        return rows[0]

    def _get_profile(self, user_id: str) -> dict[str, Any]:
        rows = extract_rows(
            self.client.table("user_profiles").select("id,email,full_name,roles").eq("id", user_id).limit(1).execute()
        )
        return rows[0] if rows else {}

    def _reviews_for_submission(self, submission_id: str) -> list[dict[str, Any]]:
        return extract_rows(
            self.client.table("reviews")
            .select("*")
            .eq("submission_id", submission_id)
            .order("invited_at", desc=False)
            .execute()
        )

    # === editor ===

    def invite_reviewer(
        self,
        submission_id: str,
        reviewer_id: str,
        actor: Actor,
        *,
        due_days: Optional[int] = None,
    ) -> dict[str, Any]:
        if not can_perform_action(action="review:invite", roles=actor.roles):
            raise AuthorizationError("Missing capability: review:invite")

        submission = self._get_submission(submission_id)
        if submission.get("withdrawn_at") or normalize_status(submission.get("status")) not in INVITABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot invite reviewers for a submission in status {submission.get('status')}"
            )
        if str(submission.get("author_id") or "") == str(reviewer_id):
            raise ValidationError("The submitting author cannot review their own manuscript")

        reviewer = self._get_profile(reviewer_id)
        if not reviewer:
            raise NotFoundError("Reviewer not found", context={"reviewer_id": reviewer_id})

        existing = extract_rows(
            self.client.table("reviews")
            .select("id,status")
            .eq("submission_id", submission_id)
            .eq("reviewer_id", reviewer_id)
            .in_("status", sorted(ACTIVE_REVIEW_STATUSES))
            .limit(1)
            .execute()
        )
        if existing:
            raise DuplicateInvitationError(
                "Reviewer already has an open invitation for this submission",
                context={"review_id": existing[0].get("id")},
            )

        now = self._now()
        due_at = now + timedelta(days=due_days or self.config.review_due_days)
        created = extract_rows(
            self.client.table("reviews")
            .insert(
                {
                    "submission_id": submission_id,
                    "reviewer_id": reviewer_id,
                    "invited_by": actor.id,
                    "status": ReviewStatus.PENDING.value,
                    "invited_at": now.isoformat(),
                    "due_at": due_at.isoformat(),
                }
            )
            .execute()
        )
        if not created:
            raise InvalidStateError("Failed to create review invitation", status_code=500)
        review = created[0]

        self._notify_invitation(review, submission, reviewer, due_at)
        return review

    def _notify_invitation(
        self,
        review: dict[str, Any],
        submission: dict[str, Any],
        reviewer: dict[str, Any],
        due_at: datetime,
    ) -> None:
        title = str(submission.get("title") or "Manuscript")
        self.notifications.create_notification(
            user_id=str(reviewer.get("id") or ""),
            submission_id=str(submission.get("id") or ""),
            type="review_invite",
            title="Review Invitation",
            content=f'You have been invited to review "{title}".',
        )
        email = str(reviewer.get("email") or "").strip()
        if not email:
            return
        ok = self._email.send_template_email(
            to_email=email,
            subject="Invitation to Review",
            template_name="review_invitation.html",
            context={
                "reviewer_name": reviewer.get("full_name") or email.split("@")[0],
                "title": title,
                "due_date": due_at.date().isoformat(),
                "dashboard_url": None,
            },
        )
        if not ok:
            logger.info("[Reviews] invitation email not sent: review=%s", review.get("id"))

    def aggregate_for_decision(self, submission_id: str, actor: Actor) -> dict[str, Any]:
        """
        编辑决策视图：已完成报告（含机密意见）+ 推荐分布 + 平均分。

        仅供参考，不会改变稿件状态。
        """
        if not can_perform_action(action="review:view_confidential", roles=actor.roles):
            raise AuthorizationError("Missing capability: review:view_confidential")
        submission = self._get_submission(submission_id)
        reviews = self._reviews_for_submission(submission_id)

        completed = [r for r in reviews if r.get("status") == ReviewStatus.COMPLETED.value]
        distribution = {rec.value: 0 for rec in Recommendation}
        distribution.update(Counter(str(r.get("recommendation")) for r in completed if r.get("recommendation")))
        ratings = [int(r["rating"]) for r in completed if r.get("rating") is not None]
        counts = Counter(str(r.get("status")) for r in reviews)

        return {
            "submission_id": submission_id,
            "submission_status": submission.get("status"),
            "reviews": completed,
            "recommendations": distribution,
            "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else None,
            "completed_count": len(completed),
            "pending_count": counts.get(ReviewStatus.PENDING.value, 0),
            "in_progress_count": counts.get(ReviewStatus.IN_PROGRESS.value, 0),
            "declined_count": counts.get(ReviewStatus.DECLINED.value, 0),
        }

    def extend_deadline(
        self,
        review_id: str,
        due_at: datetime,
        actor: Actor,
        *,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        编辑延长审稿期限。

        中文注释:
        - 只对仍在进行中的邀请（pending / in_progress）生效；
        - 新期限必须晚于当前时间；清空 last_reminded_at，让催办按新期限重新计算。
        """
        if not can_perform_action(action="review:invite", roles=actor.roles):
            raise AuthorizationError("Missing capability: review:invite")
        review = self.get_review(review_id)
        if review.get("status") not in ACTIVE_REVIEW_STATUSES:
            raise InvalidStateError(
                f"Cannot extend the deadline of a {review.get('status')} review",
                context={"status": review.get("status")},
            )
        new_due = _parse_ts(due_at)
        if new_due is None or new_due <= self._now():
            raise ValidationError("New due date must be in the future")

        rows = extract_rows(
            self.client.table("reviews")
            .update({"due_at": new_due.isoformat(), "last_reminded_at": None})
            .eq("id", review_id)
            .in_("status", sorted(ACTIVE_REVIEW_STATUSES))
            .execute()
        )
        if not rows:
            raise ConcurrentModificationError("Review was modified concurrently")
        updated = rows[0]
        logger.info("[Reviews] deadline extended: review=%s due=%s by=%s", review_id, new_due.isoformat(), actor.id)

        content = f"The deadline for your review has been extended to {new_due.date().isoformat()}."
        if reason:
            content = f"{content} Reason: {reason}"
        self.notifications.create_notification(
            user_id=str(updated.get("reviewer_id") or ""),
            submission_id=str(updated.get("submission_id") or ""),
            type="review_reminder",
            title="Review Deadline Extended",
            content=content,
        )
        return updated

    def remove_reviewer(
        self,
        submission_id: str,
        review_id: str,
        actor: Actor,
        *,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        撤回审稿邀请（删除 review 记录）。已提交的报告属于决策依据，不能删除。
        """
        if not can_perform_action(action="review:invite", roles=actor.roles):
            raise AuthorizationError("Missing capability: review:invite")
        review = self.get_review(review_id)
        if str(review.get("submission_id") or "") != str(submission_id):
            raise NotFoundError("Review not found", context={"review_id": review_id, "submission_id": submission_id})
        if review.get("status") == ReviewStatus.COMPLETED.value:
            raise InvalidStateError("Completed reviews cannot be removed")

        removed = extract_rows(
            self.client.table("reviews")
            .delete()
            .eq("id", review_id)
            .neq("status", ReviewStatus.COMPLETED.value)
            .execute()
        )
        if not removed:
            raise ConcurrentModificationError("Review was modified concurrently")
        logger.info("[Reviews] reviewer removed: review=%s submission=%s by=%s", review_id, submission_id, actor.id)

        if review.get("status") in ACTIVE_REVIEW_STATUSES:
            content = "Your invitation to review this manuscript has been withdrawn by the editor."
            if reason:
                content = f"{content} Reason: {reason}"
            self.notifications.create_notification(
                user_id=str(review.get("reviewer_id") or ""),
                submission_id=str(submission_id),
                type="review_invite",
                title="Review Invitation Withdrawn",
                content=content,
            )
        return removed[0]

    # === author view ===

    def reviews_for_author(self, submission_id: str, actor: Actor) -> list[dict[str, Any]]:
        submission = self._get_submission(submission_id)
        if str(submission.get("author_id") or "") != actor.id and not can_perform_action(
            action="submission:view_all", roles=actor.roles
        ):
            raise AuthorizationError("Not allowed to view reviews for this submission")
        out: list[dict[str, Any]] = []
        for idx, r in enumerate(
            (r for r in self._reviews_for_submission(submission_id) if r.get("status") == ReviewStatus.COMPLETED.value),
            start=1,
        ):
            out.append(
                {
                    "label": f"Reviewer {idx}",
                    "recommendation": r.get("recommendation"),
                    "author_comments": r.get("author_comments"),
                    "submitted_at": r.get("submitted_at"),
                }
            )
        return out

    # === reviewer ===

    def _ensure_reviewer(self, review: dict[str, Any], actor: Actor, action: str) -> None:
        if str(review.get("reviewer_id") or "") != actor.id:
            raise AuthorizationError("Only the invited reviewer can act on this review")
        if not can_perform_action(action=action, roles=actor.roles):
            raise AuthorizationError(f"Missing capability: {action}")

    def _conditional_review_update(
        self,
        review: dict[str, Any],
        *,
        expected_status: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        rows = extract_rows(
            self.client.table("reviews")
            .update(payload)
            .eq("id", review["id"])
            .eq("status", expected_status)
            .execute()
        )
        if rows:
            return rows[0]
        latest = self.get_review(str(review["id"]))
        if latest.get("status") != expected_status:
            raise InvalidTransitionError(
                f"Review is {latest.get('status')}, expected {expected_status}",
                context={"status": latest.get("status")},
            )
        raise ConcurrentModificationError("Review was modified concurrently")

    def _respond(self, review_id: str, actor: Actor, target: ReviewStatus, extra: dict[str, Any]) -> dict[str, Any]:
        review = self.get_review(review_id)
        self._ensure_reviewer(review, actor, "review:respond")
        status = review.get("status")
        if status != ReviewStatus.PENDING.value:
            raise InvalidTransitionError(
                f"Invitation is {status}; only pending invitations can be answered",
                context={"status": status},
            )
        payload = {"status": target.value, **extra}
        return self._conditional_review_update(review, expected_status=ReviewStatus.PENDING.value, payload=payload)

    def accept_invitation(self, review_id: str, actor: Actor) -> dict[str, Any]:
        return self._respond(
            review_id,
            actor,
            ReviewStatus.IN_PROGRESS,
            {"accepted_at": self._now().isoformat()},
        )

    def decline_invitation(self, review_id: str, actor: Actor, *, reason: Optional[str] = None) -> dict[str, Any]:
        extra: dict[str, Any] = {"declined_at": self._now().isoformat()}
        if reason:
            extra["decline_reason"] = reason
        return self._respond(review_id, actor, ReviewStatus.DECLINED, extra)

    def submit_review(self, review_id: str, actor: Actor, payload: ReviewSubmitRequest) -> dict[str, Any]:
        review = self.get_review(review_id)
        self._ensure_reviewer(review, actor, "review:submit")
        status = review.get("status")
        if status != ReviewStatus.IN_PROGRESS.value:
            raise InvalidTransitionError(
                f"Review is {status}; only accepted (in progress) reviews can be submitted",
                context={"status": status},
            )

        recommendation = normalize_recommendation(payload.recommendation)
        if recommendation is None:
            raise ValidationError("recommendation is required (accept/minor_revision/major_revision/reject)")
        if payload.rating is None:
            raise ValidationError("rating is required")
        if not 1 <= int(payload.rating) <= 5:
            raise ValidationError("rating must be between 1 and 5")

        updated = self._conditional_review_update(
            review,
            expected_status=ReviewStatus.IN_PROGRESS.value,
            payload={
                "status": ReviewStatus.COMPLETED.value,
                "recommendation": recommendation,
                "rating": int(payload.rating),
                "author_comments": payload.author_comments,
                "confidential_comments": payload.confidential_comments,
                "submitted_at": self._now().isoformat(),
            },
        )
        logger.info("[Reviews] completed: review=%s submission=%s", review_id, review.get("submission_id"))
        return updated

    def list_for_reviewer(self, actor: Actor, *, status: Optional[str] = None) -> list[dict[str, Any]]:
        query = self.client.table("reviews").select("*").eq("reviewer_id", actor.id)
        if status:
            query = query.eq("status", str(status).strip().lower())
        return extract_rows(query.order("invited_at", desc=True).execute())

    def reviewer_stats(self, reviewer_id: str) -> dict[str, Any]:
        reviews = extract_rows(self.client.table("reviews").select("status,rating").eq("reviewer_id", reviewer_id).execute())
        counts = Counter(str(r.get("status")) for r in reviews)
        ratings = [
            int(r["rating"])
            for r in reviews
            if r.get("status") == ReviewStatus.COMPLETED.value and r.get("rating") is not None
        ]
        return {
            "reviewer_id": reviewer_id,
            "total": len(reviews),
            "completed": counts.get(ReviewStatus.COMPLETED.value, 0),
            "pending": counts.get(ReviewStatus.PENDING.value, 0) + counts.get(ReviewStatus.IN_PROGRESS.value, 0),
            "declined": counts.get(ReviewStatus.DECLINED.value, 0),
            "average_rating": round(sum(ratings) / len(ratings), 1) if ratings else None,
        }

    # === reminders ===

    def list_overdue(self, *, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        """逾期未完成的审稿任务（按 due_at 升序）"""
        now = now or self._now()
        return extract_rows(
            self.client.table("reviews")
            .select("*")
            .in_("status", sorted(ACTIVE_REVIEW_STATUSES))
            .lt("due_at", now.isoformat())
            .order("due_at", desc=False)
            .execute()
        )

    def send_reminders(self, *, now: Optional[datetime] = None, window_hours: int = 24) -> dict[str, int]:
        """
        催办：仅处理 last_reminded_at 为空且 due_at <= now + window 的进行中任务。

        中文注释: 邮件失败只记日志；last_reminded_at 仅在发送成功后写入，保证重跑幂等。
        """
        now = now or self._now()
        threshold = now + timedelta(hours=window_hours)
        rows = extract_rows(
            self.client.table("reviews")
            .select("*")
            .in_("status", sorted(ACTIVE_REVIEW_STATUSES))
            .is_("last_reminded_at", "null")
            .lte("due_at", threshold.isoformat())
            .execute()
        )

        processed = 0
        sent = 0
        for row in rows:
            processed += 1
            reviewer = self._get_profile(str(row.get("reviewer_id") or ""))
            email = str(reviewer.get("email") or "").strip()
            if not email:
                logger.info("[Reviews] reminder skipped, reviewer has no email: %s", row.get("reviewer_id"))
                continue
            try:
                title = self._get_submission(str(row.get("submission_id"))).get("title") or "Manuscript"
            except NotFoundError:
                continue
            due_at = _parse_ts(row.get("due_at"))
            ok = self._email.send_template_email(
                to_email=email,
                subject="Friendly Reminder: Review Deadline Approaching",
                template_name="review_reminder.html",
                context={
                    "reviewer_name": reviewer.get("full_name") or email.split("@")[0],
                    "title": title,
                    "due_date": due_at.date().isoformat() if due_at else "soon",
                    "dashboard_url": None,
                },
            )
            if not ok:
                continue
            sent += 1
            try:
                self.client.table("reviews").update({"last_reminded_at": now.isoformat()}).eq("id", row["id"]).execute()
            except Exception as e:
                logger.warning("[Reviews] write last_reminded_at failed (ignored): %s", e)

        return {"processed_count": processed, "emails_sent": sent}
