from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from manuscripta.core.config import WorkflowConfig
from manuscripta.core.doi_generator import generate_doi
from manuscripta.core.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PaymentRequiredError,
    ValidationError,
)
from manuscripta.core.role_matrix import can_perform_action
from manuscripta.lib.api_client import extract_count, extract_rows, supabase_admin
from manuscripta.models.review import ReviewStatus
from manuscripta.models.submission import (
    AUTHOR_EDGES,
    SubmissionCreate,
    SubmissionStatus,
    normalize_status,
)
from manuscripta.models.user import Actor
from manuscripta.services.payment_service import has_paid_payment

logger = logging.getLogger("manuscripta.lifecycle")


@dataclass(frozen=True)
class StatusChangedEvent:
    submission_id: str
    from_status: Optional[str]
    to_status: str
    actor_id: Optional[str]
    comments: Optional[str]
    occurred_at: datetime
    submission: dict[str, Any] = field(default_factory=dict)


StatusListener = Callable[[StatusChangedEvent], None]


class SubmissionLifecycleService:
    """
    稿件状态机 + 决策历史（append-only）写入服务。

    中文注释:
    - 合法流转只看 models.submission.TRANSITIONS 这一张表；
    - 每次写状态都是“条件更新”（id + 旧 status + 旧 updated_at），并发输家得到 409；
    - 状态变更事件同步分发给 listeners（默认：站内信 + 邮件），listener 异常只记日志。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        workflow_config: Optional[WorkflowConfig] = None,
        listeners: Optional[Iterable[StatusListener]] = None,
        payment_gate: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self.client = client if client is not None else supabase_admin
        self.config = workflow_config or WorkflowConfig.from_env()
        if listeners is None:
            from manuscripta.services.notification_service import NotificationDispatcher

            listeners = [NotificationDispatcher(client=self.client, workflow_config=self.config).on_status_changed]
        self._listeners: list[StatusListener] = list(listeners)
        self._payment_gate = payment_gate or (lambda submission_id: has_paid_payment(self.client, submission_id))

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # === reads ===

    def get_submission(self, submission_id: str) -> dict[str, Any]:
        resp = (
            self.client.table("submissions")
            .select("*")
            .eq("id", submission_id)
            .limit(1)
            .execute()
        )
        rows = extract_rows(resp)
        if not rows:
            raise NotFoundError("Submission not found", context={"submission_id": submission_id})
        return rows[0]

    def get_submission_for(self, submission_id: str, actor: Actor) -> dict[str, Any]:
        submission = self.get_submission(submission_id)
        self._ensure_can_view(submission, actor)
        return submission

    def list_for_author(self, actor: Actor, *, page: int = 1, limit: int = 20) -> dict[str, Any]:
        page = max(int(page or 1), 1)
        limit = max(min(int(limit or 20), 100), 1)
        offset = (page - 1) * limit
        resp = (
            self.client.table("submissions")
            .select("*", count="exact")
            .eq("author_id", actor.id)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return {"data": extract_rows(resp), "total": extract_count(resp), "page": page, "limit": limit}

    def list_for_editor(
        self,
        actor: Actor,
        *,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """
        编辑工作台：全部稿件，可按状态过滤（status 为空或 all 表示不过滤）。
        """
        if not can_perform_action(action="submission:view_all", roles=actor.roles):
            raise AuthorizationError("Missing capability: submission:view_all")
        page = max(int(page or 1), 1)
        limit = max(min(int(limit or 20), 100), 1)
        offset = (page - 1) * limit

        query = self.client.table("submissions").select("*", count="exact")
        raw = str(status or "").strip().lower()
        if raw and raw != "all":
            norm = normalize_status(raw)
            if norm is None:
                raise ValidationError(f"Unknown status: {status}")
            query = query.eq("status", norm)
        resp = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        return {"data": extract_rows(resp), "total": extract_count(resp), "page": page, "limit": limit}

    def get_history(self, submission_id: str, actor: Actor) -> list[dict[str, Any]]:
        self.get_submission_for(submission_id, actor)
        resp = (
            self.client.table("submission_timeline")
            .select("*")
            .eq("submission_id", submission_id)
            .order("created_at", desc=False)
            .execute()
        )
        return extract_rows(resp)

    def _ensure_can_view(self, submission: dict[str, Any], actor: Actor) -> None:
        if str(submission.get("author_id") or "") == actor.id:
            return
        if can_perform_action(action="submission:view_all", roles=actor.roles):
            return
        raise AuthorizationError("Not allowed to view this submission")

    # === writes ===

    def create_submission(self, actor: Actor, payload: SubmissionCreate) -> dict[str, Any]:
        if not can_perform_action(action="submission:create", roles=actor.roles):
            raise AuthorizationError("Only authors can create submissions")

        now = self._now().isoformat()
        row = {
            "title": payload.title,
            "abstract": payload.abstract,
            "keywords": payload.keywords,
            "co_authors": [c.model_dump() for c in payload.co_authors],
            "manuscript_files": payload.manuscript_files,
            "author_id": actor.id,
            "status": SubmissionStatus.SUBMITTED.value,
            "revision_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        resp = self.client.table("submissions").insert(row).execute()
        rows = extract_rows(resp)
        if not rows:
            raise InvalidStateError("Failed to create submission", status_code=500)
        created = rows[0]

        self._append_history(
            submission_id=str(created["id"]),
            event="submitted",
            from_status=None,
            to_status=SubmissionStatus.SUBMITTED.value,
            performed_by=actor.id,
            comments=None,
            created_at=now,
        )
        self._emit(
            StatusChangedEvent(
                submission_id=str(created["id"]),
                from_status=None,
                to_status=SubmissionStatus.SUBMITTED.value,
                actor_id=actor.id,
                comments=None,
                occurred_at=datetime.fromisoformat(now),
                submission=created,
            )
        )
        return created

    def transition(
        self,
        submission_id: str,
        target_status: str | SubmissionStatus,
        actor: Actor,
        comments: Optional[str] = None,
        *,
        extra_updates: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        按状态表执行一次流转。

        错误:
        - ValidationError: 目标状态无法识别
        - InvalidTransitionError: 不在状态表里的边 / 稿件已撤回
        - AuthorizationError: 非编辑执行决策边（作者的修回边只能经 resubmit 进入）
        - InvalidStateError: 送审前没有任何审稿邀请 / 需要校样确认但作者未确认
        - PaymentRequiredError: 发表前 APC 未支付
        - ConcurrentModificationError: 条件更新失败（被其他编辑抢先）
        """
        return self._transition(
            submission_id, target_status, actor, comments, extra_updates=extra_updates, via_resubmit=False
        )

    def _transition(
        self,
        submission_id: str,
        target_status: str | SubmissionStatus,
        actor: Actor,
        comments: Optional[str] = None,
        *,
        extra_updates: Optional[dict[str, Any]] = None,
        via_resubmit: bool,
    ) -> dict[str, Any]:
        to_norm = normalize_status(target_status)
        if to_norm is None:
            raise ValidationError(f"Unknown status: {target_status}")
        target = SubmissionStatus(to_norm)

        submission = self.get_submission(submission_id)
        from_norm = normalize_status(submission.get("status"))
        if from_norm is None:
            raise InvalidStateError(f"Submission has unknown status: {submission.get('status')}")
        current = SubmissionStatus(from_norm)

        if submission.get("withdrawn_at"):
            raise InvalidTransitionError("Submission has been withdrawn")

        if not SubmissionStatus.can_transition(current.value, target.value):
            raise InvalidTransitionError(
                f"Invalid transition: {current.value} -> {target.value}. "
                f"Allowed: {sorted(SubmissionStatus.allowed_next(current.value))}",
                context={"from": current.value, "to": target.value},
            )

        self._authorize_edge(submission, current, target, actor, via_resubmit=via_resubmit)
        self._check_guards(submission, current, target)

        now = self._now()
        update_payload: dict[str, Any] = {"status": target.value, "updated_at": now.isoformat()}
        update_payload.update(self._side_updates(submission, current, target, actor, now))
        if extra_updates:
            update_payload.update(extra_updates)

        updated = self._conditional_update(submission, expected_status=current.value, payload=update_payload)

        self._append_history(
            submission_id=submission_id,
            event="status_change",
            from_status=current.value,
            to_status=target.value,
            performed_by=actor.id,
            comments=comments,
            created_at=now.isoformat(),
        )
        self._emit(
            StatusChangedEvent(
                submission_id=submission_id,
                from_status=current.value,
                to_status=target.value,
                actor_id=actor.id,
                comments=comments,
                occurred_at=now,
                submission=updated,
            )
        )
        return updated

    def resubmit(
        self,
        submission_id: str,
        actor: Actor,
        *,
        comments: Optional[str] = None,
        manuscript_files: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """
        作者修回：revision_required -> under_review。
        """
        submission = self.get_submission(submission_id)
        if str(submission.get("author_id") or "") != actor.id:
            raise AuthorizationError("Only the submitting author can resubmit")
        if not can_perform_action(action="submission:resubmit", roles=actor.roles):
            raise AuthorizationError("Missing capability: submission:resubmit")

        extra: dict[str, Any] = {
            "revision_count": int(submission.get("revision_count") or 0) + 1,
            "revision_deadline": None,
        }
        if manuscript_files:
            files = list(submission.get("manuscript_files") or [])
            files.extend(f for f in manuscript_files if f not in files)
            extra["manuscript_files"] = files
        return self._transition(
            submission_id,
            SubmissionStatus.UNDER_REVIEW,
            actor,
            comments=comments,
            extra_updates=extra,
            via_resubmit=True,
        )

    def withdraw(self, submission_id: str, actor: Actor, *, reason: Optional[str] = None) -> dict[str, Any]:
        """
        作者撤稿（软状态：写 withdrawn_at，不删除记录，不改 status）。
        """
        submission = self.get_submission(submission_id)
        is_author = str(submission.get("author_id") or "") == actor.id
        if not (is_author or actor.has_role("admin")):
            raise AuthorizationError("Only the submitting author can withdraw")
        if submission.get("withdrawn_at"):
            raise InvalidTransitionError("Submission already withdrawn")
        current = SubmissionStatus(normalize_status(submission.get("status")) or SubmissionStatus.SUBMITTED.value)
        if current.is_terminal or current == SubmissionStatus.ACCEPTED:
            raise InvalidTransitionError(f"Cannot withdraw a submission in status {current.value}")

        now = self._now().isoformat()
        updated = self._conditional_update(
            submission,
            expected_status=current.value,
            payload={"withdrawn_at": now, "withdraw_reason": reason, "updated_at": now},
        )
        self._append_history(
            submission_id=submission_id,
            event="withdrawn",
            from_status=current.value,
            to_status=current.value,
            performed_by=actor.id,
            comments=reason,
            created_at=now,
        )
        return updated

    def approve_proof(self, submission_id: str, actor: Actor) -> dict[str, Any]:
        submission = self.get_submission(submission_id)
        if str(submission.get("author_id") or "") != actor.id:
            raise AuthorizationError("Only the submitting author can approve the proof")
        if normalize_status(submission.get("status")) != SubmissionStatus.ACCEPTED.value:
            raise InvalidStateError("Proof approval is only possible for accepted submissions")
        if submission.get("proof_approved_at"):
            return submission

        now = self._now().isoformat()
        updated = self._conditional_update(
            submission,
            expected_status=SubmissionStatus.ACCEPTED.value,
            payload={"proof_approved_at": now, "updated_at": now},
        )
        self._append_history(
            submission_id=submission_id,
            event="proof_approved",
            from_status=SubmissionStatus.ACCEPTED.value,
            to_status=SubmissionStatus.ACCEPTED.value,
            performed_by=actor.id,
            comments=None,
            created_at=now,
        )
        return updated

    # === internals ===

    def _authorize_edge(
        self,
        submission: dict[str, Any],
        current: SubmissionStatus,
        target: SubmissionStatus,
        actor: Actor,
        *,
        via_resubmit: bool = False,
    ) -> None:
        # 作者边必须经 resubmit（递增 revision_count、清空修回期限）
        if via_resubmit and (current, target) in AUTHOR_EDGES and str(submission.get("author_id") or "") == actor.id:
            return
        if can_perform_action(action="submission:decide", roles=actor.roles):
            return
        raise AuthorizationError(
            f"Missing editor capability for {current.value} -> {target.value}",
            context={"required": "submission:decide"},
        )

    def _check_guards(self, submission: dict[str, Any], current: SubmissionStatus, target: SubmissionStatus) -> None:
        submission_id = str(submission.get("id"))
        if target == SubmissionStatus.UNDER_REVIEW:
            resp = (
                self.client.table("reviews")
                .select("id", count="exact")
                .eq("submission_id", submission_id)
                .neq("status", ReviewStatus.DECLINED.value)
                .execute()
            )
            if extract_count(resp) <= 0:
                raise InvalidStateError("Invite at least one reviewer before moving to under review")

        if target == SubmissionStatus.PUBLISHED:
            if not self._payment_gate(submission_id):
                raise PaymentRequiredError("APC payment must be PAID before publication")
            if self.config.require_proof_approval and not submission.get("proof_approved_at"):
                raise InvalidStateError("Author has not approved the final proof")

    def _side_updates(
        self,
        submission: dict[str, Any],
        current: SubmissionStatus,
        target: SubmissionStatus,
        actor: Actor,
        now: datetime,
    ) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if current == SubmissionStatus.UNDER_REVIEW:
            out["decided_at"] = now.isoformat()
            out["decided_by"] = actor.id
        if target == SubmissionStatus.REVISION_REQUIRED:
            out["revision_deadline"] = (now + timedelta(days=self.config.revision_days)).isoformat()
        if target == SubmissionStatus.PUBLISHED:
            out["published_at"] = now.isoformat()
            if not submission.get("doi"):
                out["doi"] = generate_doi(
                    submission_id=str(submission.get("id")),
                    prefix=self.config.doi_prefix,
                    journal_code=self.config.journal_code,
                )
        return out

    def _conditional_update(
        self,
        submission: dict[str, Any],
        *,
        expected_status: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        submission_id = str(submission.get("id"))
        query = (
            self.client.table("submissions")
            .update(payload)
            .eq("id", submission_id)
            .eq("status", expected_status)
        )
        # 条件更新，避免并发覆盖
        if submission.get("updated_at"):
            query = query.eq("updated_at", submission["updated_at"])
        rows = extract_rows(query.execute())
        if not rows:
            latest = self.get_submission(submission_id)
            raise ConcurrentModificationError(
                "Submission was modified concurrently, reload and retry",
                context={"expected_status": expected_status, "current_status": latest.get("status")},
            )
        return rows[0]

    def _append_history(
        self,
        *,
        submission_id: str,
        event: str,
        from_status: Optional[str],
        to_status: Optional[str],
        performed_by: Optional[str],
        comments: Optional[str],
        created_at: str,
    ) -> None:
        try:
            self.client.table("submission_timeline").insert(
                {
                    "submission_id": submission_id,
                    "event": event,
                    "from_status": from_status,
                    "to_status": to_status,
                    "performed_by": performed_by,
                    "comments": comments,
                    "created_at": created_at,
                }
            ).execute()
        except Exception as e:
            # 中文注释: 状态已写入，历史写入失败不回滚（PostgREST 无跨表事务），只告警
            logger.error("[Lifecycle] decision history insert failed: submission=%s err=%s", submission_id, e)

    def _emit(self, event: StatusChangedEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning("[Lifecycle] status listener failed (ignored): %s", e)
