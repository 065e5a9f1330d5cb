from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from postgrest.exceptions import APIError

from manuscripta.core.config import PaymentConfig
from manuscripta.core.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from manuscripta.core.invoice_generator import build_invoice_pdf_bytes
from manuscripta.core.role_matrix import can_perform_action
from manuscripta.lib.api_client import extract_rows, supabase_admin
from manuscripta.models.payment import ConfirmPaymentRequest, GatewayIntent, PaymentStatus
from manuscripta.models.submission import SubmissionStatus, normalize_status
from manuscripta.models.user import Actor
from manuscripta.services.notification_service import NotificationService
from manuscripta.services.payment_gateway import (
    PaymentGateway,
    intent_from_payload,
    to_minor_units,
    verify_webhook_signature,
)

logger = logging.getLogger("manuscripta.payments")

# 只有这些状态可以被确认为 PAID（REFUNDED 永不回到 PAID）
PAYABLE_STATUSES = frozenset({PaymentStatus.PENDING.value, PaymentStatus.FAILED.value})


def has_paid_payment(client: Any, submission_id: str) -> bool:
    resp = (
        client.table("payments")
        .select("id")
        .eq("submission_id", submission_id)
        .eq("status", PaymentStatus.PAID.value)
        .limit(1)
        .execute()
    )
    return bool(extract_rows(resp))


def generate_invoice_number(submission_id: str, *, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    short = str(submission_id).replace("-", "")[:8].upper()
    return f"INV-{now.strftime('%Y%m%d%H%M%S')}-{short}"


class PaymentService:
    """
    APC 支付工作流。

    中文注释:
    - PAID 是发表的前置条件（lifecycle 的 PUBLISHED 守卫调用 has_paid_payment）；
    - 确认是幂等的：同一 transaction_id 重放只返回现有记录，不会产生第二次 PAID；
    - webhook 先验签，再按 event id 去重（payment_events 表）。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        gateway: Optional[PaymentGateway] = None,
        config: Optional[PaymentConfig] = None,
        notifications: Optional[NotificationService] = None,
    ) -> None:
        self.client = client if client is not None else supabase_admin
        self.config = config or PaymentConfig.from_env()
        self.gateway = gateway or PaymentGateway(self.config)
        self.notifications = notifications or NotificationService(self.client)

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

    def get_payment(self, payment_id: str) -> dict[str, Any]:
        rows = extract_rows(self.client.table("payments").select("*").eq("id", payment_id).limit(1).execute())
        if not rows:
            raise NotFoundError("Payment not found", context={"payment_id": payment_id})
        return rows[0]

    def _payments_for_submission(self, submission_id: str) -> list[dict[str, Any]]:
        return extract_rows(
            self.client.table("payments")
            .select("*")
            .eq("submission_id", submission_id)
            .order("created_at", desc=True)
            .execute()
        )

    def _find_by_intent(self, intent_id: str) -> Optional[dict[str, Any]]:
        rows = extract_rows(
            self.client.table("payments").select("*").eq("gateway_intent_id", intent_id).limit(1).execute()
        )
        return rows[0] if rows else None

    # === author actions ===

    def create_intent(self, submission_id: str, actor: Actor) -> dict[str, Any]:
        submission = self._get_submission(submission_id)
        if str(submission.get("author_id") or "") != actor.id:
            raise AuthorizationError("Only the submitting author can pay the APC")
        if not can_perform_action(action="payment:create_intent", roles=actor.roles):
            raise AuthorizationError("Missing capability: payment:create_intent")
        if normalize_status(submission.get("status")) != SubmissionStatus.ACCEPTED.value:
            raise InvalidStateError("APC can only be paid for accepted submissions")

        existing = self._payments_for_submission(submission_id)
        if any(p.get("status") == PaymentStatus.PAID.value for p in existing):
            raise InvalidStateError("APC has already been paid for this submission")

        pending = next((p for p in existing if p.get("status") == PaymentStatus.PENDING.value), None)
        if pending is not None and pending.get("gateway_intent_id"):
            intent = self.gateway.retrieve_intent(str(pending["gateway_intent_id"]))
            return self._intent_response(pending, intent)

        invoice_number = generate_invoice_number(submission_id, now=self._now())
        intent = self.gateway.create_intent(
            amount=self.config.apc_amount,
            currency=self.config.apc_currency,
            metadata={"submission_id": str(submission_id), "invoice_number": invoice_number},
            idempotency_key=invoice_number,
        )

        now = self._now().isoformat()
        row = {
            "submission_id": submission_id,
            "author_id": actor.id,
            "amount": self.config.apc_amount,
            "currency": self.config.apc_currency,
            "status": PaymentStatus.PENDING.value,
            "gateway_intent_id": intent.id,
            "invoice_number": invoice_number,
            "metadata": {},
            "created_at": now,
            "updated_at": now,
        }
        created = extract_rows(self.client.table("payments").insert(row).execute())
        if not created:
            raise InvalidStateError("Failed to create payment record", status_code=500)
        logger.info("[Payments] intent created: submission=%s invoice=%s", submission_id, invoice_number)
        return self._intent_response(created[0], intent)

    @staticmethod
    def _intent_response(payment: dict[str, Any], intent: GatewayIntent) -> dict[str, Any]:
        return {
            "payment_id": str(payment["id"]),
            "client_secret": intent.client_secret,
            "invoice_number": payment.get("invoice_number"),
            "amount": float(payment.get("amount") or 0),
            "currency": payment.get("currency"),
        }

    def get_status(self, submission_id: str, actor: Actor) -> dict[str, Any]:
        submission = self._get_submission(submission_id)
        is_author = str(submission.get("author_id") or "") == actor.id
        if not (is_author or can_perform_action(action="submission:view_all", roles=actor.roles)):
            raise AuthorizationError("Not allowed to view this payment")

        payments = self._payments_for_submission(submission_id)
        paid = next((p for p in payments if p.get("status") == PaymentStatus.PAID.value), None)
        latest = paid or (payments[0] if payments else None)
        return {
            "submission_id": submission_id,
            "status": latest.get("status") if latest else None,
            "is_paid": paid is not None,
            "amount": float(latest.get("amount")) if latest else self.config.apc_amount,
            "currency": latest.get("currency") if latest else self.config.apc_currency,
            "payment": latest,
        }

    def history_for_author(self, actor: Actor) -> list[dict[str, Any]]:
        return extract_rows(
            self.client.table("payments")
            .select("*")
            .eq("author_id", actor.id)
            .order("created_at", desc=True)
            .execute()
        )

    def invoice_pdf(self, payment_id: str, actor: Actor) -> tuple[str, bytes]:
        payment = self.get_payment(payment_id)
        is_author = str(payment.get("author_id") or "") == actor.id
        if not (is_author or can_perform_action(action="payment:confirm_manual", roles=actor.roles)):
            raise AuthorizationError("Not allowed to download this invoice")

        submission = self._get_submission(str(payment.get("submission_id")))
        profiles = extract_rows(
            self.client.table("user_profiles")
            .select("full_name,email")
            .eq("id", str(payment.get("author_id") or ""))
            .limit(1)
            .execute()
        )
        author = profiles[0] if profiles else {}
        invoice_number = str(payment.get("invoice_number") or payment_id)
        pdf = build_invoice_pdf_bytes(
            invoice_number=invoice_number,
            manuscript_title=str(submission.get("title") or ""),
            author_name=str(author.get("full_name") or author.get("email") or ""),
            amount=float(payment.get("amount") or 0),
            currency=str(payment.get("currency") or self.config.apc_currency),
            status=str(payment.get("status") or ""),
            paid_at=payment.get("paid_at"),
        )
        return f"{invoice_number}.pdf", pdf

    # === confirmation ===

    def confirm(
        self,
        payment_id: str,
        evidence: ConfirmPaymentRequest,
        actor: Optional[Actor] = None,
    ) -> dict[str, Any]:
        """
        确认支付，返回 {"payment": row, "replayed": bool}。

        - method=gateway: 回查网关 intent 必须 succeeded 且金额一致；
        - method=manual: 仅编辑/管理员（payment:confirm_manual），不回查网关。
        """
        payment = self.get_payment(payment_id)
        replay = self._replay_or_none(payment, evidence.transaction_id)
        if replay is not None:
            return replay

        if evidence.method == "manual":
            if actor is None or not can_perform_action(action="payment:confirm_manual", roles=actor.roles):
                raise AuthorizationError("Manual confirmation requires editor privileges")
        else:
            if actor is not None:
                is_author = str(payment.get("author_id") or "") == actor.id
                if not (is_author or can_perform_action(action="payment:confirm_manual", roles=actor.roles)):
                    raise AuthorizationError("Not allowed to confirm this payment")
            intent_id = str(payment.get("gateway_intent_id") or "")
            if intent_id and evidence.transaction_id != intent_id:
                raise ValidationError("Transaction id does not match the payment intent")
            intent = self.gateway.retrieve_intent(evidence.transaction_id)
            self._check_intent(payment, intent)

        return self._mark_paid(
            payment,
            transaction_id=evidence.transaction_id,
            method=evidence.method,
            actor_id=actor.id if actor else None,
            note=evidence.note,
        )

    def _replay_or_none(self, payment: dict[str, Any], transaction_id: str) -> Optional[dict[str, Any]]:
        status = payment.get("status")
        if status == PaymentStatus.PAID.value:
            if str(payment.get("transaction_id") or "") == transaction_id:
                return {"payment": payment, "replayed": True}
            raise InvalidStateError("Payment already confirmed with a different transaction")
        if status == PaymentStatus.REFUNDED.value:
            raise InvalidStateError("Payment has been refunded")
        return None

    def _check_intent(self, payment: dict[str, Any], intent: GatewayIntent) -> None:
        if not intent.succeeded:
            raise ValidationError(f"Payment not completed at gateway (status={intent.status})")
        expected = to_minor_units(float(payment.get("amount") or 0))
        if intent.amount and intent.amount != expected:
            raise ValidationError("Gateway amount does not match the APC amount")

    def _mark_paid(
        self,
        payment: dict[str, Any],
        *,
        transaction_id: str,
        method: str,
        actor_id: Optional[str],
        note: Optional[str] = None,
    ) -> dict[str, Any]:
        now = self._now().isoformat()
        metadata = dict(payment.get("metadata") or {})
        metadata["confirmation_method"] = method
        if actor_id:
            metadata["confirmed_by"] = actor_id
        if note:
            metadata["note"] = note

        current = str(payment.get("status") or PaymentStatus.PENDING.value)
        if current not in PAYABLE_STATUSES:
            replay = self._replay_or_none(payment, transaction_id)
            if replay is not None:
                return replay
            raise InvalidStateError(f"Payment cannot be marked paid (status={current})")

        rows = extract_rows(
            self.client.table("payments")
            .update(
                {
                    "status": PaymentStatus.PAID.value,
                    "transaction_id": transaction_id,
                    "paid_at": now,
                    "updated_at": now,
                    "metadata": metadata,
                }
            )
            .eq("id", payment["id"])
            .in_("status", sorted(PAYABLE_STATUSES))
            .execute()
        )
        if not rows:
            latest = self.get_payment(str(payment["id"]))
            replay = self._replay_or_none(latest, transaction_id)
            if replay is not None:
                return replay
            raise ConcurrentModificationError("Payment was modified concurrently")

        updated = rows[0]
        logger.info("[Payments] paid: payment=%s submission=%s method=%s", updated["id"], updated.get("submission_id"), method)
        self.notifications.create_notification(
            user_id=str(updated.get("author_id") or ""),
            submission_id=str(updated.get("submission_id") or ""),
            type="payment",
            title="Payment Received",
            content=f"We have received your APC payment (invoice {updated.get('invoice_number')}).",
        )
        return {"payment": updated, "replayed": False}

    # === webhook ===

    def handle_webhook(self, raw_body: bytes, signature_header: Optional[str]) -> dict[str, Any]:
        event = verify_webhook_signature(
            raw_body,
            signature_header,
            secret=self.config.webhook_secret,
            tolerance_seconds=self.config.webhook_tolerance_seconds,
        )
        event_id = str(event["id"])
        event_type = str(event["type"])

        seen = extract_rows(
            self.client.table("payment_events").select("event_id").eq("event_id", event_id).limit(1).execute()
        )
        if seen:
            logger.info("[Payments] webhook replay ignored: event=%s", event_id)
            return {"received": True, "event_id": event_id, "duplicate": True, "action": "none"}

        obj = ((event.get("data") or {}).get("object")) or {}
        action = "acknowledged"
        payment_id: Optional[str] = None

        if event_type in {"payment_intent.succeeded", "payment_intent.payment_failed"}:
            intent = intent_from_payload(obj)
            payment = self._find_by_intent(intent.id) if intent.id else None
            if payment is None:
                logger.warning("[Payments] webhook for unknown intent: %s", intent.id)
                action = "unknown_intent"
            elif event_type == "payment_intent.succeeded":
                payment_id = str(payment["id"])
                if payment.get("status") == PaymentStatus.PAID.value:
                    action = "already_paid"
                elif payment.get("status") == PaymentStatus.REFUNDED.value:
                    # 退款后迟到的 succeeded 事件：只记录，不恢复 PAID
                    logger.warning("[Payments] succeeded event for refunded payment ignored: payment=%s", payment_id)
                    action = "ignored_refunded"
                else:
                    self._check_intent(payment, intent)
                    result = self._mark_paid(payment, transaction_id=intent.id, method="gateway", actor_id=None)
                    action = "already_paid" if result["replayed"] else "paid"
            else:
                payment_id = str(payment["id"])
                action = "failed" if self._mark_failed(payment, obj) else "ignored"

        try:
            self.client.table("payment_events").insert(
                {
                    "event_id": event_id,
                    "type": event_type,
                    "payment_id": payment_id,
                    "action": action,
                    "received_at": self._now().isoformat(),
                }
            ).execute()
        except APIError as e:
            # 23505: 并发重放已先写入同一 event_id；状态写入本身是条件更新，结果一致
            if str(getattr(e, "code", "") or "") != "23505":
                raise
            logger.info("[Payments] webhook event recorded concurrently: event=%s", event_id)
            return {"received": True, "event_id": event_id, "duplicate": True, "action": action}
        return {"received": True, "event_id": event_id, "duplicate": False, "action": action}

    def _mark_failed(self, payment: dict[str, Any], intent_obj: dict[str, Any]) -> bool:
        error = (intent_obj.get("last_payment_error") or {}).get("message")
        metadata = dict(payment.get("metadata") or {})
        if error:
            metadata["failure_reason"] = error
        rows = extract_rows(
            self.client.table("payments")
            .update(
                {"status": PaymentStatus.FAILED.value, "metadata": metadata, "updated_at": self._now().isoformat()}
            )
            .eq("id", payment["id"])
            .eq("status", PaymentStatus.PENDING.value)
            .execute()
        )
        return bool(rows)

    # === refunds ===

    def refund(self, payment_id: str, reason: str, actor: Actor) -> dict[str, Any]:
        if not can_perform_action(action="payment:refund", roles=actor.roles):
            raise AuthorizationError("Missing capability: payment:refund")
        payment = self.get_payment(payment_id)
        if payment.get("status") != PaymentStatus.PAID.value:
            raise InvalidStateError(f"Only paid payments can be refunded (status={payment.get('status')})")

        method = (payment.get("metadata") or {}).get("confirmation_method")
        if payment.get("gateway_intent_id") and method != "manual":
            self.gateway.refund(str(payment["gateway_intent_id"]), reason=reason)

        now = self._now().isoformat()
        rows = extract_rows(
            self.client.table("payments")
            .update(
                {
                    "status": PaymentStatus.REFUNDED.value,
                    "refunded_at": now,
                    "refund_reason": reason,
                    "updated_at": now,
                }
            )
            .eq("id", payment_id)
            .eq("status", PaymentStatus.PAID.value)
            .execute()
        )
        if not rows:
            raise ConcurrentModificationError("Payment was modified concurrently")
        logger.info("[Payments] refunded: payment=%s by=%s", payment_id, actor.id)
        return rows[0]
