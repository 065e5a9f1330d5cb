from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class WorkflowError(HTTPException):
    """
    业务错误基类：稳定的机器可读 kind + 面向人的 message。

    中文注释:
    - 继承 HTTPException，服务层抛出后 API 层无需再做一次翻译；
    - 响应体统一为 {"detail": message, "type": kind}（见 main.py 的 exception handler）。
    """

    kind: str = "workflow_error"
    default_status: int = 400

    def __init__(self, message: str, *, status_code: int | None = None, context: dict[str, Any] | None = None):
        super().__init__(status_code=status_code or self.default_status, detail=message)
        self.message = message
        self.context = dict(context or {})

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "type": self.kind}
        if self.context:
            payload["context"] = self.context
        return payload


class ValidationError(WorkflowError):
    kind = "validation_error"
    default_status = 422


class InvalidTransitionError(WorkflowError):
    kind = "invalid_transition"
    default_status = 409


class InvalidStateError(WorkflowError):
    kind = "invalid_state"
    default_status = 409


class AuthorizationError(WorkflowError):
    kind = "authorization_error"
    default_status = 403


class PaymentRequiredError(WorkflowError):
    kind = "payment_required"
    default_status = 402


class ConcurrentModificationError(WorkflowError):
    kind = "concurrent_modification"
    default_status = 409


class DuplicateInvitationError(WorkflowError):
    kind = "duplicate_invitation"
    default_status = 409


class ExternalServiceError(WorkflowError):
    kind = "external_service_error"
    default_status = 502


class NotFoundError(WorkflowError):
    kind = "not_found"
    default_status = 404
