from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Optional

import stripe
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from manuscripta.core.config import PaymentConfig
from manuscripta.core.errors import ExternalServiceError, ValidationError
from manuscripta.models.payment import GatewayIntent

logger = logging.getLogger("manuscripta.payments.gateway")

# 网络错误、限流与网关 5xx 可重试；参数错误/鉴权错误直接失败
_TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def intent_from_payload(payload: Any) -> GatewayIntent:
    """
    将 Stripe PaymentIntent（SDK 对象或 webhook 里的 JSON 字典）投影为 GatewayIntent。
    """
    return GatewayIntent(
        id=str(_field(payload, "id") or ""),
        status=str(_field(payload, "status") or ""),
        amount=int(_field(payload, "amount") or 0),
        currency=str(_field(payload, "currency") or ""),
        client_secret=_field(payload, "client_secret"),
    )


def verify_webhook_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    *,
    secret: str,
    tolerance_seconds: int = 300,
) -> dict[str, Any]:
    """
    校验 Stripe webhook 签名并返回事件字典。

    中文注释:
    - 验签与时间窗由 stripe.Webhook.construct_event 负责；
    - 业务层只读取原始 JSON（id / type / data.object），不依赖 SDK 对象结构。
    """
    if not secret:
        raise ValidationError("Webhook secret is not configured")
    if not signature_header:
        raise ValidationError("Missing webhook signature")
    try:
        stripe.Webhook.construct_event(raw_body, signature_header, secret, tolerance=tolerance_seconds)
    except stripe.SignatureVerificationError as e:
        logger.info("[Gateway] webhook signature rejected: %s", e)
        raise ValidationError("Invalid webhook signature")
    except ValueError:
        raise ValidationError("Malformed webhook payload or signature header")

    event = json.loads(raw_body.decode("utf-8"))
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise ValidationError("Webhook event is missing id/type")
    return event


class PaymentGateway:
    """
    Stripe SDK 适配器（stripe + tenacity）。

    中文注释:
    - 只暴露工作流需要的 3 个动作：创建 intent / 查询 intent / 退款；
    - api_key 按请求传入，不修改 stripe 模块级全局配置；
    - 网络错误与 5xx 有限次重试，其余 StripeError 转换为 ExternalServiceError。
    """

    def __init__(self, config: Optional[PaymentConfig] = None):
        self.config = config or PaymentConfig.from_env()

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    def _request(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        return fn(*args, api_key=self.config.gateway_secret_key, **kwargs)

    def _call(self, action: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
        if not self.config.gateway_secret_key:
            raise ExternalServiceError("Payment gateway is not configured")
        try:
            return self._request(fn, *args, **kwargs)
        except _TRANSIENT_ERRORS as e:
            logger.warning("[Gateway] %s failed after retries: %s", action, e)
            raise ExternalServiceError(f"Payment gateway unavailable: {e}")
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.warning("[Gateway] %s rejected: %s", action, message)
            raise ExternalServiceError(f"Payment gateway rejected request: {message}")

    def create_intent(
        self,
        *,
        amount: float,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        kwargs: dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "metadata": dict(metadata),
        }
        if idempotency_key:
            kwargs["idempotency_key"] = idempotency_key
        return intent_from_payload(self._call("create_intent", stripe.PaymentIntent.create, **kwargs))

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        return intent_from_payload(self._call("retrieve_intent", stripe.PaymentIntent.retrieve, intent_id))

    def refund(self, intent_id: str, *, reason: Optional[str] = None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"payment_intent": intent_id}
        if reason:
            kwargs["metadata"] = {"reason": reason[:500]}
        refund = self._call("refund", stripe.Refund.create, **kwargs)
        return {"id": _field(refund, "id"), "status": _field(refund, "status")}
