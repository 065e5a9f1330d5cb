from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class Payment(BaseModel):
    """APC 支付记录"""

    id: str
    submission_id: str
    author_id: str
    amount: float
    currency: str = "INR"
    status: PaymentStatus = PaymentStatus.PENDING
    gateway_intent_id: Optional[str] = None
    transaction_id: Optional[str] = None
    invoice_number: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    payment_id: str
    client_secret: Optional[str] = None
    invoice_number: str
    amount: float
    currency: str


class ConfirmPaymentRequest(BaseModel):
    """
    支付确认凭证。

    method=gateway: transaction_id 为网关 intent id，服务端会回查网关状态；
    method=manual: 编辑人工核对（银行转账等），不回查网关。
    """

    transaction_id: str = Field(..., min_length=1, max_length=200)
    method: str = Field(default="gateway", pattern="^(gateway|manual)$")
    note: Optional[str] = Field(default=None, max_length=1000)


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class GatewayIntent(BaseModel):
    """网关侧 payment intent 的最小投影"""

    id: str
    status: str
    amount: int = 0
    currency: str = ""
    client_secret: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"
