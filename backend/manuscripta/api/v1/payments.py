from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import Response

from manuscripta.api.v1.deps import get_payment_service
from manuscripta.core.roles import get_current_actor
from manuscripta.models.payment import ConfirmPaymentRequest, RefundRequest
from manuscripta.models.user import Actor
from manuscripta.services.payment_service import PaymentService

router = APIRouter(tags=["Payments"])


@router.post("/submissions/{submission_id}/payment-intent", status_code=201)
async def create_payment_intent(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    service: PaymentService = Depends(get_payment_service),
):
    """
    作者发起 APC 支付（仅 accepted 且未支付）
    """
    return {"success": True, "data": service.create_intent(submission_id, actor)}


@router.get("/submissions/{submission_id}/payment-status")
async def payment_status(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    service: PaymentService = Depends(get_payment_service),
):
    return {"success": True, "data": service.get_status(submission_id, actor)}


@router.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    service: PaymentService = Depends(get_payment_service),
):
    """
    网关 webhook（无用户鉴权，靠签名校验；必须读取原始 body 验签）
    """
    raw_body = await request.body()
    return service.handle_webhook(raw_body, stripe_signature)


@router.get("/payments/history")
async def payment_history(
    actor: Actor = Depends(get_current_actor),
    service: PaymentService = Depends(get_payment_service),
):
    return {"success": True, "data": service.history_for_author(actor)}


@router.post("/payments/{payment_id}/confirm")
async def confirm_payment(
    payment_id: str,
    payload: ConfirmPaymentRequest,
    actor: Actor = Depends(get_current_actor),
    service: PaymentService = Depends(get_payment_service),
):
    result = service.confirm(payment_id, payload, actor)
    return {"success": True, "data": result["payment"], "replayed": result["replayed"]}


@router.post("/payments/{payment_id}/refund")
async def refund_payment(
    payment_id: str,
    payload: RefundRequest,
    actor: Actor = Depends(get_current_actor),
    service: PaymentService = Depends(get_payment_service),
):
    return {"success": True, "data": service.refund(payment_id, payload.reason, actor)}


@router.get("/payments/{payment_id}/invoice.pdf")
async def download_invoice(
    payment_id: str,
    actor: Actor = Depends(get_current_actor),
    service: PaymentService = Depends(get_payment_service),
):
    filename, pdf = service.invoice_pdf(payment_id, actor)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
