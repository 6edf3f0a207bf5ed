from fastapi import APIRouter, Header, Request

from app.services import payments as payments_service

router = APIRouter()


@router.post("/webhook")
async def razorpay_webhook(request: Request, x_razorpay_signature: str = Header(..., alias="X-Razorpay-Signature")):
    """Razorpay webhook: payment.captured -> confirm purchase + commission (idempotent)."""
    body = await request.body()
    await payments_service.handle_webhook(body, x_razorpay_signature)
    return {"status": "ok"}
