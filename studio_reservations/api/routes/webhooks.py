import json
import logging
import math

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from ...api import deps
from ...core.clock import Clock
from ...db.session import get_db
from ...db import schemas
from ...services import purchase_service
from ...services.notification_service import NotificationDispatcher
from ...services.payments import BasePaymentGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "X-Webhook-Signature"


def _finite_float(value: str) -> float | None:
    number = float(value)
    return number if math.isfinite(number) else None


@router.get("/payments")
def webhook_status(gateway: BasePaymentGateway = Depends(deps.get_payment_gateway)):
    return {
        "status": "active",
        "provider": gateway.name,
        "endpoint": "/api/v1/webhooks/payments",
    }


@router.post("/payments", response_model=schemas.WebhookAck)
async def payments_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: BasePaymentGateway = Depends(deps.get_payment_gateway),
    clock: Clock = Depends(deps.get_clock),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    body = await request.body()
    if not gateway.verify_signature(body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Rejected webhook with bad signature", extra={"provider": gateway.name})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    try:
        payload = json.loads(
            body, parse_float=_finite_float, parse_constant=lambda _: None
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook")
    outcome = await run_in_threadpool(
        purchase_service.process_payment_webhook,
        db,
        payload,
        gateway=gateway,
        clock=clock,
        dispatcher=dispatcher,
    )
    return schemas.WebhookAck(
        status=outcome.status.value,
        message=outcome.message,
        code=outcome.code.value if outcome.code else None,
        payment_id=outcome.record.payment.id if outcome.record else None,
        grant_id=outcome.record.grant.id if outcome.record else None,
        unresolved_payment_id=outcome.unresolved.id if outcome.unresolved else None,
    )
