from __future__ import annotations

from typing import Any

from ...core.constants import COMPLETED_PAYMENT_STATUSES
from .gateway import BasePaymentGateway, ParsedPaymentEvent
from .swipesimple import parse_amount


class StubGateway(BasePaymentGateway):
    """Flat payload gateway for local development and tests."""

    name = "stub"
    transaction_prefix = "STUB"

    def parse_webhook(self, data: dict[str, Any]) -> ParsedPaymentEvent:
        status = str(data.get("status") or "completed")
        email = data.get("email")
        provider_id = data.get("transaction_id")
        return ParsedPaymentEvent(
            email=str(email).strip().lower() if email else None,
            completed=status in COMPLETED_PAYMENT_STATUSES,
            status=status,
            link_id=data.get("link_id"),
            amount=parse_amount(data.get("amount")),
            external_transaction_id=self.transaction_id(
                str(provider_id) if provider_id else None, data
            ),
            raw=data,
        )
