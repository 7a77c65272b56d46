import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable

from ...core.constants import COMPLETED_PAYMENT_STATUSES
from .gateway import BasePaymentGateway, ParsedPaymentEvent

logger = logging.getLogger(__name__)

Payload = dict[str, Any]
# Amount columns are Numeric(10, 2)
MAX_AMOUNT = Decimal("100000000")


def _dict(value: Any) -> Payload:
    return value if isinstance(value, dict) else {}


def _payment_section(body: Payload) -> Payload:
    return _dict(body.get("payment")) or _dict(_dict(body.get("data")).get("payment")) or body


def _customer_section(body: Payload) -> Payload:
    payment = _payment_section(body)
    return (
        _dict(body.get("customer"))
        or _dict(_dict(body.get("data")).get("customer"))
        or _dict(payment.get("customer"))
    )


def _first(body: Payload, strategies: Iterable[Callable[[Payload], Any]]) -> Any:
    for strategy in strategies:
        value = strategy(body)
        if value not in (None, ""):
            return value
    return None


EMAIL_STRATEGIES = (
    lambda body: _customer_section(body).get("email"),
    lambda body: _payment_section(body).get("email"),
    lambda body: _payment_section(body).get("customer_email"),
    lambda body: _payment_section(body).get("billing_email"),
    lambda body: body.get("email"),
)
LINK_STRATEGIES = (
    lambda body: body.get("link_id"),
    lambda body: _payment_section(body).get("link_id"),
    lambda body: _dict(_payment_section(body).get("metadata")).get("link_id"),
)
AMOUNT_STRATEGIES = (
    lambda body: body.get("amount"),
    lambda body: _payment_section(body).get("amount"),
    lambda body: _payment_section(body).get("total"),
)
STATUS_STRATEGIES = (
    lambda body: body.get("status"),
    lambda body: _payment_section(body).get("status"),
)
TRANSACTION_STRATEGIES = (
    lambda body: body.get("transaction_id"),
    lambda body: _payment_section(body).get("transaction_id"),
    lambda body: _payment_section(body).get("id"),
)


def parse_amount(value: Any) -> Decimal | None:
    """Numbers arrive in cents, strings in dollars."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            amount = Decimal(str(value)) / 100
        else:
            amount = Decimal(str(value).strip())
        if not amount.is_finite() or abs(amount) >= MAX_AMOUNT:
            raise InvalidOperation(value)
        return amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        logger.warning("Unparseable payment amount", extra={"amount": value})
        return None


class SwipeSimpleGateway(BasePaymentGateway):
    name = "swipesimple"
    transaction_prefix = "SWIPE"

    def parse_webhook(self, data: dict[str, Any]) -> ParsedPaymentEvent:
        logger.info("Parsing SwipeSimple webhook", extra={"keys": sorted(data)})
        email = _first(data, EMAIL_STRATEGIES)
        status = str(_first(data, STATUS_STRATEGIES) or "completed")
        provider_id = _first(data, TRANSACTION_STRATEGIES)
        link_id = _first(data, LINK_STRATEGIES)
        return ParsedPaymentEvent(
            email=str(email).strip().lower() if email else None,
            completed=status in COMPLETED_PAYMENT_STATUSES,
            status=status,
            link_id=str(link_id) if link_id else None,
            amount=parse_amount(_first(data, AMOUNT_STRATEGIES)),
            external_transaction_id=self.transaction_id(
                str(provider_id) if provider_id else None, data
            ),
            raw=data,
        )
