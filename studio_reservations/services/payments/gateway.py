import hashlib
import json
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from ...config import Settings


@dataclass(frozen=True, slots=True)
class ParsedPaymentEvent:
    """The five fields reconciliation needs, whatever shape the gateway sent."""

    email: str | None
    completed: bool
    status: str
    link_id: str | None
    amount: Decimal | None
    external_transaction_id: str
    raw: dict[str, Any] = field(default_factory=dict)


class BasePaymentGateway(ABC):
    name = "base"
    transaction_prefix = "TXN"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @abstractmethod
    def parse_webhook(self, data: dict[str, Any]) -> ParsedPaymentEvent:
        raise NotImplementedError

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        """HMAC-SHA256 of the raw body; always passes when no secret is configured."""
        secret = self.settings.payment_webhook_secret
        if not secret:
            return True
        if not signature:
            return False
        expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.removeprefix("sha256="))

    def transaction_id(self, provider_id: str | None, data: dict[str, Any]) -> str:
        if provider_id:
            provider_id = provider_id.strip()
            if provider_id.startswith(f"{self.transaction_prefix}-"):
                return provider_id
            return f"{self.transaction_prefix}-{provider_id}"
        # Redeliveries of an id-less event carry the same body
        body = json.dumps(data, sort_keys=True, default=str)
        digest = hashlib.sha256(body.encode()).hexdigest()[:32]
        return f"{self.transaction_prefix}-{digest}"


def get_gateway(settings: Settings) -> BasePaymentGateway:
    if settings.payment_provider == "stub":
        from .stub import StubGateway

        return StubGateway(settings)
    if settings.payment_provider == "swipesimple":
        from .swipesimple import SwipeSimpleGateway

        return SwipeSimpleGateway(settings)
    raise ValueError(f"Unsupported payment provider {settings.payment_provider}")
