from .gateway import BasePaymentGateway, ParsedPaymentEvent, get_gateway
from .stub import StubGateway
from .swipesimple import SwipeSimpleGateway, parse_amount

__all__ = [
    "BasePaymentGateway",
    "ParsedPaymentEvent",
    "get_gateway",
    "StubGateway",
    "SwipeSimpleGateway",
    "parse_amount",
]
