from . import (
    class_registry,
    credit_ledger,
    cancellation_policy,
    booking_service,
    waitlist_service,
    purchase_service,
    notification_service,
    catalog,
)
__all__ = [
    "class_registry",
    "credit_ledger",
    "cancellation_policy",
    "booking_service",
    "waitlist_service",
    "purchase_service",
    "notification_service",
    "catalog",
]
