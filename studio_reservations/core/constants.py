"""Common application-wide constants."""

# Metadata for system and studio driven booking cancellations
CLASS_CANCELED_REASON = "class_cancelled"
SYSTEM_ACTOR = "system"

# Transaction id prefixes for payments that never reach the gateway
ADMIN_TRANSACTION_PREFIX = "ADMIN"
MANUAL_TRANSACTION_PREFIX = "MANUAL"
RENEWAL_TRANSACTION_PREFIX = "RENEWAL"

# Payment statuses the gateway reports for a completed charge
COMPLETED_PAYMENT_STATUSES = frozenset({"completed", "COMPLETED", "approved"})

SETTING_CANCELLATION_WINDOW_HOURS = "cancellation_window_hours"
SETTING_LATE_CANCEL_PENALTY = "late_cancel_penalty"
SETTING_NO_SHOW_PENALTY = "no_show_penalty"


__all__ = [
    "CLASS_CANCELED_REASON",
    "SYSTEM_ACTOR",
    "ADMIN_TRANSACTION_PREFIX",
    "MANUAL_TRANSACTION_PREFIX",
    "RENEWAL_TRANSACTION_PREFIX",
    "COMPLETED_PAYMENT_STATUSES",
    "SETTING_CANCELLATION_WINDOW_HOURS",
    "SETTING_LATE_CANCEL_PENALTY",
    "SETTING_NO_SHOW_PENALTY",
]
