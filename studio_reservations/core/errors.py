"""Error kinds shared by the reservation and ledger services."""

from enum import Enum as PyEnum


class ErrorCode(str, PyEnum):
    not_found = "NOT_FOUND"
    class_not_available = "CLASS_NOT_AVAILABLE"
    capacity_exceeded = "CAPACITY_EXCEEDED"
    duplicate_booking = "DUPLICATE_BOOKING"
    duplicate_waitlist_entry = "DUPLICATE_WAITLIST_ENTRY"
    insufficient_credits = "INSUFFICIENT_CREDITS"
    invalid_state_transition = "INVALID_STATE_TRANSITION"
    already_processed = "ALREADY_PROCESSED"
    concurrent_modification = "CONCURRENT_MODIFICATION"
    duplicate_delivery = "DUPLICATE_DELIVERY"
    unresolved_payment = "UNRESOLVED_PAYMENT"


class StudioError(Exception):
    """Base error carrying a machine readable :class:`ErrorCode`."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message


__all__ = ["ErrorCode", "StudioError"]
