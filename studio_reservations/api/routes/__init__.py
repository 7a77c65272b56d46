from . import (
    classes,
    bookings,
    waitlist,
    credits,
    purchases,
    webhooks,
    settings,
)

__all__ = [
    "classes",
    "bookings",
    "waitlist",
    "credits",
    "purchases",
    "webhooks",
    "settings",
]
