from .studio_class import (
    StudioClass,
    StudioClassCreate,
    StudioClassAvailability,
    ClassCancel,
    ClassCancellationResult,
    AttendanceBulk,
)
from .waitlist import WaitlistEntry, WaitlistJoin, PromotionResult
from .booking import (
    Booking,
    BookingCreate,
    AdminBookingCreate,
    BookingAttendance,
    BookingOutcome,
    BookingCancellation,
    ClassRegistrations,
)
from .credit import (
    CreditGrant,
    CreditBalance,
    ManualGrantCreate,
    ExpireSweepResult,
    AutoRenewUpdate,
    RenewalItem,
    RenewalSweepResult,
)
from .purchase import (
    PendingPurchase,
    PendingPurchaseCreate,
    PendingPurchaseConfirm,
    PendingPurchaseCancel,
    Payment,
    PurchaseRecord,
    UnresolvedPayment,
    UnresolvedPaymentResolve,
    WebhookAck,
)
from .setting import CancellationPolicy, CancellationPolicyUpdate
