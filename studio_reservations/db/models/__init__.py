from .member import Member
from .admin_user import AdminUser, AdminRole
from .studio_class import StudioClass, ClassStatus
from .booking import Booking, BookingStatus, BookingSource, CancellationType
from .waitlist import WaitlistEntry
from .product import Product, ProductKind
from .payment import Payment, PaymentMethod
from .credit_grant import CreditGrant, GrantKind
from .credit_entry import CreditEntry, CreditEntryReason
from .pending_purchase import PendingPurchase, PendingPurchaseStatus
from .unresolved_payment import UnresolvedPayment, UnresolvedReason, UnresolvedStatus
from .setting import Setting
from .audit_log import AuditLog, ActorType
