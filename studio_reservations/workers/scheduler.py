import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.orm import Session, sessionmaker

from ..config import get_settings
from ..core.clock import Clock, system_clock
from ..core.errors import StudioError
from ..db.session import SessionLocal
from ..services import booking_service, credit_ledger, purchase_service
from ..services.notification_service import get_dispatcher

logger = logging.getLogger(__name__)


def expire_credits(
    session_factory: sessionmaker[Session] = SessionLocal, clock: Clock = system_clock
) -> int:
    with session_factory() as db:
        try:
            expired = credit_ledger.expire_sweep(db, now=clock.now())
        except StudioError:
            # Grants changed under the sweep; the next run picks them up.
            logger.warning("Credit expiry sweep conflicted, retrying next run")
            return 0
    return len(expired)


def complete_classes(
    session_factory: sessionmaker[Session] = SessionLocal, clock: Clock = system_clock
) -> int:
    with session_factory() as db:
        completed = booking_service.complete_finished_classes(db, clock=clock)
    return len(completed)


def renew_memberships(
    session_factory: sessionmaker[Session] = SessionLocal, clock: Clock = system_clock
) -> int:
    with session_factory() as db:
        outcomes = purchase_service.renew_memberships(
            db, clock=clock, dispatcher=get_dispatcher()
        )
    return sum(outcome.record is not None for outcome in outcomes)


def get_scheduler() -> AsyncIOScheduler:
    settings = get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_job(expire_credits, "interval", minutes=settings.expire_sweep_interval_minutes)
    scheduler.add_job(complete_classes, "interval", minutes=15)
    scheduler.add_job(
        renew_memberships, "interval", minutes=settings.renewal_sweep_interval_minutes
    )
    return scheduler
