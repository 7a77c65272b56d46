from dataclasses import dataclass
from typing import Annotated
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session
from ..config import get_settings
from ..core.clock import Clock, system_clock
from ..core.errors import ErrorCode, StudioError
from ..core.security import ADMIN_SCOPE, MEMBER_SCOPE, decode_access_token
from ..db.session import get_db
from ..db.models import AdminUser, Member
from ..services.notification_service import NotificationDispatcher, get_dispatcher
from ..services.payments import BasePaymentGateway, get_gateway


bearer_scheme = HTTPBearer(auto_error=False)

ERROR_STATUS = {
    ErrorCode.not_found: status.HTTP_404_NOT_FOUND,
    ErrorCode.class_not_available: status.HTTP_409_CONFLICT,
    ErrorCode.capacity_exceeded: status.HTTP_409_CONFLICT,
    ErrorCode.duplicate_booking: status.HTTP_409_CONFLICT,
    ErrorCode.duplicate_waitlist_entry: status.HTTP_409_CONFLICT,
    ErrorCode.insufficient_credits: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.invalid_state_transition: status.HTTP_400_BAD_REQUEST,
    ErrorCode.already_processed: status.HTTP_400_BAD_REQUEST,
    ErrorCode.concurrent_modification: status.HTTP_409_CONFLICT,
    ErrorCode.duplicate_delivery: status.HTTP_200_OK,
    ErrorCode.unresolved_payment: status.HTTP_200_OK,
}


def http_error(exc: StudioError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        detail={"code": exc.code.value, "message": exc.message},
    )


@dataclass(frozen=True)
class Actor:
    scope: str
    id: int
    label: str

    @property
    def is_admin(self) -> bool:
        return self.scope == ADMIN_SCOPE


def _token_claims(credentials: HTTPAuthorizationCredentials | None) -> tuple[str, int]:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as exc:
        raise credentials_exception from exc
    subject = payload.get("sub")
    scope = payload.get("scope")
    if subject is None or scope not in (MEMBER_SCOPE, ADMIN_SCOPE):
        raise credentials_exception
    try:
        return scope, int(subject)
    except (TypeError, ValueError) as exc:
        raise credentials_exception from exc


def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> Actor:
    scope, subject = _token_claims(credentials)
    if scope == ADMIN_SCOPE:
        admin = db.get(AdminUser, subject)
        if admin is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown admin")
        return Actor(scope=scope, id=admin.id, label=admin.login)
    member = db.get(Member, subject)
    if member is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown member")
    return Actor(scope=scope, id=member.id, label=f"member:{member.id}")


def get_current_member(
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[Session, Depends(get_db)],
) -> Member:
    if actor.scope != MEMBER_SCOPE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Members only")
    return db.get(Member, actor.id)


def get_current_admin(
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[Session, Depends(get_db)],
) -> AdminUser:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return db.get(AdminUser, actor.id)


def require_roles(*roles: str):
    def dependency(user: Annotated[AdminUser, Depends(get_current_admin)]) -> AdminUser:
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return dependency


def require_cron_secret(authorization: Annotated[str | None, Header()] = None) -> None:
    secret = get_settings().cron_secret
    if not secret or authorization != f"Bearer {secret}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_clock() -> Clock:
    return system_clock


def get_notification_dispatcher() -> NotificationDispatcher:
    return get_dispatcher()


def get_payment_gateway() -> BasePaymentGateway:
    return get_gateway(get_settings())
