from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ...api import deps
from ...db.session import get_db
from ...db import models, schemas
from ...services import cancellation_policy

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/cancellation-policy", response_model=schemas.CancellationPolicy)
def get_cancellation_policy(
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager", "viewer")),
):
    return cancellation_policy.get_cancellation_policy(db)


@router.put("/cancellation-policy", response_model=schemas.CancellationPolicy)
def update_cancellation_policy(
    payload: schemas.CancellationPolicyUpdate,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin")),
):
    return cancellation_policy.update_cancellation_policy(
        db,
        window_hours=payload.window_hours,
        late_cancel_penalty=payload.late_cancel_penalty,
        no_show_penalty=payload.no_show_penalty,
    )
