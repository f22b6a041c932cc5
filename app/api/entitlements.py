from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_user_auth
from app.schemas.billing import EntitlementCheck, EntitlementRead
from app.services.billing import entitlements
from app.services.common import coerce_uuid

router = APIRouter(prefix="/entitlements", tags=["entitlements"])


@router.get("/me", response_model=list[EntitlementRead])
def my_entitlements(
    auth: dict = Depends(require_user_auth),
    db: Session = Depends(get_db),
):
    return entitlements.active_for_user(db, coerce_uuid(auth["user_id"]))


@router.get("/check", response_model=EntitlementCheck)
def check_entitlement(
    type: str = Query(min_length=1, max_length=64),
    profile_id: UUID | None = None,
    auth: dict = Depends(require_user_auth),
    db: Session = Depends(get_db),
):
    active = entitlements.is_entitled(
        db, coerce_uuid(auth["user_id"]), type, profile_id=profile_id
    )
    return EntitlementCheck(type=type, profile_id=profile_id, active=active)
