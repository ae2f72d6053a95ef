# app/api/routes_users.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_container
from app.core.container import ServiceContainer
from app.db.store import new_id
from app.schemas.models import CamelModel, Cycle, QuietHours, User
from app.utils.local_time import get_zone

router = APIRouter(tags=["users"])


class UserUpsertRequest(CamelModel):
    id: Optional[str] = None
    timezone: str = "America/Los_Angeles"
    quiet_hours: Optional[QuietHours] = None
    phone_e164: Optional[str] = None
    sms_consent: bool = False


class CycleCreateRequest(CamelModel):
    user_id: str


@router.post("/users", response_model=User)
def user_upsert(req: UserUpsertRequest, container: ServiceContainer = Depends(get_container)):
    try:
        get_zone(req.timezone)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    existing = container.store.get_user(req.id) if req.id else None
    user = User(
        id=req.id or new_id("usr"),
        timezone=req.timezone,
        quiet_hours=req.quiet_hours,
        phone_e164=req.phone_e164,
        sms_consent=req.sms_consent,
        daily_msg_count=existing.daily_msg_count if existing else 0,
        last_msg_at=existing.last_msg_at if existing else None,
    )
    return container.store.upsert_user(user)


@router.post("/cycles", response_model=Cycle)
def cycle_create(req: CycleCreateRequest, container: ServiceContainer = Depends(get_container)):
    if container.store.get_user(req.user_id) is None:
        raise HTTPException(status_code=404, detail="user_id not found")
    return container.store.create_cycle(Cycle(id=new_id("cyc"), user_id=req.user_id))
