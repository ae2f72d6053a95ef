# app/api/routes_jobs.py
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import field_validator

from app.api.deps import get_container
from app.core.container import ServiceContainer
from app.schemas.models import CamelModel, QuietHours
from app.services.planning import PlanGenerationResult, generate_plan_tasks, quiet_hours_for
from app.services.scheduler import TickResult, run_scheduler_tick
from app.services.security import verify_cron_secret
from app.utils.local_time import get_zone

router = APIRouter(tags=["jobs"])


class PlanGenerateRequest(CamelModel):
    cycle_id: str
    protocol_plan_id: str
    user_timezone: Optional[str] = None
    quiet_hours: Optional[QuietHours] = None

    @field_validator("user_timezone")
    @classmethod
    def _known_zone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            get_zone(v)
        return v


@router.post("/jobs/tick", response_model=TickResult, dependencies=[Depends(verify_cron_secret)])
def jobs_tick(container: ServiceContainer = Depends(get_container)):
    return run_scheduler_tick(container.store, container.settings, container.sms, container.push)


@router.post("/plan/generate", response_model=PlanGenerationResult)
def plan_generate(req: PlanGenerateRequest, container: ServiceContainer = Depends(get_container)):
    store, settings = container.store, container.settings

    cycle = store.get_cycle(req.cycle_id)
    user = store.get_user(cycle.user_id) if cycle else None

    timezone = req.user_timezone or (user.timezone if user else settings.default_timezone)
    quiet_hours = req.quiet_hours.model_dump() if req.quiet_hours else quiet_hours_for(user, settings)

    return generate_plan_tasks(
        store,
        settings,
        req.cycle_id,
        req.protocol_plan_id,
        timezone,
        quiet_hours=quiet_hours,
    )
