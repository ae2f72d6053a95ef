# app/api/routes_tasks.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_container
from app.core.container import ServiceContainer
from app.schemas.models import Task
from app.services.daily_context import DailyContext, get_daily_context
from app.services.tasks import get_today_tasks, get_upcoming_tasks, mark_task_done

router = APIRouter(tags=["tasks"])


def _timezone_for_cycle(container: ServiceContainer, cycle_id: str) -> str:
    cycle = container.store.get_cycle(cycle_id)
    if cycle is None:
        raise HTTPException(status_code=404, detail="cycle_id not found")
    user = container.store.get_user(cycle.user_id)
    return user.timezone if user else container.settings.default_timezone


@router.post("/tasks/{task_id}/done", response_model=Task)
def task_done(task_id: str, container: ServiceContainer = Depends(get_container)):
    return mark_task_done(container.store, task_id)


@router.get("/tasks/today", response_model=List[Task])
def tasks_today(cycle_id: str, container: ServiceContainer = Depends(get_container)):
    return get_today_tasks(container.store, cycle_id, _timezone_for_cycle(container, cycle_id))


@router.get("/tasks/upcoming", response_model=List[Task])
def tasks_upcoming(cycle_id: str, limit: int = 5, container: ServiceContainer = Depends(get_container)):
    _timezone_for_cycle(container, cycle_id)
    return get_upcoming_tasks(container.store, cycle_id, limit=limit)


@router.get("/today/context", response_model=DailyContext)
def today_context(cycle_id: str, container: ServiceContainer = Depends(get_container)):
    context = get_daily_context(container.store, cycle_id, _timezone_for_cycle(container, cycle_id))
    if context is None:
        raise HTTPException(status_code=404, detail="No active protocol for cycle")
    return context
