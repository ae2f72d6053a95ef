import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes_chat import router as chat_router
from app.api.routes_jobs import router as jobs_router
from app.api.routes_protocol import router as protocol_router
from app.api.routes_tasks import router as tasks_router
from app.api.routes_users import router as users_router
from app.core.config import Settings, load_settings
from app.core.container import ServiceContainer
from app.core.errors import IntakeStateError, NotFoundError, ProtocolValidationError
from app.core.logging_config import configure_logging

logger = logging.getLogger(__name__)


def _error(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title=f"{settings.app_name} (Reminders + LangGraph)", version="1.0")
    app.state.container = container or ServiceContainer.build(settings)

    app.add_exception_handler(NotFoundError, _error(404))
    app.add_exception_handler(ProtocolValidationError, _error(422))
    app.add_exception_handler(IntakeStateError, _error(409))

    app.include_router(jobs_router)
    app.include_router(protocol_router)
    app.include_router(chat_router)
    app.include_router(tasks_router)
    app.include_router(users_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/")
    def root():
        return {"ok": True, "service": settings.app_name}

    logger.info("%s started (db=%s)", settings.app_name, settings.db_path)
    return app
