import os

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.files import router as files_router
from .routes.projects import router as projects_router
from .routes.tasks import router as tasks_router
from .routes.teams import router as teams_router
from .routes.clients import router as clients_router
from .routes.users import router as users_router
from .routes.roles import router as roles_router
from .routes.leaves import router as leaves_router
from .routes.work_logs import router as work_logs_router
from .routes.training import router as training_router
from .routes.reports import router as reports_router
from .routes.documents import router as documents_router
from .routes.hse import router as hse_router
from .routes.messages import router as messages_router


log = structlog.get_logger()


def _error_body(detail) -> dict:
    if isinstance(detail, dict):
        body = dict(detail)
        body.setdefault("message", "Error")
    else:
        body = {"message": str(detail)}
    if not settings.expose_error_details:
        body.pop("details", None)
    return body


async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.detail), headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=_error_body({"message": "Validation error", "details": errors}))


async def unhandled_exception_handler(request: Request, exc: Exception):
    log.error("unhandled_error", error=str(exc), exc_info=True)
    return JSONResponse(status_code=500, content=_error_body({"message": "Internal server error", "details": str(exc)}))


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(files_router)
    app.include_router(projects_router)
    app.include_router(tasks_router)
    app.include_router(teams_router)
    app.include_router(clients_router)
    app.include_router(users_router)
    app.include_router(roles_router)
    app.include_router(leaves_router)
    app.include_router(work_logs_router)
    app.include_router(training_router)
    app.include_router(reports_router)
    app.include_router(documents_router)
    app.include_router(hse_router)
    app.include_router(messages_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        log.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        if settings.enable_weekly_summary:
            from .services.weekly_summary import start_scheduler

            try:
                app.state.weekly_summary_stop = start_scheduler()
            except ValueError as e:
                log.error("weekly_summary_not_started", error=str(e))

    @app.on_event("shutdown")
    def _shutdown():
        stop = getattr(app.state, "weekly_summary_stop", None)
        if stop is not None:
            stop.set()

    return app


app = create_app()
