import asyncio
import os
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .auth.session_store import InMemorySessionStore, SessionStore
from .routes.worklogs import router as worklogs_router
from .routes.operatives import router as operatives_router
from .services.errors import WorkLogError


logger = structlog.get_logger(__name__)


async def _purge_sessions_periodically(store: SessionStore, interval_s: int) -> None:
    while True:
        await asyncio.sleep(interval_s)
        try:
            purged = store.purge_expired()
            if purged:
                logger.info("operative_sessions_purged", count=purged)
        except Exception as e:
            # Best effort: the next lookup of an expired token drops it anyway
            logger.warning("operative_session_purge_failed", error=str(e))


def create_app(session_store: Optional[SessionStore] = None) -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)
    app.state.session_store = session_store or InMemorySessionStore(settings.operative_session_ttl_seconds)

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

    @app.exception_handler(WorkLogError)
    async def _work_log_error(request: Request, exc: WorkLogError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # Routers
    app.include_router(worklogs_router)
    app.include_router(operatives_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    async def _startup():
        logger.info("startup", app=settings.app_name, environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("startup_tables_verified", tables=len(Base.metadata.tables))
        app.state.session_purge_task = asyncio.create_task(
            _purge_sessions_periodically(app.state.session_store, settings.session_purge_interval_seconds)
        )

    @app.on_event("shutdown")
    async def _shutdown():
        task = getattr(app.state, "session_purge_task", None)
        if task:
            task.cancel()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
