import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from silencecut.app.api import routes_jobs
from silencecut.config import get_settings
from silencecut.container import build_container, configure_logging
from silencecut.domain.services.job_service import JobService

logger = logging.getLogger("uvicorn.access")


class LogRequestsMiddleware(BaseHTTPMiddleware):
    """Log when a request is received, before the handler runs."""

    async def dispatch(self, request, call_next):
        logger.info("Request started: %s %s", request.method, request.url.path)
        return await call_next(request)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.job_service is not None:
        yield
        return

    settings = get_settings()
    configure_logging(settings.log_level)
    container = build_container(settings)
    await container.start()
    app.state.job_service = container.job_service
    try:
        yield
    finally:
        app.state.job_service = None
        await container.close()


def create_app(job_service: Optional[JobService] = None) -> FastAPI:
    app = FastAPI(title="SilenceCut API", version="0.1.0", lifespan=lifespan)
    app.state.job_service = job_service

    app.add_middleware(LogRequestsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(routes_jobs.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
