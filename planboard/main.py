"""FastAPI entrypoint for the planboard service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from planboard.config import AppConfig, load_config
from planboard.document_store import FileDocumentStore
from planboard.errors import FORBIDDEN, ErrorResponse, PlanboardError, error_json
from planboard.indexer import ProjectIndex
from planboard.logging_setup import setup_logging
from planboard.mutations import MutationGateway
from planboard.services import Services
from planboard.tools import register_tool_handlers

logger = logging.getLogger(__name__)

SERVICE_TOKEN_HEADER = "X-Planboard-Service-Token"
AUTH_EXEMPT_PATHS = {"/health"}


def build_services(config: AppConfig) -> Services:
    store = FileDocumentStore(config.library_path, git_commits=config.git_commits)
    index = ProjectIndex(store, project_flag=config.project_flag)
    index.attach(store)
    return Services(
        config=config,
        store=store,
        index=index,
        gateway=MutationGateway(store, index),
    )


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = load_config()
        setup_logging(log_dir=config.log_dir, console_level=config.console_log_level)
        services = build_services(config)
        app.state.config = config
        app.state.services = services
        await services.store.prime_snapshot()
        result = await services.index.reindex()
        logger.info(
            "Planboard ready: %s (%d projects, %d tasks)",
            config.library_path,
            result.projects,
            result.tasks,
        )
        yield

    app = FastAPI(lifespan=lifespan)

    @app.middleware("http")
    async def enforce_service_token(request: Request, call_next):
        if request.url.path in AUTH_EXEMPT_PATHS:
            return await call_next(request)

        config = getattr(request.app.state, "config", None)
        service_token = getattr(config, "service_token", None)
        if service_token:
            supplied_token = request.headers.get(SERVICE_TOKEN_HEADER)
            if supplied_token != service_token:
                error = ErrorResponse(
                    code="AUTH_FORBIDDEN",
                    message="Invalid service token.",
                    details={"header": SERVICE_TOKEN_HEADER},
                    status_code=FORBIDDEN,
                )
                return error_json(error)

        return await call_next(request)

    @app.exception_handler(PlanboardError)
    def handle_planboard_error(request: Request, exc: PlanboardError):
        return error_json(exc)

    @app.get("/health", status_code=200)
    def health() -> dict[str, str]:
        return {"status": "ok"}

    register_tool_handlers(app)
    return app
