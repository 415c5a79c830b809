from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from chatdesk_core import __version__
from chatdesk_core.ai import AIClient
from chatdesk_core.api.models import fail
from chatdesk_core.api.v1.router import router as v1_router
from chatdesk_core.auth import extract_token_from_request, is_exempt_path, require_install_token
from chatdesk_core.config import ensure_install_token, load_core_config, resolve_configured_paths
from chatdesk_core.credentials import initialize_ai_from_storage
from chatdesk_core.home import ensure_chatdesk_layout, resolve_chatdesk_home
from chatdesk_core.manager import DatabaseManager, DatabaseNotInitializedError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        home = resolve_chatdesk_home()
        paths = ensure_chatdesk_layout(home)
        config = load_core_config(paths)
        paths = resolve_configured_paths(paths, config)
        config = ensure_install_token(paths, config)

        # Configure Logging
        log_path = paths.logs_dir / "core.log"
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=config.logging.max_size_mb * 1024 * 1024,
            backupCount=config.logging.backup_count,
            encoding="utf-8",
        )
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        file_handler.setFormatter(formatter)

        root = logging.getLogger()
        root.setLevel(config.logging.level)
        # Avoid adding duplicate handlers if reloaded
        if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
            root.addHandler(file_handler)

        logger.info("ChatDesk Core starting up")
        logger.info("Logs directory: %s", paths.logs_dir)

        # Startup aborts rather than serving a half-migrated or undecryptable store.
        manager = DatabaseManager(paths, config)
        try:
            result = manager.initialize()
            if not result.success:
                raise RuntimeError("Database initialization failed: " + "; ".join(result.errors))
        except Exception:
            logger.exception("ChatDesk Core failed to start")
            manager.shutdown()
            raise

        ai_client = AIClient(
            default_service=config.ai.default_service,
            default_model=config.ai.default_model,
        )
        if initialize_ai_from_storage(manager, ai_client):
            logger.info("AI client initialized from stored API key")

        app.state.chatdesk_home = home
        app.state.chatdesk_paths = paths
        app.state.chatdesk_config = config
        app.state.db_manager = manager
        app.state.ai_client = ai_client

        try:
            yield
        finally:
            ai_client.reset()
            manager.shutdown()

    app = FastAPI(title="ChatDesk Core", version=__version__, lifespan=_lifespan)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info("%s %s - %d", request.method, request.url.path, response.status_code)
        return response

    class _TokenAuthMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next) -> Response:
            path = request.url.path
            if is_exempt_path(path):
                return await call_next(request)

            expected = getattr(getattr(request.app.state, "chatdesk_config", None), "auth", None)
            expected_token = getattr(expected, "install_token", None)
            if not expected_token:
                return JSONResponse(
                    status_code=500,
                    content=fail(
                        code="internal_error",
                        message="Server auth token not initialized",
                    ).model_dump(mode="json"),
                )

            provided = extract_token_from_request(request)
            if not provided:
                return JSONResponse(
                    status_code=401,
                    content=fail(code="unauthorized", message="Missing token").model_dump(
                        mode="json"
                    ),
                )
            if provided != expected_token:
                return JSONResponse(
                    status_code=401,
                    content=fail(code="unauthorized", message="Invalid token").model_dump(
                        mode="json"
                    ),
                )

            return await call_next(request)

    app.add_middleware(_TokenAuthMiddleware)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=fail(
                code="validation_error",
                message="Request validation failed",
                details=exc.errors(),
            ).model_dump(mode="json"),
        )

    def _status_to_code(status_code: int) -> str:
        if status_code == 401:
            return "unauthorized"
        if status_code == 403:
            return "forbidden"
        if status_code == 404:
            return "not_found"
        if status_code == 409:
            return "conflict"
        if status_code == 422:
            return "validation_error"
        if status_code == 503:
            return "unavailable"
        if 400 <= status_code < 500:
            return "client_error"
        return "server_error"

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=fail(
                code=_status_to_code(exc.status_code),
                message=str(exc.detail),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=fail(
                code=_status_to_code(exc.status_code),
                message=exc.detail if isinstance(exc.detail, str) else "HTTP error",
            ).model_dump(mode="json"),
        )

    @app.exception_handler(DatabaseNotInitializedError)
    async def _not_initialized_handler(
        request: Request, exc: DatabaseNotInitializedError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content=fail(code="unavailable", message=str(exc)).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        # Details go to the log only; the response stays generic.
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=fail(code="internal_error", message="Internal server error").model_dump(
                mode="json"
            ),
        )

    app.include_router(v1_router, dependencies=[Depends(require_install_token)])

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app
