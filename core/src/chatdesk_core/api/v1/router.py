from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from chatdesk_core import __version__
from chatdesk_core.api.models import ApiResponse, ok
from chatdesk_core.api.v1.api_keys import router as api_keys_router
from chatdesk_core.api.v1.conversations import router as conversations_router
from chatdesk_core.api.v1.database import router as database_router
from chatdesk_core.api.v1.settings import router as settings_router
from chatdesk_core.api.v1.setup import router as setup_router

router = APIRouter(prefix="/v1", tags=["v1"])

router.include_router(api_keys_router)
router.include_router(database_router)
router.include_router(settings_router)
router.include_router(setup_router)
router.include_router(conversations_router)


class SystemInfo(BaseModel):
    version: str
    chatdesk_home: str
    paths: dict[str, str]
    database_initialized: bool
    ai_initialized: bool


@router.get("/ping", response_model=ApiResponse[dict[str, bool]])
async def ping() -> ApiResponse[dict[str, bool]]:
    return ok({"pong": True})


@router.get("/system/info", response_model=ApiResponse[SystemInfo])
async def system_info(request: Request) -> ApiResponse[SystemInfo]:
    # Runtime identity and resolved paths only; no secrets.
    home = getattr(request.app.state, "chatdesk_home", None)
    paths = getattr(request.app.state, "chatdesk_paths", None)
    manager = getattr(request.app.state, "db_manager", None)
    ai_client = getattr(request.app.state, "ai_client", None)

    info = SystemInfo(
        version=__version__,
        chatdesk_home=str(home) if home is not None else "",
        paths={
            "db_dir": str(paths.db_dir) if paths is not None else "",
            "backups_dir": str(paths.backups_dir) if paths is not None else "",
            "logs_dir": str(paths.logs_dir) if paths is not None else "",
            "config_dir": str(paths.config_dir) if paths is not None else "",
        },
        database_initialized=manager is not None and manager.is_initialized(),
        ai_initialized=ai_client is not None and ai_client.is_initialized(),
    )
    return ok(info)
