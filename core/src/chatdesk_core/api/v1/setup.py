from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from chatdesk_core.api.models import ApiResponse, ok
from chatdesk_core.api.state import get_ai_client, get_manager
from chatdesk_core.credentials import complete_initial_setup

router = APIRouter(tags=["setup"])


class SetupStatus(BaseModel):
    completed: bool


class SetupConfig(BaseModel):
    user_name: str | None = None
    ai_service: str | None = None
    ai_model: str | None = None
    api_key_id: int | None = None


class SetupRequest(BaseModel):
    user_name: str = Field(min_length=1)
    ai_service: str = Field(min_length=1)
    ai_model: str = Field(min_length=1)
    api_key: str = Field(min_length=1)


class SetupResponse(BaseModel):
    api_key_id: int
    ai_initialized: bool


@router.get("/setup/status", response_model=ApiResponse[SetupStatus])
async def setup_status(request: Request) -> ApiResponse[SetupStatus]:
    manager = get_manager(request)
    return ok(SetupStatus(completed=manager.settings.is_initial_setup_completed()))


@router.get("/setup/config", response_model=ApiResponse[SetupConfig])
async def setup_config(request: Request) -> ApiResponse[SetupConfig]:
    manager = get_manager(request)
    current = manager.settings.get_current_config()
    return ok(
        SetupConfig(
            user_name=current.user_name,
            ai_service=current.ai_service,
            ai_model=current.ai_model,
            api_key_id=current.api_key_id,
        )
    )


@router.post("/setup", response_model=ApiResponse[SetupResponse])
async def setup_save(request: Request, payload: SetupRequest) -> ApiResponse[SetupResponse]:
    manager = get_manager(request)
    ai_client = get_ai_client(request)
    api_key_id = complete_initial_setup(
        manager,
        ai_client,
        user_name=payload.user_name,
        ai_service=payload.ai_service,
        ai_model=payload.ai_model,
        api_key=payload.api_key,
    )
    return ok(SetupResponse(api_key_id=api_key_id, ai_initialized=ai_client.is_initialized()))
