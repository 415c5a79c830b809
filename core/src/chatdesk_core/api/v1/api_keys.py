from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from chatdesk_core.api.models import ApiResponse, ok
from chatdesk_core.api.state import get_ai_client, get_manager
from chatdesk_core.credentials import (
    clear_active_api_key,
    get_active_api_key_id,
    set_active_api_key,
)
from chatdesk_core.db.api_keys import ApiKeyInfo

router = APIRouter(tags=["api-keys"])


def mask_api_key(api_key: str) -> str:
    if len(api_key) < 12:
        return "*" * len(api_key)
    return f"{api_key[:4]}...{api_key[-4:]}"


class ApiKey(BaseModel):
    id: int
    service_name: str
    ai_model: str | None = None
    description: str | None = None
    is_active: bool
    last_used_at: str | None = None
    created_at: str
    updated_at: str
    api_key_preview: str


def _to_api_key(info: ApiKeyInfo) -> ApiKey:
    return ApiKey(
        id=info.id,
        service_name=info.service_name,
        ai_model=info.ai_model,
        description=info.description,
        is_active=info.is_active,
        last_used_at=info.last_used_at,
        created_at=info.created_at,
        updated_at=info.updated_at,
        api_key_preview=mask_api_key(info.api_key),
    )


def _default_service(request: Request) -> str:
    config = getattr(request.app.state, "chatdesk_config", None)
    return config.ai.default_service if config is not None else "gemini"


class ApiKeyCreateRequest(BaseModel):
    service_name: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    ai_model: str | None = None
    description: str | None = None


class ServiceModel(BaseModel):
    id: int
    service_name: str
    ai_model: str | None = None


class ActiveKeyRequest(BaseModel):
    api_key_id: int = Field(ge=1)


class ActiveKeyResponse(BaseModel):
    api_key_id: int | None
    initialized: bool | None = None


@router.get("/api-keys", response_model=ApiResponse[dict[str, list[ApiKey]]])
async def api_keys_list(
    request: Request,
    service: str | None = Query(default=None, description="Service name; defaults to config"),
) -> ApiResponse[dict[str, list[ApiKey]]]:
    manager = get_manager(request)
    infos = manager.api_keys.get_all_api_keys_for_service(service or _default_service(request))
    return ok({"items": [_to_api_key(i) for i in infos]})


@router.post("/api-keys", response_model=ApiResponse[dict[str, int]])
async def api_keys_add(
    request: Request, payload: ApiKeyCreateRequest
) -> ApiResponse[dict[str, int]]:
    manager = get_manager(request)
    api_key_id = manager.api_keys.save_api_key(
        payload.service_name,
        payload.api_key,
        payload.ai_model,
        payload.description,
    )
    return ok({"api_key_id": api_key_id})


@router.get("/api-keys/services", response_model=ApiResponse[dict[str, list[str]]])
async def api_keys_services(request: Request) -> ApiResponse[dict[str, list[str]]]:
    manager = get_manager(request)
    return ok({"items": manager.api_keys.get_stored_services()})


@router.get(
    "/api-keys/service-models", response_model=ApiResponse[dict[str, list[ServiceModel]]]
)
async def api_keys_service_models(request: Request) -> ApiResponse[dict[str, list[ServiceModel]]]:
    manager = get_manager(request)
    items = [
        ServiceModel(id=m.id, service_name=m.service_name, ai_model=m.ai_model)
        for m in manager.api_keys.get_stored_service_models()
    ]
    return ok({"items": items})


@router.get("/api-keys/saved", response_model=ApiResponse[dict[str, bool]])
async def api_keys_has_saved(
    request: Request, service: str | None = Query(default=None)
) -> ApiResponse[dict[str, bool]]:
    manager = get_manager(request)
    saved = manager.api_keys.get_api_key(service or _default_service(request)) is not None
    return ok({"saved": saved})


@router.delete("/api-keys", response_model=ApiResponse[dict[str, int]])
async def api_keys_delete_for_service(
    request: Request,
    service: str = Query(min_length=1),
    model: str | None = Query(
        default=None, description="Delete only this model; omit to delete every key"
    ),
) -> ApiResponse[dict[str, int]]:
    manager = get_manager(request)
    deleted = manager.api_keys.delete_api_key(service, model)
    return ok({"deleted": deleted})


@router.get("/api-keys/active", response_model=ApiResponse[ActiveKeyResponse])
async def api_keys_get_active(request: Request) -> ApiResponse[ActiveKeyResponse]:
    manager = get_manager(request)
    return ok(ActiveKeyResponse(api_key_id=get_active_api_key_id(manager.settings)))


@router.put("/api-keys/active", response_model=ApiResponse[ActiveKeyResponse])
async def api_keys_set_active(
    request: Request, payload: ActiveKeyRequest
) -> ApiResponse[ActiveKeyResponse]:
    manager = get_manager(request)
    result = set_active_api_key(manager, get_ai_client(request), payload.api_key_id)
    if not result.success:
        raise HTTPException(status_code=404, detail=result.error or "API key not found")

    return ok(ActiveKeyResponse(api_key_id=payload.api_key_id, initialized=result.initialized))


@router.delete("/api-keys/active", response_model=ApiResponse[dict[str, bool]])
async def api_keys_clear_active(request: Request) -> ApiResponse[dict[str, bool]]:
    manager = get_manager(request)
    cleared = clear_active_api_key(manager.settings, get_ai_client(request))
    return ok({"cleared": cleared})


@router.delete("/api-keys/{api_key_id}", response_model=ApiResponse[dict[str, bool]])
async def api_keys_delete(request: Request, api_key_id: int) -> ApiResponse[dict[str, bool]]:
    manager = get_manager(request)
    if not manager.api_keys.delete_api_key_by_id(api_key_id):
        raise HTTPException(status_code=404, detail="API key not found")
    return ok({"deleted": True})
