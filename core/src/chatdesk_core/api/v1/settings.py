from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from chatdesk_core.api.models import ApiResponse, ok
from chatdesk_core.api.state import get_manager
from chatdesk_core.db.settings import (
    API_KEY_ID,
    SettingType,
    UserSetting,
    coerce_record_id,
    deserialize_setting,
)

router = APIRouter(tags=["settings"])


class Setting(BaseModel):
    key: str
    value: Any | None = None
    setting_type: str
    description: str | None = None
    created_at: str
    updated_at: str


class SettingUpdate(BaseModel):
    value: Any
    setting_type: SettingType = "string"
    description: str | None = None


def _to_setting(setting: UserSetting) -> Setting:
    try:
        value = deserialize_setting(setting.setting_value, setting.setting_type)
    except ValueError:
        value = None
    return Setting(
        key=setting.setting_key,
        value=value,
        setting_type=setting.setting_type,
        description=setting.description,
        created_at=setting.created_at,
        updated_at=setting.updated_at,
    )


def _check_reserved(key: str, payload: SettingUpdate) -> None:
    # The active key id is read back as a record id on every startup.
    if key == API_KEY_ID and (
        payload.setting_type != "number" or coerce_record_id(payload.value) is None
    ):
        raise HTTPException(
            status_code=400, detail=f"{API_KEY_ID} must be a positive integer number setting"
        )


@router.get("/settings", response_model=ApiResponse[dict[str, list[Setting]]])
async def settings_list(request: Request) -> ApiResponse[dict[str, list[Setting]]]:
    manager = get_manager(request)
    return ok({"items": [_to_setting(s) for s in manager.settings.get_all_settings()]})


@router.get("/settings/{key}", response_model=ApiResponse[Setting])
async def settings_get(request: Request, key: str) -> ApiResponse[Setting]:
    manager = get_manager(request)
    setting = manager.settings.get_user_setting(key)
    if setting is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    return ok(_to_setting(setting))


@router.put("/settings/{key}", response_model=ApiResponse[Setting])
async def settings_put(request: Request, key: str, payload: SettingUpdate) -> ApiResponse[Setting]:
    manager = get_manager(request)
    _check_reserved(key, payload)
    try:
        manager.settings.set_setting(key, payload.value, payload.setting_type, payload.description)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    setting = manager.settings.get_user_setting(key)
    if setting is None:
        raise HTTPException(status_code=500, detail="Setting was not persisted")
    return ok(_to_setting(setting))


@router.delete("/settings/{key}", response_model=ApiResponse[dict[str, bool]])
async def settings_delete(request: Request, key: str) -> ApiResponse[dict[str, bool]]:
    manager = get_manager(request)
    if not manager.settings.delete_setting(key):
        raise HTTPException(status_code=404, detail="Setting not found")
    return ok({"deleted": True})
