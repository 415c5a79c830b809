"""Workflows spanning the key vault, settings and the AI client.

Which key is in use is a setting (`api_key_id`), not a column on the key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from chatdesk_core.ai import AIClient
from chatdesk_core.db.settings import API_KEY_ID, InitialSetupConfig, SettingsStore
from chatdesk_core.manager import DatabaseManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivationResult:
    success: bool
    initialized: bool = False
    error: str | None = None


def get_active_api_key_id(settings: SettingsStore) -> int | None:
    return settings.get_api_key_id()


def set_active_api_key(
    manager: DatabaseManager, ai_client: AIClient, api_key_id: int
) -> ActivationResult:
    info = manager.api_keys.get_api_key_by_id(api_key_id)
    if info is None:
        return ActivationResult(success=False, error="API key not found")

    manager.settings.set_setting(API_KEY_ID, api_key_id, "number", "ID of the active API key")
    initialized = ai_client.initialize_from_key(info)
    manager.api_keys.touch_last_used(api_key_id)

    logger.info("Active API key set to ID: %d", api_key_id)
    return ActivationResult(success=True, initialized=initialized)


def clear_active_api_key(settings: SettingsStore, ai_client: AIClient) -> bool:
    deleted = settings.delete_setting(API_KEY_ID)
    ai_client.reset()
    return deleted


def initialize_ai_from_storage(manager: DatabaseManager, ai_client: AIClient) -> bool:
    """Use the active key if one is set, else the newest key for the default service."""

    info = None
    active_id = get_active_api_key_id(manager.settings)
    if active_id is not None:
        info = manager.api_keys.get_api_key_by_id(active_id)
    if info is None:
        info = manager.api_keys.get_api_key_info(ai_client.default_service)
    if info is None:
        logger.info("No saved API key found; the user needs to set one")
        return False

    return ai_client.initialize_from_key(info)


def complete_initial_setup(
    manager: DatabaseManager,
    ai_client: AIClient,
    *,
    user_name: str,
    ai_service: str,
    ai_model: str,
    api_key: str,
) -> int:
    """Store the first API key, record the setup and activate the key."""

    logger.info("Saving initial setup for user: %s", user_name)
    api_key_id = manager.api_keys.save_api_key(
        ai_service, api_key, ai_model, f"{ai_service} - {ai_model}"
    )
    manager.settings.save_initial_setup(
        InitialSetupConfig(
            user_name=user_name,
            ai_service=ai_service,
            ai_model=ai_model,
            api_key_id=api_key_id,
        )
    )

    info = manager.api_keys.get_api_key_by_id(api_key_id)
    if info is not None:
        ai_client.initialize_from_key(info)

    logger.info("Initial setup completed, API key ID: %d", api_key_id)
    return api_key_id
