from __future__ import annotations

from fastapi import HTTPException, Request

from chatdesk_core.ai import AIClient
from chatdesk_core.manager import DatabaseManager


def get_manager(request: Request) -> DatabaseManager:
    manager = getattr(request.app.state, "db_manager", None)
    if manager is None or not manager.is_initialized():
        raise HTTPException(status_code=503, detail="Database system not initialized")
    return manager


def get_ai_client(request: Request) -> AIClient:
    client = getattr(request.app.state, "ai_client", None)
    if client is None:
        raise HTTPException(status_code=500, detail="AI client not initialized")
    return client
