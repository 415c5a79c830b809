from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from chatdesk_core.api.models import ApiResponse, ok
from chatdesk_core.api.state import get_manager
from chatdesk_core.db.conversations import ConversationMetadata, ConversationStatistics

router = APIRouter(tags=["conversations"])


class Statistics(BaseModel):
    message_count: int
    total_tokens: int
    ai_response_count: int
    user_message_count: int
    first_message_at: str | None = None
    last_message_at: str | None = None
    avg_response_time_ms: int
    timed_response_count: int


class Conversation(BaseModel):
    thread_id: str
    custom_name: str | None = None
    tags: list[str]
    is_archived: bool
    is_pinned: bool
    created_at: str
    updated_at: str
    statistics: Statistics | None = None


class ConversationUpdate(BaseModel):
    custom_name: str | None = None
    tags: list[str] | None = None
    is_archived: bool | None = None
    is_pinned: bool | None = None


class MessageRecord(BaseModel):
    role: Literal["user", "ai"]
    tokens: int = Field(default=0, ge=0)
    response_time_ms: int | None = Field(default=None, ge=0)


def _to_statistics(stats: ConversationStatistics | None) -> Statistics | None:
    if stats is None:
        return None
    return Statistics(
        message_count=stats.message_count,
        total_tokens=stats.total_tokens,
        ai_response_count=stats.ai_response_count,
        user_message_count=stats.user_message_count,
        first_message_at=stats.first_message_at,
        last_message_at=stats.last_message_at,
        avg_response_time_ms=stats.avg_response_time_ms,
        timed_response_count=stats.timed_response_count,
    )


def _to_conversation(
    meta: ConversationMetadata, stats: ConversationStatistics | None = None
) -> Conversation:
    return Conversation(
        thread_id=meta.thread_id,
        custom_name=meta.custom_name,
        tags=list(meta.tags),
        is_archived=meta.is_archived,
        is_pinned=meta.is_pinned,
        created_at=meta.created_at,
        updated_at=meta.updated_at,
        statistics=_to_statistics(stats),
    )


@router.get("/conversations", response_model=ApiResponse[dict[str, list[Conversation]]])
async def conversations_list(
    request: Request,
    include_archived: bool = Query(default=False),
) -> ApiResponse[dict[str, list[Conversation]]]:
    manager = get_manager(request)
    items = manager.conversations.list_metadata(include_archived=include_archived)
    return ok({"items": [_to_conversation(m) for m in items]})


@router.get("/conversations/{thread_id}", response_model=ApiResponse[Conversation])
async def conversations_get(request: Request, thread_id: str) -> ApiResponse[Conversation]:
    manager = get_manager(request)
    meta = manager.conversations.get_metadata(thread_id)
    if meta is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ok(_to_conversation(meta, manager.conversations.get_statistics(thread_id)))


@router.put("/conversations/{thread_id}", response_model=ApiResponse[Conversation])
async def conversations_put(
    request: Request, thread_id: str, payload: ConversationUpdate
) -> ApiResponse[Conversation]:
    manager = get_manager(request)
    meta = manager.conversations.upsert_metadata(
        thread_id,
        custom_name=payload.custom_name,
        tags=payload.tags,
        is_archived=payload.is_archived,
        is_pinned=payload.is_pinned,
    )
    return ok(_to_conversation(meta, manager.conversations.get_statistics(thread_id)))


@router.post("/conversations/{thread_id}/messages", response_model=ApiResponse[Statistics])
async def conversations_record_message(
    request: Request, thread_id: str, payload: MessageRecord
) -> ApiResponse[Statistics]:
    manager = get_manager(request)
    stats = manager.conversations.record_message(
        thread_id,
        role=payload.role,
        tokens=payload.tokens,
        response_time_ms=payload.response_time_ms,
    )
    return ok(_to_statistics(stats))


@router.delete("/conversations/{thread_id}", response_model=ApiResponse[dict[str, bool]])
async def conversations_delete(request: Request, thread_id: str) -> ApiResponse[dict[str, bool]]:
    manager = get_manager(request)
    if not manager.conversations.delete_thread(thread_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ok({"deleted": True})
