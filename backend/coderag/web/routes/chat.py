"""Chat session routes with SSE streaming."""

import json
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Response
from sse_starlette.sse import EventSourceResponse
from starlette.concurrency import iterate_in_threadpool

from ...chat import ChatEvent, ChatStream
from ...core.models import DEFAULT_TITLE, Conversation
from ...services import Services
from ..deps import get_services, get_user_id
from ..schemas import (
    ChatRequest,
    ChatResponse,
    CreateSessionRequest,
    SessionResponse,
    SessionSummary,
    retrieved_chunks,
)

router = APIRouter(prefix="/chat/sessions", tags=["chat"])


@router.post("", response_model=SessionResponse, status_code=201)
def create_session(
    request: CreateSessionRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    conversation = Conversation(
        user_id=user_id,
        repository_id=request.repository_id or None,
        title=request.title or DEFAULT_TITLE,
    )
    return SessionResponse.from_conversation(services.session_store.create(conversation))


@router.get("", response_model=List[SessionSummary])
def list_sessions(
    limit: int = 50,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    return [SessionSummary.model_validate(c) for c in services.session_store.list_for_user(user_id, limit)]


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    return SessionResponse.from_conversation(services.session_store.get(session_id, user_id))


@router.delete("/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    services.session_store.delete(session_id, user_id)
    return Response(status_code=204)


def _sse(event: ChatEvent) -> dict:
    data = {"type": event.type, "delta": event.delta, "content": event.content}
    if event.error:
        data["error"] = event.error
    if event.conversation is not None:
        data["session"] = SessionResponse.from_conversation(event.conversation).model_dump(mode="json")
    return {"event": event.type, "data": json.dumps(data)}


def _event_stream(stream: ChatStream):
    async def event_generator():
        try:
            async for event in iterate_in_threadpool(iter(stream)):
                yield _sse(event)
        finally:
            stream.cancel()

    return EventSourceResponse(event_generator())


@router.post("/{session_id}/messages")
def send_message(
    session_id: str,
    request: ChatRequest,
    user_id: str = Depends(get_user_id),
    accept: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    if request.stream or (accept and "text/event-stream" in accept):
        return _event_stream(services.orchestrator.respond_stream(session_id, user_id, request.message))

    result = services.orchestrator.respond(session_id, user_id, request.message)
    return ChatResponse(
        session=SessionResponse.from_conversation(result.conversation),
        answer=result.answer,
        context=retrieved_chunks(result.context),
        tokens_used=result.tokens_used,
    )
