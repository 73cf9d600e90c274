# routers/chat.py — Shared Gemini conversation
from typing import List

from fastapi import APIRouter, Depends, Request

from auth import get_session
from cache import DashboardCache
from chat import ChatTurnCoordinator
from schemas import ChatMessage, ChatSend

router = APIRouter(prefix="/api/v1/chat", tags=["Chat"])


def get_coordinator(request: Request, cache: DashboardCache = Depends(get_session)) -> ChatTurnCoordinator:
    config = request.app.state.config
    return ChatTurnCoordinator(
        cache,
        request.app.state.ai_client,
        context_size=config.chat_context_size,
        conditional_claim=config.chat_lock_conditional,
    )


@router.get("/messages", response_model=List[ChatMessage])
async def list_messages(cache: DashboardCache = Depends(get_session)):
    """Oldest first"""
    return cache.get_chat_messages()


@router.get("/state")
async def chat_state(coordinator: ChatTurnCoordinator = Depends(get_coordinator)):
    state = coordinator.cache.get_chat_state()
    locked_by = coordinator.cache.find_user(state.locked_by_user_id)
    return {
        **state.model_dump(by_alias=True, mode="json"),
        "lockedByName": locked_by.name if locked_by else None,
        "isAiConfigured": coordinator.is_ai_configured(),
    }


@router.post("/messages", response_model=List[ChatMessage], status_code=201)
async def send_message(body: ChatSend, coordinator: ChatTurnCoordinator = Depends(get_coordinator)):
    """Runs one full turn; responds once the model reply (or apology) is stored."""
    await coordinator.send_turn(body.content, coordinator.cache.current_user.id)
    return coordinator.cache.get_chat_messages()
