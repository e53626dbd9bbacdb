"""Chat and conversation history routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from classroom_rag.api.dependencies import get_account_id, get_chat_engine, get_conversations
from classroom_rag.chat.conversations import ConversationStore
from classroom_rag.chat.engine import ChatEngine
from classroom_rag.models.dto import ChatRequest, ChatResponse

router = APIRouter()


@router.post(
    "/chat",
    response_model=ChatResponse,
    response_model_by_alias=True,
    summary="Answer a question from the caller's corpus",
)
def chat(
    request: ChatRequest,
    account_id: str = Depends(get_account_id),
    engine: ChatEngine = Depends(get_chat_engine),
) -> ChatResponse:
    return engine.chat(account_id, request)


@router.get("/conversations", summary="List the caller's conversations")
def list_conversations(
    account_id: str = Depends(get_account_id),
    conversations: ConversationStore = Depends(get_conversations),
) -> list[dict[str, Any]]:
    return conversations.list_for(account_id)


@router.get("/conversations/{conversation_id}", summary="Conversation with its messages")
def get_conversation(
    conversation_id: str,
    account_id: str = Depends(get_account_id),
    conversations: ConversationStore = Depends(get_conversations),
) -> dict[str, Any]:
    return conversations.get(account_id, conversation_id)
