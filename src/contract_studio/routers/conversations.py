"""Users, conversations, messages and code history."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..exceptions import NotFoundError
from ..repositories import ConversationRepository
from ..validators import require_fields

router = APIRouter(tags=["conversations"])


# Request Models

class CreateUserRequest(BaseModel):
    walletAddress: Optional[str] = None


class CreateConversationRequest(BaseModel):
    walletAddress: Optional[str] = None
    name: Optional[str] = None


class RenameConversationRequest(BaseModel):
    name: Optional[str] = None


class SaveMessageRequest(BaseModel):
    """Chat message appended to an existing conversation."""
    conversationId: Optional[str] = None
    content: Optional[str] = None
    sender: Optional[str] = Field(None, description="`user` or `ai`; anything else is stored as `ai`")
    metadata: Optional[Any] = None


class SaveCodeHistoryRequest(BaseModel):
    conversationId: Optional[str] = None
    code: Optional[str] = None
    language: Optional[str] = Field(None, description="Defaults to solidity")
    version: Optional[str] = None
    metadata: Optional[Any] = None


# Dependencies

class ConversationDependencies:
    """Dependencies for conversation routes."""
    def __init__(self, conversations: ConversationRepository):
        self.conversations = conversations


def get_deps() -> ConversationDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


# Users

@router.post("/users")
async def create_user(
    request: CreateUserRequest,
    deps: ConversationDependencies = Depends(get_deps),
):
    values = require_fields({"walletAddress": request.walletAddress})
    await deps.conversations.create_user(values["walletAddress"])
    return {"success": True}


@router.get("/users/{wallet_address}")
async def get_user(
    wallet_address: str,
    deps: ConversationDependencies = Depends(get_deps),
):
    user = await deps.conversations.get_user(wallet_address)
    if user is None:
        raise NotFoundError("User", wallet_address)
    return user


# Conversations

@router.post("/conversations")
async def create_conversation(
    request: CreateConversationRequest,
    deps: ConversationDependencies = Depends(get_deps),
):
    """Create a conversation; an existing (wallet, name) pair returns its id."""
    values = require_fields({"walletAddress": request.walletAddress, "name": request.name})
    return await deps.conversations.create_conversation(values["walletAddress"], values["name"])


@router.get("/conversations/{wallet_address}")
async def get_conversations(
    wallet_address: str,
    deps: ConversationDependencies = Depends(get_deps),
):
    return await deps.conversations.get_conversations(wallet_address)


@router.patch("/conversations/{conversation_id}/name")
async def rename_conversation(
    conversation_id: str,
    request: RenameConversationRequest,
    deps: ConversationDependencies = Depends(get_deps),
):
    values = require_fields({"name": request.name})
    return await deps.conversations.update_conversation_name(conversation_id, values["name"])


# Messages

@router.post("/messages")
async def save_message(
    request: SaveMessageRequest,
    deps: ConversationDependencies = Depends(get_deps),
):
    values = require_fields({"conversationId": request.conversationId, "content": request.content})
    await deps.conversations.save_message(
        values["conversationId"],
        values["content"],
        sender=request.sender,
        metadata=request.metadata,
    )
    return {"success": True}


@router.get("/messages/{conversation_id}")
async def get_messages(
    conversation_id: str,
    deps: ConversationDependencies = Depends(get_deps),
):
    """Messages in send order."""
    return await deps.conversations.get_messages(conversation_id)


# Code history

@router.post("/code-history")
async def save_code_history(
    request: SaveCodeHistoryRequest,
    deps: ConversationDependencies = Depends(get_deps),
):
    values = require_fields({"conversationId": request.conversationId, "code": request.code})
    await deps.conversations.save_code_history(
        values["conversationId"],
        request.code,
        language=request.language,
        version=request.version,
        metadata=request.metadata,
    )
    return {"success": True}


@router.get("/code-history/{conversation_id}")
async def get_code_history(
    conversation_id: str,
    deps: ConversationDependencies = Depends(get_deps),
):
    """Newest entries first."""
    return await deps.conversations.get_code_history(conversation_id)
