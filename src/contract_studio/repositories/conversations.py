"""Repository for users, conversations, messages and code history."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

import asyncpg

from ..exceptions import NotFoundError, ValidationError
from .base import BaseRepository, JsonColumn, affected_rows, decode_row

logger = logging.getLogger(__name__)

MESSAGE_SENDERS = frozenset({"user", "ai"})
DEFAULT_SENDER = "ai"
DEFAULT_LANGUAGE = "solidity"

MESSAGE_CODECS = {"metadata": JsonColumn()}
CODE_HISTORY_CODECS = {"metadata": JsonColumn()}


def normalize_sender(sender: Optional[str]) -> str:
    """Only `user` and `ai` are stored; anything else is the assistant."""
    return sender if sender in MESSAGE_SENDERS else DEFAULT_SENDER


# Statement helpers shared with the contract repository; each runs on a
# connection the caller already holds.

async def insert_user(conn, wallet: str) -> None:
    await conn.execute(
        """
        INSERT INTO users (wallet_address)
        VALUES ($1)
        ON CONFLICT (wallet_address) DO NOTHING
        """,
        wallet,
    )


async def conversation_exists(conn, conversation_id: str) -> bool:
    return bool(
        await conn.fetchval("SELECT id FROM conversations WHERE id = $1", conversation_id)
    )


async def ensure_conversation(conn, wallet: str, name: str) -> str:
    """Return the id of the wallet's conversation with this name, creating it if needed."""
    await insert_user(conn, wallet)

    existing = await conn.fetchval(
        "SELECT id FROM conversations WHERE user_wallet = $1 AND name = $2",
        wallet,
        name,
    )
    if existing:
        return existing

    conversation_id = await conn.fetchval(
        """
        INSERT INTO conversations (id, user_wallet, name)
        VALUES ($1, $2, $3)
        ON CONFLICT (user_wallet, name) DO NOTHING
        RETURNING id
        """,
        str(uuid.uuid4()),
        wallet,
        name,
    )
    if conversation_id is None:
        # Lost a race with a concurrent insert of the same pair
        conversation_id = await conn.fetchval(
            "SELECT id FROM conversations WHERE user_wallet = $1 AND name = $2",
            wallet,
            name,
        )
    logger.info("Conversation %s ready for %s", conversation_id, wallet)
    return conversation_id


async def insert_code_history(
    conn,
    conversation_id: str,
    code: str,
    language: str,
    version: Optional[str],
    encoded_metadata: Optional[str],
) -> str:
    entry_id = str(uuid.uuid4())
    await conn.execute(
        """
        INSERT INTO code_history (
            id, conversation_id, code_content, language, version, metadata
        ) VALUES ($1, $2, $3, $4, $5, $6)
        """,
        entry_id,
        conversation_id,
        code,
        language,
        version or None,
        encoded_metadata,
    )
    return entry_id


class ConversationRepository(BaseRepository):
    """Chat-style conversation store keyed by wallet address."""

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, wallet_address: str) -> None:
        """Insert-or-ignore; creating an existing user is a no-op."""
        (wallet,) = self._require(walletAddress=wallet_address)
        async with self._connection("create_user") as conn:
            await insert_user(conn, wallet)

    async def get_user(self, wallet_address: str) -> Optional[dict[str, Any]]:
        (wallet,) = self._require(walletAddress=wallet_address)
        async with self._connection("get_user") as conn:
            row = await conn.fetchrow(
                "SELECT * FROM users WHERE wallet_address = $1",
                wallet,
            )
        return decode_row(row, {})

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(self, wallet_address: str, name: str) -> dict[str, str]:
        """
        Create a conversation, returning the existing id when the wallet
        already owns one with the same name.
        """
        wallet, conv_name = self._require(walletAddress=wallet_address, name=name)
        async with self._connection("create_conversation") as conn:
            return {"id": await ensure_conversation(conn, wallet, conv_name)}

    async def get_conversations(self, wallet_address: str) -> list[dict[str, Any]]:
        (wallet,) = self._require(walletAddress=wallet_address)
        async with self._connection("get_conversations") as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM conversations
                WHERE user_wallet = $1
                ORDER BY created_at DESC
                """,
                wallet,
            )
        return [decode_row(row, {}) for row in rows]

    async def update_conversation_name(self, conversation_id: str, name: str) -> dict[str, bool]:
        conv_id, new_name = self._require(conversationId=conversation_id, name=name)
        async with self._connection("update_conversation_name") as conn:
            try:
                status = await conn.execute(
                    """
                    UPDATE conversations
                    SET name = $1, updated_at = NOW()
                    WHERE id = $2
                    """,
                    new_name,
                    conv_id,
                )
            except asyncpg.UniqueViolationError as e:
                raise ValidationError("Conversation name already exists", field="name") from e
        if affected_rows(status) == 0:
            raise NotFoundError("Conversation", conv_id)
        return {"success": True}

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def save_message(
        self,
        conversation_id: str,
        content: str,
        sender: Optional[str] = None,
        metadata: Any = None,
    ) -> dict[str, str]:
        """Append a message; the conversation must already exist."""
        conv_id, text = self._require(conversationId=conversation_id, content=content)
        encoded_metadata = MESSAGE_CODECS["metadata"].encode(metadata, "metadata")

        async with self._connection("save_message") as conn:
            if not await conversation_exists(conn, conv_id):
                raise NotFoundError("Conversation", conv_id)

            message_id = str(uuid.uuid4())
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO messages (id, conversation_id, content, sender, metadata)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    message_id,
                    conv_id,
                    text,
                    normalize_sender(sender),
                    encoded_metadata,
                )
                await conn.execute(
                    "UPDATE conversations SET last_accessed = NOW() WHERE id = $1",
                    conv_id,
                )
        return {"id": message_id}

    async def get_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        (conv_id,) = self._require(conversationId=conversation_id)
        async with self._connection("get_messages") as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE conversation_id = $1
                ORDER BY created_at ASC
                """,
                conv_id,
            )
        return [decode_row(row, MESSAGE_CODECS) for row in rows]

    # ------------------------------------------------------------------
    # Code history
    # ------------------------------------------------------------------

    async def save_code_history(
        self,
        conversation_id: str,
        code: str,
        language: Optional[str] = None,
        version: Optional[str] = None,
        metadata: Any = None,
    ) -> dict[str, str]:
        conv_id, code_content, lang = self._require(
            conversationId=conversation_id,
            code=code,
            language=language or DEFAULT_LANGUAGE,
        )
        encoded_metadata = CODE_HISTORY_CODECS["metadata"].encode(metadata, "metadata")

        async with self._connection("save_code_history") as conn:
            if not await conversation_exists(conn, conv_id):
                raise NotFoundError("Conversation", conv_id)
            entry_id = await insert_code_history(
                conn, conv_id, code_content, lang, version, encoded_metadata
            )
        return {"id": entry_id}

    async def get_code_history(self, conversation_id: str) -> list[dict[str, Any]]:
        (conv_id,) = self._require(conversationId=conversation_id)
        async with self._connection("get_code_history") as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM code_history
                WHERE conversation_id = $1
                ORDER BY created_at DESC
                """,
                conv_id,
            )
        return [decode_row(row, CODE_HISTORY_CODECS) for row in rows]
