"""Repository for deployed contracts and the contract registry."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from ..exceptions import NotFoundError, ValidationError
from .base import (
    BaseRepository,
    IntegerColumn,
    JsonColumn,
    SourceColumn,
    TimestampColumn,
    affected_rows,
    decode_row,
)
from .conversations import (
    CODE_HISTORY_CODECS,
    conversation_exists,
    ensure_conversation,
    insert_code_history,
    insert_user,
)

logger = logging.getLogger(__name__)

DEFAULT_DEPLOYMENT_CONVERSATION = "Contract Deployment Chat"
DEFAULT_NETWORK_ID = 57054

ABI_CODEC = JsonColumn(list, error="Invalid ABI format")

DEPLOYED_CONTRACT_CODECS = {
    "abi": ABI_CODEC,
    "constructor_args": JsonColumn(list),
    "source_code": SourceColumn(),
}
REGISTRY_CODECS = {"abi": ABI_CODEC}


def present_deployed_contract(row: Any) -> dict[str, Any]:
    """Row plus the camelCase fields clients read."""
    contract = decode_row(row, DEPLOYED_CONTRACT_CODECS)
    network_id = contract.get("network_id")
    contract["sourceCode"] = contract.get("source_code")
    contract["constructorArgs"] = contract.get("constructor_args")
    contract["networkId"] = str(network_id) if network_id is not None else None
    return contract


class ContractRepository(BaseRepository):
    """Deployed-contract metadata and the (address, chain) registry."""

    def __init__(self, pool, default_network_id: int = DEFAULT_NETWORK_ID) -> None:
        super().__init__(pool)
        self._default_network_id = default_network_id

    # ------------------------------------------------------------------
    # Deployed contracts
    # ------------------------------------------------------------------

    async def save_deployed_contract(
        self,
        *,
        wallet_address: str,
        conversation_id: str,
        contract_address: str,
        name: str,
        abi: Any,
        bytecode: str,
        source_code: str,
        compiler_version: Optional[str] = None,
        constructor_args: Any = None,
        network_id: Optional[int] = None,
    ) -> dict[str, str]:
        """
        Record a deployment and tag it in the conversation's code history.

        A conversation id that does not exist is replaced by the wallet's
        "Contract Deployment Chat" conversation.
        """
        encoded_abi = ABI_CODEC.encode(abi, "abi")
        if encoded_abi is None:
            raise ValidationError("Invalid ABI format", field="abi")
        wallet, conv_id, address, contract_name, code, source = self._require(
            walletAddress=wallet_address,
            conversationId=conversation_id,
            contractAddress=contract_address,
            name=name,
            bytecode=bytecode,
            sourceCode=source_code,
        )
        encoded_args = DEPLOYED_CONTRACT_CODECS["constructor_args"].encode(
            constructor_args, "constructorArgs"
        )
        network = IntegerColumn().encode(network_id, "networkId") or self._default_network_id

        contract_id = str(uuid.uuid4())
        async with self._connection("save_deployed_contract") as conn:
            async with conn.transaction():
                await insert_user(conn, wallet)
                if not await conversation_exists(conn, conv_id):
                    conv_id = await ensure_conversation(
                        conn, wallet, DEFAULT_DEPLOYMENT_CONVERSATION
                    )

                await insert_code_history(
                    conn,
                    conv_id,
                    source,
                    "solidity",
                    compiler_version,
                    CODE_HISTORY_CODECS["metadata"].encode(
                        {"contractAddress": address, "deploymentType": "contract"},
                        "metadata",
                    ),
                )

                await conn.execute(
                    """
                    INSERT INTO deployed_contracts (
                        id, user_wallet, conversation_id, contract_address, name,
                        abi, bytecode, source_code, compiler_version,
                        constructor_args, network_id
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    """,
                    contract_id,
                    wallet,
                    conv_id,
                    address,
                    contract_name,
                    encoded_abi,
                    code,
                    source,
                    compiler_version or None,
                    encoded_args,
                    network,
                )

        logger.info("Recorded deployment of %s at %s", contract_name, address)
        return {"id": contract_id, "conversation_id": conv_id}

    async def get_deployed_contracts(self, wallet_address: str) -> list[dict[str, Any]]:
        (wallet,) = self._require(walletAddress=wallet_address)
        async with self._connection("get_deployed_contracts") as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM deployed_contracts
                WHERE user_wallet = $1
                ORDER BY deployed_at DESC
                """,
                wallet,
            )
        return [present_deployed_contract(row) for row in rows]

    async def get_contracts_by_conversation(self, conversation_id: str) -> list[dict[str, Any]]:
        (conv_id,) = self._require(conversationId=conversation_id)
        async with self._connection("get_contracts_by_conversation") as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM deployed_contracts
                WHERE conversation_id = $1
                ORDER BY deployed_at DESC
                """,
                conv_id,
            )
        return [present_deployed_contract(row) for row in rows]

    async def update_contract_conversation(self, contract_id: str, conversation_id: str) -> dict[str, bool]:
        """Move a deployed contract to another existing conversation."""
        cid, conv_id = self._require(contractId=contract_id, conversationId=conversation_id)
        async with self._connection("update_contract_conversation") as conn:
            exists = await conn.fetchval("SELECT id FROM deployed_contracts WHERE id = $1", cid)
            if not exists:
                raise NotFoundError("Contract", cid)
            if not await conversation_exists(conn, conv_id):
                raise NotFoundError("Conversation", conv_id)

            status = await conn.execute(
                "UPDATE deployed_contracts SET conversation_id = $1 WHERE id = $2",
                conv_id,
                cid,
            )
        if affected_rows(status) == 0:
            raise NotFoundError("Contract", cid)
        return {"success": True}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    async def create_contract(
        self,
        *,
        contract_id: str,
        address: str,
        chain_id: Any,
        name: str,
        type: str,
        abi: Any,
        owner_address: str,
        deployed_at: Any = None,
    ) -> dict[str, Any]:
        """
        Upsert a registry entry. An existing (address, chain_id) keeps its id
        and gets the new name, type and ABI.
        """
        cid, addr, contract_name, contract_type, owner = self._require(
            contract_id=contract_id,
            address=address,
            name=name,
            type=type,
            owner_address=owner_address,
        )
        chain = IntegerColumn().encode(chain_id, "chain_id")
        if chain is None:
            raise ValidationError("chain_id is required", field="chain_id")
        encoded_abi = ABI_CODEC.encode(abi, "abi")
        if encoded_abi is None:
            raise ValidationError("Invalid ABI format", field="abi")
        deployed = TimestampColumn().encode(deployed_at, "deployed_at")

        async with self._connection("create_contract") as conn:
            stored_id = await conn.fetchval(
                """
                INSERT INTO contracts (
                    contract_id, address, chain_id, name, type, abi,
                    deployed_at, owner_address
                ) VALUES ($1, $2, $3, $4, $5, $6, COALESCE($7, NOW()), $8)
                ON CONFLICT (address, chain_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    type = EXCLUDED.type,
                    abi = EXCLUDED.abi,
                    updated_at = NOW()
                RETURNING contract_id
                """,
                cid,
                addr,
                chain,
                contract_name,
                contract_type,
                encoded_abi,
                deployed,
                owner,
            )

        return {
            "success": True,
            "contract_id": stored_id or cid,
            "message": "Contract created/updated successfully",
        }

    async def get_contract(self, contract_id: str) -> Optional[dict[str, Any]]:
        (cid,) = self._require(contractId=contract_id)
        async with self._connection("get_contract") as conn:
            row = await conn.fetchrow("SELECT * FROM contracts WHERE contract_id = $1", cid)
        return decode_row(row, REGISTRY_CODECS)
