"""Deployed-contract records and the contract registry."""
from __future__ import annotations

from typing import Any, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..repositories import ContractRepository
from ..validators import require_fields

router = APIRouter(tags=["deployments"])


# Request Models

class SaveDeployedContractRequest(BaseModel):
    """A contract deployed from a conversation."""
    walletAddress: Optional[str] = None
    conversationId: Optional[str] = None
    contractAddress: Optional[str] = None
    name: Optional[str] = None
    abi: Optional[Any] = Field(None, description="ABI as a JSON string or array")
    bytecode: Optional[str] = None
    sourceCode: Optional[str] = None
    compilerVersion: Optional[str] = None
    constructorArgs: Optional[Any] = None
    networkId: Optional[Union[int, str]] = None


class MoveContractRequest(BaseModel):
    conversationId: Optional[str] = None


class RegisterContractRequest(BaseModel):
    """Registry entry keyed by (address, chain_id)."""
    contract_id: Optional[str] = None
    address: Optional[str] = None
    chain_id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    type: Optional[str] = None
    abi: Optional[Any] = None
    deployed_at: Optional[str] = Field(None, description="ISO-8601; defaults to now")
    owner_address: Optional[str] = None


# Dependencies

class DeploymentDependencies:
    """Dependencies for deployment routes."""
    def __init__(self, contracts: ContractRepository):
        self.contracts = contracts


def get_deps() -> DeploymentDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


# Routes

@router.post("/contracts/create")
async def register_contract(
    request: RegisterContractRequest,
    deps: DeploymentDependencies = Depends(get_deps),
):
    """Create or update a registry entry."""
    values = require_fields(
        {
            "contract_id": request.contract_id,
            "address": request.address,
            "chain_id": request.chain_id,
            "name": request.name,
            "type": request.type,
            "abi": request.abi,
            "owner_address": request.owner_address,
        }
    )
    return await deps.contracts.create_contract(
        contract_id=values["contract_id"],
        address=values["address"],
        chain_id=values["chain_id"],
        name=values["name"],
        type=values["type"],
        abi=request.abi,
        owner_address=values["owner_address"],
        deployed_at=request.deployed_at,
    )


@router.post("/contracts")
async def save_deployed_contract(
    request: SaveDeployedContractRequest,
    deps: DeploymentDependencies = Depends(get_deps),
):
    """
    Record a deployment.

    Also adds a code-history entry; an unknown conversation id falls back to
    the wallet's "Contract Deployment Chat".
    """
    values = require_fields(
        {
            "walletAddress": request.walletAddress,
            "conversationId": request.conversationId,
            "contractAddress": request.contractAddress,
            "name": request.name,
            "abi": request.abi,
            "bytecode": request.bytecode,
            "sourceCode": request.sourceCode,
        }
    )
    await deps.contracts.save_deployed_contract(
        wallet_address=values["walletAddress"],
        conversation_id=values["conversationId"],
        contract_address=values["contractAddress"],
        name=values["name"],
        abi=request.abi,
        bytecode=values["bytecode"],
        source_code=request.sourceCode,
        compiler_version=request.compilerVersion,
        constructor_args=request.constructorArgs,
        network_id=request.networkId,
    )
    return {"success": True}


@router.get("/contracts/conversation/{conversation_id}")
async def get_contracts_by_conversation(
    conversation_id: str,
    deps: DeploymentDependencies = Depends(get_deps),
):
    return await deps.contracts.get_contracts_by_conversation(conversation_id)


@router.get("/contracts/{wallet_address}")
async def get_deployed_contracts(
    wallet_address: str,
    deps: DeploymentDependencies = Depends(get_deps),
):
    return await deps.contracts.get_deployed_contracts(wallet_address)


@router.patch("/contracts/{contract_id}/conversation")
async def move_contract(
    contract_id: str,
    request: MoveContractRequest,
    deps: DeploymentDependencies = Depends(get_deps),
):
    """Attach a deployed contract to another conversation."""
    values = require_fields({"conversationId": request.conversationId})
    return await deps.contracts.update_contract_conversation(contract_id, values["conversationId"])
