"""Contract read, write and event endpoints."""
from __future__ import annotations

from typing import Any, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..chain import ChainClient
from ..validators import parse_abi, require_fields, validate_address

router = APIRouter(tags=["contracts"])

BlockId = Union[int, str]


# Request Models

class FunctionCallRequest(BaseModel):
    """Call of a single contract function."""
    contractAddress: Optional[str] = Field(None, description="0x-prefixed contract address")
    abi: Optional[Union[str, List[Any]]] = Field(None, description="ABI as a JSON string or array")
    functionName: Optional[str] = None
    inputs: Optional[List[Any]] = Field(None, description="Positional function arguments")


class EventFilter(BaseModel):
    fromBlock: Optional[BlockId] = None
    toBlock: Optional[BlockId] = None


class EventQueryRequest(BaseModel):
    contractAddress: Optional[str] = None
    abi: Optional[Union[str, List[Any]]] = None
    eventName: Optional[str] = None
    filter: Optional[EventFilter] = None


# Dependencies

class InteractionDependencies:
    """Dependencies for contract interaction routes."""
    def __init__(self, chain: ChainClient):
        self.chain = chain


def get_deps() -> InteractionDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


def _checked_call(request: FunctionCallRequest) -> tuple[str, list[dict[str, Any]], str]:
    values = require_fields(
        {
            "contractAddress": request.contractAddress,
            "abi": request.abi,
            "functionName": request.functionName,
        }
    )
    address = validate_address(values["contractAddress"])
    return address, parse_abi(request.abi), values["functionName"]


# Routes

@router.post("/read")
async def read_contract(
    request: FunctionCallRequest,
    deps: InteractionDependencies = Depends(get_deps),
):
    """Call a view or pure function."""
    address, abi, function_name = _checked_call(request)
    data = await deps.chain.read(address, abi, function_name, request.inputs or [])
    return {"success": True, "data": data}


@router.post("/write")
async def write_contract(
    request: FunctionCallRequest,
    deps: InteractionDependencies = Depends(get_deps),
):
    """Send a state-changing transaction and wait for it to be mined."""
    address, abi, function_name = _checked_call(request)
    data = await deps.chain.write(address, abi, function_name, request.inputs or [])
    return {"success": True, "data": data}


@router.post("/events")
async def get_events(
    request: EventQueryRequest,
    deps: InteractionDependencies = Depends(get_deps),
):
    values = require_fields(
        {
            "contractAddress": request.contractAddress,
            "abi": request.abi,
            "eventName": request.eventName,
        }
    )
    address = validate_address(values["contractAddress"])
    abi = parse_abi(request.abi)
    block_filter = request.filter or EventFilter()

    data = await deps.chain.events(
        address,
        abi,
        values["eventName"],
        from_block=block_filter.fromBlock if block_filter.fromBlock is not None else 0,
        to_block=block_filter.toBlock if block_filter.toBlock is not None else "latest",
    )
    return {"success": True, "data": data}
