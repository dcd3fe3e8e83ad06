"""Compile and deploy endpoints."""
from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..pipeline import ContractPipeline
from ..validators import require_fields, validate_contract_source

router = APIRouter(tags=["pipeline"])


# Request Models

class CompileRequest(BaseModel):
    """Solidity source plus the contract to take from it."""
    contractName: Optional[str] = Field(None, description="Contract declared in the source")
    sourceCode: Optional[str] = Field(None, description="Solidity source")


class DeployRequest(CompileRequest):
    constructorArgs: Optional[List[Any]] = Field(None, description="Constructor arguments, in order")


# Dependencies

class PipelineDependencies:
    """Dependencies for pipeline routes."""
    def __init__(self, pipeline: ContractPipeline):
        self.pipeline = pipeline


def get_deps() -> PipelineDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


def _checked_source(request: CompileRequest) -> tuple[str, str]:
    values = require_fields(
        {"contractName": request.contractName, "sourceCode": request.sourceCode}
    )
    validate_contract_source(values["contractName"], request.sourceCode)
    return values["contractName"], request.sourceCode


# Routes

@router.get("")
async def index():
    return {"message": "Smart Contract API"}


@router.post("/compile")
async def compile_contract(
    request: CompileRequest,
    deps: PipelineDependencies = Depends(get_deps),
):
    """Compile a contract and return its ABI and bytecode."""
    name, source = _checked_source(request)
    artifact = await deps.pipeline.compile(name, source)
    return {"success": True, "artifact": artifact.to_dict()}


@router.post("/deploy")
async def deploy_contract(
    request: DeployRequest,
    deps: PipelineDependencies = Depends(get_deps),
):
    """
    Compile then deploy a contract.

    A compile failure returns the compile error alone; a deploy failure
    returns the error plus the successful `compilation` result.
    """
    name, source = _checked_source(request)
    return await deps.pipeline.deploy(name, source, request.constructorArgs or [])
