"""Agents and their functions, schedules, notifications and execution logs.

Updates take a free-form JSON object; the repository applies only the
fields it allows for each entity.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from ..exceptions import NotFoundError
from ..repositories import AgentRepository
from ..validators import require_fields

router = APIRouter(tags=["agents"])


# Request Models

class CreateAgentRequest(BaseModel):
    contractId: Optional[str] = Field(None, description="Registry contract_id")
    name: Optional[str] = None
    owner: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = Field(None, description="Defaults to paused")
    gas_limit: Optional[Any] = None
    max_priority_fee: Optional[Any] = None
    contract_state: Optional[Any] = None


class FunctionParameter(BaseModel):
    param_name: Optional[str] = None
    param_type: Optional[str] = None
    default_value: Optional[Any] = None
    validation_rules: Optional[Any] = None


class CreateFunctionRequest(BaseModel):
    function_name: Optional[str] = None
    function_signature: Optional[str] = None
    function_type: Optional[str] = None
    is_enabled: Optional[bool] = None
    validation_rules: Optional[Any] = None
    abi: Optional[Any] = None
    parameters: Optional[List[FunctionParameter]] = None


class CreateScheduleRequest(BaseModel):
    schedule_type: Optional[str] = None
    interval_seconds: Optional[int] = None
    cron_expression: Optional[str] = None
    next_execution: Optional[str] = None
    is_active: Optional[bool] = None


class CreateNotificationRequest(BaseModel):
    notification_type: Optional[str] = None
    configuration: Optional[Any] = None
    is_enabled: Optional[bool] = None


class CreateExecutionLogRequest(BaseModel):
    function_id: Optional[str] = None
    status: Optional[str] = None
    transaction_hash: Optional[str] = None
    error_message: Optional[str] = None
    gas_used: Optional[Any] = None
    gas_price: Optional[Any] = None
    execution_time: Optional[str] = None


# Dependencies

class AgentDependencies:
    """Dependencies for agent routes."""
    def __init__(self, agents: AgentRepository):
        self.agents = agents


def get_deps() -> AgentDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


# Agents

@router.post("/agents")
async def create_agent(
    request: CreateAgentRequest,
    deps: AgentDependencies = Depends(get_deps),
):
    """Create an agent for a registered contract."""
    values = require_fields(
        {"contractId": request.contractId, "name": request.name, "owner": request.owner}
    )
    data = request.model_dump(exclude={"contractId"}, exclude_unset=True)
    data.update(name=values["name"], owner=values["owner"])
    return await deps.agents.create_agent(values["contractId"], data)


@router.get("/agents/owner/{owner_address}")
async def get_agents_by_owner(
    owner_address: str,
    deps: AgentDependencies = Depends(get_deps),
):
    return await deps.agents.get_agents_by_owner(owner_address)


@router.get("/agents/detail/{agent_id}")
async def get_agent(
    agent_id: str,
    deps: AgentDependencies = Depends(get_deps),
):
    agent = await deps.agents.get_agent(agent_id)
    if agent is None:
        raise NotFoundError("Agent", agent_id)
    return agent


@router.get("/agents/{contract_id}")
async def get_agents_by_contract(
    contract_id: str,
    deps: AgentDependencies = Depends(get_deps),
):
    return await deps.agents.get_agents_by_contract(contract_id)


@router.patch("/agents/{agent_id}")
async def update_agent(
    agent_id: str,
    updates: Dict[str, Any] = Body(...),
    deps: AgentDependencies = Depends(get_deps),
):
    return await deps.agents.update_agent(agent_id, updates)


# Functions

@router.post("/agents/{agent_id}/functions")
async def create_function(
    agent_id: str,
    request: CreateFunctionRequest,
    deps: AgentDependencies = Depends(get_deps),
):
    require_fields(
        {
            "function_name": request.function_name,
            "function_signature": request.function_signature,
            "function_type": request.function_type,
        }
    )
    return await deps.agents.create_function(agent_id, request.model_dump(exclude_unset=True))


@router.get("/agents/{agent_id}/functions")
async def get_functions(
    agent_id: str,
    deps: AgentDependencies = Depends(get_deps),
):
    """Functions with their parameters."""
    return await deps.agents.get_functions(agent_id)


@router.patch("/agents/{agent_id}/functions/{function_id}")
async def update_function(
    agent_id: str,
    function_id: str,
    updates: Dict[str, Any] = Body(...),
    deps: AgentDependencies = Depends(get_deps),
):
    """A `parameters` list replaces all existing parameters."""
    return await deps.agents.update_function(agent_id, function_id, updates)


# Schedules

@router.post("/agents/{agent_id}/schedules")
async def create_schedule(
    agent_id: str,
    request: CreateScheduleRequest,
    deps: AgentDependencies = Depends(get_deps),
):
    require_fields({"schedule_type": request.schedule_type})
    return await deps.agents.create_schedule(agent_id, request.model_dump(exclude_unset=True))


@router.get("/agents/{agent_id}/schedules")
async def get_schedules(
    agent_id: str,
    deps: AgentDependencies = Depends(get_deps),
):
    return await deps.agents.get_schedules(agent_id)


@router.patch("/agents/{agent_id}/schedules/{schedule_id}")
async def update_schedule(
    agent_id: str,
    schedule_id: str,
    updates: Dict[str, Any] = Body(...),
    deps: AgentDependencies = Depends(get_deps),
):
    return await deps.agents.update_schedule(agent_id, schedule_id, updates)


# Notifications

@router.post("/agents/{agent_id}/notifications")
async def create_notification(
    agent_id: str,
    request: CreateNotificationRequest,
    deps: AgentDependencies = Depends(get_deps),
):
    require_fields({"notification_type": request.notification_type})
    return await deps.agents.create_notification(agent_id, request.model_dump(exclude_unset=True))


@router.get("/agents/{agent_id}/notifications")
async def get_notifications(
    agent_id: str,
    deps: AgentDependencies = Depends(get_deps),
):
    return await deps.agents.get_notifications(agent_id)


@router.patch("/agents/{agent_id}/notifications/{notification_id}")
async def update_notification(
    agent_id: str,
    notification_id: str,
    updates: Dict[str, Any] = Body(...),
    deps: AgentDependencies = Depends(get_deps),
):
    return await deps.agents.update_notification(agent_id, notification_id, updates)


# Execution logs

@router.post("/agents/{agent_id}/logs")
async def create_execution_log(
    agent_id: str,
    request: CreateExecutionLogRequest,
    deps: AgentDependencies = Depends(get_deps),
):
    require_fields({"function_id": request.function_id, "status": request.status})
    return await deps.agents.create_execution_log(agent_id, request.model_dump(exclude_unset=True))


@router.get("/agents/{agent_id}/logs")
async def get_execution_logs(
    agent_id: str,
    deps: AgentDependencies = Depends(get_deps),
):
    """Newest executions first."""
    return await deps.agents.get_execution_logs(agent_id)
