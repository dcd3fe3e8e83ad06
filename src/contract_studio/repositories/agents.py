"""Repository for agents and their functions, schedules, notifications and logs.

Agents are automation records attached to a registry contract. Creating the
pieces of an agent is deliberately not atomic across calls: clients sequence
agent, functions, schedule and notifications themselves.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Optional, Sequence

from ..exceptions import NotFoundError, ValidationError
from .base import (
    BaseRepository,
    BooleanColumn,
    Column,
    IntegerColumn,
    IntegerTextColumn,
    JsonColumn,
    OptionalTextColumn,
    TextColumn,
    TimestampColumn,
    affected_rows,
    build_update,
    decode_row,
)

logger = logging.getLogger(__name__)

DEFAULT_AGENT_STATUS = "paused"

AGENT_CODECS: dict[str, Column] = {"contract_state": JsonColumn()}
FUNCTION_CODECS: dict[str, Column] = {"validation_rules": JsonColumn(), "abi": JsonColumn()}
PARAM_CODECS: dict[str, Column] = {"validation_rules": JsonColumn()}
NOTIFICATION_CODECS: dict[str, Column] = {"configuration": JsonColumn(dict)}

AGENT_UPDATABLE: dict[str, Column] = {
    "name": TextColumn(),
    "description": OptionalTextColumn(),
    "status": TextColumn(),
    "gas_limit": IntegerTextColumn(),
    "max_priority_fee": IntegerTextColumn(),
    "contract_state": AGENT_CODECS["contract_state"],
}

FUNCTION_UPDATABLE: dict[str, Column] = {
    "function_name": TextColumn(),
    "function_signature": TextColumn(),
    "function_type": TextColumn(),
    "is_enabled": BooleanColumn(),
    "validation_rules": FUNCTION_CODECS["validation_rules"],
    "abi": FUNCTION_CODECS["abi"],
}

SCHEDULE_UPDATABLE: dict[str, Column] = {
    "schedule_type": TextColumn(),
    "interval_seconds": IntegerColumn(),
    "cron_expression": OptionalTextColumn(),
    "next_execution": TimestampColumn(),
    "is_active": BooleanColumn(),
}

NOTIFICATION_UPDATABLE: dict[str, Column] = {
    "notification_type": TextColumn(),
    "configuration": NOTIFICATION_CODECS["configuration"],
    "is_enabled": BooleanColumn(),
}


def _flag(data: Mapping[str, Any], name: str, default: bool = True) -> bool:
    value = data.get(name)
    return default if value is None else BooleanColumn().encode(value, name)


class AgentRepository(BaseRepository):
    """Agent automation records and their children."""

    # ------------------------------------------------------------------
    # Existence checks
    # ------------------------------------------------------------------

    @staticmethod
    async def _require_agent(conn, agent_id: str) -> None:
        if not await conn.fetchval("SELECT agent_id FROM agents WHERE agent_id = $1", agent_id):
            raise NotFoundError("Agent", agent_id)

    @staticmethod
    async def _require_function(conn, agent_id: str, function_id: str) -> None:
        found = await conn.fetchval(
            "SELECT function_id FROM agent_functions WHERE function_id = $1 AND agent_id = $2",
            function_id,
            agent_id,
        )
        if not found:
            raise NotFoundError("Agent function", function_id)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def create_agent(self, contract_id: str, data: Mapping[str, Any]) -> dict[str, str]:
        cid, name, owner = self._require(
            contractId=contract_id,
            name=data.get("name"),
            owner=data.get("owner"),
        )
        description = OptionalTextColumn().encode(data.get("description"), "description")
        status = (OptionalTextColumn().encode(data.get("status"), "status") or "").strip()
        gas_limit = IntegerTextColumn().encode(data.get("gas_limit"), "gas_limit")
        max_priority_fee = IntegerTextColumn().encode(data.get("max_priority_fee"), "max_priority_fee")
        contract_state = AGENT_CODECS["contract_state"].encode(data.get("contract_state"), "contract_state")

        agent_id = str(uuid.uuid4())
        async with self._connection("create_agent") as conn:
            if not await conn.fetchval("SELECT contract_id FROM contracts WHERE contract_id = $1", cid):
                raise NotFoundError("Contract", cid)
            await conn.execute(
                """
                INSERT INTO agents (
                    agent_id, contract_id, name, description, status,
                    gas_limit, max_priority_fee, owner, contract_state
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                agent_id,
                cid,
                name,
                description,
                status or DEFAULT_AGENT_STATUS,
                gas_limit,
                max_priority_fee,
                owner,
                contract_state,
            )
        logger.info("Created agent %s for contract %s", agent_id, cid)
        return {"agent_id": agent_id}

    async def get_agents_by_contract(self, contract_id: str) -> list[dict[str, Any]]:
        (cid,) = self._require(contractId=contract_id)
        async with self._connection("get_agents_by_contract") as conn:
            rows = await conn.fetch(
                "SELECT * FROM agents WHERE contract_id = $1 ORDER BY created_at DESC",
                cid,
            )
        return [decode_row(row, AGENT_CODECS) for row in rows]

    async def get_agents_by_owner(self, owner_address: str) -> list[dict[str, Any]]:
        (owner,) = self._require(ownerAddress=owner_address)
        async with self._connection("get_agents_by_owner") as conn:
            rows = await conn.fetch(
                "SELECT * FROM agents WHERE owner = $1 ORDER BY created_at DESC",
                owner,
            )
        return [decode_row(row, AGENT_CODECS) for row in rows]

    async def get_agent(self, agent_id: str) -> Optional[dict[str, Any]]:
        (aid,) = self._require(agentId=agent_id)
        async with self._connection("get_agent") as conn:
            row = await conn.fetchrow("SELECT * FROM agents WHERE agent_id = $1", aid)
        return decode_row(row, AGENT_CODECS)

    async def update_agent(self, agent_id: str, data: Mapping[str, Any]) -> dict[str, bool]:
        (aid,) = self._require(agentId=agent_id)
        sql, values = build_update("agents", {"agent_id": aid}, data, AGENT_UPDATABLE)
        async with self._connection("update_agent") as conn:
            status = await conn.execute(sql, *values)
        if affected_rows(status) == 0:
            raise NotFoundError("Agent", aid)
        return {"success": True}

    # ------------------------------------------------------------------
    # Functions and parameters
    # ------------------------------------------------------------------

    @staticmethod
    def _encode_parameters(function_id: str, parameters: Sequence[Any]) -> list[tuple]:
        if not isinstance(parameters, (list, tuple)):
            raise ValidationError("parameters must be a list", field="parameters")
        records = []
        for index, param in enumerate(parameters):
            if not isinstance(param, Mapping):
                raise ValidationError(f"parameters[{index}] must be an object", field="parameters")
            name = TextColumn().encode(param.get("param_name"), "param_name")
            param_type = TextColumn().encode(param.get("param_type"), "param_type")
            default = param.get("default_value")
            records.append((
                str(uuid.uuid4()),
                function_id,
                name,
                param_type,
                None if default is None or default == "" else str(default),
                PARAM_CODECS["validation_rules"].encode(param.get("validation_rules"), "validation_rules"),
            ))
        return records

    @staticmethod
    async def _insert_parameters(conn, records: list[tuple]) -> None:
        if not records:
            return
        await conn.executemany(
            """
            INSERT INTO agent_function_params (
                param_id, function_id, param_name, param_type,
                default_value, validation_rules
            ) VALUES ($1, $2, $3, $4, $5, $6)
            """,
            records,
        )

    async def create_function(self, agent_id: str, data: Mapping[str, Any]) -> dict[str, str]:
        aid, name, signature, function_type = self._require(
            agentId=agent_id,
            function_name=data.get("function_name"),
            function_signature=data.get("function_signature"),
            function_type=data.get("function_type"),
        )
        function_id = str(uuid.uuid4())
        params = self._encode_parameters(function_id, data.get("parameters") or [])
        validation_rules = FUNCTION_CODECS["validation_rules"].encode(data.get("validation_rules"), "validation_rules")
        abi = FUNCTION_CODECS["abi"].encode(data.get("abi"), "abi")

        async with self._connection("create_function") as conn:
            await self._require_agent(conn, aid)
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO agent_functions (
                        function_id, agent_id, function_name, function_signature,
                        function_type, is_enabled, validation_rules, abi
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """,
                    function_id,
                    aid,
                    name,
                    signature,
                    function_type,
                    _flag(data, "is_enabled"),
                    validation_rules,
                    abi,
                )
                await self._insert_parameters(conn, params)
        return {"function_id": function_id}

    async def get_functions(self, agent_id: str) -> list[dict[str, Any]]:
        """Functions of an agent, each with its `parameters` list."""
        (aid,) = self._require(agentId=agent_id)
        async with self._connection("get_functions") as conn:
            rows = await conn.fetch(
                "SELECT * FROM agent_functions WHERE agent_id = $1 ORDER BY created_at ASC",
                aid,
            )
            functions = [decode_row(row, FUNCTION_CODECS) for row in rows]
            if not functions:
                return []
            param_rows = await conn.fetch(
                "SELECT * FROM agent_function_params WHERE function_id = ANY($1::text[])",
                [f["function_id"] for f in functions],
            )

        by_function: dict[str, list[dict[str, Any]]] = {}
        for row in param_rows:
            param = decode_row(row, PARAM_CODECS)
            by_function.setdefault(param["function_id"], []).append(param)
        for function in functions:
            function["parameters"] = by_function.get(function["function_id"], [])
        return functions

    async def update_function(
        self,
        agent_id: str,
        function_id: str,
        data: Mapping[str, Any],
    ) -> dict[str, bool]:
        """
        Apply allowed field changes; a `parameters` list replaces every
        existing parameter of the function.
        """
        aid, fid = self._require(agentId=agent_id, functionId=function_id)
        parameters = data.get("parameters")
        records = self._encode_parameters(fid, parameters) if parameters is not None else None

        update = None
        if records is None or any(name in FUNCTION_UPDATABLE for name in data):
            update = build_update(
                "agent_functions",
                {"function_id": fid, "agent_id": aid},
                data,
                FUNCTION_UPDATABLE,
            )

        async with self._connection("update_function") as conn:
            async with conn.transaction():
                if update is not None:
                    status = await conn.execute(update[0], *update[1])
                    if affected_rows(status) == 0:
                        raise NotFoundError("Agent function", fid)
                else:
                    await self._require_function(conn, aid, fid)

                if records is not None:
                    await conn.execute(
                        "DELETE FROM agent_function_params WHERE function_id = $1",
                        fid,
                    )
                    await self._insert_parameters(conn, records)
        return {"success": True}

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    async def create_schedule(self, agent_id: str, data: Mapping[str, Any]) -> dict[str, str]:
        aid, schedule_type = self._require(agentId=agent_id, schedule_type=data.get("schedule_type"))
        values = (
            IntegerColumn().encode(data.get("interval_seconds"), "interval_seconds"),
            OptionalTextColumn().encode(data.get("cron_expression"), "cron_expression"),
            TimestampColumn().encode(data.get("next_execution"), "next_execution"),
            _flag(data, "is_active"),
        )

        schedule_id = str(uuid.uuid4())
        async with self._connection("create_schedule") as conn:
            await self._require_agent(conn, aid)
            await conn.execute(
                """
                INSERT INTO agent_schedules (
                    schedule_id, agent_id, schedule_type, interval_seconds,
                    cron_expression, next_execution, is_active
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                schedule_id,
                aid,
                schedule_type,
                *values,
            )
        return {"schedule_id": schedule_id}

    async def get_schedules(self, agent_id: str) -> list[dict[str, Any]]:
        (aid,) = self._require(agentId=agent_id)
        async with self._connection("get_schedules") as conn:
            rows = await conn.fetch(
                "SELECT * FROM agent_schedules WHERE agent_id = $1 ORDER BY created_at ASC",
                aid,
            )
        return [decode_row(row, {}) for row in rows]

    async def update_schedule(
        self,
        agent_id: str,
        schedule_id: str,
        data: Mapping[str, Any],
    ) -> dict[str, bool]:
        aid, sid = self._require(agentId=agent_id, scheduleId=schedule_id)
        sql, values = build_update(
            "agent_schedules",
            {"schedule_id": sid, "agent_id": aid},
            data,
            SCHEDULE_UPDATABLE,
        )
        async with self._connection("update_schedule") as conn:
            status = await conn.execute(sql, *values)
        if affected_rows(status) == 0:
            raise NotFoundError("Agent schedule", sid)
        return {"success": True}

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def create_notification(self, agent_id: str, data: Mapping[str, Any]) -> dict[str, str]:
        aid, notification_type = self._require(
            agentId=agent_id,
            notification_type=data.get("notification_type"),
        )
        configuration = data.get("configuration")
        if not configuration:
            raise ValidationError(
                "Configuration is required for notifications",
                field="configuration",
            )
        encoded = NOTIFICATION_CODECS["configuration"].encode(configuration, "configuration")

        notification_id = str(uuid.uuid4())
        async with self._connection("create_notification") as conn:
            await self._require_agent(conn, aid)
            await conn.execute(
                """
                INSERT INTO agent_notifications (
                    notification_id, agent_id, notification_type,
                    configuration, is_enabled
                ) VALUES ($1, $2, $3, $4, $5)
                """,
                notification_id,
                aid,
                notification_type,
                encoded,
                _flag(data, "is_enabled"),
            )
        return {"notification_id": notification_id}

    async def get_notifications(self, agent_id: str) -> list[dict[str, Any]]:
        (aid,) = self._require(agentId=agent_id)
        async with self._connection("get_notifications") as conn:
            rows = await conn.fetch(
                "SELECT * FROM agent_notifications WHERE agent_id = $1 ORDER BY created_at ASC",
                aid,
            )
        return [decode_row(row, NOTIFICATION_CODECS) for row in rows]

    async def update_notification(
        self,
        agent_id: str,
        notification_id: str,
        data: Mapping[str, Any],
    ) -> dict[str, bool]:
        aid, nid = self._require(agentId=agent_id, notificationId=notification_id)
        sql, values = build_update(
            "agent_notifications",
            {"notification_id": nid, "agent_id": aid},
            data,
            NOTIFICATION_UPDATABLE,
        )
        async with self._connection("update_notification") as conn:
            status = await conn.execute(sql, *values)
        if affected_rows(status) == 0:
            raise NotFoundError("Agent notification", nid)
        return {"success": True}

    # ------------------------------------------------------------------
    # Execution logs
    # ------------------------------------------------------------------

    async def create_execution_log(self, agent_id: str, data: Mapping[str, Any]) -> dict[str, str]:
        aid, fid, status = self._require(
            agentId=agent_id,
            function_id=data.get("function_id"),
            status=data.get("status"),
        )
        transaction_hash = OptionalTextColumn().encode(data.get("transaction_hash"), "transaction_hash")
        error_message = OptionalTextColumn().encode(data.get("error_message"), "error_message")
        gas_used = IntegerTextColumn().encode(data.get("gas_used"), "gas_used")
        gas_price = IntegerTextColumn().encode(data.get("gas_price"), "gas_price")
        execution_time = TimestampColumn().encode(data.get("execution_time"), "execution_time")

        log_id = str(uuid.uuid4())
        async with self._connection("create_execution_log") as conn:
            await self._require_agent(conn, aid)
            await self._require_function(conn, aid, fid)
            await conn.execute(
                """
                INSERT INTO agent_execution_logs (
                    log_id, agent_id, function_id, transaction_hash, status,
                    error_message, gas_used, gas_price, execution_time
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, COALESCE($9, NOW()))
                """,
                log_id,
                aid,
                fid,
                transaction_hash,
                status,
                error_message,
                gas_used,
                gas_price,
                execution_time,
            )
        return {"log_id": log_id}

    async def get_execution_logs(self, agent_id: str) -> list[dict[str, Any]]:
        (aid,) = self._require(agentId=agent_id)
        async with self._connection("get_execution_logs") as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM agent_execution_logs
                WHERE agent_id = $1
                ORDER BY execution_time DESC
                """,
                aid,
            )
        return [decode_row(row, {}) for row in rows]
