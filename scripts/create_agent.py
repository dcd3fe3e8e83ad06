#!/usr/bin/env python3
from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

APPROVE_ABI = {
    "inputs": [
        {"internalType": "address", "name": "spender", "type": "address"},
        {"internalType": "uint256", "name": "value", "type": "uint256"},
    ],
    "name": "approve",
    "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
    "stateMutability": "nonpayable",
    "type": "function",
}


def _env(name: str, default: Optional[str] = None) -> str:
    value = os.getenv(name, default)
    if value is None:
        raise RuntimeError(f"Missing required env var: {name}")
    return value


def _print_step(title: str) -> None:
    print(f"\n== {title} ==")


def _request(
    client: httpx.Client,
    method: str,
    path: str,
    *,
    json_body: Any | None = None,
    ok_statuses: tuple[int, ...] = (200,),
) -> Any:
    resp = client.request(method, path, json=json_body)
    if resp.status_code not in ok_statuses:
        try:
            detail = resp.json()
        except json.JSONDecodeError:
            detail = resp.text
        raise RuntimeError(f"{method} {path} failed: {resp.status_code} {detail}")
    return resp.json()


def agent_config(contract_id: str, owner: str) -> dict[str, Any]:
    return {
        "agent": {
            "contractId": contract_id,
            "name": "Smart Contract Agent",
            "description": "Approves a spender once a day",
            "status": "paused",
            "gas_limit": "300000",
            "max_priority_fee": "1500000000",
            "owner": owner,
            "contract_state": {"paused": False, "symbol": "TST"},
        },
        "functions": [
            {
                "function_name": "approve",
                "function_signature": "approve(address,uint256)",
                "function_type": "write",
                "is_enabled": True,
                "validation_rules": {"spender": {}, "value": {}},
                "abi": APPROVE_ABI,
                "parameters": [
                    {"param_name": "spender", "param_type": "address"},
                    {"param_name": "value", "param_type": "uint256", "default_value": "0"},
                ],
            }
        ],
        "schedule": {
            "schedule_type": "cron",
            "cron_expression": "0 0 * * *",
            "is_active": True,
        },
        "notifications": [],
    }


def main() -> int:
    """
    Create a complete agent against a running API.

    Flow:
      1) Upsert the registry contract
      2) Create the agent
      3) Create its functions (with parameters)
      4) Create its schedule
      5) Create its notifications
      6) Read everything back

    Usage:
      python3 scripts/create_agent.py

    Env:
      CONTRACT_STUDIO_API_URL (default http://localhost:3000)
      AGENT_OWNER_ADDRESS (default 0xaB6E247B25463F76E81aBAbBb6b0b86B40d45D38)
      AGENT_CONTRACT_ADDRESS (default 0x3ded337a401e234d40cf2a54d9291bf61692ca07)
      AGENT_CHAIN_ID (default 11155111)
    """

    api_url = _env("CONTRACT_STUDIO_API_URL", "http://localhost:3000").rstrip("/")
    owner = _env("AGENT_OWNER_ADDRESS", "0xaB6E247B25463F76E81aBAbBb6b0b86B40d45D38")
    contract_address = _env("AGENT_CONTRACT_ADDRESS", "0x3ded337a401e234d40cf2a54d9291bf61692ca07")
    chain_id = int(_env("AGENT_CHAIN_ID", "11155111"))

    with httpx.Client(base_url=f"{api_url}/api/db", timeout=30.0) as client:
        _print_step("Upsert registry contract")
        registered = _request(
            client,
            "POST",
            "/contracts/create",
            json_body={
                "contract_id": contract_address,
                "address": contract_address,
                "chain_id": chain_id,
                "name": "TestToken",
                "type": "ERC20",
                "abi": [APPROVE_ABI],
                "deployed_at": datetime.now(timezone.utc).isoformat(),
                "owner_address": owner,
            },
        )
        contract_id = registered["contract_id"]
        print(f"contract_id={contract_id}")

        config = agent_config(contract_id, owner)

        _print_step("Create agent")
        agent = _request(client, "POST", "/agents", json_body=config["agent"])
        agent_id = agent["agent_id"]
        print(f"agent_id={agent_id}")

        _print_step("Create functions")
        for function in config["functions"]:
            created = _request(client, "POST", f"/agents/{agent_id}/functions", json_body=function)
            print(f"function_id={created['function_id']} name={function['function_name']}")

        if config["schedule"]:
            _print_step("Create schedule")
            schedule = _request(client, "POST", f"/agents/{agent_id}/schedules", json_body=config["schedule"])
            print(f"schedule_id={schedule['schedule_id']}")

        _print_step("Create notifications")
        if not config["notifications"]:
            print("none configured")
        for notification in config["notifications"]:
            created = _request(client, "POST", f"/agents/{agent_id}/notifications", json_body=notification)
            print(f"notification_id={created['notification_id']}")

        _print_step("Verify")
        agents = _request(client, "GET", f"/agents/{contract_id}")
        functions = _request(client, "GET", f"/agents/{agent_id}/functions")
        schedules = _request(client, "GET", f"/agents/{agent_id}/schedules")
        print(f"agents_for_contract={len(agents)}")
        print(f"functions={len(functions)} schedules={len(schedules)}")
        for function in functions:
            print(f"- {function['function_signature']} params={len(function.get('parameters', []))}")

    _print_step("DONE")
    print(f"Agent {agent_id} created for contract {contract_id}")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        raise
    except (httpx.HTTPError, RuntimeError, KeyError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        raise SystemExit(1)
