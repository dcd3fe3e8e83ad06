"""HTTP-level tests for the routers, wired to fakes through dependency overrides."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import asyncpg
from fastapi import FastAPI
from fastapi.testclient import TestClient

from contract_studio.config import Settings
from contract_studio.exceptions import CompilationError, DeploymentError
from contract_studio.pipeline import Artifact, ContractPipeline, Deployment, normalize_diagnostic
from contract_studio.pipeline.staging import Workspace
from contract_studio.repositories import AgentRepository, ContractRepository, ConversationRepository
from contract_studio.middleware import register_exception_handlers
from contract_studio.routers import agents as agents_router
from contract_studio.routers import conversations as conversations_router
from contract_studio.routers import deployments as deployments_router
from contract_studio.routers import interaction as interaction_router
from contract_studio.routers import pipeline as pipeline_router
from contract_studio.serialization import SafeJSONResponse
from db_fakes import FakeConn, FakePool


class StubCompiler:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: list[str] = []

    async def stage(self, contract_name: str, source_code: str) -> Workspace:
        return Workspace(contract_name=contract_name, root=Path("staging") / contract_name)

    async def compile_staged(self, workspace: Workspace) -> Artifact:
        self.calls.append(workspace.contract_name)
        if self.error:
            raise self.error
        return Artifact(contract_name=workspace.contract_name, abi=[], bytecode="0x6080")


class StubDeployer:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: list[list[Any]] = []

    async def deploy(self, artifact: Artifact, constructor_args) -> Deployment:
        self.calls.append(list(constructor_args))
        if self.error:
            raise self.error
        return Deployment(
            contract_address="0x5FbDB2315678afecb367f032d93F642f64180aa3",
            transaction_hash="0xabc",
        )


class StubChain:
    def __init__(self):
        self.calls: list[tuple] = []

    async def read(self, address, abi, function_name, inputs):
        self.calls.append(("read", address, function_name, list(inputs)))
        return {"raw": 2**64, "small": 7}

    async def write(self, address, abi, function_name, inputs):
        self.calls.append(("write", address, function_name, list(inputs)))
        return {"transactionHash": "0xfeed", "blockNumber": "12", "gasUsed": "21000"}

    async def events(self, address, abi, event_name, from_block=0, to_block="latest"):
        self.calls.append(("events", address, event_name, from_block, to_block))
        return []


def build_app(
    *,
    conn: Optional[FakeConn] = None,
    compiler: Optional[StubCompiler] = None,
    deployer: Optional[StubDeployer] = None,
    chain: Optional[StubChain] = None,
) -> FastAPI:
    pool = FakePool(conn or FakeConn())
    pipeline = ContractPipeline(compiler or StubCompiler(), deployer or StubDeployer())
    chain = chain or StubChain()

    app = FastAPI(default_response_class=SafeJSONResponse)
    register_exception_handlers(app, Settings(_env_file=None))

    app.dependency_overrides[pipeline_router.get_deps] = lambda: pipeline_router.PipelineDependencies(pipeline=pipeline)
    app.include_router(pipeline_router.router, prefix="/api")

    app.dependency_overrides[interaction_router.get_deps] = lambda: interaction_router.InteractionDependencies(chain=chain)
    app.include_router(interaction_router.router, prefix="/api/contracts")

    app.dependency_overrides[conversations_router.get_deps] = lambda: conversations_router.ConversationDependencies(
        conversations=ConversationRepository(pool),
    )
    app.include_router(conversations_router.router, prefix="/api/db")

    app.dependency_overrides[deployments_router.get_deps] = lambda: deployments_router.DeploymentDependencies(
        contracts=ContractRepository(pool),
    )
    app.include_router(deployments_router.router, prefix="/api/db")

    app.dependency_overrides[agents_router.get_deps] = lambda: agents_router.AgentDependencies(
        agents=AgentRepository(pool),
    )
    app.include_router(agents_router.router, prefix="/api/db")
    return app


# =============================================================================
# Compile / deploy
# =============================================================================

class TestPipelineRoutes:
    def test_index(self):
        response = TestClient(build_app()).get("/api")
        assert response.json() == {"message": "Smart Contract API"}

    def test_compile_returns_artifact(self, counter_source):
        compiler = StubCompiler()
        client = TestClient(build_app(compiler=compiler))

        response = client.post("/api/compile", json={"contractName": "Counter", "sourceCode": counter_source})

        assert response.status_code == 200
        assert response.json() == {"success": True, "artifact": {"abi": [], "bytecode": "0x6080"}}
        assert compiler.calls == ["Counter"]

    def test_missing_fields_are_all_named(self):
        response = TestClient(build_app()).post("/api/compile", json={})

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Missing required fields: contractName, sourceCode"
        assert body["details"]["fields"] == ["contractName", "sourceCode"]

    def test_name_mismatch_never_reaches_the_compiler(self, counter_source):
        compiler = StubCompiler()
        client = TestClient(build_app(compiler=compiler))

        response = client.post("/api/compile", json={"contractName": "Token", "sourceCode": counter_source})

        assert response.status_code == 400
        assert response.json()["message"].startswith("Contract name mismatch")
        assert response.json()["details"]["found"] == ["Counter"]
        assert compiler.calls == []

    def test_missing_pragma(self):
        compiler = StubCompiler()
        client = TestClient(build_app(compiler=compiler))

        response = client.post("/api/compile", json={"contractName": "A", "sourceCode": "contract A {}"})

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "sourceCode"
        assert compiler.calls == []

    def test_compile_failure_is_a_500_with_diagnostic(self, counter_source):
        error = CompilationError(normalize_diagnostic("ParserError: Expected ';' but got '}'"))
        client = TestClient(build_app(compiler=StubCompiler(error)))

        response = client.post("/api/compile", json={"contractName": "Counter", "sourceCode": counter_source})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "COMPILATION_ERROR"
        assert body["details"]["category"] == "syntax"

    def test_deploy_success(self, counter_source):
        deployer = StubDeployer()
        client = TestClient(build_app(deployer=deployer))

        response = client.post(
            "/api/deploy",
            json={"contractName": "Counter", "sourceCode": counter_source, "constructorArgs": [1, "x"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Deployment successful"
        assert body["compilation"]["success"] is True
        assert body["deployment"]["contractAddress"] == "0x5FbDB2315678afecb367f032d93F642f64180aa3"
        assert deployer.calls == [[1, "x"]]

    def test_compile_failure_short_circuits_deploy(self, counter_source):
        deployer = StubDeployer()
        error = CompilationError(normalize_diagnostic("TypeError: bad"))
        client = TestClient(build_app(compiler=StubCompiler(error), deployer=deployer))

        response = client.post("/api/deploy", json={"contractName": "Counter", "sourceCode": counter_source})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "COMPILATION_ERROR"
        assert "compilation" not in body
        assert "deployment" not in body
        assert deployer.calls == []

    def test_deploy_failure_reports_successful_compilation(self, counter_source):
        deployer = StubDeployer(DeploymentError("Deployment of Counter failed", output="insufficient funds", exit_code=1))
        client = TestClient(build_app(deployer=deployer))

        response = client.post("/api/deploy", json={"contractName": "Counter", "sourceCode": counter_source})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "DEPLOYMENT_ERROR"
        assert body["details"]["output"] == "insufficient funds"
        assert body["compilation"] == {"success": True, "artifact": {"abi": [], "bytecode": "0x6080"}}


# =============================================================================
# Contract interaction
# =============================================================================

class TestInteractionRoutes:
    def test_read_stringifies_large_integers(self, contract_address, counter_abi):
        chain = StubChain()
        client = TestClient(build_app(chain=chain))

        response = client.post(
            "/api/contracts/read",
            json={"contractAddress": contract_address, "abi": counter_abi, "functionName": "count"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"raw": str(2**64), "small": 7}}
        assert chain.calls == [("read", contract_address, "count", [])]

    def test_abi_may_be_a_json_string(self, contract_address):
        chain = StubChain()
        client = TestClient(build_app(chain=chain))

        response = client.post(
            "/api/contracts/write",
            json={
                "contractAddress": contract_address,
                "abi": "[]",
                "functionName": "increment",
                "inputs": [5],
            },
        )

        assert response.status_code == 200
        assert response.json()["data"]["transactionHash"] == "0xfeed"
        assert chain.calls == [("write", contract_address, "increment", [5])]

    def test_invalid_address(self, counter_abi):
        chain = StubChain()
        client = TestClient(build_app(chain=chain))

        response = client.post(
            "/api/contracts/read",
            json={"contractAddress": "0x123", "abi": counter_abi, "functionName": "count"},
        )

        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid contract address format")
        assert chain.calls == []

    def test_invalid_abi(self, contract_address):
        response = TestClient(build_app()).post(
            "/api/contracts/read",
            json={"contractAddress": contract_address, "abi": "{not json", "functionName": "count"},
        )

        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid ABI format")

    def test_events_default_block_range(self, contract_address, counter_abi):
        chain = StubChain()
        client = TestClient(build_app(chain=chain))

        response = client.post(
            "/api/contracts/events",
            json={"contractAddress": contract_address, "abi": counter_abi, "eventName": "Incremented"},
        )

        assert response.status_code == 200
        assert chain.calls == [("events", contract_address, "Incremented", 0, "latest")]

    def test_events_block_filter(self, contract_address, counter_abi):
        chain = StubChain()
        client = TestClient(build_app(chain=chain))

        client.post(
            "/api/contracts/events",
            json={
                "contractAddress": contract_address,
                "abi": counter_abi,
                "eventName": "Incremented",
                "filter": {"fromBlock": 100, "toBlock": 200},
            },
        )

        assert chain.calls == [("events", contract_address, "Incremented", 100, 200)]


# =============================================================================
# Database routes
# =============================================================================

class TestConversationRoutes:
    def test_create_then_get_user(self, wallet):
        conn = FakeConn(fetchrow=[{"wallet_address": wallet, "created_at": None}])
        client = TestClient(build_app(conn=conn))

        assert client.post("/api/db/users", json={"walletAddress": wallet}).json() == {"success": True}

        response = client.get(f"/api/db/users/{wallet}")
        assert response.status_code == 200
        assert response.json()["wallet_address"] == wallet

    def test_unknown_user_is_404(self, wallet):
        response = TestClient(build_app()).get(f"/api/db/users/{wallet}")

        assert response.status_code == 404
        assert response.json()["message"] == f"User with id {wallet} does not exist"

    def test_conversation_requires_name(self, wallet):
        response = TestClient(build_app()).post("/api/db/conversations", json={"walletAddress": wallet})

        assert response.status_code == 400
        assert response.json()["details"]["fields"] == ["name"]

    def test_create_conversation_returns_id(self, wallet):
        conn = FakeConn(fetchval=["conv-1"])
        response = TestClient(build_app(conn=conn)).post(
            "/api/db/conversations", json={"walletAddress": wallet, "name": "Chat"}
        )
        assert response.json() == {"id": "conv-1"}

    def test_save_message(self):
        conn = FakeConn(fetchval=["conv-1"])
        response = TestClient(build_app(conn=conn)).post(
            "/api/db/messages",
            json={"conversationId": "conv-1", "content": "hi", "sender": "user"},
        )
        assert response.json() == {"success": True}

    def test_message_to_unknown_conversation(self):
        response = TestClient(build_app()).post(
            "/api/db/messages", json={"conversationId": "gone", "content": "hi"}
        )
        assert response.status_code == 404

    def test_rename_to_taken_name_is_a_400(self):
        conn = FakeConn(execute_error=asyncpg.UniqueViolationError("duplicate key value"))
        response = TestClient(build_app(conn=conn)).patch(
            "/api/db/conversations/conv-1/name", json={"name": "Taken"}
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Conversation name already exists"

    def test_message_with_list_metadata(self):
        conn = FakeConn(fetchval=["conv-1"])
        response = TestClient(build_app(conn=conn)).post(
            "/api/db/messages",
            json={"conversationId": "conv-1", "content": "hi", "metadata": [{"k": 1}]},
        )

        assert response.json() == {"success": True}
        (_, _, args), = conn.statements("INSERT INTO messages")
        assert args[4] == '[{"k": 1}]'


class TestDeploymentRoutes:
    def test_conversation_listing_is_not_a_wallet_lookup(self):
        conn = FakeConn(fetch=[[]])
        response = TestClient(build_app(conn=conn)).get("/api/db/contracts/conversation/conv-1")

        assert response.status_code == 200
        ((_, sql, args),) = conn.calls
        assert "WHERE conversation_id = $1" in sql
        assert args == ("conv-1",)

    def test_save_deployed_contract(self, wallet, contract_address, counter_abi):
        conn = FakeConn(fetchval=["conv-1"])
        response = TestClient(build_app(conn=conn)).post(
            "/api/db/contracts",
            json={
                "walletAddress": wallet,
                "conversationId": "conv-1",
                "contractAddress": contract_address,
                "name": "Counter",
                "abi": counter_abi,
                "bytecode": "0x6080",
                "sourceCode": "contract Counter {}",
                "networkId": "57054",
            },
        )

        assert response.json() == {"success": True}
        assert conn.statements("INSERT INTO deployed_contracts")

    def test_register_contract(self, contract_address):
        conn = FakeConn(fetchval=["reg-1"])
        response = TestClient(build_app(conn=conn)).post(
            "/api/db/contracts/create",
            json={
                "contract_id": "reg-1",
                "address": contract_address,
                "chain_id": 57054,
                "name": "Counter",
                "type": "counter",
                "abi": [],
                "owner_address": "0xowner",
            },
        )

        assert response.status_code == 200
        assert response.json()["contract_id"] == "reg-1"


class TestAgentRoutes:
    def test_unknown_agent_detail_is_404(self):
        response = TestClient(build_app()).get("/api/db/agents/detail/agent-x")
        assert response.status_code == 404

    def test_owner_listing_is_not_a_contract_lookup(self):
        conn = FakeConn(fetch=[[]])
        TestClient(build_app(conn=conn)).get("/api/db/agents/owner/0xowner")

        ((_, sql, args),) = conn.calls
        assert "WHERE owner = $1" in sql
        assert args == ("0xowner",)

    def test_update_with_no_allowed_fields(self):
        conn = FakeConn()
        response = TestClient(build_app(conn=conn)).patch("/api/db/agents/agent-1", json={"bogus": 1})

        assert response.status_code == 400
        assert response.json()["message"] == "No valid fields to update"
        assert conn.calls == []

    def test_create_agent_requires_fields(self):
        response = TestClient(build_app()).post("/api/db/agents", json={"name": "Bot"})

        assert response.status_code == 400
        assert response.json()["details"]["fields"] == ["contractId", "owner"]

    def test_create_function_with_parameters(self):
        conn = FakeConn(fetchval=["agent-1"])
        response = TestClient(build_app(conn=conn)).post(
            "/api/db/agents/agent-1/functions",
            json={
                "function_name": "increment",
                "function_signature": "increment()",
                "function_type": "write",
                "parameters": [{"param_name": "by", "param_type": "uint256"}],
            },
        )

        assert response.status_code == 200
        assert "function_id" in response.json()
        assert conn.statements("INSERT INTO agent_function_params")
