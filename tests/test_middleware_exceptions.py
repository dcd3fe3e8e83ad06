"""Tests for the uniform error body produced by the exception handlers."""
from __future__ import annotations

from typing import Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from contract_studio.config import Settings
from contract_studio.exceptions import (
    ArtifactError,
    DatabaseError,
    DeploymentError,
    NotFoundError,
    PipelineSystemError,
    ValidationError,
)
from contract_studio.middleware import register_exception_handlers
from contract_studio.serialization import SafeJSONResponse


class Body(BaseModel):
    name: str
    count: Optional[int] = None


HARDHAT_STDERR = (
    "ProviderError: insufficient funds for gas * price + value\n"
    "    at HttpProvider.request (/srv/app/node_modules/hardhat/src/internal/core/providers/http.ts:88:21)\n"
    "    at processTicksAndRejections (node:internal/process/task_queues:95:5)"
)


def build_app(settings: Settings) -> FastAPI:
    app = FastAPI(default_response_class=SafeJSONResponse)
    register_exception_handlers(app, settings)

    @app.get("/missing-field")
    async def missing_field():
        raise ValidationError("Missing required fields: name", fields=["name"])

    @app.get("/not-found")
    async def not_found():
        raise NotFoundError("User", "0xabc")

    @app.get("/db")
    async def db():
        raise DatabaseError("Database operation get_user failed", operation="get_user")

    @app.get("/deploy")
    async def deploy():
        error = DeploymentError("Deployment of Counter failed", output=HARDHAT_STDERR, exit_code=1)
        error.compilation = {"success": True, "artifact": {"contractName": "Counter"}}
        raise error

    @app.get("/staging")
    async def staging():
        raise PipelineSystemError(
            "Failed to stage Counter: [Errno 13] Permission denied: '/srv/app/.staging/Counter'",
            stage="staging",
        )

    @app.get("/artifact")
    async def artifact():
        raise ArtifactError("Counter", "/srv/app/.staging/Counter/artifacts/Counter.json")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    @app.get("/value")
    async def value():
        raise ValueError("bad value")

    @app.post("/typed")
    async def typed(body: Body):
        return {"ok": True}

    return app


def make_client(**overrides) -> TestClient:
    settings = Settings(_env_file=None, **overrides)
    return TestClient(build_app(settings), raise_server_exceptions=False)


@pytest.fixture
def client() -> TestClient:
    return make_client()


@pytest.fixture
def production_client() -> TestClient:
    return make_client(environment="production")


def test_validation_error_shape(client):
    response = client.get("/missing-field", headers={"X-Request-ID": "req_test"})

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "VALIDATION_ERROR",
        "message": "Missing required fields: name",
        "details": {"fields": ["name"]},
        "request_id": "req_test",
    }
    assert response.headers["X-Request-ID"] == "req_test"


def test_not_found_error(client):
    body = client.get("/not-found").json()

    assert body["error"] == "NOT_FOUND"
    assert body["message"] == "User with id 0xabc does not exist"
    assert body["details"]["resource_type"] == "User"
    assert body["request_id"] == "unknown"


def test_unknown_route_echoes_path_and_method(client):
    response = client.delete("/nowhere")

    assert response.status_code == 404
    body = response.json()
    assert body["message"] == "Route not found"
    assert body["path"] == "/nowhere"
    assert body["method"] == "DELETE"
    assert body["success"] is False


def test_malformed_body_is_a_400_naming_fields(client):
    response = client.post("/typed", json={"count": "many"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    assert body["details"]["fields"] == ["count", "name"]
    assert "name" in body["message"]


def test_deploy_failure_keeps_compilation_block(client):
    response = client.get("/deploy")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "DEPLOYMENT_ERROR"
    assert body["details"] == {"output": HARDHAT_STDERR, "exit_code": 1}
    assert body["compilation"]["success"] is True
    assert body["compilation"]["artifact"]["contractName"] == "Counter"


def test_value_error_is_a_400(client):
    response = client.get("/value")
    assert response.status_code == 400
    assert response.json()["message"] == "bad value"


def test_unhandled_error_in_dev_includes_type(client):
    response = client.get("/boom")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "INTERNAL_ERROR"
    assert "RuntimeError" in body["message"]


def test_production_hides_internal_details(production_client):
    db = production_client.get("/db").json()
    assert "details" not in db
    assert db["error"] == "DATABASE_ERROR"

    boom = production_client.get("/boom").json()
    assert boom["message"] == "An internal error occurred"
    assert "details" not in boom


def test_production_deploy_failure_keeps_only_first_output_line(production_client):
    body = production_client.get("/deploy").json()

    assert body["details"] == {
        "output": "ProviderError: insufficient funds for gas * price + value",
        "exit_code": 1,
    }
    assert "node_modules" not in str(body)
    assert body["compilation"]["success"] is True


def test_production_system_error_hides_server_paths(production_client):
    body = production_client.get("/staging").json()

    assert body["error"] == "SYSTEM_ERROR"
    assert body["message"] == "The compile/deploy toolchain failed unexpectedly"
    assert "details" not in body
    assert "/srv/app" not in str(body)


def test_production_artifact_error_omits_artifact_path(production_client):
    body = production_client.get("/artifact").json()

    assert body["details"] == {"contract_name": "Counter"}


def test_production_set_only_in_env_file_hides_details(tmp_path, monkeypatch):
    monkeypatch.delenv("CONTRACT_STUDIO_ENVIRONMENT", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("CONTRACT_STUDIO_ENVIRONMENT=production\n")
    settings = Settings(_env_file=env_file)
    client = TestClient(build_app(settings), raise_server_exceptions=False)

    assert settings.environment == "production"

    assert client.get("/boom").json()["message"] == "An internal error occurred"


def test_local_environment_is_verbose():
    body = make_client(environment="local").get("/staging").json()

    assert "/srv/app/.staging/Counter" in body["message"]
    assert body["details"]["stage"] == "staging"
