"""API composition root."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .chain import ChainClient
from .config import Settings, load_settings
from .database import Database, init_schema
from .middleware import StructuredLoggingMiddleware, register_exception_handlers, setup_logging
from .pipeline import (
    ContractPipeline,
    HardhatCompiler,
    HardhatDeployer,
    Web3Deployer,
    WorkspaceManager,
)
from .repositories import AgentRepository, ContractRepository, ConversationRepository
from .routers import agents as agents_router
from .routers import conversations as conversations_router
from .routers import deployments as deployments_router
from .routers import interaction as interaction_router
from .routers import pipeline as pipeline_router
from .serialization import SafeJSONResponse

logger = logging.getLogger("contract_studio.api")

UNLOGGED_PATHS = ["/health", "/docs", "/openapi.json"]


def build_pipeline(settings: Settings, chain: ChainClient) -> ContractPipeline:
    """Wire the compiler and the configured deploy backend."""
    workspaces = WorkspaceManager(
        settings.resolved_staging_dir,
        solidity_versions=settings.solidity_versions,
        optimizer_runs=settings.optimizer_runs,
        network_name=settings.network_name,
        rpc_url=settings.rpc_url,
        chain_id=settings.chain_id,
        retention_seconds=settings.staging_retention_seconds,
    )
    compiler = HardhatCompiler(
        workspaces,
        command=settings.hardhat_command,
        timeout_seconds=settings.compile_timeout_seconds,
    )

    if settings.deploy_backend == "web3":
        deployer = Web3Deployer(chain)
    else:
        # The generated hardhat config reads these from the process env
        env = {"RPC_URL": settings.rpc_url}
        if settings.private_key:
            env["PRIVATE_KEY"] = settings.private_key
        deployer = HardhatDeployer(
            command=settings.hardhat_command,
            network_name=settings.network_name,
            timeout_seconds=settings.deploy_timeout_seconds,
            env=env,
        )
    return ContractPipeline(compiler, deployer)


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    chain: Optional[ChainClient] = None,
    pipeline: Optional[ContractPipeline] = None,
) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(json_format=settings.use_json_logs, level=settings.log_level)

    database = database or Database.from_settings(settings)
    chain = chain or ChainClient(
        settings.rpc_url,
        private_key=settings.private_key,
        chain_id=settings.chain_id,
        timeout_seconds=settings.chain_timeout_seconds,
    )
    pipeline = pipeline or build_pipeline(settings, chain)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the pool on startup and release shared handles on shutdown."""
        logger.info(f"Starting Contract Studio API ({settings.environment})...")
        if database.is_configured:
            await database.connect()
            await init_schema(database, settings.environment)
            logger.info("Database schema ready")
        else:
            logger.warning("No database URL configured; /api/db routes will fail")

        yield

        logger.info("Shutting down Contract Studio API...")
        await database.close()
        await chain.close()

    app = FastAPI(
        title="Contract Studio API",
        version=__version__,
        lifespan=lifespan,
        default_response_class=SafeJSONResponse,
    )

    register_exception_handlers(app, settings)

    # Assigns the request id the error handlers echo back
    app.add_middleware(StructuredLoggingMiddleware, exclude_paths=UNLOGGED_PATHS)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    conversations = ConversationRepository(database)
    contracts = ContractRepository(database, default_network_id=settings.default_network_id)
    agents = AgentRepository(database)

    # Compile/deploy
    app.dependency_overrides[pipeline_router.get_deps] = lambda: pipeline_router.PipelineDependencies(
        pipeline=pipeline,
    )
    app.include_router(pipeline_router.router, prefix="/api")

    # Contract interaction
    app.dependency_overrides[interaction_router.get_deps] = lambda: interaction_router.InteractionDependencies(
        chain=chain,
    )
    app.include_router(interaction_router.router, prefix="/api/contracts")

    # Database routes
    app.dependency_overrides[conversations_router.get_deps] = lambda: conversations_router.ConversationDependencies(
        conversations=conversations,
    )
    app.include_router(conversations_router.router, prefix="/api/db")

    app.dependency_overrides[deployments_router.get_deps] = lambda: deployments_router.DeploymentDependencies(
        contracts=contracts,
    )
    app.include_router(deployments_router.router, prefix="/api/db")

    app.dependency_overrides[agents_router.get_deps] = lambda: agents_router.AgentDependencies(
        agents=agents,
    )
    app.include_router(agents_router.router, prefix="/api/db")

    app.state.database = database
    app.state.chain = chain
    app.state.pipeline = pipeline

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check endpoint with component status."""
        if not database.is_configured:
            db_status = "not_configured"
        else:
            try:
                db_status = "connected" if await database.ping() else "disconnected"
            except Exception as e:
                logger.warning(f"Database health check failed: {e}")
                db_status = "error"

        chain_status = await chain.health()
        healthy = db_status == "connected" and chain_status.get("connected", False)
        return {
            "status": "healthy" if healthy else "degraded",
            "environment": settings.environment,
            "version": __version__,
            "database": db_status,
            "chain": chain_status,
        }

    return app


app = create_app()


def run() -> None:
    """Run a local server; production and test hosts import `app` instead."""
    settings = load_settings()
    if not settings.should_bind_socket:
        logger.info(f"Not binding a socket in the {settings.environment} environment")
        return

    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
