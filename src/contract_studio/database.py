"""Database connection management for Contract Studio."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator, Optional

import asyncpg
from asyncpg import Pool

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

TABLES = (
    "users",
    "conversations",
    "messages",
    "code_history",
    "deployed_contracts",
    "contracts",
    "agents",
    "agent_functions",
    "agent_function_params",
    "agent_schedules",
    "agent_notifications",
    "agent_execution_logs",
)


class Database:
    """PostgreSQL connection manager.

    One instance is built per process and handed to every repository; the
    pool is opened in the application lifespan and closed on shutdown.
    """

    def __init__(
        self,
        dsn: str,
        *,
        password: Optional[str] = None,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float = 60,
    ) -> None:
        self._dsn = dsn
        self._password = password
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: Optional[Pool] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Database":
        return cls(
            settings.database_url,
            password=settings.database_auth_token,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )

    @property
    def is_configured(self) -> bool:
        return self._dsn.startswith(("postgresql://", "postgres://"))

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> Pool:
        """Open the connection pool if it is not open yet."""
        if self._pool is None:
            if not self.is_configured:
                raise RuntimeError(
                    "Database URL is not configured; set CONTRACT_STUDIO_DATABASE_URL or DATABASE_URL"
                )
            pool_kwargs: dict = {
                "min_size": self._min_size,
                "max_size": self._max_size,
                "command_timeout": self._command_timeout,
            }
            if self._password:
                pool_kwargs["password"] = self._password
            # Pooled serverless endpoints reject prepared statement caching
            if "pooler" in self._dsn or "neon" in self._dsn:
                pool_kwargs["statement_cache_size"] = 0
            self._pool = await asyncpg.create_pool(self._dsn, **pool_kwargs)
            logger.info("Database pool opened (min=%s, max=%s)", self._min_size, self._max_size)
        return self._pool

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    def acquire(self):
        """Acquire a pooled connection (`async with db.acquire() as conn`)."""
        if self._pool is None:
            raise RuntimeError("Database pool is not open; call connect() first")
        return self._pool.acquire()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Get a connection with an active transaction."""
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        async with self._pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1


async def init_schema(db, environment: str = "dev") -> None:
    """Initialize database schema.

    In production, expects the tables to exist already.
    In dev/test, runs SCHEMA_SQL directly.
    """
    async with db.acquire() as conn:
        if environment in ("prod", "production"):
            rows = await conn.fetch(
                """
                SELECT table_name
                FROM information_schema.tables
                WHERE table_name = ANY($1::text[])
                """,
                list(TABLES),
            )
            missing = sorted(set(TABLES) - {row["table_name"] for row in rows})
            if missing:
                raise RuntimeError(
                    f"Tables not found in production: {', '.join(missing)}; "
                    "apply the schema before starting the API"
                )
            logger.info("Database schema verified: %d tables present", len(TABLES))
        else:
            await conn.execute(SCHEMA_SQL)
            logger.info("Database schema ensured")


SCHEMA_SQL = """
-- =============================================================================
-- Contract Studio Schema
-- JSON payloads are stored as validated JSON text.
-- =============================================================================

CREATE TABLE IF NOT EXISTS users (
    wallet_address TEXT PRIMARY KEY,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_wallet TEXT NOT NULL REFERENCES users(wallet_address),
    name TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_accessed TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_wallet, name)
);

CREATE INDEX IF NOT EXISTS idx_conversations_wallet ON conversations(user_wallet);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    content TEXT NOT NULL,
    sender TEXT NOT NULL CHECK (sender IN ('user', 'ai')),
    metadata TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at);

CREATE TABLE IF NOT EXISTS code_history (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    code_content TEXT NOT NULL,
    language TEXT NOT NULL DEFAULT 'solidity',
    version TEXT,
    metadata TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_code_history_conversation ON code_history(conversation_id, created_at);

CREATE TABLE IF NOT EXISTS deployed_contracts (
    id TEXT PRIMARY KEY,
    user_wallet TEXT NOT NULL REFERENCES users(wallet_address),
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    contract_address TEXT NOT NULL,
    name TEXT NOT NULL,
    abi TEXT NOT NULL,
    bytecode TEXT NOT NULL,
    source_code TEXT NOT NULL,
    compiler_version TEXT,
    constructor_args TEXT,
    network_id BIGINT NOT NULL DEFAULT 57054,
    deployed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_deployed_contracts_wallet ON deployed_contracts(user_wallet);
CREATE INDEX IF NOT EXISTS idx_deployed_contracts_conversation ON deployed_contracts(conversation_id);

CREATE TABLE IF NOT EXISTS contracts (
    contract_id TEXT PRIMARY KEY,
    address TEXT NOT NULL,
    chain_id BIGINT NOT NULL,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    abi TEXT NOT NULL,
    deployed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    owner_address TEXT NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (address, chain_id)
);

CREATE TABLE IF NOT EXISTS agents (
    agent_id TEXT PRIMARY KEY,
    contract_id TEXT NOT NULL REFERENCES contracts(contract_id),
    name TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'paused',
    gas_limit TEXT,
    max_priority_fee TEXT,
    owner TEXT NOT NULL,
    contract_state TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_agents_contract ON agents(contract_id);
CREATE INDEX IF NOT EXISTS idx_agents_owner ON agents(owner);

CREATE TABLE IF NOT EXISTS agent_functions (
    function_id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(agent_id),
    function_name TEXT NOT NULL,
    function_signature TEXT NOT NULL,
    function_type TEXT NOT NULL,
    is_enabled BOOLEAN NOT NULL DEFAULT TRUE,
    validation_rules TEXT,
    abi TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS agent_function_params (
    param_id TEXT PRIMARY KEY,
    function_id TEXT NOT NULL REFERENCES agent_functions(function_id) ON DELETE CASCADE,
    param_name TEXT NOT NULL,
    param_type TEXT NOT NULL,
    default_value TEXT,
    validation_rules TEXT
);

CREATE TABLE IF NOT EXISTS agent_schedules (
    schedule_id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(agent_id),
    schedule_type TEXT NOT NULL,
    interval_seconds INTEGER,
    cron_expression TEXT,
    next_execution TIMESTAMPTZ,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS agent_notifications (
    notification_id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(agent_id),
    notification_type TEXT NOT NULL,
    configuration TEXT NOT NULL,
    is_enabled BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS agent_execution_logs (
    log_id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(agent_id),
    function_id TEXT NOT NULL REFERENCES agent_functions(function_id),
    transaction_hash TEXT,
    status TEXT NOT NULL,
    error_message TEXT,
    gas_used TEXT,
    gas_price TEXT,
    execution_time TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_agent_logs_agent ON agent_execution_logs(agent_id, execution_time DESC);
"""
