"""Configuration surface for the Contract Studio API."""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEV_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="CONTRACT_STUDIO_",
        env_file=".env",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "test", "local", "production"] = "dev"

    # API
    host: str = "0.0.0.0"
    port: int = 3000
    allowed_origins: Annotated[List[str], NoDecode] = Field(default_factory=list)

    # Database
    database_url: str = Field(default="", validate_default=True)
    database_auth_token: Optional[str] = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    # Chain (Sonic testnet defaults)
    rpc_url: str = "https://rpc.blaze.soniclabs.com"
    chain_id: int = 57054
    network_name: str = "sonic"
    private_key: Optional[str] = Field(default=None, validate_default=True)
    default_network_id: int = 57054
    chain_timeout_seconds: float = 120.0

    # Compile/deploy toolchain
    hardhat_project_dir: Path = Path(".")
    hardhat_command: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["npx", "hardhat"])
    staging_dir: Optional[Path] = None
    staging_retention_seconds: Optional[float] = 3600.0
    solidity_versions: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["0.8.20", "0.8.19"])
    optimizer_runs: int = 200
    deploy_backend: Literal["hardhat", "web3"] = "hardhat"
    compile_timeout_seconds: float = 180.0
    deploy_timeout_seconds: float = 300.0

    # Logging
    log_level: str = "INFO"
    log_json: Optional[bool] = None

    @field_validator("allowed_origins", "hardhat_command", "solidity_versions", mode="before")
    @classmethod
    def parse_csv(cls, v):
        """Parse comma-separated lists from env vars."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("database_url", mode="before")
    @classmethod
    def default_database_url(cls, v: str) -> str:
        """Fall back to the conventional DATABASE_URL variable."""
        if not v:
            v = os.getenv("DATABASE_URL", "")
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql://", 1)
        return v

    @field_validator("private_key", mode="before")
    @classmethod
    def default_private_key(cls, v: Optional[str]) -> Optional[str]:
        """Fall back to the conventional PRIVATE_KEY variable."""
        v = v or os.getenv("PRIVATE_KEY") or None
        if v and not v.startswith("0x"):
            v = f"0x{v}"
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_verbose_errors(self) -> bool:
        """Only dev/test/local expose exception internals in responses."""
        return self.environment in ("dev", "test", "local")

    @property
    def should_bind_socket(self) -> bool:
        """Serverless and test hosts import the app instead of running a server."""
        return self.environment not in ("production", "test")

    @property
    def use_json_logs(self) -> bool:
        if self.log_json is not None:
            return self.log_json
        return self.is_production

    @property
    def cors_origins(self) -> List[str]:
        if self.is_production:
            return list(self.allowed_origins)
        return DEV_ORIGINS + [o for o in self.allowed_origins if o not in DEV_ORIGINS]

    @property
    def resolved_staging_dir(self) -> Path:
        """Staging lives inside the toolchain project so node resolves hardhat."""
        return self.staging_dir or (self.hardhat_project_dir / ".staging")


@lru_cache
def load_settings(env_file: str | None = None) -> Settings:
    """Load Settings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    if env_path is None:
        return Settings()
    return Settings(_env_file=env_path)
