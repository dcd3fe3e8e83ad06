"""Per-contract toolchain workspaces.

Each contract name gets its own directory under the staging root:

    <root>/<Name>/
        hardhat.config.js
        contracts/<Name>.sol
        scripts/
        artifacts/          (written by the compiler)

The directory is wiped and rebuilt for every request so a stale artifact can
never be mistaken for a fresh compile. Requests for the same name are
serialized with NameLocks; different names never share files.
Workspaces of other names untouched for longer than the retention window are
removed on the next prepare.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import time
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence

from ..exceptions import PipelineSystemError, ValidationError

logger = logging.getLogger(__name__)

CONTRACT_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

HARDHAT_CONFIG_TEMPLATE = """require("@nomicfoundation/hardhat-toolbox");

const privateKey = process.env.PRIVATE_KEY;

module.exports = {{
  solidity: {{
    compilers: {compilers},
  }},
  networks: {{
    {network}: {{
      url: process.env.RPC_URL || {rpc_url},
      chainId: {chain_id},
      accounts: privateKey ? [privateKey] : [],
    }},
  }},
}};
"""


class NameLocks:
    """One asyncio.Lock per contract name.

    A lock lives only while some request holds or awaits it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._users[name] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[name] -= 1
            if not self._users[name]:
                del self._users[name]
                del self._locks[name]


@dataclass(frozen=True)
class Workspace:
    contract_name: str
    root: Path

    @property
    def contracts_dir(self) -> Path:
        return self.root / "contracts"

    @property
    def scripts_dir(self) -> Path:
        return self.root / "scripts"

    @property
    def source_path(self) -> Path:
        return self.contracts_dir / f"{self.contract_name}.sol"

    @property
    def config_path(self) -> Path:
        return self.root / "hardhat.config.js"

    @property
    def artifact_path(self) -> Path:
        name = self.contract_name
        return self.root / "artifacts" / "contracts" / f"{name}.sol" / f"{name}.json"


def render_hardhat_config(
    *,
    solidity_versions: Sequence[str],
    optimizer_runs: int,
    network_name: str,
    rpc_url: str,
    chain_id: int,
) -> str:
    compilers = [
        {"version": version, "settings": {"optimizer": {"enabled": True, "runs": optimizer_runs}}}
        for version in solidity_versions
    ]
    return HARDHAT_CONFIG_TEMPLATE.format(
        compilers=json.dumps(compilers, indent=2),
        network=json.dumps(network_name),
        rpc_url=json.dumps(rpc_url),
        chain_id=int(chain_id),
    )


class WorkspaceManager:
    """Builds isolated toolchain workspaces under a staging root."""

    def __init__(
        self,
        root: Path,
        *,
        solidity_versions: Sequence[str] = ("0.8.20", "0.8.19"),
        optimizer_runs: int = 200,
        network_name: str = "sonic",
        rpc_url: str = "https://rpc.blaze.soniclabs.com",
        chain_id: int = 57054,
        retention_seconds: Optional[float] = 3600.0,
    ) -> None:
        self.root = Path(root)
        self.retention_seconds = retention_seconds
        self._config_text = render_hardhat_config(
            solidity_versions=solidity_versions,
            optimizer_runs=optimizer_runs,
            network_name=network_name,
            rpc_url=rpc_url,
            chain_id=chain_id,
        )

    def workspace_for(self, contract_name: str) -> Workspace:
        if not CONTRACT_NAME_PATTERN.match(contract_name or ""):
            raise ValidationError(
                f"Invalid contract name: {contract_name!r}",
                field="contractName",
            )
        return Workspace(contract_name=contract_name, root=self.root / contract_name)

    def _build(self, workspace: Workspace, source_code: str) -> None:
        if workspace.root.exists():
            shutil.rmtree(workspace.root)
        workspace.contracts_dir.mkdir(parents=True)
        workspace.scripts_dir.mkdir()
        workspace.source_path.write_text(source_code, encoding="utf-8")
        workspace.config_path.write_text(self._config_text, encoding="utf-8")

    async def prepare(self, contract_name: str, source_code: str) -> Workspace:
        """Wipe and rebuild the workspace for `contract_name`."""
        workspace = self.workspace_for(contract_name)
        try:
            await asyncio.to_thread(self._build, workspace, source_code)
        except OSError as e:
            raise PipelineSystemError(
                f"Failed to stage workspace for {contract_name}: {e}",
                stage="staging",
            ) from e
        logger.debug("Staged %s at %s", contract_name, workspace.root, extra={"contract_name": contract_name})
        if self.retention_seconds is not None:
            await asyncio.to_thread(self.prune, self.retention_seconds, keep=contract_name)
        return workspace

    def prune(self, older_than_seconds: float, *, keep: Optional[str] = None) -> list[str]:
        """Remove workspaces not rebuilt within `older_than_seconds`.

        Returns the names removed. A workspace that cannot be removed is
        logged and left for the next sweep.
        """
        if not self.root.is_dir():
            return []
        cutoff = time.time() - older_than_seconds
        removed: list[str] = []
        for entry in self.root.iterdir():
            if entry.name == keep or not entry.is_dir():
                continue
            try:
                if entry.stat().st_mtime >= cutoff:
                    continue
                shutil.rmtree(entry)
            except OSError as e:
                logger.warning("Could not remove stale workspace %s: %s", entry, e)
                continue
            removed.append(entry.name)
        if removed:
            logger.info("Pruned %d stale workspace(s)", len(removed), extra={"workspaces": removed})
        return removed
