"""Compiler capability and the Hardhat-backed implementation."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

from ..exceptions import ArtifactError, CompilationError
from .diagnostics import normalize_diagnostic
from .process import run_process
from .staging import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)


@dataclass
class Artifact:
    """Compiled contract: ABI plus creation bytecode."""

    contract_name: str
    abi: list[dict[str, Any]]
    bytecode: str
    # Workspace the artifact was built in; deployers that shell out need it
    workspace: Optional[Path] = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {"abi": self.abi, "bytecode": self.bytecode}


class Compiler(Protocol):
    async def stage(self, contract_name: str, source_code: str) -> Workspace:
        """Lay out a clean workspace holding `source_code`."""
        ...

    async def compile_staged(self, workspace: Workspace) -> Artifact:
        """Compile a staged workspace, raising CompilationError or ArtifactError."""
        ...


def read_artifact(contract_name: str, path: Path, workspace: Optional[Path] = None) -> Artifact:
    """Load a Hardhat artifact JSON file."""
    if not path.is_file():
        raise ArtifactError(contract_name, str(path))
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ArtifactError(contract_name, str(path), details={"reason": str(e)}) from e

    abi = data.get("abi")
    bytecode = data.get("bytecode")
    if not isinstance(abi, list) or not isinstance(bytecode, str) or not bytecode:
        raise ArtifactError(contract_name, str(path), details={"reason": "artifact lacks abi or bytecode"})
    return Artifact(contract_name=contract_name, abi=abi, bytecode=bytecode, workspace=workspace)


class HardhatCompiler:
    """Runs `<hardhat> compile` in a freshly staged workspace."""

    def __init__(
        self,
        workspaces: WorkspaceManager,
        *,
        command: Sequence[str] = ("npx", "hardhat"),
        timeout_seconds: float = 180.0,
    ) -> None:
        self.workspaces = workspaces
        self.command = list(command)
        self.timeout_seconds = timeout_seconds

    async def stage(self, contract_name: str, source_code: str) -> Workspace:
        return await self.workspaces.prepare(contract_name, source_code)

    async def compile_staged(self, workspace: Workspace) -> Artifact:
        contract_name = workspace.contract_name
        result = await run_process(
            [*self.command, "compile"],
            cwd=workspace.root,
            timeout=self.timeout_seconds,
            stage="compile",
        )

        if result.exit_code != 0:
            diagnostic = normalize_diagnostic(result.output)
            logger.warning(
                "Compilation of %s failed: %s",
                contract_name,
                diagnostic.message,
                extra={"contract_name": contract_name, "stage": "compile"},
            )
            raise CompilationError(diagnostic)

        artifact = await asyncio.to_thread(
            read_artifact, contract_name, workspace.artifact_path, workspace.root
        )
        logger.info("Compiled %s", contract_name, extra={"contract_name": contract_name})
        return artifact

    async def compile(self, contract_name: str, source_code: str) -> Artifact:
        """Stage and compile in one call."""
        return await self.compile_staged(await self.stage(contract_name, source_code))
