"""Deployer capability with Hardhat-script and in-process web3 backends."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol, Sequence

from ..exceptions import ChainError, DeploymentError, PipelineSystemError
from .compiler import Artifact
from .process import run_process

if TYPE_CHECKING:
    from ..chain.client import ChainClient

logger = logging.getLogger(__name__)

DEPLOYED_ADDRESS_PATTERN = re.compile(r"Contract deployed to:\s*(0x[a-fA-F0-9]{40})")

DEPLOY_SCRIPT_TEMPLATE = """const hre = require("hardhat");

async function main() {{
  const Contract = await hre.ethers.getContractFactory({name});
  const contract = await Contract.deploy({args});
  await contract.waitForDeployment();

  console.log("Contract deployed to:", await contract.getAddress());
}}

main().catch((error) => {{
  console.error(error);
  process.exitCode = 1;
}});
"""


@dataclass
class Deployment:
    """Deploy outcome. `contract_address` is None when it could not be read back."""

    contract_address: Optional[str]
    transaction_hash: Optional[str] = None
    output: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": True, "contractAddress": self.contract_address}
        if self.transaction_hash:
            data["transactionHash"] = self.transaction_hash
        if self.contract_address is None and self.output is not None:
            data["output"] = self.output
        return data


class Deployer(Protocol):
    async def deploy(self, artifact: Artifact, constructor_args: Sequence[Any]) -> Deployment:
        """Deploy a compiled artifact, raising DeploymentError on failure."""
        ...


def render_deploy_script(contract_name: str, constructor_args: Sequence[Any]) -> str:
    """Strings are JSON-quoted; other values are written as JSON literals."""
    args = ", ".join(json.dumps(arg) for arg in constructor_args)
    return DEPLOY_SCRIPT_TEMPLATE.format(name=json.dumps(contract_name), args=args)


def extract_deployed_address(output: str) -> Optional[str]:
    match = DEPLOYED_ADDRESS_PATTERN.search(output or "")
    return match.group(1) if match else None


class HardhatDeployer:
    """Writes scripts/deploy.js and runs it against the configured network."""

    def __init__(
        self,
        *,
        command: Sequence[str] = ("npx", "hardhat"),
        network_name: str = "sonic",
        timeout_seconds: float = 300.0,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.command = list(command)
        self.network_name = network_name
        self.timeout_seconds = timeout_seconds
        self.env = dict(env or {})

    async def deploy(self, artifact: Artifact, constructor_args: Sequence[Any]) -> Deployment:
        if artifact.workspace is None:
            raise PipelineSystemError(
                f"No workspace recorded for {artifact.contract_name}",
                stage="deploy",
            )
        script_path = artifact.workspace / "scripts" / "deploy.js"
        script = render_deploy_script(artifact.contract_name, constructor_args)
        try:
            await asyncio.to_thread(script_path.write_text, script, "utf-8")
        except OSError as e:
            raise PipelineSystemError(f"Failed to write deploy script: {e}", stage="deploy") from e

        result = await run_process(
            [*self.command, "run", "scripts/deploy.js", "--network", self.network_name],
            cwd=artifact.workspace,
            timeout=self.timeout_seconds,
            stage="deploy",
            env=self.env,
        )
        if result.exit_code != 0:
            raise DeploymentError(
                f"Deployment of {artifact.contract_name} failed",
                output=result.output,
                exit_code=result.exit_code,
            )

        address = extract_deployed_address(result.stdout)
        if address is None:
            logger.warning(
                "Deploy of %s finished without an address marker",
                artifact.contract_name,
                extra={"contract_name": artifact.contract_name, "stage": "deploy"},
            )
        return Deployment(contract_address=address, output=result.output)


class Web3Deployer:
    """Deploys the artifact in-process through the chain client."""

    def __init__(self, chain: "ChainClient") -> None:
        self.chain = chain

    async def deploy(self, artifact: Artifact, constructor_args: Sequence[Any]) -> Deployment:
        try:
            result = await self.chain.deploy(artifact.abi, artifact.bytecode, list(constructor_args))
        except ChainError as e:
            raise DeploymentError(
                f"Deployment of {artifact.contract_name} failed: {e.message}",
                details=e.details,
            ) from e
        return Deployment(
            contract_address=result["contractAddress"],
            transaction_hash=result.get("transactionHash"),
        )
