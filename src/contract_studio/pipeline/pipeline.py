"""Compile/deploy orchestration.

A PipelineRun tracks one request through the stage machine:

    IDLE -> STAGING -> COMPILING -> COMPILE_SUCCEEDED -> DEPLOYING -> DEPLOY_SUCCEEDED
                                 \\-> COMPILE_FAILED              \\-> DEPLOY_FAILED

Any non-terminal stage may also end in SYSTEM_FAILED.
"""
from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Optional, Sequence

from ..exceptions import (
    ContractStudioError,
    IllegalTransitionError,
    PipelineError,
    PipelineSystemError,
)
from .compiler import Artifact, Compiler
from .deployer import Deployer
from .staging import NameLocks

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    IDLE = "idle"
    STAGING = "staging"
    COMPILING = "compiling"
    COMPILE_SUCCEEDED = "compile_succeeded"
    COMPILE_FAILED = "compile_failed"
    DEPLOYING = "deploying"
    DEPLOY_SUCCEEDED = "deploy_succeeded"
    DEPLOY_FAILED = "deploy_failed"
    SYSTEM_FAILED = "system_failed"


ALLOWED_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    PipelineStage.IDLE: frozenset({PipelineStage.STAGING, PipelineStage.SYSTEM_FAILED}),
    PipelineStage.STAGING: frozenset({PipelineStage.COMPILING, PipelineStage.SYSTEM_FAILED}),
    PipelineStage.COMPILING: frozenset(
        {PipelineStage.COMPILE_SUCCEEDED, PipelineStage.COMPILE_FAILED, PipelineStage.SYSTEM_FAILED}
    ),
    PipelineStage.COMPILE_SUCCEEDED: frozenset({PipelineStage.DEPLOYING, PipelineStage.SYSTEM_FAILED}),
    PipelineStage.DEPLOYING: frozenset(
        {PipelineStage.DEPLOY_SUCCEEDED, PipelineStage.DEPLOY_FAILED, PipelineStage.SYSTEM_FAILED}
    ),
    PipelineStage.COMPILE_FAILED: frozenset(),
    PipelineStage.DEPLOY_SUCCEEDED: frozenset(),
    PipelineStage.DEPLOY_FAILED: frozenset(),
    PipelineStage.SYSTEM_FAILED: frozenset(),
}


class PipelineRun:
    """Stage tracker for a single compile or compile+deploy request."""

    def __init__(self, contract_name: str) -> None:
        self.contract_name = contract_name
        self.stage = PipelineStage.IDLE
        self.history: list[PipelineStage] = [PipelineStage.IDLE]
        self._started = time.monotonic()

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.stage]

    def advance(self, stage: PipelineStage) -> None:
        if stage not in ALLOWED_TRANSITIONS[self.stage]:
            raise IllegalTransitionError(
                f"Illegal pipeline transition {self.stage.value} -> {stage.value}",
                details={"contract_name": self.contract_name, "from": self.stage.value, "to": stage.value},
            )
        previous = self.stage
        self.stage = stage
        self.history.append(stage)
        logger.info(
            "Pipeline %s: %s -> %s",
            self.contract_name,
            previous.value,
            stage.value,
            extra={
                "contract_name": self.contract_name,
                "stage": stage.value,
                "elapsed_ms": round((time.monotonic() - self._started) * 1000, 2),
            },
        )

    def fail(self, exc: Exception) -> PipelineError:
        """Move to the failure stage matching `exc` and return the error to raise."""
        if isinstance(exc, PipelineError) and not isinstance(exc, PipelineSystemError):
            if self.stage == PipelineStage.COMPILING:
                self.advance(PipelineStage.COMPILE_FAILED)
                return exc
            if self.stage == PipelineStage.DEPLOYING:
                self.advance(PipelineStage.DEPLOY_FAILED)
                return exc

        if isinstance(exc, PipelineError):
            error = exc
        else:
            error = PipelineSystemError(str(exc) or type(exc).__name__, stage=self.stage.value)
        if not self.is_terminal:
            self.advance(PipelineStage.SYSTEM_FAILED)
        return error


class ContractPipeline:
    """Drives a Compiler and a Deployer through the stage machine.

    The per-name lock is held from staging through deploy so a concurrent
    request for the same contract cannot rebuild the workspace mid-deploy.
    """

    def __init__(
        self,
        compiler: Compiler,
        deployer: Deployer,
        locks: Optional[NameLocks] = None,
    ) -> None:
        self.compiler = compiler
        self.deployer = deployer
        self.locks = locks or NameLocks()

    async def _compile(self, run: PipelineRun, contract_name: str, source_code: str) -> Artifact:
        run.advance(PipelineStage.STAGING)
        workspace = await self.compiler.stage(contract_name, source_code)
        run.advance(PipelineStage.COMPILING)
        artifact = await self.compiler.compile_staged(workspace)
        run.advance(PipelineStage.COMPILE_SUCCEEDED)
        return artifact

    async def compile(self, contract_name: str, source_code: str) -> Artifact:
        run = PipelineRun(contract_name)
        async with self.locks.hold(contract_name):
            try:
                return await self._compile(run, contract_name, source_code)
            except PipelineError as e:
                raise run.fail(e)
            except ContractStudioError:
                raise
            except Exception as e:
                logger.exception("Unexpected compile failure for %s", contract_name)
                raise run.fail(e) from e

    async def deploy(
        self,
        contract_name: str,
        source_code: str,
        constructor_args: Sequence[Any] = (),
    ) -> dict[str, Any]:
        """Compile then deploy; returns the combined success payload."""
        run = PipelineRun(contract_name)
        artifact: Optional[Artifact] = None
        async with self.locks.hold(contract_name):
            try:
                artifact = await self._compile(run, contract_name, source_code)
                run.advance(PipelineStage.DEPLOYING)
                deployment = await self.deployer.deploy(artifact, constructor_args)
                run.advance(PipelineStage.DEPLOY_SUCCEEDED)
            except PipelineError as e:
                error = run.fail(e)
                if artifact is not None:
                    error.compilation = {"success": True, "artifact": artifact.to_dict()}
                raise error
            except ContractStudioError:
                raise
            except Exception as e:
                logger.exception("Unexpected deploy failure for %s", contract_name)
                error = run.fail(e)
                if artifact is not None:
                    error.compilation = {"success": True, "artifact": artifact.to_dict()}
                raise error from e

        return {
            "message": "Deployment successful",
            "compilation": {"success": True, "artifact": artifact.to_dict()},
            "deployment": deployment.to_dict(),
        }
