"""Bounded execution of the external toolchain commands."""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from ..exceptions import PipelineSystemError, PipelineTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """stdout and stderr joined; compilers split diagnostics across both."""
        return "\n".join(part for part in (self.stderr, self.stdout) if part)


async def run_process(
    command: Sequence[str],
    *,
    cwd: Path,
    timeout: float,
    stage: str,
    env: Optional[Mapping[str, str]] = None,
) -> ProcessResult:
    """
    Run a command to completion, killing it once `timeout` expires.

    Raises:
        PipelineTimeoutError: the process outlived its budget
        PipelineSystemError: the process could not be started
    """
    process_env = {**os.environ, **(env or {})}
    logger.info("Running %s in %s", " ".join(command), cwd, extra={"stage": stage})

    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            env=process_env,
        )
    except OSError as e:
        raise PipelineSystemError(
            f"Failed to start {command[0]}: {e}",
            stage=stage,
        ) from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("%s timed out after %ss; killing process", stage, timeout, extra={"stage": stage})
        proc.kill()
        await proc.wait()
        raise PipelineTimeoutError(stage, timeout) from None

    result = ProcessResult(
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
    logger.debug("%s exited with %s", stage, result.exit_code, extra={"stage": stage})
    return result
