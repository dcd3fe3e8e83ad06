"""Solidity compile/deploy pipeline."""

from .compiler import Artifact, Compiler, HardhatCompiler
from .deployer import Deployer, Deployment, HardhatDeployer, Web3Deployer
from .diagnostics import Diagnostic, normalize_diagnostic
from .pipeline import ContractPipeline, PipelineRun, PipelineStage
from .staging import NameLocks, WorkspaceManager

__all__ = [
    "Artifact",
    "Compiler",
    "ContractPipeline",
    "Deployer",
    "Deployment",
    "Diagnostic",
    "HardhatCompiler",
    "HardhatDeployer",
    "NameLocks",
    "PipelineRun",
    "PipelineStage",
    "Web3Deployer",
    "WorkspaceManager",
    "normalize_diagnostic",
]
