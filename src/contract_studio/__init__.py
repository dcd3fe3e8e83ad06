"""Contract Studio API: Solidity compile/deploy gateway and conversation store."""

__version__ = "0.1.0"
