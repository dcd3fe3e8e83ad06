"""EVM chain access."""

from .client import ChainClient

__all__ = ["ChainClient"]
