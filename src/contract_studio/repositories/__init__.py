"""asyncpg repositories for the Contract Studio tables."""

from .agents import AgentRepository
from .contracts import ContractRepository
from .conversations import ConversationRepository

__all__ = [
    "AgentRepository",
    "ContractRepository",
    "ConversationRepository",
]
