"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """Author of a conversation turn."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class UsageCategory(str, Enum):
    """What a model call was made for."""
    CHAT = "chat"
    CONTENT_GENERATION = "content_generation"
    IMPROVEMENT = "improvement"
    VALIDATION = "validation"
    HASHTAGS = "hashtags"
    ADAPTATION = "adaptation"


class QuotaTier(str, Enum):
    """Subscription tier a user's quota limits derive from."""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class ConversationTurn:
    """One exchange unit in a conversation.
    
    Turns are never edited after they are recorded. Regeneration appends
    a new turn rather than rewriting history.
    """
    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def user(cls, content: str) -> "ConversationTurn":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "ConversationTurn":
        return cls(Role.ASSISTANT, content)

    @classmethod
    def system(cls, content: str) -> "ConversationTurn":
        return cls(Role.SYSTEM, content)


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one completed model invocation.
    
    Append-only entries that form the per-user usage ledger.
    Once written, these records must never be modified.
    """
    timestamp: datetime
    user_id: str
    model: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    category: UsageCategory = UsageCategory.CHAT
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost
