"""
Model provider capability.

A provider takes a message sequence, a system prompt and a model tier and
returns a ``ProviderStream``: an async iterator of text fragments that also
reports token usage once it is exhausted. Providers may fail, hang or stop
early; the orchestrator handles all of that.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Sequence

from draftstream.core.token_counter import TokenUsage
from draftstream.storage.models import ConversationTurn


class ModelTier(str, Enum):
    """Capability/cost class of a model, independent of the vendor."""
    FAST = "fast"
    STANDARD = "standard"
    ADVANCED = "advanced"
    CREATIVE = "creative"
    PRECISE = "precise"


@dataclass(frozen=True)
class ModelConfig:
    model: str
    temperature: float
    max_tokens: int


MODEL_CONFIGS: Dict[ModelTier, ModelConfig] = {
    ModelTier.FAST: ModelConfig(model="gpt-3.5-turbo", temperature=0.7, max_tokens=2000),
    ModelTier.STANDARD: ModelConfig(model="gpt-4-turbo-preview", temperature=0.7, max_tokens=4000),
    ModelTier.ADVANCED: ModelConfig(model="gpt-4", temperature=0.8, max_tokens=4000),
    ModelTier.CREATIVE: ModelConfig(model="gpt-4-turbo-preview", temperature=0.9, max_tokens=4000),
    ModelTier.PRECISE: ModelConfig(model="gpt-4-turbo-preview", temperature=0.3, max_tokens=2000),
}


class ProviderStream(ABC):
    """Async iterator of response fragments for one invocation.

    ``usage`` stays None until the provider reports it, which for most
    vendors happens with the final chunk.
    """

    usage: Optional[TokenUsage] = None

    def __aiter__(self) -> AsyncIterator[str]:
        return self.fragments()

    @abstractmethod
    def fragments(self) -> AsyncIterator[str]:
        ...


class ModelProvider(ABC):
    """Opaque language-model capability consumed by the orchestrator."""

    configs: Dict[ModelTier, ModelConfig] = MODEL_CONFIGS

    def model_for(self, tier: ModelTier) -> str:
        """Provider model name used for pricing a call on ``tier``."""
        return self.configs[tier].model

    @abstractmethod
    async def invoke(
        self,
        messages: Sequence[ConversationTurn],
        system_prompt: Optional[str],
        tier: ModelTier,
        temperature: Optional[float] = None,
    ) -> ProviderStream:
        """Start a generation and return its fragment stream."""
