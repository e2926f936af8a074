"""
Model provider SDK for draftstream.

Adapters that turn a message sequence and a model tier into a token stream.
"""

from .openai_client import OpenAIProvider
from .provider import MODEL_CONFIGS, ModelConfig, ModelProvider, ModelTier, ProviderStream

__all__ = [
    "MODEL_CONFIGS",
    "ModelConfig",
    "ModelProvider",
    "ModelTier",
    "OpenAIProvider",
    "ProviderStream",
]
