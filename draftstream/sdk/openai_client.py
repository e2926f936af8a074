"""
OpenAI model provider.

Streams chat completions from the OpenAI API and reports usage from the
final chunk.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from openai import AsyncOpenAI

from draftstream.core.token_counter import TokenUsage
from draftstream.storage.models import ConversationTurn

from .provider import MODEL_CONFIGS, ModelConfig, ModelProvider, ModelTier, ProviderStream

logger = logging.getLogger(__name__)


class OpenAIStream(ProviderStream):
    """Fragments of one streamed chat completion."""

    def __init__(self, response: Any):
        self._response = response
        self.usage: Optional[TokenUsage] = None

    async def fragments(self) -> AsyncIterator[str]:
        async for chunk in self._response:
            if getattr(chunk, "usage", None):
                self.usage = TokenUsage(
                    input_tokens=chunk.usage.prompt_tokens,
                    output_tokens=chunk.usage.completion_tokens,
                )
            for choice in chunk.choices:
                content = choice.delta.content
                if content:
                    yield content


class OpenAIProvider(ModelProvider):
    """ModelProvider backed by ``openai.AsyncOpenAI``.

    Provider errors (network, 429, 5xx) propagate unchanged; retrying them
    is the orchestrator's job.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        configs: Optional[Mapping[ModelTier, ModelConfig]] = None,
    ):
        """Initialize the provider.

        Args:
            api_key: OpenAI API key (defaults to the OPENAI_API_KEY environment variable)
            configs: Per-tier model settings (defaults to MODEL_CONFIGS)
        """
        self.configs = dict(configs or MODEL_CONFIGS)
        self.client = AsyncOpenAI(api_key=api_key)
        logger.debug("OpenAI provider initialized with tiers %s", [t.value for t in self.configs])

    async def invoke(
        self,
        messages: Sequence[ConversationTurn],
        system_prompt: Optional[str],
        tier: ModelTier,
        temperature: Optional[float] = None,
    ) -> ProviderStream:
        """Start a streamed chat completion.

        Raises:
            ValueError: If messages is empty
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        config = self.configs[tier]
        payload: List[Dict[str, str]] = []
        if system_prompt:
            payload.append({"role": "system", "content": system_prompt})
        payload.extend({"role": turn.role.value, "content": turn.content} for turn in messages)

        response = await self.client.chat.completions.create(
            model=config.model,
            messages=payload,
            temperature=config.temperature if temperature is None else temperature,
            max_tokens=config.max_tokens,
            stream=True,
            stream_options={"include_usage": True},
        )
        return OpenAIStream(response)
