"""
Streaming orchestration.

Turns one chat turn into a stream of ``StreamToken`` values:

1. Cache lookup (hit: replay word by word, no quota check, no model call)
2. Rate limit and quota gate (fail fast before any spend)
3. Prompt assembly
4. Attempt loop with exponential backoff and optional fallback tier
5. Buffered emission, cache write, terminal token, then the ledger write

Every stream ends with exactly one ``done=True`` token. Whichever of
success, failure, timeout or cancellation gets there first wins; after
that the stream refuses further items and late continuations have no
side effects.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from .buffer import TokenBuffer
from .cache import ResponseCache
from .ledger import UsageLedger
from .prompts import SmartPromptBuilder, UserPreferences, prepare_prompt
from .quality import QualityContext, QualityScorer
from .quotas import QuotaExceeded
from .rate_limit import RateLimiter, RateLimitExceeded
from .token_counter import TokenUsage, estimate_tokens
from draftstream.sdk.provider import ModelProvider, ModelTier
from draftstream.storage.models import ConversationTurn, Role, UsageCategory
from draftstream.storage.repository import UsageRepository

logger = logging.getLogger(__name__)

RETRY_NOTICE = "\n[Retrying... attempt {attempt}/{total}]\n"
REGENERATE_NOTICE = "\n[Response quality below threshold. Regenerating...]\n"
REGENERATE_INSTRUCTION = "Please provide a more detailed, actionable, and specific response."
CACHED_MODEL = "cached"
DEFAULT_VARIATION_TEMPERATURES = (0.7, 0.9)
MEMORY_MAX_TURNS = 20
IMPROVEMENT_FOCUS = ("clarity", "engagement", "platform-optimization")

T = TypeVar("T")


class StreamState(str, Enum):
    """Lifecycle of one generation."""
    IDLE = "idle"
    CACHE_CHECK = "cache_check"
    REPLAYING = "replaying"
    GENERATING = "generating"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StreamMetadata:
    model: str
    total_tokens: int = 0
    processing_time_ms: int = 0
    retry_count: int = 0
    quality_score: Optional[float] = None


@dataclass(frozen=True)
class StreamToken:
    """One unit delivered to the caller.

    ``notice`` marks in-band informational text (retry and regeneration
    notices) that is not part of the model's answer.
    """
    token: Optional[str] = None
    done: bool = False
    error: Optional[str] = None
    notice: bool = False
    metadata: Optional[StreamMetadata] = None


@dataclass(frozen=True)
class VariationToken:
    variation: int
    token: StreamToken


@dataclass(frozen=True)
class StreamOptions:
    """Tunable knobs for one orchestration."""
    max_retries: int = 3
    retry_delay: float = 1.0
    timeout: float = 30.0
    fallback_tier: Optional[ModelTier] = None
    enable_caching: bool = True
    buffer_size: int = 10
    replay_delay: float = 0.05
    model_tier: ModelTier = ModelTier.STANDARD
    estimated_tokens: Optional[int] = None
    min_quality_score: float = 0.7

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")


@dataclass(frozen=True)
class StreamRequest:
    """A chat turn to answer, with the history that precedes it."""
    messages: Sequence[ConversationTurn]
    user_id: str
    platform: Optional[str] = None
    draft_context: Optional[str] = None
    category: UsageCategory = UsageCategory.CHAT
    temperature: Optional[float] = None
    preferences: Optional[UserPreferences] = None


_END = object()


class TokenStream(Generic[T]):
    """Cancellable async iterator fed by a background producer.

    The producer calls ``emit``; the consumer iterates. ``aclose`` (or
    leaving an ``async with`` block) cancels the producer and runs the
    release hooks. Completion is idempotent: the first terminal item or
    close wins, and every later ``emit`` returns False.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._complete = False
        self._drained = False
        self._releases: List[Callable[[], None]] = []
        self._task: Optional["asyncio.Task[None]"] = None
        self.state = StreamState.IDLE

    @property
    def closed(self) -> bool:
        return self._complete

    def attach(self, task: "asyncio.Task[None]") -> None:
        self._task = task

    def on_release(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the stream completes or is cancelled."""
        if self._complete:
            callback()
        else:
            self._releases.append(callback)

    def emit(self, item: T, final: bool = False) -> bool:
        if self._complete:
            return False
        self._queue.put_nowait(item)
        if final:
            self.complete()
        return True

    def complete(self) -> None:
        if self._complete:
            return
        self._complete = True
        self._queue.put_nowait(_END)
        callbacks, self._releases = self._releases, []
        for callback in callbacks:
            callback()

    async def aclose(self) -> None:
        if not self._complete:
            self.state = StreamState.CANCELLED
            self.complete()
        self._drained = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        if self._drained:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._drained = True
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    async def __aenter__(self) -> "TokenStream[T]":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def _spawn(stream: TokenStream, work: Awaitable[None]) -> None:
    stream.attach(asyncio.get_running_loop().create_task(work))


async def _guarded(stream: TokenStream[StreamToken], work: Awaitable[None], user_id: str) -> None:
    """Turn an unexpected producer crash into the terminal error token."""
    try:
        await work
    except Exception as exc:
        logger.exception("Stream producer failed for user %s", user_id)
        stream.state = StreamState.FAILED
        stream.emit(StreamToken(done=True, error=str(exc) or "Unexpected streaming error"), final=True)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _replay_chunks(text: str) -> List[str]:
    """Split text into word tokens whose concatenation is the original text."""
    return re.findall(r"\s*\S+\s*", text)


def _last_user_message(messages: Sequence[ConversationTurn]) -> Optional[str]:
    for turn in reversed(messages):
        if turn.role == Role.USER:
            return turn.content
    return None


async def _relay(
    outer: TokenStream[StreamToken],
    inner: TokenStream[StreamToken],
) -> Tuple[str, Optional[StreamToken]]:
    """Forward non-terminal tokens and hold back the terminal one.

    Returns the answer text (reset at every notice, so partial output
    of a failed attempt is not counted) and the terminal token.
    """
    parts: List[str] = []
    async with inner:
        async for token in inner:
            if token.done:
                return "".join(parts), token
            if token.notice:
                parts = []
            elif token.token:
                parts.append(token.token)
            outer.emit(token)
    outer.emit(StreamToken(done=True, error="Stream ended without a result"), final=True)
    return "".join(parts), None


def detect_platform(content: str) -> str:
    """Guess the target platform of a draft from its shape."""
    text = content.lower()
    if len(content) <= 280 or ("@" in content and "#" in content):
        return "twitter"
    if any(word in text for word in ("professional", "industry", "business", "career")):
        return "linkedin"
    if len(re.findall(r"#\w+", content)) > 5:
        return "instagram"
    if len(content) > 500:
        return "facebook"
    return "general"


class StreamOrchestrator:
    """Runs generations against a model provider.

    Collaborators are injected so each can be swapped or faked: the
    provider, the usage ledger, and the optional cache, rate limiter and
    quality scorer.
    """

    def __init__(
        self,
        provider: ModelProvider,
        ledger: UsageLedger,
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        scorer: Optional[QualityScorer] = None,
        options: StreamOptions = StreamOptions(),
    ):
        self.provider = provider
        self.ledger = ledger
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.scorer = scorer or QualityScorer()
        self.options = options

    def stream(
        self,
        request: StreamRequest,
        options: Optional[StreamOptions] = None,
    ) -> TokenStream[StreamToken]:
        """Start a generation and return its token stream.

        Must be called from a running event loop. The generation runs as a
        background task until its terminal token or until the stream is
        closed.
        """
        stream: TokenStream[StreamToken] = TokenStream()
        _spawn(stream, _guarded(stream, self._generate(stream, request, options or self.options), request.user_id))
        return stream

    async def _generate(
        self,
        stream: TokenStream[StreamToken],
        request: StreamRequest,
        options: StreamOptions,
    ) -> None:
        started = time.monotonic()
        key: Optional[str] = None

        if options.enable_caching and self.cache is not None:
            stream.state = StreamState.CACHE_CHECK
            key = self.cache.generate_key(request.messages, request.platform)
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for %s", key)
                await self._replay(stream, cached, options, started)
                return

        attempt = 0
        tier = options.model_tier

        def on_timeout() -> None:
            if stream.closed:
                return
            logger.warning("Generation for user %s timed out after %ss", request.user_id, options.timeout)
            stream.state = StreamState.FAILED
            stream.emit(StreamToken(
                done=True,
                error=f"Request timed out after {options.timeout:g}s",
                metadata=StreamMetadata(
                    model=tier.value,
                    processing_time_ms=_elapsed_ms(started),
                    retry_count=attempt,
                ),
            ), final=True)

        timer = asyncio.get_running_loop().call_later(options.timeout, on_timeout)
        stream.on_release(timer.cancel)

        stream.state = StreamState.GENERATING
        try:
            await self._admit(request, options)
        except (RateLimitExceeded, QuotaExceeded) as exc:
            logger.warning("Generation refused for user %s: %s", request.user_id, exc)
            stream.state = StreamState.FAILED
            stream.emit(StreamToken(
                done=True,
                error=str(exc),
                metadata=StreamMetadata(model=tier.value, processing_time_ms=_elapsed_ms(started)),
            ), final=True)
            return

        prepared = prepare_prompt(
            request.messages,
            platform=request.platform,
            draft_context=request.draft_context,
            preferences=request.preferences,
        )

        buffer = TokenBuffer(
            options.buffer_size,
            on_flush=lambda batch: stream.emit(StreamToken(token="".join(batch))),
        )
        stream.on_release(buffer.clear)

        for attempt in range(options.max_retries):
            if attempt > 0 and options.fallback_tier is not None:
                tier = options.fallback_tier
            parts: List[str] = []
            try:
                response = await self.provider.invoke(
                    prepared.messages, prepared.system_prompt, tier, request.temperature
                )
                async for fragment in response:
                    if stream.closed:
                        return
                    parts.append(fragment)
                    buffer.add(fragment)
            except Exception as exc:
                if stream.closed:
                    return
                logger.warning(
                    "Attempt %d/%d failed for user %s: %s",
                    attempt + 1, options.max_retries, request.user_id, exc,
                )
                buffer.flush()
                if attempt + 1 < options.max_retries:
                    stream.state = StreamState.RETRYING
                    stream.emit(StreamToken(
                        token=RETRY_NOTICE.format(attempt=attempt + 2, total=options.max_retries),
                        notice=True,
                    ))
                    await asyncio.sleep(options.retry_delay * 2 ** attempt)
                    if stream.closed:
                        return
                    stream.state = StreamState.GENERATING
                    continue
                stream.state = StreamState.FAILED
                stream.emit(StreamToken(
                    done=True,
                    error=str(exc) or type(exc).__name__,
                    metadata=StreamMetadata(
                        model=tier.value,
                        processing_time_ms=_elapsed_ms(started),
                        retry_count=attempt,
                    ),
                ), final=True)
                return

            if stream.closed:
                return
            buffer.flush()
            text = "".join(parts)
            usage = response.usage or TokenUsage(
                input_tokens=estimate_tokens(
                    prepared.system_prompt + "".join(t.content for t in prepared.messages)
                ),
                output_tokens=estimate_tokens(text),
            )

            # No await between the closed check and the terminal token: a
            # timed-out or cancelled stream never reaches the writes.
            if key is not None and text:
                self.cache.set(key, text)
            stream.state = StreamState.COMPLETED
            stream.emit(StreamToken(
                done=True,
                metadata=StreamMetadata(
                    model=tier.value,
                    total_tokens=usage.total_tokens,
                    processing_time_ms=_elapsed_ms(started),
                    retry_count=attempt,
                ),
            ), final=True)

            await asyncio.to_thread(
                self.ledger.track_usage,
                request.user_id,
                self.provider.model_for(tier),
                usage.input_tokens,
                usage.output_tokens,
                request.category,
                {"tier": tier.value, "retry_count": attempt, "platform": request.platform},
            )
            return

    async def _admit(self, request: StreamRequest, options: StreamOptions) -> None:
        """Rate limit and quota gate for a live generation.

        A quota read that fails (as opposed to a quota that is exhausted)
        lets the request through.
        """
        if self.rate_limiter is not None:
            self.rate_limiter.check(request.user_id)

        estimated = options.estimated_tokens
        if estimated is None:
            estimated = self.provider.configs[options.model_tier].max_tokens
        try:
            await asyncio.to_thread(self.ledger.enforce_quotas, request.user_id, estimated)
        except QuotaExceeded:
            raise
        except Exception:
            logger.warning("Quota check failed for user %s; allowing request", request.user_id, exc_info=True)

    async def _replay(
        self,
        stream: TokenStream[StreamToken],
        text: str,
        options: StreamOptions,
        started: float,
    ) -> None:
        stream.state = StreamState.REPLAYING
        chunks = _replay_chunks(text)
        for chunk in chunks:
            if not stream.emit(StreamToken(token=chunk)):
                return
            if options.replay_delay > 0:
                await asyncio.sleep(options.replay_delay)
        stream.state = StreamState.COMPLETED
        stream.emit(StreamToken(
            done=True,
            metadata=StreamMetadata(
                model=CACHED_MODEL,
                total_tokens=len(chunks),
                processing_time_ms=_elapsed_ms(started),
            ),
        ), final=True)

    def stream_with_quality_score(
        self,
        request: StreamRequest,
        options: Optional[StreamOptions] = None,
    ) -> TokenStream[StreamToken]:
        """Stream a response and regenerate it once if it scores too low.

        The terminal token carries ``metadata.quality_score``. A second
        result is accepted whatever it scores.
        """
        outer: TokenStream[StreamToken] = TokenStream()
        _spawn(outer, _guarded(outer, self._quality_gated(outer, request, options or self.options), request.user_id))
        return outer

    async def _quality_gated(
        self,
        outer: TokenStream[StreamToken],
        request: StreamRequest,
        options: StreamOptions,
    ) -> None:
        context = QualityContext(platform=request.platform, user_prompt=_last_user_message(request.messages))

        text, terminal = await _relay(outer, self.stream(request, options))
        if terminal is None:
            return
        if terminal.error:
            outer.emit(terminal, final=True)
            return

        report = self.scorer.score_response(text, context)
        if report.overall_score >= options.min_quality_score:
            outer.emit(self._with_score(terminal, report.overall_score), final=True)
            return

        logger.info(
            "Response scored %.2f (< %.2f) for user %s; regenerating",
            report.overall_score, options.min_quality_score, request.user_id,
        )
        outer.emit(StreamToken(token=REGENERATE_NOTICE, notice=True))
        retry = replace(
            request,
            messages=[*request.messages, ConversationTurn.system(REGENERATE_INSTRUCTION)],
        )
        text, terminal = await _relay(outer, self.stream(retry, options))
        if terminal is None:
            return
        if not terminal.error:
            terminal = self._with_score(terminal, self.scorer.score_response(text, context).overall_score)
        outer.emit(terminal, final=True)

    @staticmethod
    def _with_score(terminal: StreamToken, score: float) -> StreamToken:
        metadata = terminal.metadata or StreamMetadata(model="unknown")
        return replace(terminal, metadata=replace(metadata, quality_score=score))

    def parallel_variations(
        self,
        request: StreamRequest,
        variation_count: int = 2,
        temperatures: Sequence[float] = DEFAULT_VARIATION_TEMPERATURES,
        options: Optional[StreamOptions] = None,
    ) -> TokenStream[VariationToken]:
        """Run ``variation_count`` generations concurrently.

        Variation ``i`` samples at ``temperatures[i]`` (or ``0.7 + 0.1 * i``
        past the end of the list). Caching is disabled so variations never
        replay each other. The stream completes once every variation has
        emitted its terminal token.
        """
        if variation_count < 1:
            raise ValueError("variation_count must be >= 1")
        options = replace(options or self.options, enable_caching=False)
        outer: TokenStream[VariationToken] = TokenStream()
        _spawn(outer, self._fan_out(outer, request, variation_count, temperatures, options))
        return outer

    async def _fan_out(
        self,
        outer: TokenStream[VariationToken],
        request: StreamRequest,
        count: int,
        temperatures: Sequence[float],
        options: StreamOptions,
    ) -> None:
        async def run(index: int) -> None:
            temperature = temperatures[index] if index < len(temperatures) else 0.7 + index * 0.1
            async with self.stream(replace(request, temperature=temperature), options) as inner:
                async for token in inner:
                    outer.emit(VariationToken(variation=index, token=token))

        try:
            await asyncio.gather(*(run(i) for i in range(count)))
        finally:
            outer.complete()

    def stream_with_platform_detection(
        self,
        content: str,
        user_id: str,
        options: Optional[StreamOptions] = None,
    ) -> TokenStream[StreamToken]:
        """Detect the draft's platform and stream an improvement or review.

        Short posts get an improvement prompt; longer ones a validation
        review.
        """
        platform = detect_platform(content)
        if platform == "twitter":
            prompt = SmartPromptBuilder.for_content_improvement(content, platform, IMPROVEMENT_FOCUS)
            category = UsageCategory.IMPROVEMENT
        else:
            prompt = SmartPromptBuilder.for_content_validation(content, platform)
            category = UsageCategory.VALIDATION

        request = StreamRequest(
            messages=[ConversationTurn.user(prompt)],
            user_id=user_id,
            platform=platform,
            category=category,
        )
        return self.stream(request, options)


class ConversationMemory:
    """Ordered history of one conversation, capped to the newest turns.

    Turns are only ever appended. With a repository they are also written
    to the ``conversation_turn`` table and reloaded on construction.
    """

    def __init__(
        self,
        conversation_id: str,
        repository: Optional[UsageRepository] = None,
        max_turns: int = MEMORY_MAX_TURNS,
    ):
        self.conversation_id = conversation_id
        self.repository = repository
        self.max_turns = max_turns
        self._turns: List[ConversationTurn] = []
        if repository is not None:
            self._turns = repository.fetch_conversation(conversation_id, limit=max_turns)

    @property
    def turns(self) -> List[ConversationTurn]:
        return list(self._turns)

    def append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)
        del self._turns[:-self.max_turns]
        if self.repository is not None:
            try:
                self.repository.insert_conversation_turn(self.conversation_id, turn)
            except Exception:
                logger.exception("Failed to persist turn for conversation %s", self.conversation_id)

    def respond(
        self,
        orchestrator: StreamOrchestrator,
        content: str,
        user_id: str,
        platform: Optional[str] = None,
        draft_context: Optional[str] = None,
        options: Optional[StreamOptions] = None,
        quality_gate: bool = False,
    ) -> TokenStream[StreamToken]:
        """Record a user turn, stream the answer and record it on success.

        Only the text after the last notice becomes the assistant turn, so
        a discarded attempt never enters the history.
        """
        self.append(ConversationTurn.user(content))
        request = StreamRequest(
            messages=self.turns,
            user_id=user_id,
            platform=platform,
            draft_context=draft_context,
        )
        if quality_gate:
            inner = orchestrator.stream_with_quality_score(request, options)
        else:
            inner = orchestrator.stream(request, options)

        outer: TokenStream[StreamToken] = TokenStream()
        _spawn(outer, _guarded(outer, self._record(outer, inner), user_id))
        return outer

    async def _record(self, outer: TokenStream[StreamToken], inner: TokenStream[StreamToken]) -> None:
        text, terminal = await _relay(outer, inner)
        if terminal is None:
            return
        if not terminal.error:
            self.append(ConversationTurn.assistant(text))
        outer.emit(terminal, final=True)
