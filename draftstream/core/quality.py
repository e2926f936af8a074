"""
Response quality scoring.

Scores a completed response on eight dimensions with text heuristics,
combines them with context-dependent weights and derives strengths,
weaknesses and suggestions. Pure computation: deterministic for the same
text and context.

Each dimension is a swappable strategy function, so any heuristic can be
replaced without touching the weighting and aggregation logic.
"""

import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from draftstream.storage.models import ConversationTurn

STRENGTH_THRESHOLD = 0.8
WEAKNESS_THRESHOLD = 0.5


class ContentGoal(str, Enum):
    ENGAGEMENT = "engagement"
    CONVERSION = "conversion"
    AWARENESS = "awareness"
    EDUCATION = "education"


@dataclass(frozen=True)
class QualityContext:
    """What a response is judged against."""
    platform: Optional[str] = None
    user_prompt: Optional[str] = None
    conversation_history: Tuple[ConversationTurn, ...] = ()
    target_audience: Optional[str] = None
    goals: Tuple[ContentGoal, ...] = ()


@dataclass(frozen=True)
class QualityDimensions:
    relevance: float
    clarity: float
    completeness: float
    actionability: float
    creativity: float
    tone: float
    platform_optimization: float
    engagement: float

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


DIMENSIONS: Tuple[str, ...] = tuple(f.name for f in fields(QualityDimensions))


@dataclass(frozen=True)
class QualityMetadata:
    response_length: int
    readability_score: float
    sentiment_score: float
    keyword_density: float


@dataclass(frozen=True)
class QualityReport:
    """Transient evaluation of one response. Never persisted."""
    overall_score: float
    dimensions: QualityDimensions
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    confidence: float = 0.5
    metadata: Optional[QualityMetadata] = None


@dataclass(frozen=True)
class CandidateResponse:
    id: str
    response: str
    context: QualityContext = QualityContext()


@dataclass(frozen=True)
class RankedResponse:
    id: str
    score: float
    rank: int
    report: QualityReport


@dataclass(frozen=True)
class _PlatformCriteria:
    max_length: int
    ideal_min: int
    ideal_max: int


PLATFORM_CRITERIA: Dict[str, _PlatformCriteria] = {
    "twitter": _PlatformCriteria(max_length=280, ideal_min=100, ideal_max=250),
    "linkedin": _PlatformCriteria(max_length=3000, ideal_min=300, ideal_max=1000),
    "facebook": _PlatformCriteria(max_length=63206, ideal_min=100, ideal_max=500),
    "instagram": _PlatformCriteria(max_length=2200, ideal_min=150, ideal_max=300),
}

DIMENSION_LABELS = {
    "relevance": "Highly relevant to the request",
    "clarity": "Clear and easy to understand",
    "completeness": "Comprehensive response",
    "actionability": "Provides actionable suggestions",
    "creativity": "Creative and original approach",
    "tone": "Appropriate tone for the context",
    "platform_optimization": "Well-optimized for the platform",
    "engagement": "High engagement potential",
}

BASE_WEIGHTS = {
    "relevance": 0.2,
    "clarity": 0.15,
    "completeness": 0.15,
    "actionability": 0.1,
    "creativity": 0.1,
    "tone": 0.1,
    "platform_optimization": 0.1,
    "engagement": 0.1,
}

ACTION_VERBS = ("try", "use", "add", "remove", "change", "update", "implement", "consider")
ACTION_PHRASES = ("you can", "you should", "i recommend", "consider")
EMOTIONAL_WORDS = ("amazing", "excited", "love", "incredible", "fantastic")
ENGAGEMENT_PHRASES = ("share", "comment", "let me know", "what do you think")
CASUAL_WORDS = ("hey", "gonna", "wanna", "lol")
FORMAL_WORDS = ("therefore", "furthermore", "consequently")
POSITIVE_WORDS = ("good", "great", "excellent", "amazing", "love", "perfect")
NEGATIVE_WORDS = ("bad", "poor", "terrible", "hate", "awful", "wrong")

DimensionScorer = Callable[[str, QualityContext], float]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


def _count_words(text: str, words: Sequence[str]) -> int:
    return sum(1 for w in words if _has_word(text, w))


def _sentences(text: str) -> List[str]:
    return [s for s in re.split(r"[.!?]+", text) if s.strip()]


def score_relevance(response: str, context: QualityContext) -> float:
    """Keyword overlap with the prompt plus request-type echoes."""
    prompt = (context.user_prompt or "").lower()
    prompt_words = prompt.split()
    if not prompt_words:
        return 0.5

    text = response.lower()
    matches = sum(1 for word in prompt_words if len(word) > 3 and word in text)
    score = 0.3 + (matches / len(prompt_words)) * 0.5

    for request, echo in (("improve", "improv"), ("suggest", "suggest"), ("fix", "fix")):
        if request in prompt and echo in text:
            score += 0.1
    return _clamp(score)


def score_clarity(response: str, context: QualityContext) -> float:
    """Sentence length, complex-word ratio and visible structure."""
    sentences = _sentences(response)
    words = response.split()
    if not sentences or not words:
        return 0.0

    score = 1.0
    average = len(response) / len(sentences)
    if average > 30:
        score -= 0.2
    if average > 50:
        score -= 0.3

    complex_words = re.findall(r"\b\w{10,}\b", response)
    if len(complex_words) > len(words) * 0.2:
        score -= 0.2

    # too short to say anything clearly
    if len(words) < 8:
        score -= 0.3

    if "•" in response or re.search(r"^\s*(\d+\.|-|#)", response, re.M):
        score += 0.1
    return _clamp(score)


def score_completeness(response: str, context: QualityContext) -> float:
    text = response.lower()
    score = 0.6
    if len(response) < 50:
        score -= 0.3
    elif len(response) < 200:
        score -= 0.1
    if len(response) > 500:
        score += 0.1

    if "example" in text or "for instance" in text:
        score += 0.1
    if "because" in text or "therefore" in text:
        score += 0.1
    if "alternatively" in text or "another option" in text:
        score += 0.1
    return _clamp(score)


def score_actionability(response: str, context: QualityContext) -> float:
    """Action verbs, numbered steps and direct recommendations."""
    text = response.lower()
    score = 0.3
    score += _count_words(text, ACTION_VERBS) * 0.1
    if re.search(r"^\s*\d+\.", response, re.M):
        score += 0.2
    score += sum(1 for phrase in ACTION_PHRASES if phrase in text) * 0.1
    return _clamp(score)


def score_creativity(response: str, context: QualityContext) -> float:
    words = response.lower().split()
    if not words:
        return 0.0

    diversity = len(set(words)) / len(words)
    # diversity only means something once there is enough text
    score = 0.4 + diversity * 0.2 * min(1.0, len(words) / 20)

    text = response.lower()
    if "imagine" in text or "what if" in text:
        score += 0.1
    if _has_word(text, "like") or "as if" in text:
        score += 0.1
    return _clamp(score)


def score_tone(response: str, context: QualityContext) -> float:
    text = response.lower()
    score = 0.7

    if context.platform == "linkedin" and any(_has_word(text, w) for w in CASUAL_WORDS):
        score -= 0.3
    if context.platform == "twitter" and any(_has_word(text, w) for w in FORMAL_WORDS):
        score -= 0.2

    # mixing statements, exclamations and questions reads as inconsistent
    if len(set(re.findall(r"[.!?]", response))) == 3:
        score -= 0.1
    return _clamp(score)


def score_platform_optimization(response: str, context: QualityContext) -> float:
    """Length window and platform conventions (hashtags, paragraphs)."""
    criteria = PLATFORM_CRITERIA.get(context.platform or "")
    if criteria is None:
        return 0.5

    score = 1.0
    length = len(response)
    if length > criteria.max_length:
        score -= 0.5
    elif length < criteria.ideal_min or length > criteria.ideal_max:
        score -= 0.3

    if context.platform == "twitter" and "#" not in response:
        score -= 0.2
    if context.platform == "instagram" and len(re.findall(r"#\w+", response)) < 5:
        score -= 0.1
    if context.platform == "linkedin" and "\n\n" not in response:
        score -= 0.1
    return _clamp(score)


def score_engagement(response: str, context: QualityContext) -> float:
    """Questions, emotional language and calls to action."""
    text = response.lower()
    score = 0.4
    score += min(response.count("?") * 0.1, 0.2)
    score += min(_count_words(text, EMOTIONAL_WORDS) * 0.1, 0.2)
    if any(phrase in text for phrase in ENGAGEMENT_PHRASES):
        score += 0.2
    if context.platform == "twitter" and "@" in response:
        score += 0.1
    if context.platform in ("facebook", "instagram") and "❤" in response:
        score += 0.1
    return _clamp(score)


DEFAULT_SCORERS: Dict[str, DimensionScorer] = {
    "relevance": score_relevance,
    "clarity": score_clarity,
    "completeness": score_completeness,
    "actionability": score_actionability,
    "creativity": score_creativity,
    "tone": score_tone,
    "platform_optimization": score_platform_optimization,
    "engagement": score_engagement,
}


def get_weights(context: QualityContext) -> Dict[str, float]:
    """Dimension weights for a context, normalized to sum to 1."""
    weights = dict(BASE_WEIGHTS)
    if ContentGoal.ENGAGEMENT in context.goals:
        weights["engagement"] += 0.1
        weights["creativity"] += 0.05
    if ContentGoal.CONVERSION in context.goals:
        weights["actionability"] += 0.1
        weights["clarity"] += 0.05
    if context.platform:
        weights["platform_optimization"] += 0.1

    total = sum(weights.values())
    return {name: weight / total for name, weight in weights.items()}


def _metadata(response: str) -> QualityMetadata:
    words = response.split()
    word_count = len(words) or 1
    sentence_count = len(_sentences(response)) or 1
    # Flesch reading ease with a fixed 1.5 syllables per word
    readability = 206.835 - 1.015 * (word_count / sentence_count) - 84.6 * 1.5

    text = response.lower()
    positive = _count_words(text, POSITIVE_WORDS)
    negative = _count_words(text, NEGATIVE_WORDS)

    return QualityMetadata(
        response_length=len(response),
        readability_score=max(0.0, min(100.0, readability)),
        sentiment_score=(positive - negative) / (positive + negative + 1),
        keyword_density=len(set(text.split())) / word_count,
    )


class QualityScorer:
    """Multi-dimension heuristic scorer for generated responses."""

    def __init__(self, scorers: Optional[Mapping[str, DimensionScorer]] = None):
        self.scorers: Dict[str, DimensionScorer] = dict(DEFAULT_SCORERS)
        if scorers:
            unknown = set(scorers) - set(DIMENSIONS)
            if unknown:
                raise ValueError(f"Unknown quality dimensions: {sorted(unknown)}")
            self.scorers.update(scorers)

    def score_response(self, response: str, context: Optional[QualityContext] = None) -> QualityReport:
        """Score one response.

        Args:
            response: Generated text
            context: Platform, prompt and goals the response is judged against

        Returns:
            QualityReport with the overall score rounded to 2 decimals
        """
        context = context or QualityContext()
        dimensions = QualityDimensions(**{
            name: _clamp(self.scorers[name](response, context)) for name in DIMENSIONS
        })
        scores = dimensions.as_dict()
        weights = get_weights(context)
        overall = round(sum(scores[name] * weights[name] for name in DIMENSIONS), 2)

        strengths = [DIMENSION_LABELS[name] for name in DIMENSIONS if scores[name] >= STRENGTH_THRESHOLD]
        weaknesses = [
            f"Needs improvement: {name}" for name in DIMENSIONS if scores[name] < WEAKNESS_THRESHOLD
        ]

        return QualityReport(
            overall_score=overall,
            dimensions=dimensions,
            strengths=strengths,
            weaknesses=weaknesses,
            suggestions=self._suggestions(dimensions, context),
            confidence=self._confidence(context),
            metadata=_metadata(response),
        )

    def compare_responses(self, candidates: Sequence[CandidateResponse]) -> List[RankedResponse]:
        """Score candidates and rank them best first (ties keep input order)."""
        reports = [(c.id, self.score_response(c.response, c.context)) for c in candidates]
        reports.sort(key=lambda item: item[1].overall_score, reverse=True)
        return [
            RankedResponse(id=cid, score=report.overall_score, rank=index + 1, report=report)
            for index, (cid, report) in enumerate(reports)
        ]

    @staticmethod
    def _suggestions(dimensions: QualityDimensions, context: QualityContext) -> List[str]:
        suggestions = []
        if dimensions.clarity < 0.6:
            suggestions.append("Simplify language and use shorter sentences")
        if dimensions.completeness < 0.5:
            suggestions.append("Expand the answer with reasoning and an example")
        if dimensions.actionability < 0.6:
            suggestions.append("Add more specific, actionable recommendations")
        if dimensions.engagement < 0.6:
            suggestions.append("Include questions or calls-to-action to boost engagement")
        if dimensions.platform_optimization < 0.6 and context.platform:
            suggestions.append(f"Optimize for {context.platform} best practices")
        if dimensions.creativity < 0.5:
            suggestions.append("Try a more creative or unique angle")
        return suggestions

    @staticmethod
    def _confidence(context: QualityContext) -> float:
        confidence = 0.5
        if context.user_prompt:
            confidence += 0.2
        if context.platform:
            confidence += 0.1
        if context.conversation_history:
            confidence += 0.1
        if context.target_audience:
            confidence += 0.05
        if context.goals:
            confidence += 0.05
        return min(1.0, confidence)
