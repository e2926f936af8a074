"""
Prompt assembly for the drafting assistant.

Builds the system prompt from platform rules, draft analysis and recent
conversation, and trims older history into a condensed context block
that fits a token budget.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .token_counter import estimate_tokens
from draftstream.storage.models import ConversationTurn, Role

CONTEXT_THRESHOLD = 10  # history length above which older turns are condensed
RECENT_TURNS = 5
CONTEXT_TOKEN_BUDGET = 1000
PREVIEW_CHARS = 200
DRAFT_PREVIEW_CHARS = 500


@dataclass(frozen=True)
class PlatformConfig:
    """Publishing rules for one social platform."""
    max_length: int
    features: Tuple[str, ...]
    tone: str
    best_practices: Tuple[str, ...]


PLATFORM_CONFIGS: Dict[str, PlatformConfig] = {
    "twitter": PlatformConfig(
        max_length=280,
        features=("hashtags", "mentions", "threads", "engagement"),
        tone="concise, witty, conversational",
        best_practices=(
            "Use 1-2 hashtags max",
            "Front-load key message",
            "Include clear CTA",
            "Optimize for mobile reading",
        ),
    ),
    "linkedin": PlatformConfig(
        max_length=3000,
        features=("professional tone", "industry insights", "thought leadership"),
        tone="professional, informative, value-driven",
        best_practices=(
            "Start with a hook",
            "Use line breaks for readability",
            "Include 3-5 relevant hashtags",
            "End with a question or CTA",
        ),
    ),
    "facebook": PlatformConfig(
        max_length=63206,
        features=("storytelling", "community engagement", "visuals"),
        tone="friendly, personal, engaging",
        best_practices=(
            "Tell a story",
            "Use emojis sparingly",
            "Ask questions",
            "Include visual descriptions",
        ),
    ),
    "instagram": PlatformConfig(
        max_length=2200,
        features=("visual storytelling", "hashtags", "reels", "stories"),
        tone="visual, inspiring, authentic",
        best_practices=(
            "Start with attention-grabbing first line",
            "Use up to 30 hashtags",
            "Include emojis for visual breaks",
            "Add clear CTA",
        ),
    ),
    "threads": PlatformConfig(
        max_length=500,
        features=("conversations", "quick thoughts", "replies"),
        tone="casual, conversational, authentic",
        best_practices=(
            "Keep it conversational",
            "Encourage replies",
            "Use threading effectively",
            "Be authentic",
        ),
    ),
}

_FORMAL = re.compile(r"\b(therefore|furthermore|consequently|accordingly|pursuant)\b", re.I)
_CASUAL = re.compile(r"\b(hey|gonna|wanna|yeah|lol|btw)\b", re.I)
_HUMOR = re.compile(r"\b(joke|funny|hilarious|lmao)\b|\U0001F602|\U0001F923", re.I)
_URGENT = re.compile(r"\b(urgent|now|limited|hurry|fast)\b", re.I)
_EMPATHETIC = re.compile(r"\b(understand|feel|empathy|support|together)\b", re.I)
_POSITIVE = re.compile(r"\b(amazing|excellent|fantastic|great|wonderful)\b", re.I)


@dataclass(frozen=True)
class ContentAnalysis:
    """Characteristics detected in a draft."""
    tone: Optional[str] = None
    keywords: Tuple[str, ...] = ()
    emotional_tone: str = "neutral"


@dataclass(frozen=True)
class UserPreferences:
    tone: Optional[str] = None
    style: Optional[str] = None
    goals: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PreparedPrompt:
    """System prompt plus the turns actually sent to the model."""
    system_prompt: str
    messages: List[ConversationTurn] = field(default_factory=list)


def analyze_content(content: str) -> ContentAnalysis:
    """Detect tone, top keywords and emotional tone of a draft."""
    tone = None
    if _FORMAL.search(content):
        tone = "professional"
    elif _CASUAL.search(content):
        tone = "casual"
    elif _HUMOR.search(content):
        tone = "humorous"

    counts: Counter = Counter()
    for word in content.lower().split():
        cleaned = re.sub(r"[^a-z0-9]", "", word)
        if len(cleaned) > 4:
            counts[cleaned] += 1
    keywords = tuple(word for word, _ in counts.most_common(5))

    if _URGENT.search(content):
        emotional = "urgent"
    elif _EMPATHETIC.search(content):
        emotional = "empathetic"
    elif _POSITIVE.search(content):
        emotional = "positive"
    else:
        emotional = "neutral"

    return ContentAnalysis(tone=tone, keywords=keywords, emotional_tone=emotional)


def build_system_prompt(
    platform: str,
    draft_context: Optional[str] = None,
    conversation_history: Optional[Sequence[ConversationTurn]] = None,
    preferences: Optional[UserPreferences] = None,
) -> str:
    """Build the system prompt for a platform, draft and recent conversation.

    Args:
        platform: Target platform name; unknown platforms get generic rules
        draft_context: The draft being worked on
        conversation_history: Recent turns; the last three are summarized
        preferences: Optional user tone/style/goals

    Returns:
        System prompt text
    """
    config = PLATFORM_CONFIGS.get(platform)
    if config:
        limit = str(config.max_length)
        tone = config.tone
        features = ", ".join(config.features)
        practices = "\n".join(f"- {bp}" for bp in config.best_practices)
    else:
        limit, tone = "No limit", "Adaptable"
        features = "Standard social media features"
        practices = "- Follow general social media best practices"

    parts = [
        f"You are an expert {platform} content strategist and copywriter with deep "
        "understanding of platform-specific best practices, audience psychology, "
        "and engagement optimization.\n",
        "## Platform Context",
        f"Platform: {platform}",
        f"Character Limit: {limit}",
        f"Tone: {tone}",
        f"Key Features: {features}\n",
        f"## Best Practices for {platform}",
        practices,
    ]

    if preferences:
        parts.append("\n## User Preferences")
        if preferences.tone:
            parts.append(f"Preferred Tone: {preferences.tone}")
        if preferences.style:
            parts.append(f"Writing Style: {preferences.style}")
        if preferences.goals:
            parts.append(f"Content Goals: {', '.join(preferences.goals)}")

    if draft_context:
        analysis = analyze_content(draft_context)
        preview = draft_context[:DRAFT_PREVIEW_CHARS]
        if len(draft_context) > DRAFT_PREVIEW_CHARS:
            preview += "..."
        detected = analysis.tone or "neutral"
        parts.extend([
            "\n## Current Draft Analysis",
            f"Content: {preview}",
            f"Detected Tone: {detected}",
            f"Key Topics: {', '.join(analysis.keywords) or 'general content'}",
            f"Emotional Tone: {analysis.emotional_tone}\n",
            "When providing suggestions:",
            "1. Maintain the user's authentic voice while enhancing clarity",
            f"2. Optimize for {platform}-specific engagement patterns",
            f"3. Ensure content aligns with detected tone: {detected}",
            "4. Enhance emotional resonance while staying authentic",
        ])

    if conversation_history:
        requests = [
            turn.content[:100]
            for turn in list(conversation_history)[-3:]
            if turn.role == Role.USER
        ]
        if requests:
            parts.append("\n## Recent Conversation Context")
            parts.append(
                "The user has been working on improving their content with the "
                "following focus areas:"
            )
            parts.extend(f'- Previous request: "{text}..."' for text in requests)

    parts.extend([
        "\n## Response Guidelines",
        "1. Be specific and actionable in your suggestions",
        "2. Provide examples when recommending changes",
        '3. Explain the "why" behind each suggestion',
        "4. Consider the platform's algorithm and engagement patterns",
        "5. Maintain authenticity while optimizing for performance",
        "6. Use data-driven insights when applicable",
        "7. Suggest A/B testing opportunities when relevant\n",
        "## Output Format",
        "Structure your responses with:",
        "- Clear headers for different sections",
        "- Bullet points for easy scanning",
        "- Specific examples in quotes",
        "- Metrics or benchmarks when relevant",
        "- Action items clearly marked",
    ])
    return "\n".join(parts)


def build_conversation_context(
    turns: Sequence[ConversationTurn],
    max_tokens: int = CONTEXT_TOKEN_BUDGET,
) -> str:
    """Condense older turns into a context block within a token budget.

    Turns are taken newest first until the next one would exceed the
    budget; anything older is dropped. The block lists the kept turns
    oldest first.
    """
    if not turns:
        return ""

    included: List[str] = []
    used = 0
    for turn in reversed(turns):
        preview = f"{turn.role.value}: {turn.content[:PREVIEW_CHARS]}..."
        cost = estimate_tokens(preview + "\n")
        if used + cost > max_tokens:
            break
        included.append(preview)
        used += cost

    included.reverse()
    return "Previous conversation highlights:\n" + "\n".join(included)


def prepare_prompt(
    messages: Sequence[ConversationTurn],
    platform: Optional[str] = None,
    draft_context: Optional[str] = None,
    preferences: Optional[UserPreferences] = None,
    context_threshold: int = CONTEXT_THRESHOLD,
    recent_turns: int = RECENT_TURNS,
    context_budget: int = CONTEXT_TOKEN_BUDGET,
) -> PreparedPrompt:
    """Assemble the system prompt and the turn list for one model call.

    When the history is longer than ``context_threshold``, every turn but
    the last ``recent_turns`` is replaced by one condensed system turn.
    """
    messages = list(messages)
    system_prompt = build_system_prompt(
        platform or "general",
        draft_context=draft_context,
        conversation_history=messages[-recent_turns:],
        preferences=preferences,
    )

    if len(messages) > context_threshold:
        older, recent = messages[:-recent_turns], messages[-recent_turns:]
        context = build_conversation_context(older, context_budget)
        messages = [ConversationTurn.system(context)] + recent

    return PreparedPrompt(system_prompt=system_prompt, messages=messages)


def optimize_prompt_for_tokens(prompt: str, max_tokens: int = 2000) -> str:
    """Drop trailing ``## `` sections of a prompt until it fits the budget.

    The lead section is always considered first; later sections are kept
    in order while they still fit.
    """
    if estimate_tokens(prompt) <= max_tokens:
        return prompt

    sections = prompt.split("\n## ")
    kept: List[str] = []
    used = 0
    for section in sections:
        cost = estimate_tokens(section)
        if used + cost <= max_tokens:
            kept.append(section)
            used += cost
    return "\n## ".join(kept)


def _limit_for(platform: str) -> str:
    config = PLATFORM_CONFIGS.get(platform)
    return str(config.max_length) if config else "No limit"


class SmartPromptBuilder:
    """Task prompts for the assistant's one-shot actions."""

    @staticmethod
    def for_content_improvement(
        content: str,
        platform: str,
        improvements: Sequence[str],
        analysis: Optional[ContentAnalysis] = None,
    ) -> str:
        config = PLATFORM_CONFIGS.get(platform)
        lines = [
            f"As a {platform} content optimization expert, improve this post focusing on: "
            f"{', '.join(improvements)}\n",
            "Original Content:",
            f'"{content}"\n',
            "Platform Requirements:",
            f"- Max length: {_limit_for(platform)} characters",
            f"- Current length: {len(content)} characters",
            f"- Optimal tone: {config.tone if config else 'Platform appropriate'}\n",
        ]
        if analysis:
            lines.extend([
                "Content Analysis:",
                f"- Detected tone: {analysis.tone or 'neutral'}",
                f"- Key topics: {', '.join(analysis.keywords) or 'general'}",
                f"- Emotional tone: {analysis.emotional_tone}\n",
            ])
        lines.append("Improvement Focus:")
        lines.extend(f"- {imp}: Specific changes to enhance this aspect" for imp in improvements)
        lines.extend([
            "\nProvide:",
            "1. Improved version (maintain core message)",
            "2. Explanation of key changes",
            "3. Expected impact on engagement",
            "4. Alternative approaches if applicable",
        ])
        return "\n".join(lines)

    @staticmethod
    def for_hashtag_generation(
        content: str,
        platform: str,
        count: int,
        trending: Sequence[str] = (),
    ) -> str:
        lines = [
            f"Generate {count} optimized hashtags for this {platform} post:\n",
            f'Content: "{content}"\n',
            "Requirements:",
            "- Mix of broad reach (popular) and niche (specific) hashtags",
            "- Platform-appropriate formatting",
            "- Relevant to content and target audience",
            "- Balance between competitive and discoverable\n",
        ]
        if trending:
            lines.append(f"Current Trending Hashtags to Consider:\n{', '.join(trending)}\n")
        lines.extend([
            "Provide hashtags in categories:",
            "1. High-reach (1-3): Popular, competitive",
            "2. Medium-reach (3-5): Balanced discoverability",
            "3. Niche (remaining): Specific to content/audience\n",
            "Include reasoning for each category selection.",
        ])
        return "\n".join(lines)

    @staticmethod
    def for_content_validation(
        content: str,
        platform: str,
        criteria: Sequence[str] = (),
    ) -> str:
        config = PLATFORM_CONFIGS.get(platform)
        default_criteria = (
            "Character count compliance",
            "Hashtag optimization",
            "Engagement potential",
            "Platform best practices",
            "Accessibility considerations",
            "Brand safety",
            "Call-to-action effectiveness",
        )
        lines = [
            f"Perform a comprehensive validation of this {platform} content:\n",
            f'Content: "{content}"\n',
            "Platform Specifications:",
            f"- Character limit: {_limit_for(platform)}",
            f"- Best practices: {'; '.join(config.best_practices) if config else 'Standard'}\n",
            "Validation Criteria:",
        ]
        lines.extend(f"- {c}" for c in (criteria or default_criteria))
        lines.extend([
            "\nProvide structured feedback:",
            "1. Compliance Score (0-100)",
            "2. Critical Issues (must fix)",
            "3. Recommendations (should improve)",
            "4. Opportunities (could enhance)",
            "5. Predicted engagement level (Low/Medium/High)",
            "6. A/B testing suggestions",
        ])
        return "\n".join(lines)

    @staticmethod
    def for_trend_adaptation(
        trend: str,
        brand_context: str,
        platform: str,
        risk_tolerance: str = "medium",
    ) -> str:
        if risk_tolerance not in ("low", "medium", "high"):
            raise ValueError("risk_tolerance must be one of: low, medium, high")
        return "\n".join([
            f'Create authentic {platform} content connecting "{brand_context}" '
            f'with trending topic "{trend}":\n',
            f"Risk Tolerance: {risk_tolerance}",
            "- Low: Very safe, subtle connection",
            "- Medium: Clear connection, balanced approach",
            "- High: Bold, creative interpretation\n",
            "Analyze:",
            "1. Trend relevance to brand (score 1-10)",
            "2. Authenticity assessment",
            "3. Potential risks and mitigation",
            "4. Expected engagement multiplier\n",
            "Provide:",
            "1. Primary content approach (based on risk tolerance)",
            "2. 2 alternative angles",
            "3. Hashtag strategy",
            "4. Optimal posting time",
            "5. Expected audience response",
            "6. Metrics to track success",
        ])

    @staticmethod
    def for_cross_platform_adaptation(
        content: str,
        source_platform: str,
        target_platforms: Sequence[str],
    ) -> str:
        return "\n".join([
            f"Adapt this {source_platform} content for multiple platforms:\n",
            f"Original ({source_platform}):",
            f'"{content}"\n',
            f"Target Platforms: {', '.join(target_platforms)}\n",
            "For each platform, provide:",
            "1. Adapted content (respecting character limits)",
            "2. Platform-specific optimizations",
            "3. Hashtag adjustments",
            "4. Tone modifications",
            "5. CTA adaptations",
            "6. Visual/media recommendations",
            "7. Posting time suggestions\n",
            "Maintain core message while optimizing for each platform's:",
            "- Audience expectations",
            "- Algorithm preferences",
            "- Engagement patterns",
            "- Format requirements",
        ])
