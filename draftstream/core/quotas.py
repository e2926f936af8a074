"""
Usage quotas and limit enforcement.

Compares a user's day and month usage against the limits of their tier.

Check Order:
1. Daily token limit
2. Monthly token limit
3. Daily cost limit
4. Monthly cost limit

The first breached limit is reported. A limit of -1 means unlimited.
"""

from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional

from draftstream.storage.models import QuotaTier

UNLIMITED = -1


@dataclass(frozen=True)
class QuotaLimits:
    """Token and cost ceilings for one tier."""
    daily_tokens: int
    monthly_tokens: int
    daily_cost: float
    monthly_cost: float

    def with_overrides(self, overrides: Mapping[str, float]) -> "QuotaLimits":
        return replace(self, **overrides)


DEFAULT_QUOTAS: Dict[QuotaTier, QuotaLimits] = {
    QuotaTier.FREE: QuotaLimits(
        daily_tokens=10_000,
        monthly_tokens=100_000,
        daily_cost=0.5,
        monthly_cost=5.0,
    ),
    QuotaTier.STARTER: QuotaLimits(
        daily_tokens=50_000,
        monthly_tokens=1_000_000,
        daily_cost=2.5,
        monthly_cost=25.0,
    ),
    QuotaTier.PRO: QuotaLimits(
        daily_tokens=200_000,
        monthly_tokens=5_000_000,
        daily_cost=10.0,
        monthly_cost=100.0,
    ),
    QuotaTier.ENTERPRISE: QuotaLimits(
        daily_tokens=UNLIMITED,
        monthly_tokens=UNLIMITED,
        daily_cost=UNLIMITED,
        monthly_cost=UNLIMITED,
    ),
}


@dataclass(frozen=True)
class UsageWindow:
    """Aggregated usage within one window (today or this month)."""
    tokens: int = 0
    cost: float = 0.0


@dataclass(frozen=True)
class QuotaUsage:
    """Usage totals the quota check was evaluated against."""
    daily: UsageWindow
    monthly: UsageWindow


@dataclass(frozen=True)
class QuotaCheckResult:
    """Outcome of a quota check. Derived on demand, never stored."""
    allowed: bool
    tier: QuotaTier
    limits: QuotaLimits
    usage: QuotaUsage
    reason: Optional[str] = None


class QuotaExceeded(Exception):
    """Raised when a user may not make another model call."""
    def __init__(self, message: str, check: QuotaCheckResult):
        super().__init__(message)
        self.check = check


def _is_limited(limit: float) -> bool:
    return limit > 0


def evaluate_quota(
    tier: QuotaTier,
    limits: QuotaLimits,
    usage: QuotaUsage,
    estimated_tokens: int = 0,
) -> QuotaCheckResult:
    """Decide whether a call estimated at ``estimated_tokens`` may proceed.

    Token limits are checked against current usage plus the estimate.
    Cost limits are checked against current usage only, since the cost of
    the upcoming call is unknown until it completes.

    Args:
        tier: The user's tier
        limits: Limits that apply to the tier
        usage: Current day and month totals
        estimated_tokens: Expected size of the upcoming call

    Returns:
        QuotaCheckResult with ``allowed`` and, when disallowed, a reason
    """
    daily, monthly = usage.daily, usage.monthly

    def _deny(reason: str) -> QuotaCheckResult:
        return QuotaCheckResult(
            allowed=False, tier=tier, limits=limits, usage=usage, reason=reason
        )

    if _is_limited(limits.daily_tokens) and daily.tokens + estimated_tokens > limits.daily_tokens:
        return _deny(
            f"Daily token limit exceeded ({daily.tokens}/{limits.daily_tokens})"
        )

    if _is_limited(limits.monthly_tokens) and monthly.tokens + estimated_tokens > limits.monthly_tokens:
        return _deny(
            f"Monthly token limit exceeded ({monthly.tokens}/{limits.monthly_tokens})"
        )

    if _is_limited(limits.daily_cost) and daily.cost > limits.daily_cost:
        return _deny(
            f"Daily cost limit exceeded (${daily.cost:.2f}/${limits.daily_cost:g})"
        )

    if _is_limited(limits.monthly_cost) and monthly.cost > limits.monthly_cost:
        return _deny(
            f"Monthly cost limit exceeded (${monthly.cost:.2f}/${limits.monthly_cost:g})"
        )

    return QuotaCheckResult(allowed=True, tier=tier, limits=limits, usage=usage)


def recommend_tier(projected_monthly_cost: float) -> Optional[QuotaTier]:
    """Smallest paid tier whose monthly cost limit covers a projection.

    Returns None when the free tier is sufficient.
    """
    if projected_monthly_cost > DEFAULT_QUOTAS[QuotaTier.PRO].monthly_cost:
        return QuotaTier.ENTERPRISE
    if projected_monthly_cost > DEFAULT_QUOTAS[QuotaTier.STARTER].monthly_cost:
        return QuotaTier.PRO
    if projected_monthly_cost > DEFAULT_QUOTAS[QuotaTier.FREE].monthly_cost:
        return QuotaTier.STARTER
    return None
