"""
Usage ledger: accounting, quota checks and analytics.

Every completed model call is written here as one ``UsageRecord``.
Quota checks and analytics are read-only aggregations over those records.
"""

import calendar
import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .pricing import PRICING_TABLE, PricingTable, calculate_cost_split
from .quotas import (
    DEFAULT_QUOTAS,
    QuotaCheckResult,
    QuotaExceeded,
    QuotaLimits,
    QuotaUsage,
    UsageWindow,
    evaluate_quota,
    recommend_tier,
)
from .token_counter import TokenUsage
from draftstream.storage.models import QuotaTier, UsageCategory, UsageRecord
from draftstream.storage.repository import UsageRepository

logger = logging.getLogger(__name__)

TOP_EXPENSIVE_LIMIT = 10
EXPORT_HEADERS = [
    "Date", "Model", "Category", "Input Tokens", "Output Tokens", "Total Tokens", "Cost",
]


class AnalyticsPeriod(str, Enum):
    """Look-back window for usage analytics."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


@dataclass
class UsageTotals:
    """Running totals for one grouping key."""
    tokens: int = 0
    cost: float = 0.0
    count: int = 0

    def add(self, record: UsageRecord) -> None:
        self.tokens += record.total_tokens
        self.cost += record.total_cost
        self.count += 1


@dataclass(frozen=True)
class UsageSummary:
    total_tokens: int
    total_cost: float
    request_count: int
    average_tokens_per_request: int


@dataclass(frozen=True)
class TimelinePoint:
    date: str
    tokens: int
    cost: float
    count: int


@dataclass(frozen=True)
class UsageAnalytics:
    """Aggregate view of a user's usage over one period."""
    period: AnalyticsPeriod
    summary: UsageSummary
    by_category: Dict[str, UsageTotals]
    by_model: Dict[str, UsageTotals]
    timeline: List[TimelinePoint]
    top_expensive: List[UsageRecord]


@dataclass(frozen=True)
class CostProjection:
    """Month and year cost extrapolated from the month-to-date average."""
    current_month: float
    projected_month: float
    current_year: float
    projected_year: float
    average_daily_cost: float
    trend: TrendDirection
    recommended_tier: Optional[QuotaTier] = None


@dataclass(frozen=True)
class ExportSummary:
    total_cost: float
    total_tokens: int
    request_count: int


@dataclass(frozen=True)
class UsageExport:
    content: str
    format: ExportFormat
    summary: ExportSummary


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _start_of_month(now: datetime) -> datetime:
    return _start_of_day(now).replace(day=1)


def _period_start(period: AnalyticsPeriod, now: datetime) -> datetime:
    if period == AnalyticsPeriod.DAY:
        return _start_of_day(now)
    if period == AnalyticsPeriod.WEEK:
        return now - timedelta(days=7)
    if period == AnalyticsPeriod.MONTH:
        return _start_of_month(now)
    return _start_of_month(now).replace(month=1)


def _trend(daily_costs: List[float]) -> TrendDirection:
    """Compare the later half of recent days with the earlier half."""
    if len(daily_costs) < 3:
        return TrendDirection.STABLE
    middle = len(daily_costs) // 2
    first, second = daily_costs[:middle], daily_costs[middle:]
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)
    if second_avg > first_avg * 1.1:
        return TrendDirection.UP
    if second_avg < first_avg * 0.9:
        return TrendDirection.DOWN
    return TrendDirection.STABLE


class UsageLedger:
    """Records usage and answers quota and analytics queries for users.

    Writing is best-effort: a failed write is logged and swallowed so a
    broken usage pipeline never interrupts a user-facing generation.
    """

    def __init__(
        self,
        repository: UsageRepository,
        quota_overrides: Optional[Mapping[QuotaTier, QuotaLimits]] = None,
        pricing: PricingTable = PRICING_TABLE,
    ):
        self.repository = repository
        self.quotas: Dict[QuotaTier, QuotaLimits] = dict(DEFAULT_QUOTAS)
        if quota_overrides:
            self.quotas.update(quota_overrides)
        self.pricing = pricing

    def track_usage(
        self,
        user_id: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        category: UsageCategory = UsageCategory.CHAT,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[UsageRecord]:
        """Append a usage record for one completed model call.

        Args:
            user_id: User the call was made for
            model: Provider model identifier used for pricing
            input_tokens: Prompt tokens consumed
            output_tokens: Completion tokens produced
            category: What the call was for
            metadata: Extra context stored alongside the record
            timestamp: Record time (defaults to now)

        Returns:
            The stored record, or None when the model has no price or
            the write failed
        """
        usage = TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)
        try:
            input_cost, output_cost = calculate_cost_split(model, usage, self.pricing)
        except ValueError:
            logger.warning("Unknown model pricing for %s; usage not recorded", model)
            return None

        record = UsageRecord(
            timestamp=timestamp or datetime.now(),
            user_id=user_id,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            input_cost=input_cost,
            output_cost=output_cost,
            category=category,
            metadata=dict(metadata or {}),
        )
        try:
            self.repository.insert_usage_record(record)
        except Exception:
            logger.exception("Failed to track AI usage for user %s", user_id)
            return None
        return record

    def get_tier(self, user_id: str) -> QuotaTier:
        return self.repository.get_user_tier(user_id) or QuotaTier.FREE

    def check_quotas(
        self,
        user_id: str,
        estimated_tokens: int = 0,
        now: Optional[datetime] = None,
    ) -> QuotaCheckResult:
        """Compare a user's day and month usage with their tier's limits.

        Pure read: nothing is written.
        """
        now = now or datetime.now()
        tier = self.get_tier(user_id)
        limits = self.quotas[tier]

        if limits == DEFAULT_QUOTAS[QuotaTier.ENTERPRISE]:
            return QuotaCheckResult(
                allowed=True,
                tier=tier,
                limits=limits,
                usage=QuotaUsage(daily=UsageWindow(), monthly=UsageWindow()),
            )

        daily_tokens, daily_cost = self.repository.sum_usage(user_id, _start_of_day(now))
        monthly_tokens, monthly_cost = self.repository.sum_usage(user_id, _start_of_month(now))
        usage = QuotaUsage(
            daily=UsageWindow(tokens=daily_tokens, cost=daily_cost),
            monthly=UsageWindow(tokens=monthly_tokens, cost=monthly_cost),
        )
        return evaluate_quota(tier, limits, usage, estimated_tokens)

    def enforce_quotas(
        self,
        user_id: str,
        estimated_tokens: int = 1000,
        now: Optional[datetime] = None,
    ) -> QuotaCheckResult:
        """Gate a model call on the user's quotas.

        Raises:
            QuotaExceeded: If the check disallows the call
        """
        check = self.check_quotas(user_id, estimated_tokens, now=now)
        if not check.allowed:
            raise QuotaExceeded(check.reason or "Usage quota exceeded", check)
        return check

    def get_usage_analytics(
        self,
        user_id: str,
        period: AnalyticsPeriod = AnalyticsPeriod.MONTH,
        now: Optional[datetime] = None,
    ) -> UsageAnalytics:
        """Summarize usage over a period: totals, groupings, timeline and top calls."""
        now = now or datetime.now()
        records = self.repository.fetch_usage_records(user_id, start=_period_start(period, now))

        total_tokens = sum(r.total_tokens for r in records)
        summary = UsageSummary(
            total_tokens=total_tokens,
            total_cost=sum(r.total_cost for r in records),
            request_count=len(records),
            average_tokens_per_request=round(total_tokens / len(records)) if records else 0,
        )

        by_category: Dict[str, UsageTotals] = {}
        by_model: Dict[str, UsageTotals] = {}
        by_day: Dict[str, UsageTotals] = {}
        for record in records:
            by_category.setdefault(record.category.value, UsageTotals()).add(record)
            by_model.setdefault(record.model, UsageTotals()).add(record)
            by_day.setdefault(record.timestamp.date().isoformat(), UsageTotals()).add(record)

        timeline = [
            TimelinePoint(date=day, tokens=t.tokens, cost=t.cost, count=t.count)
            for day, t in sorted(by_day.items())
        ]
        top_expensive = sorted(records, key=lambda r: r.total_cost, reverse=True)[:TOP_EXPENSIVE_LIMIT]

        return UsageAnalytics(
            period=period,
            summary=summary,
            by_category=by_category,
            by_model=by_model,
            timeline=timeline,
            top_expensive=top_expensive,
        )

    def get_cost_projection(self, user_id: str, now: Optional[datetime] = None) -> CostProjection:
        """Extrapolate month and year cost from the month-to-date daily average."""
        now = now or datetime.now()
        month_start = _start_of_month(now)
        year_start = month_start.replace(month=1)
        days_in_month = calendar.monthrange(now.year, now.month)[1]

        _, current_month = self.repository.sum_usage(user_id, month_start)
        _, current_year = self.repository.sum_usage(user_id, year_start)
        recent = self.repository.daily_costs(user_id, now - timedelta(days=7))

        average_daily = current_month / now.day
        projected_month = average_daily * days_in_month

        return CostProjection(
            current_month=current_month,
            projected_month=projected_month,
            current_year=current_year,
            projected_year=average_daily * 365,
            average_daily_cost=average_daily,
            trend=_trend([cost for _, cost in recent]),
            recommended_tier=recommend_tier(projected_month),
        )

    def export_usage_data(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        fmt: ExportFormat = ExportFormat.CSV,
    ) -> UsageExport:
        """Export a user's records in an inclusive date range as CSV or JSON."""
        records = self.repository.fetch_usage_records(user_id, start=start, end=end)
        summary = ExportSummary(
            total_cost=sum(r.total_cost for r in records),
            total_tokens=sum(r.total_tokens for r in records),
            request_count=len(records),
        )

        if fmt == ExportFormat.CSV:
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(EXPORT_HEADERS)
            for r in records:
                writer.writerow([
                    r.timestamp.isoformat(),
                    r.model,
                    r.category.value,
                    r.input_tokens,
                    r.output_tokens,
                    r.total_tokens,
                    f"{r.total_cost:.4f}",
                ])
            content = buffer.getvalue().rstrip("\n")
        else:
            content = json.dumps({
                "records": [
                    {
                        "timestamp": r.timestamp.isoformat(),
                        "model": r.model,
                        "category": r.category.value,
                        "input_tokens": r.input_tokens,
                        "output_tokens": r.output_tokens,
                        "total_tokens": r.total_tokens,
                        "cost": r.total_cost,
                        "metadata": r.metadata,
                    }
                    for r in records
                ],
                "summary": {
                    "total_cost": summary.total_cost,
                    "total_tokens": summary.total_tokens,
                    "request_count": summary.request_count,
                },
            }, indent=2, default=str)

        return UsageExport(content=content, format=fmt, summary=summary)
