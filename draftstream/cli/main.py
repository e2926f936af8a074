"""
CLI interface for draftstream.

Usage accounting, quota inspection, response scoring and a streaming chat
command on top of the core library.
"""

import asyncio
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from draftstream.config.loader import Settings, load_settings
from draftstream.core.cache import ResponseCache
from draftstream.core.ledger import AnalyticsPeriod, ExportFormat, UsageLedger
from draftstream.core.quality import ContentGoal, QualityContext, QualityScorer
from draftstream.core.rate_limit import RateLimiter
from draftstream.core.streaming import StreamOrchestrator, StreamRequest
from draftstream.sdk.openai_client import OpenAIProvider
from draftstream.sdk.provider import ModelTier
from draftstream.storage.models import ConversationTurn, QuotaTier
from draftstream.storage.repository import UsageRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


class _State:
    settings: Settings = Settings()
    db_path: str = Settings().database.path


state = _State()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML settings file"
    ),
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite database path (overrides the config file)"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging"
    ),
):
    """draftstream CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )

    try:
        state.settings = load_settings(str(config)) if config else Settings()
    except Exception as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    state.db_path = db or state.settings.database.path

    if ctx.invoked_subcommand is None:
        console.print("draftstream - Use --help to see available commands")


def _ledger() -> UsageLedger:
    return UsageLedger(UsageRepository(state.db_path), quota_overrides=state.settings.quotas)


def _format_currency(amount: float) -> str:
    return f"${amount:,.4f}"


def _format_limit(limit: float, currency: bool = False) -> str:
    if limit < 0:
        return "unlimited"
    return f"${limit:,.2f}" if currency else f"{int(limit):,}"


@app.command()
def init():
    """Initialize the draftstream database."""
    try:
        initialize_schema(state.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("set-tier")
def set_tier(
    user_id: str = typer.Argument(..., help="User to update"),
    tier: QuotaTier = typer.Argument(..., help="Quota tier to assign"),
):
    """Assign a quota tier to a user."""
    try:
        UsageRepository(state.db_path).set_user_tier(user_id, tier)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] {user_id} is now on the {tier.value} tier")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def quota(
    user_id: str = typer.Argument(..., help="User to check"),
    estimated_tokens: int = typer.Option(
        0,
        "--estimated-tokens",
        "-e",
        help="Size of the next call to include in the check"
    ),
):
    """
    Show a user's usage against their quota limits.

    Exits with 1 when the next call would be refused.
    """
    try:
        check = _ledger().check_quotas(user_id, estimated_tokens)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Quota for {user_id} ({check.tier.value})")
    table.add_column("Window")
    table.add_column("Tokens", justify="right")
    table.add_column("Token limit", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Cost limit", justify="right")
    table.add_row(
        "Today",
        f"{check.usage.daily.tokens:,}",
        _format_limit(check.limits.daily_tokens),
        _format_currency(check.usage.daily.cost),
        _format_limit(check.limits.daily_cost, currency=True),
    )
    table.add_row(
        "This month",
        f"{check.usage.monthly.tokens:,}",
        _format_limit(check.limits.monthly_tokens),
        _format_currency(check.usage.monthly.cost),
        _format_limit(check.limits.monthly_cost, currency=True),
    )
    console.print(table)

    if not check.allowed:
        console.print(f"[bold red]Blocked:[/] {check.reason}")
        sys.exit(EXIT_CODE_FAIL)
    console.print("[green]✓[/] Within quota")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def analytics(
    user_id: str = typer.Argument(..., help="User to summarize"),
    period: AnalyticsPeriod = typer.Option(
        AnalyticsPeriod.MONTH,
        "--period",
        "-p",
        help="Look-back window"
    ),
):
    """Summarize a user's usage over a period."""
    try:
        result = _ledger().get_usage_analytics(user_id, period)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    summary = result.summary
    console.print(f"\n[bold]Usage for {user_id} ({period.value})[/bold]")
    console.print(f"Requests: {summary.request_count}")
    console.print(f"Total tokens: {summary.total_tokens:,}")
    console.print(f"Total cost: {_format_currency(summary.total_cost)}")
    console.print(f"Average tokens/request: {summary.average_tokens_per_request:,}")

    for title, groups in (("By model", result.by_model), ("By category", result.by_category)):
        if not groups:
            continue
        table = Table(title=title)
        table.add_column("Name")
        table.add_column("Requests", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for name, totals in sorted(groups.items()):
            table.add_row(name, str(totals.count), f"{totals.tokens:,}", _format_currency(totals.cost))
        console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def projection(user_id: str = typer.Argument(..., help="User to project")):
    """Project a user's month and year cost from the month-to-date average."""
    try:
        result = _ledger().get_cost_projection(user_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Cost projection for {user_id}[/bold]")
    console.print(f"Current month: {_format_currency(result.current_month)}")
    console.print(f"Projected month: {_format_currency(result.projected_month)}")
    console.print(f"Current year: {_format_currency(result.current_year)}")
    console.print(f"Projected year: {_format_currency(result.projected_year)}")
    console.print(f"Average daily: {_format_currency(result.average_daily_cost)}")
    console.print(f"Trend: {result.trend.value}")
    if result.recommended_tier:
        console.print(f"[yellow]Recommended tier:[/] {result.recommended_tier.value}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def export(
    user_id: str = typer.Argument(..., help="User to export"),
    start: datetime = typer.Option(..., "--start", help="First day (YYYY-MM-DD)", formats=["%Y-%m-%d"]),
    end: datetime = typer.Option(..., "--end", help="Last day, inclusive (YYYY-MM-DD)", formats=["%Y-%m-%d"]),
    fmt: ExportFormat = typer.Option(ExportFormat.CSV, "--format", "-f", help="Output format"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout"),
):
    """Export a user's usage records for a date range."""
    end = end.replace(hour=23, minute=59, second=59, microsecond=999999)
    try:
        result = _ledger().export_usage_data(user_id, start, end, fmt)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if output:
        output.write_text(result.content + "\n", encoding="utf-8")
        console.print(
            f"[green]✓[/] Exported {result.summary.request_count} records "
            f"({_format_currency(result.summary.total_cost)}) to {output}"
        )
    else:
        print(result.content)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def score(
    text: str = typer.Argument(..., help="Response text to score"),
    platform: Optional[str] = typer.Option(None, "--platform", "-p", help="Target platform"),
    prompt: Optional[str] = typer.Option(None, "--prompt", help="Prompt the response answers"),
    goal: Optional[List[ContentGoal]] = typer.Option(None, "--goal", "-g", help="Content goal (repeatable)"),
):
    """Score a response's quality."""
    context = QualityContext(platform=platform, user_prompt=prompt, goals=tuple(goal or ()))
    report = QualityScorer().score_response(text, context)

    table = Table(title=f"Quality score: {report.overall_score:.2f}")
    table.add_column("Dimension")
    table.add_column("Score", justify="right")
    for name, value in report.dimensions.as_dict().items():
        table.add_row(name, f"{value:.2f}")
    console.print(table)

    for label, items in (("Strengths", report.strengths), ("Weaknesses", report.weaknesses),
                         ("Suggestions", report.suggestions)):
        if items:
            console.print(f"\n[bold]{label}[/bold]")
            for item in items:
                console.print(f"- {item}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def chat(
    message: str = typer.Argument(..., help="Message to send"),
    user_id: str = typer.Option("cli", "--user", "-u", help="User the call is billed to"),
    platform: Optional[str] = typer.Option(None, "--platform", "-p", help="Target platform"),
    tier: Optional[ModelTier] = typer.Option(None, "--tier", "-t", help="Model tier"),
    quality: bool = typer.Option(False, "--quality", "-q", help="Regenerate once if the answer scores low"),
):
    """Stream an answer to a single message."""
    settings = state.settings
    options = settings.stream_options()
    if tier is not None:
        options = replace(options, model_tier=tier)

    try:
        initialize_schema(state.db_path)
        orchestrator = StreamOrchestrator(
            provider=OpenAIProvider(),
            ledger=_ledger(),
            cache=ResponseCache(ttl_seconds=settings.cache.ttl_seconds),
            rate_limiter=RateLimiter(
                window_seconds=settings.rate_limit.window_seconds,
                max_requests=settings.rate_limit.max_requests,
            ),
            options=options,
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    request = StreamRequest(messages=[ConversationTurn.user(message)], user_id=user_id, platform=platform)

    async def _run() -> Optional[str]:
        if quality:
            stream = orchestrator.stream_with_quality_score(request)
        else:
            stream = orchestrator.stream(request)
        async with stream:
            async for token in stream:
                if token.done:
                    console.print()
                    if token.error:
                        return token.error
                    meta = token.metadata
                    if meta:
                        details = f"{meta.model}, {meta.total_tokens} tokens, {meta.processing_time_ms} ms"
                        if meta.quality_score is not None:
                            details += f", quality {meta.quality_score:.2f}"
                        console.print(f"[dim]({details})[/]")
                    return None
                console.print(
                    token.token or "",
                    end="",
                    style="dim" if token.notice else None,
                    markup=False,
                    highlight=False,
                )
        return "Stream ended without a result"

    error = asyncio.run(_run())
    if error:
        console.print(f"[red]Error:[/] {error}")
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
