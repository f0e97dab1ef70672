"""CLI command implementations."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click
import psutil
from rich import box
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from summary_engine.agent.engine import SummaryEngine
from summary_engine.agent.scheduler import EventKind, Priority, RequestCancelled
from summary_engine.agent.signals import read_thermal_state
from summary_engine.config import ConfigError, EngineConfig
from summary_engine.inference.local_model import LocalModelCapability
from summary_engine.mail.eml import load_eml
from summary_engine.mail.types import EmailMessage
from summary_engine.processing.types import SummaryLength, SummaryResult, SummarySource, Urgency
from summary_engine.storage.cache import FingerprintCache

logger = logging.getLogger(__name__)
console = Console(width=120)

_URGENCY_STYLE = {
    Urgency.HIGH: "bold red",
    Urgency.MEDIUM: "yellow",
    Urgency.LOW: "green",
}


# ── summarize ──────────────────────────────────────────────────────────────────


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--length",
    type=click.Choice([length.value for length in SummaryLength]),
    default=None,
    help="Summary length (defaults to SUMMARY_LENGTH).",
)
@click.option("--batch", is_flag=True, help="Queue as background work (deferred when hot).")
@click.option("--refresh", is_flag=True, help="Ignore any cached summary.")
@click.pass_obj
def summarize(
    config: EngineConfig, path: Path, length: str | None, batch: bool, refresh: bool
) -> None:
    """Summarize a single .eml file."""
    email = load_eml(path)
    try:
        result = asyncio.run(
            _summarize_async(
                config,
                email,
                length=SummaryLength(length) if length else None,
                priority=Priority.BATCH if batch else Priority.USER,
                force_refresh=refresh,
            )
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if result is None:
        console.print("[yellow]Summary request was cancelled.[/yellow]")
        return
    console.print(render_result(email, result))


async def _summarize_async(
    config: EngineConfig,
    email: EmailMessage,
    *,
    length: SummaryLength | None,
    priority: Priority,
    force_refresh: bool,
) -> SummaryResult | None:
    engine = SummaryEngine.from_config(config, watch_host=False)
    engine.signals.set_thermal_state(read_thermal_state())
    try:
        handle = await engine.request_summary(
            email, priority=priority, length=length, force_refresh=force_refresh
        )
        with Live(Text("Summarizing…", style="dim"), console=console, transient=True) as live:
            async for event in handle:
                if event.kind is EventKind.PARTIAL and event.partial and event.partial.headline:
                    live.update(Text(event.partial.headline, style="dim"))
        return await handle.result()
    except RequestCancelled:
        return None
    finally:
        await engine.close()


def render_result(email: EmailMessage, result: SummaryResult) -> Panel:
    """Rich panel for one summary result."""
    summary = result.summary
    text = Text()
    text.append(summary.headline, style="bold")
    text.append("\n\n")
    text.append(summary.body)
    if summary.action_items:
        text.append("\n\nAction items:\n", style="bold")
        for item in summary.action_items:
            text.append(f"  • {item}\n")
    if result.note:
        text.append(f"\n{result.note}", style="yellow")

    source = "on-device model" if result.source is SummarySource.MODEL else "fallback"
    subtitle = (
        f"{summary.category.value} · "
        f"[{_URGENCY_STYLE[summary.urgency]}]{summary.urgency.value}[/] · {source}"
    )
    return Panel(
        text,
        title=f"[bold]{email.subject or '(no subject)'}[/bold]",
        subtitle=subtitle,
        border_style="blue" if result.source is SummarySource.MODEL else "dim",
    )


# ── status ─────────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def status(config: EngineConfig) -> None:
    """Show model availability, host pressure and cache size."""
    try:
        capability = LocalModelCapability(config)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    availability = capability.check_availability()
    memory = psutil.virtual_memory()
    cache = FingerprintCache(config.cache_path)
    try:
        cached = cache.count()
    finally:
        cache.close()

    table = Table(box=box.ROUNDED, show_header=False)
    table.add_column("Item", style="cyan")
    table.add_column("Value")
    avail_style = "green" if availability.is_available else "red"
    table.add_row("Model", f"{capability.model_version} @ {config.model_base_url}")
    table.add_row("Availability", f"[{avail_style}]{availability}[/{avail_style}]")
    table.add_row("Thermal state", read_thermal_state().name.lower())
    table.add_row(
        "Memory",
        f"{memory.percent:.0f}% used of {memory.total / (1024 ** 3):.1f} GB",
    )
    table.add_row("Cached summaries", str(cached))
    console.print(table)


# ── cache ──────────────────────────────────────────────────────────────────────


@click.group()
def cache() -> None:
    """Manage the summary cache."""


@cache.command("clear")
@click.pass_obj
def cache_clear(config: EngineConfig) -> None:
    """Delete every cached summary."""
    store = FingerprintCache(config.cache_path)
    try:
        removed = store.clear_all()
    finally:
        store.close()
    console.print(f"Removed {removed} cached summar{'y' if removed == 1 else 'ies'}.")


@cache.command("invalidate")
@click.argument("email_id")
@click.pass_obj
def cache_invalidate(config: EngineConfig, email_id: str) -> None:
    """Delete the cached summary for EMAIL_ID."""
    store = FingerprintCache(config.cache_path)
    try:
        removed = store.invalidate(email_id)
    finally:
        store.close()
    if removed:
        console.print(f"Invalidated cached summary for [bold]{email_id}[/bold].")
    else:
        console.print(f"[yellow]No cached summary for {email_id}.[/yellow]")
