"""CLI entry point for the on-device email summary engine."""

import logging

import click
from dotenv import load_dotenv

from summary_engine.config import ConfigError, EngineConfig

logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """On-device email summaries — summarize, status, and cache commands."""
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,  # keep CLI output clean
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    try:
        ctx.obj = EngineConfig.from_env()
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc


# Import and register commands after cli is defined to avoid circular imports.
from summary_engine.cli.commands import cache, status, summarize  # noqa: E402

cli.add_command(summarize)
cli.add_command(status)
cli.add_command(cache)
