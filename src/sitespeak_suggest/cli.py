"""Command line for inspecting completions, cache statistics and gateway resilience."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import SuggestionConfig
from .exceptions import ServiceUnavailableError
from .logging_config import configure_logging
from .models import SuggestionContext
from .service import SuggestionService

console = Console(highlight=False)


def _load_config(config_path: Optional[str]) -> SuggestionConfig:
    if config_path:
        try:
            return SuggestionConfig.from_file(Path(config_path))
        except FileNotFoundError as exc:
            raise click.ClickException(str(exc)) from exc
    return SuggestionConfig.from_env()


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="sitespeak-suggest")
@click.option("--log-level", default=None, help="Log level (default WARNING)")
@click.option("--log-format", default=None, type=click.Choice(["json", "text"]))
@click.option("--config", "config_path", default=None, help="Path to YAML config")
@click.pass_context
def main(ctx: click.Context, log_level: Optional[str], log_format: Optional[str],
         config_path: Optional[str]) -> None:
    """Inspect command completion and suggestion resilience locally."""
    configure_logging(log_level or "WARNING", log_format or "text")
    ctx.ensure_object(dict)
    ctx.obj["config"] = _load_config(config_path)


@main.command("complete")
@click.argument("partial_input")
@click.option("--page-type", default="other", help="Page type used for cache partitioning")
@click.option("--max-results", default=None, type=int, help="Maximum completions to show")
@click.pass_context
def complete_cmd(ctx: click.Context, partial_input: str, page_type: str, max_results: Optional[int]) -> None:
    """Show ranked completions for PARTIAL_INPUT against the built-in commands."""
    service = SuggestionService(ctx.obj["config"])
    result = service.get_completions(
        partial_input, SuggestionContext(page_type=page_type), max_results=max_results
    )
    if not result.matches:
        console.print("No completions.")
        return

    table = Table(title=f"Completions for '{escape(partial_input)}'")
    table.add_column("Confidence", justify="right", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Command", style="green")
    for match in result.matches:
        table.add_row(f"{match.confidence:.2f}", match.match_type.value, match.text)
    console.print(table)
    console.print(f"confidence={result.confidence:.2f} time={result.processing_time_ms:.2f}ms")


@main.command("stats")
@click.pass_context
def stats_cmd(ctx: click.Context) -> None:
    """Print index, cache, breaker and latency statistics."""
    service = SuggestionService(ctx.obj["config"])
    _echo_json(service.stats())


@main.command("health")
@click.pass_context
def health_cmd(ctx: click.Context) -> None:
    """Print the health report."""
    service = SuggestionService(ctx.obj["config"])
    _echo_json(service.health())


@main.command("simulate-outage")
@click.option("--failures", default=6, type=int, show_default=True,
              help="Failing requests to send before the final one")
@click.option("--page-type", default="other")
@click.pass_context
def simulate_outage_cmd(ctx: click.Context, failures: int, page_type: str) -> None:
    """Drive a failing generator through the gateway and show the result."""
    calls = {"count": 0}

    async def failing_generator(context, user_id):
        calls["count"] += 1
        raise ServiceUnavailableError("suggestion service unavailable")

    async def no_sleep(_seconds: float) -> None:
        return None

    service = SuggestionService(ctx.obj["config"], generator=failing_generator, sleep=no_sleep)
    context = SuggestionContext(page_type=page_type)

    async def run():
        for _ in range(failures):
            await service.get_suggestions(context)
        return await service.get_suggestions(context)

    response = asyncio.run(run())
    status = service.gateway.breaker_status("suggestion_engine")
    click.echo(f"generator calls: {calls['count']}")
    click.echo(f"breaker: {status['state']} (failures={status['failure_count']})")
    click.echo(f"fallback: {response.strategy} error={response.error}")
    for suggestion in response.suggestions:
        click.echo(f"  - {suggestion.command} ({suggestion.confidence:.2f})")


if __name__ == "__main__":
    main()
