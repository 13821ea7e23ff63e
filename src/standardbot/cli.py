"""`standardbot` command line.

    standardbot validate [-c FILE] [--strict]
    standardbot dispatch EVENT.json [-c FILE] [--dry-run]

The process exit status tells a CI job what happened; see ExitCode.
"""

from __future__ import annotations

import asyncio
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, NoReturn

import typer
from pydantic import ValidationError

from standardbot import __version__
from standardbot.actions import ActionStatus
from standardbot.config import load_config
from standardbot.config.loader import ConfigError
from standardbot.engine import Engine
from standardbot.github import Event, GitHubClient
from standardbot.github.auth import AuthenticationError, get_github_token
from standardbot.logging import configure_logging, get_logger, log_pending_dropped
from standardbot.rules import RuleSet

if TYPE_CHECKING:
    import structlog

    from standardbot.actions import ActionResult


class ExitCode(IntEnum):
    """Process exit status."""

    SUCCESS = 0
    CONFIG_ERROR = 1
    AUTH_ERROR = 2
    # At least one action failed
    PARTIAL_FAILURE = 3
    FATAL_ERROR = 4


app = typer.Typer(
    name="standardbot",
    help="Rule-driven housekeeping for GitHub issues and pull requests.",
    add_completion=False,
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Rule file (default: discovered)."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Debug logging and extra output."),
]


def _fail(message: str, code: ExitCode, cause: BaseException | None = None) -> NoReturn:
    typer.echo(typer.style(f"✗ {message}", fg=typer.colors.RED), err=True)
    raise typer.Exit(code) from cause


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"standardbot {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Rule-driven housekeeping for GitHub issues and pull requests."""


def _load_ruleset(config: Path | None, log: structlog.stdlib.BoundLogger) -> RuleSet:
    """Compile the rule file; a file that cannot be loaded ends the process."""
    try:
        cfg = load_config(config)
    except ConfigError as e:
        log.debug("config_error", path=str(e.path) if e.path else None)
        _fail(f"Configuration error: {e}", ExitCode.CONFIG_ERROR, e)

    ruleset = RuleSet.from_config(cfg)
    for skipped in ruleset.skipped:
        message = f"⚠ Skipped {skipped.name} in '{skipped.section}': {skipped.reason}"
        typer.echo(typer.style(message, fg=typer.colors.YELLOW), err=True)
    return ruleset


def _print_summary(ruleset: RuleSet) -> None:
    defaults = ", ".join(action.value for action in ruleset.defaults) or "(none)"
    rows = [
        ("Label rules", len(ruleset.labels)),
        ("Comment rules", len(ruleset.comments)),
        ("Commit rules", len(ruleset.commits)),
        ("Merge rules", len(ruleset.merges)),
        ("Close rules", len(ruleset.closes)),
        ("Defaults", defaults),
    ]
    if ruleset.protected_branches:
        rows.append(("Protected branches", ", ".join(ruleset.protected_branches)))
    rows.append(("Skipped", len(ruleset.skipped)))

    typer.echo("\nConfiguration summary:")
    for label, value in rows:
        typer.echo(f"  {label}: {value}")


@app.command()
def validate(
    config: ConfigOption = None,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Fail when any rule had to be skipped."),
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Load, validate and compile the rule file, then exit.

    Exit status 0 means the bot would start with this file.
    """
    configure_logging(verbose=verbose, json_output=False)
    ruleset = _load_ruleset(config, get_logger("standardbot.cli"))

    if strict and ruleset.skipped:
        _fail(f"{len(ruleset.skipped)} rule(s) could not be compiled", ExitCode.CONFIG_ERROR)

    typer.echo(typer.style("✓ Configuration is valid", fg=typer.colors.GREEN))
    if verbose:
        _print_summary(ruleset)
    raise typer.Exit(ExitCode.SUCCESS)


@app.command()
def dispatch(
    event_file: Annotated[
        Path,
        typer.Argument(help="JSON file holding one normalized event."),
    ],
    config: ConfigOption = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Log actions instead of calling GitHub."),
    ] = False,
    verbose: VerboseOption = False,
    json_logs: Annotated[
        bool,
        typer.Option(
            "--json-logs/--console-logs",
            help="Log as JSON lines or human-readable console output.",
        ),
    ] = True,
) -> None:
    """Handle one event and stay up until its delayed actions have run.

    Interrupting the process drops whatever is still scheduled.
    """
    configure_logging(verbose=verbose, json_output=json_logs)
    log = get_logger("standardbot.cli")

    ruleset = _load_ruleset(config, log)

    try:
        event = Event.model_validate_json(event_file.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        _fail(f"Cannot read event from {event_file}: {e}", ExitCode.FATAL_ERROR, e)

    try:
        token = get_github_token()
    except AuthenticationError as e:
        if not dry_run:
            _fail(f"Authentication error: {e}", ExitCode.AUTH_ERROR, e)
        token = ""

    if dry_run:
        typer.echo(
            typer.style("🔍 Dry-run: nothing will be changed on GitHub", fg=typer.colors.CYAN)
        )

    try:
        results = asyncio.run(_dispatch(ruleset, event, token, dry_run=dry_run))
    except Exception as e:
        log.exception("dispatch_failed")
        _fail(f"Dispatch error: {e}", ExitCode.FATAL_ERROR, e)

    typer.echo()
    typer.echo(typer.style(f"Processed {event.kind.value} on {event.target_id}", bold=True))
    typer.echo(f"  Actions run: {len(results)}")
    for result in results:
        typer.echo(f"    {result.status.value:<8} {result.action.value}: {result.message}")

    failed = sum(result.status == ActionStatus.FAILURE for result in results)
    if failed:
        typer.echo(typer.style(f"  Failures: {failed}", fg=typer.colors.YELLOW))
        raise typer.Exit(ExitCode.PARTIAL_FAILURE)
    raise typer.Exit(ExitCode.SUCCESS)


async def _dispatch(
    ruleset: RuleSet,
    event: Event,
    token: str,
    *,
    dry_run: bool,
) -> list[ActionResult]:
    """Process an event and drain the scheduler."""
    async with GitHubClient(token) as client:
        engine = Engine.build(ruleset, client, dry_run=dry_run)
        outcome = await engine.process(event)
        try:
            await engine.scheduler.drain()
        finally:
            log_pending_dropped(await engine.scheduler.shutdown())
        return await outcome.wait()


if __name__ == "__main__":
    app()
