"""Quorum CLI, a Typer + Rich terminal interface.

Commands: demo, consensus, transitions, config.
All output is Rich-powered tables and panels.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from quorum import __version__
from quorum.config_loader import default_config_path, load_engine_config
from quorum.consensus.algorithms import compute_consensus
from quorum.demo import render_result_panel, run_demo
from quorum.lifecycle.transitions import legal_targets
from quorum.schemas.consensus import ConsensusAlgorithm
from quorum.schemas.feedback import FeedbackEntry
from quorum.schemas.validation import TERMINAL_STATES, LifecycleState

console = Console()

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="quorum",
    help="Collaborative validation with expert consensus.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    name="config",
    help="Show engine configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# ── Version callback ─────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"quorum {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Quorum: collaborative validation with expert consensus."""


# ── Helpers ──────────────────────────────────────────────────────

def _load_config(path: Path | None = None):
    """Load engine config, exit on error."""
    try:
        return load_engine_config(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _load_feedback(path: Path) -> list[FeedbackEntry]:
    """Read a JSON list of feedback entries, exit on error."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        console.print(f"[red]File not found:[/red] {path}")
        raise typer.Exit(1) from None
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {path}:[/red] {e}")
        raise typer.Exit(1) from None

    if not isinstance(raw, list):
        console.print("[red]Expected a JSON list of feedback entries[/red]")
        raise typer.Exit(1)

    entries: list[FeedbackEntry] = []
    for index, item in enumerate(raw):
        try:
            entries.append(FeedbackEntry.model_validate({"validation_id": path.stem, **item}))
        except (ValidationError, TypeError) as e:
            console.print(f"[red]Invalid feedback entry #{index + 1}:[/red] {e}")
            raise typer.Exit(1) from None
    return entries


# ── quorum demo ──────────────────────────────────────────────────


@app.command()
def demo() -> None:
    """Walk one sign through submission, feedback and consensus."""
    config = _load_config()
    asyncio.run(run_demo(console, config))


# ── quorum consensus ─────────────────────────────────────────────


@app.command()
def consensus(
    file: Path = typer.Argument(..., help="JSON file with a list of feedback entries"),
    algorithm: ConsensusAlgorithm | None = typer.Option(
        None, "--algorithm", "-a",
        help="Consensus algorithm (defaults to the configured one)",
    ),
    threshold: float | None = typer.Option(
        None, "--threshold", "-t",
        min=0.0, max=1.0,
        help="Approval threshold override",
    ),
) -> None:
    """Compute consensus over a file of feedback entries."""
    config = _load_config()
    entries = _load_feedback(file)

    overrides: dict[str, object] = {}
    if algorithm is not None:
        overrides["algorithm"] = algorithm
    if threshold is not None:
        overrides["approval_threshold"] = threshold
    options = config.consensus.model_copy(update=overrides)

    result = compute_consensus(file.stem, entries, options)
    if len(entries) < options.min_participants:
        console.print(
            f"[yellow]Only {len(entries)} of {options.min_participants} "
            f"required participants; no decision.[/yellow]",
        )
    console.print(render_result_panel(result))
    if result.aggregated_comments:
        console.print("[bold]Comments[/bold]")
        for comment in result.aggregated_comments:
            console.print(f"  • {comment}")


# ── quorum transitions ───────────────────────────────────────────


@app.command()
def transitions() -> None:
    """Show the lifecycle transition table."""
    table = Table(title="Lifecycle Transitions", show_lines=True)
    table.add_column("State", style="bold cyan")
    table.add_column("Allowed targets")
    table.add_column("Terminal", justify="center")

    for state in LifecycleState:
        targets = legal_targets(state)
        table.add_row(
            state.value,
            ", ".join(t.value for t in targets) or "[dim](none)[/dim]",
            "✓" if state in TERMINAL_STATES else "",
        )
    console.print(table)


# ── quorum config ────────────────────────────────────────────────

@config_app.command("show")
def config_show(
    path: Path | None = typer.Option(None, "--file", "-f", help="Config file to read"),
) -> None:
    """Show current engine configuration."""
    config = _load_config(path)

    table = Table(title="Engine Configuration", show_header=False, show_lines=True)
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    table.add_row("Min Feedback Required", str(config.min_feedback_required))
    table.add_row("Auto-close Threshold", f"{config.auto_close_threshold:.2f}")
    table.add_row("Auto Consensus", str(config.auto_consensus))
    table.add_row("Log Subscriber Faults", str(config.log_subscriber_faults))
    table.add_row("Event History Limit", str(config.event_history_limit))
    table.add_row("Algorithm", config.consensus.algorithm.value)
    table.add_row("Approval Threshold", f"{config.consensus.approval_threshold:.2f}")
    table.add_row("Native Bonus", f"{config.consensus.native_validator_bonus:.2f}")
    table.add_row("Min Participants", str(config.consensus.min_participants))
    console.print(table)

    weights = Table(title="Expert Weights")
    weights.add_column("Level", style="cyan")
    weights.add_column("Weight", justify="right")
    for level, weight in config.consensus.expert_weights.items():
        weights.add_row(level.value, f"{weight:.2f}")
    console.print()
    console.print(weights)


@config_app.command("path")
def config_path() -> None:
    """Show configuration file location."""
    path = default_config_path()
    status = "[green]found[/green]" if path.exists() else "[red]missing[/red]"

    table = Table(title="Configuration Paths", show_header=False)
    table.add_column("Config", style="bold")
    table.add_column("Path")
    table.add_column("Status")
    table.add_row("Defaults", str(path), status)
    console.print(table)
