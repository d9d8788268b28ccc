"""Guided walkthrough of one validation from submission to decision.

Registers a small expert panel, submits a sign, collects feedback,
computes a weighted consensus, and prints the lifecycle history, all
against an in-memory engine.
"""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from quorum.engine import ValidationEngine
from quorum.events.bus import WILDCARD, ValidationEvent
from quorum.schemas.config import EngineConfig
from quorum.schemas.consensus import ConsensusResult
from quorum.schemas.result import PaginationOptions

# ── Constants ────────────────────────────────────────────────────

DEMO_EXPERTS = [
    {"id": "amelie", "name": "Amélie Durand", "expertise_level": "chercheur", "is_native": True},
    {"id": "bastien", "name": "Bastien Roux", "expertise_level": "formateur", "is_native": True},
    {"id": "chloe", "name": "Chloé Martin", "expertise_level": "expert", "is_native": False},
    {"id": "damien", "name": "Damien Petit", "expertise_level": "avance", "is_native": False},
    {"id": "elise", "name": "Élise Bernard", "expertise_level": "novice", "is_native": False},
]

DEMO_REQUEST = {
    "requester_id": "lexicon-team",
    "content": {
        "type": "sign",
        "sign_id": "BONJOUR",
        "parameters": {
            "handshape": "flat",
            "location": "forehead",
            "movement": "outward arc",
            "orientation": "palm-out",
        },
    },
    "metadata": {"lexicon": "LSF"},
}

DEMO_FEEDBACK = [
    {"expert_id": "amelie", "approved": True, "is_native_validator": True,
     "score": 9, "confidence": 0.9, "comments": "Clear and natural."},
    {"expert_id": "bastien", "approved": True, "is_native_validator": True,
     "score": 8, "confidence": 0.8, "comments": "Movement could be wider.",
     "suggestions": [{"field": "parameters.movement", "proposed_value": "wide outward arc",
                      "reason": "Matches regional usage", "priority": "medium"}]},
    {"expert_id": "chloe", "approved": True, "is_native_validator": False,
     "score": 8, "confidence": 0.9,
     "suggestions": [{"field": "parameters.movement", "proposed_value": "wide outward arc",
                      "reason": "Reads better on video", "priority": "high"}]},
    {"expert_id": "damien", "approved": True, "is_native_validator": False, "score": 7},
    {"expert_id": "elise", "approved": False, "is_native_validator": False,
     "score": 4, "confidence": 0.3, "comments": "Unsure about the orientation."},
]


def render_result_panel(result: ConsensusResult) -> Panel:
    verdict = "[green]APPROVED[/green]" if result.approved else "[red]REJECTED[/red]"
    lines = [
        f"Decision: {verdict} ({result.algorithm.value})",
        f"Approvals: {result.approval_count}/{result.expert_count}"
        f"  (weighted rate {result.approval_rate:.2f})",
        f"Consensus level: {result.consensus_level:.2f}",
        f"Confidence: {result.confidence:.2f}",
        f"Score: {result.consensus_score:.2f}",
    ]
    for field, imp in result.aggregated_improvements.items():
        lines.append(
            f"Improvement [cyan]{field}[/cyan] → {imp.proposed_value!r} "
            f"({imp.support_percentage:.0f}% support, {imp.implementation_difficulty.value})",
        )
    return Panel("\n".join(lines), title="Consensus", border_style="cyan")


async def run_demo(console: Console, config: EngineConfig | None = None) -> ValidationEngine:
    """Run the walkthrough and return the engine for inspection.

    Args:
        console: Rich console to print to.
        config: Engine settings; defaults to the built-in configuration.
    """
    engine = ValidationEngine(config)
    await engine.initialize()

    events: list[ValidationEvent] = []
    await engine.subscribe(WILDCARD, events.append)

    console.print(Panel(
        "Five experts review the LSF sign [bold]BONJOUR[/bold].",
        title="Quorum demo", border_style="blue",
    ))

    for profile in DEMO_EXPERTS:
        await engine.register_expert(profile)

    submitted = await engine.submit_proposal(DEMO_REQUEST)
    validation_id = submitted.data
    console.print(f"Submitted validation [bold]{validation_id}[/bold]")

    for entry in DEMO_FEEDBACK:
        added = await engine.add_feedback(validation_id, entry)
        state = await engine.get_state(validation_id)
        mark = "[green]✓[/green]" if added.success else "[red]✗[/red]"
        console.print(f"  {mark} feedback from {entry['expert_id']:<8} → state {state.data}")

    consensus = await engine.calculate_consensus(validation_id)
    if consensus.success:
        console.print(render_result_panel(consensus.data))
    else:
        console.print(f"[red]Consensus failed:[/red] {consensus.error.message}")

    history = await engine.get_history(validation_id, PaginationOptions(limit=100))
    table = Table(title="Lifecycle history")
    table.add_column("From", style="dim")
    table.add_column("To", style="bold cyan")
    table.add_column("By")
    table.add_column("Reason")
    for change in history.data.items:
        table.add_row(
            change.previous_state.value, change.new_state.value,
            change.changed_by, change.reason or "",
        )
    console.print(table)
    console.print(f"[dim]{len(events)} events published[/dim]")
    return engine
