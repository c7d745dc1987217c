"""Rich console output and markdown transcripts for council, roundtable and discussion runs."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from llm_council.discussion.events import DiscussionEvent, DiscussionEventType
from llm_council.discussion.state import DiscussionState
from llm_council.models import AggregateRanking, CouncilResult, RoundtableEvent, RoundtableTurn, StageOneResult

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(content: str, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _transcript_path(output_dir: Path, text: str, slug_override: str | None) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(text)
    return output_dir / f"{timestamp}_{slug}.md"


# ---- council ------------------------------------------------------------

def print_stage1(results: list[StageOneResult]) -> None:
    console.print(Rule("[bold cyan]Stage 1: Individual Responses[/bold cyan]"))
    for r in results:
        console.print(Panel(_preview(r.response), title=f"[bold]{r.model}[/bold]", border_style="dim"))


def print_rankings(aggregate: list[AggregateRanking]) -> None:
    console.print(Rule("[bold cyan]Stage 2: Peer Rankings[/bold cyan]"))
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Model")
    table.add_column("Average rank", justify="right")
    table.add_column("Votes", justify="right")
    for position, entry in enumerate(aggregate, start=1):
        table.add_row(str(position), entry.model, f"{entry.average_rank:.2f}", str(entry.rankings_count))
    console.print(table)


def print_synthesis(model: str, content: str) -> None:
    """Print the chairman synthesis using Rich markdown."""
    console.print(Rule("[bold green]Council Synthesis[/bold green]"))
    console.print(Text(f"Synthesized by: {model}", style="dim"))
    console.print(Markdown(content))


def save_council_markdown(result: CouncilResult, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save a council run as a markdown transcript.

    Returns:
        Path to the saved file.
    """
    filepath = _transcript_path(output_dir, result.query, slug_override)
    model_for_label = result.label_to_model

    lines: list[str] = [
        f"# LLM Council: {result.query[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Council:** {', '.join(r.model for r in result.stage1) or 'none'}",
        f"**Chairman:** {result.stage3.model}",
        "",
        "---",
        "",
        "## Stage 1: Individual Responses",
        "",
    ]
    for r in result.stage1:
        lines += [f"### {r.model}", "", r.response, ""]

    if result.stage2:
        lines += ["## Stage 2: Peer Rankings", ""]
        for r in result.stage2:
            parsed = ", ".join(f"{label} ({model_for_label.get(label, '?')})" for label in r.parsed_ranking)
            lines += [f"### {r.model}", "", r.ranking, "", f"*Parsed ranking: {parsed or 'none'}*", ""]

    if result.aggregate_rankings:
        lines += ["### Aggregate", "", "| # | Model | Average rank | Votes |", "|---|---|---|---|"]
        for position, a in enumerate(result.aggregate_rankings, start=1):
            lines.append(f"| {position} | {a.model} | {a.average_rank:.2f} | {a.rankings_count} |")
        lines.append("")

    lines += [f"## Stage 3: Synthesis (by {result.stage3.model})", "", result.stage3.response, ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Council transcript saved to: %s", filepath)
    return filepath


# ---- roundtable ---------------------------------------------------------

def print_roundtable_event(event: RoundtableEvent) -> None:
    if event.type == "roundtable_start":
        console.print(Rule("[bold cyan]Roundtable[/bold cyan]"))
    elif event.type == "turn_complete" and event.turn is not None:
        console.print(Panel(Markdown(event.turn.content), title=f"[bold]{event.model_name}[/bold]", border_style="cyan"))
    elif event.type == "turn_error":
        console.print(f"[red]{event.model_name}: {event.message}[/red]")
    elif event.type == "roundtable_complete":
        console.print(Text(f"{len(event.turns or [])} turn(s) completed", style="dim"))


def save_roundtable_markdown(
    question: str, turns: list[RoundtableTurn], output_dir: Path, slug_override: str | None = None
) -> Path:
    filepath = _transcript_path(output_dir, question, slug_override)
    lines = [
        f"# Roundtable: {question[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Participants:** {', '.join(t.model_id for t in turns) or 'none'}",
        "",
        "---",
        "",
    ]
    for turn in turns:
        lines += [f"### {turn.model_name}", "", turn.content, ""]
    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Roundtable transcript saved to: %s", filepath)
    return filepath


# ---- discussion ---------------------------------------------------------

def print_discussion_event(event: DiscussionEvent) -> None:
    kind = event.type
    if kind is DiscussionEventType.DISCUSSION_START and event.state is not None:
        roles = ", ".join(r.name for r in event.state.config.roles)
        console.print(Rule(f"[bold cyan]Discussion: {event.state.config.topic}[/bold cyan]"))
        console.print(Text(f"Roles: {roles}", style="dim"))
    elif kind is DiscussionEventType.ROUND_START:
        console.print(Text(f"Round {event.round}: {event.speaker_id} is thinking...", style="dim"))
    elif kind is DiscussionEventType.MESSAGE_COMPLETE and event.message is not None:
        msg = event.message
        console.print(
            Panel(
                Markdown(msg.content),
                title=f"[bold]{msg.speaker_name}[/bold] ({msg.model_id})",
                subtitle=f"round {msg.round}",
                border_style="cyan",
            )
        )
    elif kind is DiscussionEventType.USER_INTERVENTION and event.intervention is not None:
        console.print(f"[yellow]Intervention ({event.intervention.type.value}): {event.intervention.content}[/yellow]")
    elif kind is DiscussionEventType.CONSENSUS_CHECK and event.consensus is not None:
        c = event.consensus
        console.print(Text(f"Consensus check ({c.method.value}): {c.confidence:.2f}", style="dim"))
    elif kind is DiscussionEventType.ROUND_COMPLETE:
        console.print(Rule(f"[dim]End of round {event.round}[/dim]"))
    elif kind is DiscussionEventType.DISCUSSION_COMPLETE:
        console.print(f"[bold green]Discussion complete ({event.reason.value})[/bold green]")
    elif kind is DiscussionEventType.DISCUSSION_TERMINATED:
        console.print("[bold yellow]Discussion terminated[/bold yellow]")
    elif kind is DiscussionEventType.ERROR:
        console.print(f"[red]Error: {event.error}[/red]")


def save_discussion_markdown(state: DiscussionState, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save a discussion transcript, interventions inline at the point they arrived."""
    config = state.config
    filepath = _transcript_path(output_dir, config.topic, slug_override)
    outcome = state.completion_reason.value if state.completion_reason else state.status.value

    lines: list[str] = [
        f"# Discussion: {config.topic[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Roles:** {', '.join(f'{r.name} ({r.model_id})' for r in config.roles)}",
        f"**Rounds:** {min(state.current_round, config.max_rounds)} of {config.max_rounds}",
        f"**Outcome:** {outcome}",
        "",
        "---",
        "",
    ]
    if state.error:
        lines += [f"> Error: {state.error}", ""]

    interventions = sorted(state.interventions, key=lambda i: i.inserted_at)
    pending = 0
    for index, msg in enumerate(state.messages):
        while pending < len(interventions) and interventions[pending].inserted_at <= index:
            i = interventions[pending]
            lines += [f"> **User ({i.type.value}):** {i.content}", ""]
            pending += 1
        lines += [f"### Round {msg.round}: {msg.speaker_name}", "", msg.content, ""]
    for i in interventions[pending:]:
        lines += [f"> **User ({i.type.value}):** {i.content}", ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Discussion transcript saved to: %s", filepath)
    return filepath
