"""Click CLI: config loading, provider wiring, and the council/roundtable/discussion commands."""

import asyncio
import logging
import sys
import threading
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from config.config_loader import AppConfig, load_config
from llm_council.council import CouncilConfigError
from llm_council.discussion.events import DiscussionEventType
from llm_council.discussion.state import DiscussionNotRunning, DiscussionState, InterventionType
from llm_council.healthcheck import run_health_checks
from llm_council.inbox import InboxItem, archive_file, ensure_dirs, parse_file, scan_inbox
from llm_council.invoker import ModelInvoker, ModelProvider
from llm_council.models import CouncilResult, ParticipantConfig, RoundtableTurn, StageThreeResult
from llm_council.output import (
    print_discussion_event,
    print_rankings,
    print_roundtable_event,
    print_stage1,
    print_synthesis,
    save_council_markdown,
    save_discussion_markdown,
    save_roundtable_markdown,
)
from llm_council.providers.anthropic import AnthropicProvider
from llm_council.providers.base import AIProvider, ProviderError
from llm_council.providers.gemini import GeminiProvider
from llm_council.providers.openai_provider import OpenAIProvider
from llm_council.providers.xai import XAIProvider
from llm_council.service import CouncilService
from llm_council.storage import ConversationStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "xai": XAIProvider,
}

INTERVENTION_COMMANDS = {
    "/redirect": InterventionType.REDIRECT,
    "/correct": InterventionType.CORRECTION,
    "/deep": InterventionType.DEEP_DIVE,
    "/stop": InterventionType.TERMINATE,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_invoker(config: AppConfig) -> ModelInvoker:
    """Instantiate one adapter per configured provider that has an API key."""
    providers: dict[ModelProvider, AIProvider] = {}
    for name in sorted(config.available_providers):
        provider_cfg = config.providers[name]
        try:
            key = ModelProvider(name)
        except ValueError:
            logger.warning("Provider '%s' is not a known model provider, skipping", name)
            continue
        cls = PROVIDER_CLASSES.get(provider_cfg.sdk)
        if cls is None:
            logger.warning("Provider '%s' uses unknown sdk '%s', skipping", name, provider_cfg.sdk)
            continue
        try:
            providers[key] = cls(provider_cfg)
        except ProviderError as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)

    gateway = None
    if config.gateway:
        try:
            gateway = ModelProvider(config.gateway)
        except ValueError:
            logger.warning("Gateway '%s' is not a known provider, gateway routing disabled", config.gateway)
    return ModelInvoker(providers, default_timeout_sec=config.council.timeout_sec, gateway=gateway)


def _split_csv(value: str | None) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def parse_intervention(line: str) -> tuple[InterventionType, str]:
    """Map a typed line to an intervention. Bare text is a redirect.

    Raises:
        ValueError: On an unknown slash command or a missing message.
    """
    line = line.strip()
    if not line.startswith("/"):
        return InterventionType.REDIRECT, line
    command, _, content = line.partition(" ")
    kind = INTERVENTION_COMMANDS.get(command.lower())
    if kind is None:
        raise ValueError(f"Unknown command {command}, use one of {', '.join(INTERVENTION_COMMANDS)}")
    content = content.strip()
    if kind is InterventionType.TERMINATE:
        return kind, content or "The user ended the discussion."
    if not content:
        raise ValueError(f"{command} needs a message")
    return kind, content


def _check_models(invoker: ModelInvoker, model_ids: list[str]) -> list[str]:
    """Run health checks, print results, and ask the user what to do on failures.

    Returns the models that passed. Exits if the user declines to continue
    or no model passes.
    """
    console.print("\n[bold]Checking models...[/bold]")
    results = asyncio.run(run_health_checks(invoker, model_ids))

    failed = []
    for model_id, (ok, err) in results.items():
        if ok:
            console.print(f"  [green]OK  [/green] {model_id}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {model_id}: {short_err}")
            failed.append(model_id)

    working = [m for m in results if m not in failed]
    if not failed:
        console.print()
        return working
    if not working:
        console.print("\n[bold red]Error:[/bold red] No model passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed)} model(s) failed:[/yellow] {', '.join(failed)}")
    if not click.confirm("Continue without them?", default=True):
        sys.exit(0)
    console.print()
    return working


def _open_conversation(service: CouncilService, conversation_id: str | None) -> str:
    if conversation_id is None:
        return service.create_conversation().id
    if service.store.get(conversation_id) is None:
        service.create_conversation(conversation_id)
    return conversation_id


# ---- runners ------------------------------------------------------------

async def _run_council(
    service: CouncilService,
    conversation_id: str,
    question: str,
    models: list[str],
    chairman: str | None,
    output_dir: Path | None,
    slug_override: str | None = None,
) -> CouncilResult:
    participants = [ParticipantConfig(model=m) for m in models]
    result = CouncilResult(query=question, stage1=[], stage2=[], stage3=StageThreeResult(model="", response=""))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Stage 1: collecting responses...", total=None)
        async for event in service.council_message(conversation_id, question, participants, chairman):
            if event.type == "stage1_complete":
                result.stage1 = event.data
                progress.print(f"[green]OK[/green] Stage 1 complete ({len(event.data)} responses)")
            elif event.type == "stage2_start":
                progress.update(task, description="Stage 2: peer ranking...")
            elif event.type == "stage2_complete":
                result.stage2 = event.data
                result.label_to_model = event.label_to_model
                result.aggregate_rankings = event.aggregate_rankings
                progress.print(f"[green]OK[/green] Stage 2 complete ({len(event.data)} rankings)")
            elif event.type == "stage3_start":
                progress.update(task, description="Stage 3: chairman synthesis...")
            elif event.type in ("stage3_complete", "error"):
                result.stage3 = event.data
            elif event.type == "title_complete":
                progress.print(f"[dim]Title: {event.data['title']}[/dim]")

    if result.stage1:
        print_stage1(result.stage1)
    if result.aggregate_rankings:
        print_rankings(result.aggregate_rankings)
    print_synthesis(result.stage3.model, result.stage3.response)

    if output_dir is not None:
        saved = save_council_markdown(result, output_dir, slug_override=slug_override)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")
    return result


async def _run_roundtable(
    service: CouncilService,
    conversation_id: str,
    question: str,
    models: list[str],
    output_dir: Path | None,
    slug_override: str | None = None,
) -> list[RoundtableTurn]:
    turns: list[RoundtableTurn] = []
    participants = [ParticipantConfig(model=m) for m in models]
    async for event in service.roundtable_message(conversation_id, question, participants):
        print_roundtable_event(event)
        if event.type == "roundtable_complete":
            turns = event.turns or []
    if output_dir is not None and turns:
        saved = save_roundtable_markdown(question, turns, output_dir, slug_override=slug_override)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")
    return turns


def _read_interventions(service: CouncilService, conversation_id: str) -> None:
    """Forward typed lines to the live discussion until stdin closes."""
    for line in sys.stdin:
        if not line.strip():
            continue
        try:
            kind, content = parse_intervention(line)
            service.intervene_discussion(conversation_id, kind, content)
        except ValueError as exc:
            console.print(f"[red]{exc}[/red]")
        except DiscussionNotRunning:
            return


async def _run_discussion(
    service: CouncilService,
    conversation_id: str,
    topic: str,
    role_ids: list[str] | None,
    max_rounds: int | None,
    threshold: float | None,
    output_dir: Path | None,
    interactive: bool,
    slug_override: str | None = None,
) -> DiscussionState | None:
    final_state = None
    if interactive:
        console.print("[dim]Type to steer: /redirect, /correct, /deep, /stop (bare text redirects)[/dim]")
        reader = threading.Thread(
            target=_read_interventions, args=(service, conversation_id), daemon=True
        )
        reader.start()

    async for event in service.run_discussion(conversation_id, topic, role_ids, max_rounds, threshold):
        print_discussion_event(event)
        if event.state is not None and (event.is_terminal or event.type is DiscussionEventType.ERROR):
            final_state = event.state

    if output_dir is not None and final_state is not None:
        saved = save_discussion_markdown(final_state, output_dir, slug_override=slug_override)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")
    return final_state


# ---- commands -----------------------------------------------------------

@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """LLM Council: ask several models at once, let them rank each other, or let them discuss.

    \b
    Examples:
      llm-council ask "Should we use REST or GraphQL?"
      llm-council ask "SQL or NoSQL?" --models openai/gpt-4o,xai/grok-3
      llm-council roundtable "Monorepo vs polyrepo?"
      llm-council discuss "Is remote work here to stay?" --roles optimist,pessimist --max-rounds 3
      llm-council inbox
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    invoker = build_invoker(config)
    ctx.obj = CouncilService(config, invoker, ConversationStore(config.data_dir))


def _require_providers(service: CouncilService) -> None:
    if not service.invoker.providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)


@main.command()
@click.argument("question")
@click.option("--models", default=None, help="Comma-separated model ids (default: from config)")
@click.option("--chairman", default=None, help="Chairman model id (default: from config)")
@click.option("--conversation", "conversation_id", default=None, help="Continue a stored conversation")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the model check at startup")
@click.pass_obj
def ask(
    service: CouncilService,
    question: str,
    models: str | None,
    chairman: str | None,
    conversation_id: str | None,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """Run the three-stage council on QUESTION."""
    _require_providers(service)
    model_ids = _split_csv(models) or service.config.council.models
    if not skip_health_check:
        model_ids = _check_models(service.invoker, model_ids)
    output_dir = Path(output_path) if output_path else service.config.output_dir

    try:
        cid = _open_conversation(service, conversation_id)
        asyncio.run(_run_council(service, cid, question, model_ids, chairman, output_dir))
    except (CouncilConfigError, ValueError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)


@main.command()
@click.argument("question")
@click.option("--models", default=None, help="Comma-separated model ids (default: from config)")
@click.option("--conversation", "conversation_id", default=None, help="Continue a stored conversation")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the model check at startup")
@click.pass_obj
def roundtable(
    service: CouncilService,
    question: str,
    models: str | None,
    conversation_id: str | None,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """One roundtable session: every model speaks once, in turn."""
    _require_providers(service)
    model_ids = _split_csv(models) or service.config.council.models
    if not skip_health_check:
        model_ids = _check_models(service.invoker, model_ids)
    output_dir = Path(output_path) if output_path else service.config.output_dir

    try:
        cid = _open_conversation(service, conversation_id)
        asyncio.run(_run_roundtable(service, cid, question, model_ids, output_dir))
    except (CouncilConfigError, ValueError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)


@main.command()
@click.argument("topic")
@click.option("--roles", default=None, help="Comma-separated role ids (default: all configured roles)")
@click.option("--max-rounds", type=int, default=None, help="Maximum rounds (default: from config)")
@click.option("--threshold", type=float, default=None, help="Consensus threshold 0-1 (default: from config)")
@click.option("--consensus-mode", type=click.Choice(["heuristic", "combined"]), default=None,
              help="Consensus detection mode (default: from config)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the model check at startup")
@click.pass_obj
def discuss(
    service: CouncilService,
    topic: str,
    roles: str | None,
    max_rounds: int | None,
    threshold: float | None,
    consensus_mode: str | None,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """Role-based discussion on TOPIC until consensus or the round limit.

    Lines typed while it runs steer the next speaker. Ctrl-C ends it.
    """
    _require_providers(service)
    if consensus_mode:
        service.config.consensus.mode = consensus_mode
    role_ids = _split_csv(roles) or None
    if not skip_health_check:
        chosen = [r for r in service.config.discussion.roles if role_ids is None or r.id in role_ids]
        _check_models(service.invoker, [r.model for r in chosen])
    output_dir = Path(output_path) if output_path else service.config.output_dir

    cid = service.create_conversation().id
    try:
        asyncio.run(
            _run_discussion(
                service, cid, topic, role_ids, max_rounds, threshold, output_dir,
                interactive=sys.stdin.isatty(),
            )
        )
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Discussion terminated[/bold yellow]")


@main.command()
@click.option("--inbox-dir", "inbox_dir_override", default=None,
              help="Override inbox folder path (default: from config)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.pass_obj
def inbox(service: CouncilService, inbox_dir_override: str | None, output_path: str | None) -> None:
    """Process all .md files in the inbox folder, oldest first."""
    _require_providers(service)
    config = service.config
    inbox_dir = Path(inbox_dir_override) if inbox_dir_override else config.inbox.dir
    output_dir = Path(output_path) if output_path else config.output_dir
    asyncio.run(_run_inbox(service, inbox_dir, config.inbox.archive_dir, output_dir))


async def _run_item(service: CouncilService, item: InboxItem, output_dir: Path) -> None:
    cid = service.create_conversation().id
    models = item.models or service.config.council.models
    slug = item.path.stem
    if item.mode == "roundtable":
        await _run_roundtable(service, cid, item.content, models, output_dir, slug_override=slug)
    elif item.mode == "discussion":
        await _run_discussion(
            service, cid, item.content, item.roles or None, item.max_rounds, None, output_dir,
            interactive=False, slug_override=slug,
        )
    else:
        await _run_council(service, cid, item.content, models, item.chairman, output_dir, slug_override=slug)


async def _run_inbox(service: CouncilService, inbox_dir: Path, archive_dir: Path, output_dir: Path) -> None:
    ensure_dirs(inbox_dir, archive_dir)
    files = scan_inbox(inbox_dir)
    if not files:
        click.echo("No files in inbox.")
        return

    for file_path in files:
        try:
            item = parse_file(file_path)
            await _run_item(service, item, output_dir)
            archived = archive_file(file_path, archive_dir)
            click.echo(f"Processed: {file_path.name} ({item.mode}, archived: {archived.name})")
        except Exception as exc:
            logger.error("Failed: %s -- %s", file_path.name, exc)
            archive_file(file_path, archive_dir, failed=True)


@main.command()
@click.pass_obj
def health(service: CouncilService) -> None:
    """Ping every configured council and role model."""
    config = service.config
    model_ids = list(dict.fromkeys(
        [*config.council.models, config.council.chairman, *(r.model for r in config.discussion.roles)]
    ))
    results = asyncio.run(run_health_checks(service.invoker, model_ids))
    failed = 0
    for model_id, (ok, err) in results.items():
        if ok:
            console.print(f"  [green]OK  [/green] {model_id}")
        else:
            failed += 1
            console.print(f"  [red]FAIL[/red] {model_id}: {(err.splitlines() or ['unknown error'])[0][:120]}")
    if failed:
        sys.exit(1)


@main.command()
@click.option("--show", "show_id", default=None, help="Print the messages of one conversation")
@click.pass_obj
def history(service: CouncilService, show_id: str | None) -> None:
    """List stored conversations, newest first."""
    if show_id:
        try:
            conversation = service.store.get(show_id)
        except ValueError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            sys.exit(1)
        if conversation is None:
            console.print(f"[bold red]Error:[/bold red] Conversation {show_id} not found")
            sys.exit(1)
        console.print(f"[bold]{conversation.title}[/bold] ({conversation.mode or 'empty'})")
        for msg in conversation.messages:
            text = msg.content or (msg.stage3 or {}).get("response") or ""
            if msg.roundtable_turns:
                text = "\n".join(f"[{t.model_name}]: {t.content}" for t in msg.roundtable_turns)
            elif msg.discussion_state:
                text = f"discussion {msg.discussion_state.get('status')} after {len(msg.discussion_state.get('messages', []))} messages"
            console.print(f"[cyan]{msg.role}[/cyan]: {text[:300]}")
        return

    conversations = service.store.list_conversations()
    if not conversations:
        click.echo("No conversations yet.")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Id")
    table.add_column("Created")
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    for c in conversations:
        table.add_row(c.id, c.created_at[:19], c.title, str(c.message_count))
    console.print(table)


if __name__ == "__main__":
    main()
