"""
FoundationChat CLI: terminal front end for on-device chat.

Registered as `foundation-chat` console script via pyproject.toml.
"""

import asyncio
import logging
from pathlib import Path

import click

from .availability import MODEL_REQUIRED_SCREEN, AvailabilityState
from .config import ENV_LOG_LEVEL, ChatConfig
from .exceptions import AppleFMSetupError, StorageError, require_apple_fm
from .models import Conversation, Role
from .orchestrator import ChatEvent, ChatOrchestrator, TurnOutcome, TurnPhase
from .runtime import AppleFMRuntime
from .store import SQLiteConversationStore

_QUIT_COMMANDS = {"/quit", "/exit", "/q"}
_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _open_store(config: ChatConfig) -> SQLiteConversationStore:
    try:
        return SQLiteConversationStore(config.db_path)
    except StorageError as exc:
        click.secho(f"Error: {exc}", fg="red", err=True)
        raise SystemExit(1) from exc


def _build_runtime(config: ChatConfig) -> AppleFMRuntime:
    return AppleFMRuntime(context_chars=config.context_chars)


def _build_orchestrator(config: ChatConfig, store: SQLiteConversationStore) -> ChatOrchestrator:
    return ChatOrchestrator(
        _build_runtime(config),
        store,
        first_part_timeout=config.first_part_timeout,
        part_idle_timeout=config.part_idle_timeout,
    )


def _resolve_conversation(store: SQLiteConversationStore, ident: str) -> Conversation:
    """Find a conversation by id or unique id prefix, or exit with an error."""
    matches = [conversation for conversation in store.query() if conversation.id.startswith(ident)]
    if not matches:
        click.secho(f"Error: no conversation matches '{ident}'.", fg="red", err=True)
        raise SystemExit(1)
    if len(matches) > 1:
        click.secho(
            f"Error: '{ident}' matches {len(matches)} conversations; use a longer prefix.",
            fg="red",
            err=True,
        )
        raise SystemExit(1)
    return matches[0]


def _print_unavailable(state: AvailabilityState) -> None:
    click.secho(state.title or MODEL_REQUIRED_SCREEN.title, fg="yellow", bold=True, err=True)
    click.echo(f"  {state.description or MODEL_REQUIRED_SCREEN.description}", err=True)
    if state.can_recheck:
        click.echo("  Check again later with: foundation-chat status", err=True)


def _require_sdk() -> None:
    try:
        require_apple_fm()
    except AppleFMSetupError as exc:
        click.secho(str(exc), fg="red", err=True)
        raise SystemExit(2) from exc


def _require_model(orchestrator: ChatOrchestrator) -> None:
    """Exit unless the on-device model can serve a turn right now."""
    _require_sdk()
    state = orchestrator.availability()
    if not state.is_available:
        _print_unavailable(state)
        raise SystemExit(1)


class _StreamPrinter:
    """Chat listener that echoes reply snapshots to the terminal as they grow."""

    def __init__(self) -> None:
        self._printed = ""

    def _echo_snapshot(self, text: str) -> None:
        if text.startswith(self._printed):
            click.echo(text[len(self._printed) :], nl=False)
        else:
            # The snapshot rewrote earlier text; start over on a fresh line.
            click.echo("\n" + text, nl=False)
        self._printed = text

    def __call__(self, event: ChatEvent) -> None:
        if event.phase is TurnPhase.STREAMING_REPLY:
            if event.message_id and not event.content and not self._printed:
                click.secho("Assistant: ", fg="cyan", bold=True, nl=False)
                return
            self._echo_snapshot(event.content)
        elif event.phase is TurnPhase.REPLY_FINALIZED and event.message_id:
            self._echo_snapshot(event.content)
            click.echo()
            self._printed = ""


def _print_turn_result(outcome: TurnOutcome, conversation: Conversation) -> None:
    if outcome.assistant_message is None:
        click.secho("(the model did not produce a reply)", fg="yellow")
    click.secho(f"Summary: {conversation.summary}", dim=True)


def _print_transcript(conversation: Conversation) -> None:
    click.secho(f"\n{conversation.summary}", fg="cyan", bold=True)
    click.secho(f"  {conversation.id}\n", dim=True)
    for message in conversation.sorted_messages:
        speaker = "You" if message.role is Role.USER else "Assistant"
        stamp = message.timestamp.astimezone().strftime("%Y-%m-%d %H:%M")
        click.secho(f"{speaker} | {stamp}", fg="green" if message.role is Role.USER else "cyan")
        click.echo(message.content)
        click.echo()


# ── Main group ────────────────────────────────────────────────────────────────


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="foundation-chat")
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Conversation database (default: per-user app directory).",
)
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default=None,
    help=f"Logging verbosity (default: ${ENV_LOG_LEVEL} or WARNING).",
)
@click.pass_context
def cli(ctx: click.Context, db_path: Path | None, log_level: str | None) -> None:
    """FoundationChat: chat with the on-device Apple Foundation Model."""
    config = ChatConfig.from_env().with_overrides(
        db_path=db_path,
        log_level=log_level.upper() if log_level else None,
    )
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


# ── Model status ──────────────────────────────────────────────────────────────


@cli.command()
@click.pass_obj
def status(config: ChatConfig) -> None:
    """Report whether the on-device model is ready for chat."""
    _require_sdk()
    store = _open_store(config)
    try:
        state = _build_orchestrator(config, store).availability()
    finally:
        store.close()
    if state.is_available:
        click.secho("Apple Intelligence is available. Chat is ready.", fg="green")
        return
    _print_unavailable(state)
    raise SystemExit(1)


# ── Conversations ─────────────────────────────────────────────────────────────


@cli.command(name="list")
@click.pass_obj
def list_cmd(config: ChatConfig) -> None:
    """List conversations, most recent first."""
    store = _open_store(config)
    try:
        conversations = _build_orchestrator(config, store).list_conversations()
    finally:
        store.close()
    if not conversations:
        click.secho("No conversations yet. Start one with: foundation-chat chat", fg="yellow")
        return

    click.secho(f"\n  {'Id':<10}{'Last activity':<18}{'Summary'}", fg="cyan")
    click.secho(f"  {'─' * 9} {'─' * 17} {'─' * 40}", fg="cyan")
    for conversation in conversations:
        stamp = conversation.last_message_timestamp.astimezone().strftime("%Y-%m-%d %H:%M")
        click.echo(f"  {conversation.id[:8]:<10}{stamp:<18}{conversation.summary}")
    click.echo()


@cli.command()
@click.pass_obj
def new(config: ChatConfig) -> None:
    """Create an empty conversation and print its id."""
    store = _open_store(config)
    try:
        conversation = _build_orchestrator(config, store).new_conversation()
    finally:
        store.close()
    click.echo(conversation.id)


@cli.command()
@click.argument("conversation_id")
@click.pass_obj
def show(config: ChatConfig, conversation_id: str) -> None:
    """Print a conversation transcript."""
    store = _open_store(config)
    try:
        conversation = _resolve_conversation(store, conversation_id)
    finally:
        store.close()
    _print_transcript(conversation)


@cli.command()
@click.argument("conversation_id")
@click.option("-y", "--yes", is_flag=True, help="Delete without asking for confirmation.")
@click.pass_obj
def delete(config: ChatConfig, conversation_id: str, yes: bool) -> None:
    """Delete a conversation and all of its messages."""
    store = _open_store(config)
    try:
        conversation = _resolve_conversation(store, conversation_id)
        if not yes:
            click.confirm(f"Delete conversation '{conversation.summary}'?", abort=True)
        _build_orchestrator(config, store).delete_conversation(conversation)
    finally:
        store.close()
    click.secho(f"Deleted {conversation.id}.", fg="green")


@cli.command(name="export")
@click.argument("conversation_id")
@click.argument("target", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "export_format",
    type=click.Choice(["jsonl", "markdown"]),
    default=None,
    help="Output format (default: inferred from the file suffix).",
)
@click.pass_obj
def export_cmd(
    config: ChatConfig, conversation_id: str, target: Path, export_format: str | None
) -> None:
    """Export a conversation transcript to JSONL or Markdown."""
    if export_format is None:
        export_format = "markdown" if target.suffix.lower() in {".md", ".markdown"} else "jsonl"
    store = _open_store(config)
    try:
        conversation = _resolve_conversation(store, conversation_id)
        if export_format == "markdown":
            store.export_markdown(conversation, target)
        else:
            store.export_jsonl(conversation, target)
    finally:
        store.close()
    click.secho(f"Exported conversation to {target}", fg="green")


# ── Chatting ──────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("conversation_id")
@click.argument("text")
@click.pass_obj
def send(config: ChatConfig, conversation_id: str, text: str) -> None:
    """Send one message to a conversation and stream the reply."""
    store = _open_store(config)
    try:
        orchestrator = _build_orchestrator(config, store)
        _require_model(orchestrator)
        conversation = _resolve_conversation(store, conversation_id)
        orchestrator.add_listener(_StreamPrinter())
        outcome = asyncio.run(orchestrator.run_turn(conversation, text))
    finally:
        store.close()
    _print_turn_result(outcome, conversation)


async def _prewarm(orchestrator: ChatOrchestrator) -> None:
    orchestrator.prewarm()


def _chat_loop(orchestrator: ChatOrchestrator, conversation: Conversation) -> None:
    with asyncio.Runner() as runner:
        runner.run(_prewarm(orchestrator))
        while True:
            try:
                text = click.prompt("You", default="", show_default=False, prompt_suffix="> ")
            except click.Abort:
                click.echo()
                return
            text = text.strip()
            if text in _QUIT_COMMANDS:
                return
            if text == "/summary":
                click.secho(f"Summary: {conversation.summary}", dim=True)
                continue
            if not text:
                continue
            try:
                outcome = runner.run(orchestrator.run_turn(conversation, text))
            except KeyboardInterrupt:
                click.secho("\n(reply cancelled)", fg="yellow")
                continue
            _print_turn_result(outcome, conversation)


@cli.command()
@click.argument("conversation_id", required=False)
@click.pass_obj
def chat(config: ChatConfig, conversation_id: str | None) -> None:
    """Interactive chat; starts a new conversation unless an id is given.

    \b
    Commands inside the chat:
        /summary   show the current conversation summary
        /quit      leave the chat (also /exit, Ctrl-D)
    """
    store = _open_store(config)
    try:
        orchestrator = _build_orchestrator(config, store)
        _require_model(orchestrator)
        if conversation_id is None:
            conversation = orchestrator.new_conversation()
        else:
            conversation = _resolve_conversation(store, conversation_id)
            _print_transcript(conversation)
        click.secho(f"Chatting in {conversation.id[:8]}. Type /quit to leave.", fg="cyan")
        orchestrator.add_listener(_StreamPrinter())
        _chat_loop(orchestrator, conversation)
    finally:
        store.close()


# ── Entry point ───────────────────────────────────────────────────────────────


def cli_entry() -> None:
    """Entry point for the console_scripts."""
    try:
        cli()
    except AppleFMSetupError as exc:
        click.secho(str(exc), fg="red", err=True)
        raise SystemExit(2) from exc


if __name__ == "__main__":
    cli_entry()
