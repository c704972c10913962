"""LeadDesk CLI: terminal console for WhatsApp lead conversations.

Usage:
    leaddesk contacts              List recent conversations
    leaddesk show <wa_id>          Show a conversation's messages
    leaddesk mode <wa_id> agent    Take a conversation over from the bot
    leaddesk send <wa_id> "Hola"   Send an agent reply
    leaddesk watch                 Follow new messages and notifications
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from leaddesk.cli.config import LeadDeskConfig, configure_logging, load_config
from leaddesk.cli.http_client import HttpBackend
from leaddesk.cli.output import (
    format_contact_table,
    format_conversation,
    format_debug_info,
    format_message_line,
    format_mode,
    format_notification,
)
from leaddesk.sync.engine import SyncEngine
from leaddesk.sync.envelope import ResultEnvelope
from leaddesk.sync.models import ConversationMode, Message, Notification

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="leaddesk",
    help="Human-agent console for WhatsApp lead conversations",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration management")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to leaddesk.yaml config file"
    ),
):
    """LeadDesk CLI: conversation sync console."""
    global _config_path
    _config_path = config


def _load() -> LeadDeskConfig:
    """Load config and configure logging, exiting cleanly on bad config."""
    try:
        cfg = load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except ValidationError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)
    configure_logging(cfg.logging)
    return cfg


@asynccontextmanager
async def _open_engine(cfg: LeadDeskConfig) -> AsyncIterator[SyncEngine]:
    """Open the HTTP backend and an engine; both are torn down on exit."""
    async with HttpBackend(cfg.api) as backend:
        async with SyncEngine(backend, cfg.to_sync_settings()) as engine:
            yield engine


def _exit_on_failure(result: ResultEnvelope, what: str) -> None:
    if result.success:
        return
    console.print(f"[red]{what} failed:[/red] {result.error}")
    if result.auth_expired:
        console.print("Update api.access_token (or LEADDESK_API_ACCESS_TOKEN) and retry.")
    raise typer.Exit(1)


# --- Version ---


@app.command()
def version():
    """Show LeadDesk version."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as pkg_version
    try:
        v = pkg_version("leaddesk")
    except PackageNotFoundError:
        v = "unknown"
    console.print(f"[bold]LeadDesk[/bold] v{v}")


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration (secrets masked)."""
    cfg = _load()

    console.print("[bold]Polling:[/bold]")
    console.print(f"  messages: every {cfg.polling.message_interval_seconds:g}s, "
                  f"idle after {cfg.polling.message_idle_timeout_seconds:g}s")
    console.print(f"  contacts: every {cfg.polling.contact_interval_seconds:g}s, "
                  f"idle after {cfg.polling.contact_idle_timeout_seconds:g}s")
    console.print(f"  echo_threshold_ms: {cfg.polling.echo_threshold_ms}")

    console.print("\n[bold]API:[/bold]")
    for name in (
        "recent_leads_url",
        "next_conversations_url",
        "conversation_url",
        "recent_messages_url",
        "conversation_mode_url",
        "send_message_url",
    ):
        value = getattr(cfg.api, name) or "[yellow]not set[/yellow]"
        console.print(f"  {name}: {value}")
    token = cfg.api.access_token
    console.print(f"  access_token: {'***' + token[-4:] if len(token) > 4 else '***' if token else 'not set'}")

    console.print("\n[bold]Display:[/bold]")
    console.print(f"  timezone: {cfg.display.timezone}")
    console.print(f"  preview_max_length: {cfg.display.preview_max_length}")

    console.print("\n[bold]Logging:[/bold]")
    console.print(f"  level: {cfg.logging.level}")
    console.print(f"  format: {cfg.logging.format}")


# --- Conversation commands ---


@app.command()
def contacts(
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by name or phone"),
    more: int = typer.Option(0, "--more", "-m", help="Extra pages to load"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List recent conversations, newest first."""
    cfg = _load()

    async def _run():
        async with _open_engine(cfg) as engine:
            _exit_on_failure(await engine.load_contacts(), "Loading contacts")
            for _ in range(more):
                if not engine.directory.has_more:
                    break
                _exit_on_failure(await engine.load_next_contacts(), "Loading more contacts")
            summaries = engine.search(search) if search else engine.directory.summaries()
            console.print(format_contact_table(summaries, as_json=json_output))
            if engine.directory.has_more and not json_output:
                console.print("[dim]More contacts available (use --more).[/dim]")

    asyncio.run(_run())


@app.command()
def show(
    wa_id: str = typer.Argument(help="Conversation (WhatsApp) id"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show a conversation's messages and lead details."""
    cfg = _load()

    async def _run():
        async with _open_engine(cfg) as engine:
            listed = await engine.load_contacts()
            if not listed.success:
                _log.warning("Contact list unavailable: %s", listed.error)
            result = await engine.activate(wa_id, engine.directory.get(wa_id))
            _exit_on_failure(result, "Loading conversation")
            console.print(format_conversation(
                engine.active_summary,
                engine.messages(wa_id),
                engine.get_mode(wa_id),
                as_json=json_output,
            ))

    asyncio.run(_run())


@app.command()
def mode(
    wa_id: str = typer.Argument(help="Conversation (WhatsApp) id"),
    new_mode: str = typer.Argument(help="bot or agent"),
):
    """Switch a conversation between bot and human-agent control."""
    parsed = ConversationMode.parse(new_mode)
    if parsed is None:
        console.print(f"[red]Invalid mode:[/red] {new_mode} (expected bot or agent)")
        raise typer.Exit(1)
    cfg = _load()

    async def _run():
        async with _open_engine(cfg) as engine:
            _exit_on_failure(await engine.set_mode(wa_id, parsed), "Changing mode")
            console.print(f"[green]{wa_id}[/green] is now {format_mode(engine.get_mode(wa_id))}")

    asyncio.run(_run())


@app.command()
def send(
    wa_id: str = typer.Argument(help="Conversation (WhatsApp) id"),
    text: str = typer.Argument(help="Message text"),
):
    """Send a text reply as the human agent."""
    cfg = _load()

    async def _run():
        async with _open_engine(cfg) as engine:
            result = await engine.send_text(wa_id, text)
            _exit_on_failure(result, "Sending message")
            console.print(format_message_line(result.data["message"]))

    asyncio.run(_run())


class ConsoleObserver:
    """Prints engine events as they happen (used by ``watch``)."""

    async def on_messages_appended(self, conversation_id: str, messages: list[Message]) -> None:
        for message in messages:
            console.print(f"[cyan]{conversation_id}[/cyan] {format_message_line(message)}")

    async def on_notification(self, conversation_id: str, notification: Notification) -> None:
        console.print(format_notification(conversation_id, notification))

    async def on_mode_changed(self, conversation_id: str, mode: ConversationMode) -> None:
        console.print(f"[cyan]{conversation_id}[/cyan] mode → {format_mode(mode)}")

    async def on_polling_halted(self, poller: str) -> None:
        console.print(
            f"[red]Token expirado:[/red] {poller} polling halted. "
            "Update the access token and restart watch."
        )


@app.command()
def watch(
    conversation: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Also follow this conversation's messages"
    ),
    stay_active: bool = typer.Option(
        False, "--stay-active", help="Keep polling instead of suspending when idle"
    ),
):
    """Follow new messages and contact notifications until Ctrl-C."""
    cfg = _load()

    async def _run():
        async with _open_engine(cfg) as engine:
            engine.events.add_observer(ConsoleObserver())
            _exit_on_failure(await engine.load_contacts(), "Loading contacts")
            console.print(format_contact_table(engine.directory.summaries()))
            engine.start_contact_polling()
            if conversation:
                result = await engine.activate(conversation, engine.directory.get(conversation))
                _exit_on_failure(result, "Loading conversation")
            console.print("[dim]Watching for changes (Ctrl-C to stop)...[/dim]")
            while True:
                await asyncio.sleep(cfg.polling.message_interval_seconds)
                if stay_active:
                    engine.mark_user_activity()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")


@app.command()
def debug(
    wa_id: Optional[str] = typer.Argument(None, help="Conversation to load first"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Load contacts (and optionally a conversation), then print engine state."""
    cfg = _load()

    async def _run():
        async with _open_engine(cfg) as engine:
            await engine.load_contacts()
            if wa_id:
                await engine.activate(wa_id, engine.directory.get(wa_id))
            console.print(format_debug_info(engine.debug_info(), as_json=json_output))

    asyncio.run(_run())


if __name__ == "__main__":
    app()
