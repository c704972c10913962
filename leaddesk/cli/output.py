"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich output (default) and machine-parseable JSON
output (--json flag). All formatting goes through these functions so the
CLI commands stay clean.
"""

import dataclasses
import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from leaddesk.sync.models import (
    ContactSummary,
    ConversationMode,
    Message,
    Notification,
    NotificationKind,
    Sender,
)
from leaddesk.utils.phone import format_phone_number

console = Console()

MODE_COLORS = {
    ConversationMode.BOT: "cyan",
    ConversationMode.AGENT: "magenta",
}

SENDER_STYLES = {
    Sender.CONTACT: ("Lead", "white"),
    Sender.BOT: ("Bot", "cyan"),
    Sender.HUMAN_AGENT: ("Asesor", "magenta"),
}

NOTIFICATION_LABELS = {
    NotificationKind.NEW_CONTACT: "[bold green]nuevo[/bold green]",
    NotificationKind.UPDATED_CONTACT: "[bold yellow]actualizado[/bold yellow]",
}


def _to_json(obj: Any) -> str:
    return json.dumps(obj, indent=2, default=str, ensure_ascii=False)


def _render(renderable: Any) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_mode(mode: ConversationMode | None) -> str:
    """Format a conversation mode with its color, or "—" when unknown."""
    if mode is None:
        return "—"
    color = MODE_COLORS.get(mode, "white")
    return f"[{color}]{mode.value}[/{color}]"


def format_contact_table(
    contacts: list[ContactSummary],
    notifications: dict[str, Notification] | None = None,
    as_json: bool = False,
) -> str:
    """Format contact summaries as a Rich table or JSON.

    Args:
        contacts: Summaries in display order.
        notifications: Pending notification markers keyed by conversation id.
        as_json: If True, return JSON string instead of Rich table.

    Returns:
        Formatted string output.
    """
    notifications = notifications or {}
    if as_json:
        rows = []
        for c in contacts:
            row = dataclasses.asdict(c)
            row.pop("source_record", None)
            pending = notifications.get(c.id)
            row["notification"] = pending.kind.value if pending else None
            rows.append(row)
        return _to_json(rows)

    if not contacts:
        return "No contacts found."

    table = Table(title="Conversations", show_lines=True)
    table.add_column("", no_wrap=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Last message")
    table.add_column("Mode")
    table.add_column("Status")
    table.add_column("Updated", style="dim")

    for c in contacts:
        pending = notifications.get(c.id)
        status_color = "green" if c.status == "completed" else "white"
        table.add_row(
            NOTIFICATION_LABELS[pending.kind] if pending else "",
            c.id,
            f"{c.initials.strip() or '·'}  {c.name}",
            c.last_message_preview,
            format_mode(c.mode),
            f"[{status_color}]{c.status}[/{status_color}]",
            c.relative_time or "—",
        )
    return _render(table)


def format_message_line(message: Message) -> str:
    """Render one message as ``[DD/MM/YYYY HH:MM] Sender: text``."""
    label, style = SENDER_STYLES.get(message.sender, ("?", "white"))
    stamp = " ".join(p for p in (message.date_label, message.time_label) if p)
    text = message.text
    if message.multimedia is not None:
        media = f"[{message.multimedia.type}]"
        text = f"{media} {message.multimedia.caption or text}".strip()
    return f"[dim]{stamp or '—'}[/dim] [{style}]{label}:[/{style}] {text}"


def format_conversation(
    summary: ContactSummary | None,
    messages: list[Message],
    mode: ConversationMode,
    as_json: bool = False,
) -> str:
    """Format a conversation header and message history.

    Args:
        summary: Contact summary, if known.
        messages: Messages in arrival order.
        mode: Current registry mode.
        as_json: If True, return JSON string instead of Rich panels.

    Returns:
        Formatted string output.
    """
    if as_json:
        return _to_json({
            "contact": (
                {k: v for k, v in dataclasses.asdict(summary).items() if k != "source_record"}
                if summary else None
            ),
            "mode": mode.value,
            "messages": [dataclasses.asdict(m) for m in messages],
        })

    lines = []
    if summary is not None:
        lines.append(f"[bold]Name:[/bold]   {summary.name}")
        lines.append(f"[bold]{format_phone_number(summary.phone)}[/bold]")
        lines.append(f"[bold]Status:[/bold] {summary.status}")
        if summary.assigned_advisor:
            lines.append(f"[bold]Asesor:[/bold] {summary.assigned_advisor}")
    lines.append(f"[bold]Mode:[/bold]   {format_mode(mode)}")
    if summary is not None and summary.lead_info:
        lines.append("")
        for key, value in summary.lead_info.items():
            lines.append(f"  {key}: {value}")

    title = summary.id if summary is not None else "Conversation"
    header = Panel("\n".join(lines), title=title, border_style="cyan")
    body = "\n".join(format_message_line(m) for m in messages) or "[dim]No messages[/dim]"
    return _render(header) + _render(body)


def format_notification(conversation_id: str, notification: Notification) -> str:
    """One-line notification banner for the watch command."""
    label = NOTIFICATION_LABELS.get(notification.kind, notification.kind.value)
    return f"{label} {conversation_id} ({notification.at:%H:%M:%S})"


def format_debug_info(info: dict[str, Any], as_json: bool = False) -> str:
    """Format engine diagnostics as a Rich panel or JSON."""
    if as_json:
        return _to_json(info)

    table = Table(show_header=False, box=None)
    active = str(info.get("active_conversation") or "—")
    if info.get("active_loading"):
        active += " [yellow](loading)[/yellow]"
    table.add_row("Active:", active)
    table.add_row("Contacts:", str(info.get("contacts", 0)))
    table.add_row("Cached:", str(info.get("total_cached_conversations", 0)))
    table.add_row("Failed:", str(info.get("total_failed_conversations", 0)))
    table.add_row("Notifications:", str(info.get("pending_notifications", 0)))
    for name, poller in (info.get("polling") or {}).items():
        table.add_row(
            f"Poller {name}:",
            f"{poller.get('state')} target={poller.get('target') or '—'} "
            f"ticks={poller.get('ticks', 0)} errors={poller.get('tick_errors', 0)}",
        )
    calls = info.get("calls") or {}
    table.add_row(
        "Calls:",
        f"{calls.get('total', 0)} total, {calls.get('failures', 0)} failed, "
        f"{calls.get('exceptions', 0)} raised",
    )
    return _render(Panel(table, title="[bold]Sync Engine[/bold]", border_style="green"))
