"""Tests for CLI output formatting."""

import json
from datetime import datetime

from leaddesk.cli.output import (
    format_contact_table,
    format_conversation,
    format_debug_info,
    format_message_line,
    format_mode,
    format_notification,
)
from leaddesk.sync.models import (
    ContactSummary,
    ConversationMode,
    Message,
    Multimedia,
    Notification,
    NotificationKind,
    Sender,
)


def _summary(**overrides) -> ContactSummary:
    values = dict(
        id="c1", lead_id="L-1", name="Ana Pérez", phone="5215512345678",
        last_message_preview="Hola", updated_at="2024-01-01T18:30:00Z",
        mode=ConversationMode.BOT, completed=False, assigned_advisor=None,
        initials="AP", source_record={"conversation_id": "c1"},
    )
    values.update(overrides)
    return ContactSummary(**values)


class TestFormatMode:

    def test_known_mode_is_colored(self):
        assert format_mode(ConversationMode.AGENT) == "[magenta]agent[/magenta]"

    def test_unknown_mode_is_dash(self):
        assert format_mode(None) == "—"


class TestFormatContactTable:
    """Tests for contact list rendering."""

    def test_renders_contacts_as_text(self):
        output = format_contact_table([_summary()])
        assert "c1" in output
        assert "Ana" in output
        assert "Hola" in output
        assert "bot" in output

    def test_marks_pending_notifications(self):
        pending = {"c1": Notification(NotificationKind.NEW_CONTACT, datetime(2024, 1, 1))}
        output = format_contact_table([_summary()], notifications=pending)
        assert "nuevo" in output

    def test_empty_list(self):
        assert format_contact_table([]) == "No contacts found."

    def test_renders_contacts_as_json(self):
        pending = {"c1": Notification(NotificationKind.UPDATED_CONTACT, datetime(2024, 1, 1))}
        parsed = json.loads(format_contact_table([_summary()], pending, as_json=True))
        assert len(parsed) == 1
        assert parsed[0]["id"] == "c1"
        assert parsed[0]["mode"] == "bot"
        assert parsed[0]["notification"] == "updated_contact"
        assert "source_record" not in parsed[0]


class TestFormatMessageLine:

    def test_text_message(self):
        message = Message(
            id="m1", text="Hola", sender=Sender.CONTACT,
            time_label="12:30", date_label="01/01/2024",
        )
        assert format_message_line(message) == (
            "[dim]01/01/2024 12:30[/dim] [white]Lead:[/white] Hola"
        )

    def test_attachment_uses_caption(self):
        message = Message(
            id="m2", text="", sender=Sender.HUMAN_AGENT,
            multimedia=Multimedia(type="image", multimedia_id="media-1", caption="Catálogo"),
        )
        line = format_message_line(message)
        assert "Asesor:" in line
        assert line.endswith("[image] Catálogo")
        assert line.startswith("[dim]—[/dim]")


class TestFormatConversation:
    """Tests for conversation detail rendering."""

    def test_renders_header_and_messages(self):
        messages = [Message(id="m1", text="Quiero informes", sender=Sender.CONTACT)]
        output = format_conversation(
            _summary(lead_info={"interes": "credito"}), messages, ConversationMode.AGENT,
        )
        assert "Ana Pérez" in output
        assert "Teléfono: +52 5512345678" in output
        assert "agent" in output
        assert "interes: credito" in output
        assert "Quiero informes" in output

    def test_without_summary_or_messages(self):
        output = format_conversation(None, [], ConversationMode.BOT)
        assert "Conversation" in output
        assert "No messages" in output

    def test_renders_as_json(self):
        messages = [Message(id="m1", text="Hola", sender=Sender.BOT)]
        parsed = json.loads(format_conversation(
            _summary(), messages, ConversationMode.BOT, as_json=True,
        ))
        assert parsed["mode"] == "bot"
        assert parsed["contact"]["name"] == "Ana Pérez"
        assert "source_record" not in parsed["contact"]
        assert parsed["messages"][0]["id"] == "m1"


class TestFormatNotification:

    def test_banner(self):
        notification = Notification(NotificationKind.NEW_CONTACT, datetime(2024, 1, 1, 9, 5, 7))
        output = format_notification("c9", notification)
        assert "nuevo" in output
        assert "c9" in output
        assert "09:05:07" in output


class TestFormatDebugInfo:
    """Tests for engine diagnostics rendering."""

    INFO = {
        "active_conversation": "c1",
        "contacts": 3,
        "total_cached_conversations": 2,
        "total_failed_conversations": 1,
        "pending_notifications": 0,
        "polling": {"messages": {"state": "polling", "target": "c1", "ticks": 4, "tick_errors": 0}},
        "calls": {"total": 7, "failures": 1, "exceptions": 0},
    }

    def test_renders_as_text(self):
        output = format_debug_info(self.INFO)
        assert "Sync Engine" in output
        assert "c1" in output
        assert "polling" in output
        assert "7 total, 1 failed" in output

    def test_renders_as_json(self):
        parsed = json.loads(format_debug_info(self.INFO, as_json=True))
        assert parsed["contacts"] == 3
        assert parsed["polling"]["messages"]["ticks"] == 4

    def test_marks_active_conversation_loading(self):
        output = format_debug_info({**self.INFO, "active_loading": True})
        assert "c1 (loading)" in output

    def test_idle_active_conversation_has_no_marker(self):
        assert "(loading)" not in format_debug_info(self.INFO)
