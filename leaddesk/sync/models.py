"""Conversation data models and the pure formatters that build them.

Raw backend payloads are dicts (snake_case keys). ``format_message`` and
``format_contact`` are the only places raw records are interpreted, so the
defaults for missing fields live here and nowhere else.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Mexico_City"
DEFAULT_PREVIEW_MAX_LENGTH = 50

NEW_LEAD_NAME = "Nuevo lead"
EMPTY_INITIALS = " "
UNLOADED_PREVIEW = "Presione para visualizar..."
MULTIMEDIA_PREVIEW = "Mensaje multimedia"
OWN_MESSAGE_PREFIX = "Tú: "

LEAD_INFO_FIELDS = (
    "nombre",
    "telefono",
    "tipo_maquinaria",
    "lugar_requerimiento",
    "sitio_web",
    "uso_empresa_o_venta",
    "nombre_empresa",
    "giro_empresa",
    "correo",
)


class Sender(str, Enum):
    """Who authored a message, from the console's point of view."""

    CONTACT = "contact"
    BOT = "bot"
    HUMAN_AGENT = "human_agent"


class ConversationMode(str, Enum):
    """Which side currently drives a conversation."""

    BOT = "bot"
    AGENT = "agent"

    @classmethod
    def parse(cls, value: Any) -> "ConversationMode | None":
        """Return the mode for a raw value, or None if it is not a valid mode."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class NotificationKind(str, Enum):
    NEW_CONTACT = "new_contact"
    UPDATED_CONTACT = "updated_contact"


@dataclass(frozen=True)
class Multimedia:
    """Attachment reference carried by a message."""

    type: str
    multimedia_id: str
    caption: str | None = None

    @classmethod
    def from_api(cls, data: dict | None) -> "Multimedia | None":
        """Construct from API JSON; returns None when there is no attachment."""
        if not data:
            return None
        return cls(
            type=data.get("type", ""),
            multimedia_id=str(data.get("multimedia_id") or data.get("id") or ""),
            caption=data.get("caption"),
        )


@dataclass(frozen=True)
class Message:
    """A single chat message, immutable once created.

    Attributes:
        id: Backend message id; the deduplication key.
        text: Message body ("" for attachment-only messages).
        sender: Normalized author.
        timestamp_raw: Timestamp exactly as the backend sent it.
        time_label: ``HH:MM`` in the display timezone.
        date_label: ``DD/MM/YYYY`` in the display timezone.
        original_sender: Raw sender value (e.g. ``asesor_juan``).
        multimedia: Attachment reference, if any.
    """

    id: str
    text: str
    sender: Sender
    timestamp_raw: Any = None
    time_label: str = ""
    date_label: str = ""
    original_sender: str = ""
    multimedia: Multimedia | None = None


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    at: datetime


@dataclass(frozen=True)
class ContactSummary:
    """Denormalized conversation row shown in the contact list.

    ``source_record`` is the last raw payload for the conversation; every
    other field can be re-derived from it plus the cached messages.
    """

    id: str
    lead_id: str | None
    name: str
    phone: str | None
    last_message_preview: str
    updated_at: Any
    mode: ConversationMode | None
    completed: bool
    assigned_advisor: str | None
    initials: str = EMPTY_INITIALS
    status: str = "active"
    relative_time: str = ""
    lead_info: dict[str, Any] | None = None
    source_record: dict[str, Any] = field(default_factory=dict, compare=False)


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve a timezone name, falling back to UTC when it is unknown."""
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown display timezone %r, using UTC", name)
        return timezone.utc


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a backend timestamp into an aware datetime.

    Args:
        value: ISO-8601 string (``Z`` suffix allowed), epoch seconds or
            milliseconds, or a datetime. Naive values are taken as UTC.

    Returns:
        Aware datetime, or None when the value is missing or unparsable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def map_sender(raw_sender: Any) -> Sender:
    """Map a raw backend sender (``lead``, ``bot``, ``asesor_*``) to a Sender."""
    if not isinstance(raw_sender, str):
        return Sender.CONTACT
    if raw_sender == "bot":
        return Sender.BOT
    if raw_sender.startswith("asesor_") or raw_sender == Sender.HUMAN_AGENT.value:
        return Sender.HUMAN_AGENT
    return Sender.CONTACT


def format_message(raw: dict[str, Any], tz: tzinfo | None = None) -> Message:
    """Build a Message from a raw backend message.

    Args:
        raw: Backend message dict (``id``, ``text``, ``sender``,
            ``timestamp``, optional ``multimedia``).
        tz: Display timezone for the time/date labels. Defaults to UTC.

    Returns:
        The formatted, immutable Message.
    """
    moment = parse_timestamp(raw.get("timestamp"))
    time_label = date_label = ""
    if moment is not None:
        local = moment.astimezone(tz or timezone.utc)
        time_label = local.strftime("%H:%M")
        date_label = local.strftime("%d/%m/%Y")
    raw_sender = raw.get("sender") or ""
    return Message(
        id=str(raw.get("id")),
        text=raw.get("text") or "",
        sender=map_sender(raw_sender),
        timestamp_raw=raw.get("timestamp"),
        time_label=time_label,
        date_label=date_label,
        original_sender=str(raw_sender),
        multimedia=Multimedia.from_api(raw.get("multimedia")),
    )


def build_outbound_message(
    text: str,
    ack: dict[str, Any] | None = None,
    tz: tzinfo | None = None,
    now: datetime | None = None,
) -> Message:
    """Build the local copy of an agent reply the backend has acknowledged.

    The ack's ``message_id``/``id`` and ``timestamp`` win when present.
    """
    ack = ack or {}
    moment = now or datetime.now(timezone.utc)
    message_id = ack.get("message_id") or ack.get("id") or f"local-{uuid.uuid4()}"
    return format_message(
        {
            "id": message_id,
            "text": text,
            "sender": Sender.HUMAN_AGENT.value,
            "timestamp": ack.get("timestamp") or moment.isoformat(),
        },
        tz,
    )


def get_initials(name: str | None) -> str:
    if not name:
        return EMPTY_INITIALS
    return "".join(word[0].upper() for word in name.split() if word)[:2] or EMPTY_INITIALS


def extract_lead_info(state: dict[str, Any] | None) -> dict[str, Any] | None:
    """Collect the known lead fields, or None when none of them is set."""
    if not state:
        return None
    if not any(state.get(key) for key in LEAD_INFO_FIELDS):
        return None
    return {key: state.get(key) or None for key in LEAD_INFO_FIELDS}


def build_preview(
    messages: list[Message] | None,
    max_length: int = DEFAULT_PREVIEW_MAX_LENGTH,
) -> str:
    """Preview text for the contact list from the last cached message."""
    if not messages:
        return UNLOADED_PREVIEW
    last = messages[-1]
    if last.text:
        text = last.text if len(last.text) <= max_length else last.text[:max_length] + "..."
    else:
        text = MULTIMEDIA_PREVIEW
    prefix = OWN_MESSAGE_PREFIX if last.sender == Sender.HUMAN_AGENT else ""
    return f"{prefix}{text}"


def relative_time_label(updated_at: Any, now: datetime | None = None) -> str:
    """Coarse "how long ago" label used next to each contact."""
    moment = parse_timestamp(updated_at)
    if moment is None:
        return ""
    now = now or datetime.now(timezone.utc)
    hours = int((now - moment).total_seconds() // 3600)
    if hours < 1:
        return "Hace unos minutos"
    if hours < 24:
        return f"Hace {hours}h"
    return f"Hace {hours // 24}d"


def format_contact(
    record: dict[str, Any],
    messages: list[Message] | None = None,
    *,
    preview_max_length: int = DEFAULT_PREVIEW_MAX_LENGTH,
    now: datetime | None = None,
) -> ContactSummary:
    """Build a ContactSummary from a raw contact record.

    Defaults: absent name → "Nuevo lead", absent initials → " ", no loaded
    messages → "Presione para visualizar...".

    Args:
        record: Raw record (``id``, ``lead_id``, ``updated_at``,
            ``conversation_mode``, ``asignado_asesor``, ``state``).
        messages: Cached messages for the conversation, if loaded.
        preview_max_length: Truncation length for the preview text.
        now: Reference time for the relative label.

    Returns:
        The derived ContactSummary, keeping ``record`` as source_record.
    """
    state = record.get("state") or {}
    name = state.get("nombre")
    completed = bool(state.get("completed"))
    return ContactSummary(
        id=str(record.get("id")),
        lead_id=record.get("lead_id"),
        name=name or NEW_LEAD_NAME,
        phone=state.get("telefono"),
        last_message_preview=build_preview(messages, preview_max_length),
        updated_at=record.get("updated_at"),
        mode=ConversationMode.parse(record.get("conversation_mode")),
        completed=completed,
        assigned_advisor=record.get("asignado_asesor"),
        initials=get_initials(name),
        status="completed" if completed else "active",
        relative_time=relative_time_label(record.get("updated_at"), now),
        lead_info=extract_lead_info(state),
        source_record=record,
    )


def merge_conversation_payload(
    record: dict[str, Any],
    payload: dict[str, Any],
) -> dict[str, Any]:
    """Fold a conversation/delta response into a contact's source record.

    Returns a new dict; ``record`` is not mutated.
    """
    merged = dict(record)
    state = dict(merged.get("state") or {})
    if payload.get("updated_at") is not None:
        merged["updated_at"] = payload["updated_at"]
    if payload.get("conversation_mode") is not None:
        merged["conversation_mode"] = payload["conversation_mode"]
    if payload.get("completed") is not None:
        state["completed"] = payload["completed"]
    for key, value in (payload.get("lead_info") or {}).items():
        if value is not None:
            state[key] = value
    merged["state"] = state
    return merged
