"""ConsoleBackend protocol and wire data models.

Defines the abstract collaborator interface the SyncEngine consumes. The
engine calls protocol methods without knowing which transport is active;
HttpBackend is the production implementation, tests inject fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from leaddesk.sync.envelope import ResultEnvelope


@dataclass
class ContactPage:
    """One page of raw contact records.

    Attributes:
        conversations: Raw contact records, in backend (authoritative) order.
        has_more: Whether another page is probably available.
    """

    conversations: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False

    @classmethod
    def from_api(cls, data: Any) -> "ContactPage":
        """Construct from API JSON.

        The recent-leads endpoint returns a bare list; paged endpoints return
        ``{"conversations": [...], "has_more": bool}``. A bare non-empty list
        means there are probably more contacts to load.
        """
        if isinstance(data, ContactPage):
            return data
        if isinstance(data, list):
            return cls(conversations=list(data), has_more=bool(data))
        if isinstance(data, dict):
            conversations = data.get("conversations") or data.get("leads") or []
            return cls(
                conversations=list(conversations),
                has_more=bool(data.get("has_more", bool(conversations))),
            )
        return cls()


@dataclass
class ConversationPayload:
    """Normalized conversation or delta response.

    Aligned with the backend's conversation and recent-messages responses.
    Extra fields from the API response are accepted and ignored.
    """

    messages: list[dict[str, Any]] = field(default_factory=list)
    conversation_mode: str | None = None
    lead_info: dict[str, Any] | None = None
    completed: bool | None = None
    updated_at: Any = None

    @classmethod
    def from_api(cls, data: Any) -> "ConversationPayload":
        """Construct from API JSON, tolerating a bare message list."""
        if isinstance(data, ConversationPayload):
            return data
        if isinstance(data, list):
            return cls(messages=list(data))
        if not isinstance(data, dict):
            return cls()
        return cls(
            messages=list(data.get("messages") or []),
            conversation_mode=data.get("conversation_mode"),
            lead_info=data.get("lead_info"),
            completed=data.get("completed"),
            updated_at=data.get("updated_at"),
        )

    def as_record_update(self) -> dict[str, Any]:
        """Fields to fold into a contact's source record."""
        return {
            "conversation_mode": self.conversation_mode,
            "lead_info": self.lead_info,
            "completed": self.completed,
            "updated_at": self.updated_at,
        }


class ConsoleBackend(Protocol):
    """Collaborators consumed by the SyncEngine.

    Every method returns a ResultEnvelope (or a ``{"success", ...}`` dict,
    which the engine coerces). Expired credentials are reported with the
    literal error ``"Token expirado"``.
    """

    async def fetch_contact_page(
        self, known_ids: list[str] | None = None
    ) -> ResultEnvelope:
        """Fetch recent contacts, or the page after ``known_ids``."""
        ...

    async def fetch_conversation(self, conversation_id: str) -> ResultEnvelope:
        """Fetch a full conversation (messages, mode, lead info)."""
        ...

    async def fetch_recent_messages_delta(
        self, conversation_id: str, last_message_id: str | None = None
    ) -> ResultEnvelope:
        """Fetch messages newer than ``last_message_id``."""
        ...

    async def mutate_conversation_mode(
        self, conversation_id: str, mode: str
    ) -> ResultEnvelope:
        """Switch a conversation between bot and agent control."""
        ...

    async def send_agent_message(
        self, conversation_id: str, text: str
    ) -> ResultEnvelope:
        """Send a human-agent text reply."""
        ...
