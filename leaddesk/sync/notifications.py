"""Pending "something changed" markers for conversations not on screen."""

import logging
from datetime import datetime, timezone

from leaddesk.sync.models import Notification, NotificationKind

logger = logging.getLogger(__name__)


class NotificationLedger:
    """conversation id → pending Notification.

    A pending ``new_contact`` marker is not downgraded to
    ``updated_contact`` by a later change; only its timestamp moves.
    """

    def __init__(self) -> None:
        self._pending: dict[str, Notification] = {}

    def record(
        self,
        conversation_id: str,
        kind: NotificationKind,
        at: datetime | None = None,
    ) -> Notification:
        """Create or refresh the marker for a conversation.

        Args:
            conversation_id: Conversation that changed.
            kind: new_contact or updated_contact.
            at: When the change was observed (defaults to now).

        Returns:
            The stored Notification.
        """
        moment = at or datetime.now(timezone.utc)
        existing = self._pending.get(conversation_id)
        if existing is not None and existing.kind == NotificationKind.NEW_CONTACT:
            kind = NotificationKind.NEW_CONTACT
        notification = Notification(kind=kind, at=moment)
        self._pending[conversation_id] = notification
        logger.debug("Notification %s for %s", kind.value, conversation_id)
        return notification

    def acknowledge(self, conversation_id: str) -> Notification | None:
        """Clear the marker when the conversation is opened."""
        return self._pending.pop(conversation_id, None)

    def get(self, conversation_id: str) -> Notification | None:
        return self._pending.get(conversation_id)

    def pending(self) -> dict[str, Notification]:
        return dict(self._pending)

    def clear(self) -> None:
        self._pending.clear()

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)
