"""Observer pattern for sync engine events.

Provides the SyncEventObserver protocol and SyncEventEmitter class so a
front end (CLI, TUI, web bridge) can react to engine state changes without
polling the engine itself.
"""

import logging
from typing import Any, Protocol

from leaddesk.sync.models import ConversationMode, Message, Notification

logger = logging.getLogger(__name__)


class SyncEventObserver(Protocol):
    """Observer protocol for sync engine events."""

    async def on_messages_appended(
        self, conversation_id: str, messages: list[Message]
    ) -> None:
        """Called when new messages land in a conversation's cache.

        Args:
            conversation_id: Conversation that grew.
            messages: Newly accepted messages, in arrival order.
        """
        ...

    async def on_directory_changed(self, conversation_ids: list[str]) -> None:
        """Called when the contact directory is reloaded, reordered or extended.

        Args:
            conversation_ids: Directory order after the change.
        """
        ...

    async def on_notification(
        self, conversation_id: str, notification: Notification
    ) -> None:
        """Called when a conversation that is not open changes remotely."""
        ...

    async def on_mode_changed(
        self, conversation_id: str, mode: ConversationMode
    ) -> None:
        """Called after a confirmed or server-reported mode change."""
        ...

    async def on_polling_halted(self, poller: str) -> None:
        """Called when a poller stops because the credential expired.

        Args:
            poller: "messages" or "contacts".
        """
        ...


class SyncEventEmitter:
    """Emits sync events to registered observers.

    Exceptions from individual observers are caught and logged so one broken
    observer cannot stop delivery to the others or kill a poll tick.
    Observers may implement any subset of the protocol.
    """

    def __init__(self) -> None:
        self._observers: list[SyncEventObserver] = []

    def add_observer(self, observer: SyncEventObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: SyncEventObserver) -> None:
        self._observers.remove(observer)

    async def _dispatch(self, event: str, *args: Any) -> None:
        for observer in list(self._observers):
            handler = getattr(observer, event, None)
            if handler is None:
                continue
            try:
                await handler(*args)
            except Exception as e:
                logger.error(
                    "Observer %s failed %s: %s",
                    type(observer).__name__,
                    event,
                    e,
                )

    async def emit_messages_appended(
        self, conversation_id: str, messages: list[Message]
    ) -> None:
        await self._dispatch("on_messages_appended", conversation_id, messages)

    async def emit_directory_changed(self, conversation_ids: list[str]) -> None:
        await self._dispatch("on_directory_changed", conversation_ids)

    async def emit_notification(
        self, conversation_id: str, notification: Notification
    ) -> None:
        await self._dispatch("on_notification", conversation_id, notification)

    async def emit_mode_changed(
        self, conversation_id: str, mode: ConversationMode
    ) -> None:
        await self._dispatch("on_mode_changed", conversation_id, mode)

    async def emit_polling_halted(self, poller: str) -> None:
        await self._dispatch("on_polling_halted", poller)
