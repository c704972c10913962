"""Unit tests for the sync event observer pattern.

Tests cover:
- Observer registration and removal
- Emission to multiple observers
- Partial observers and exception isolation
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from leaddesk.sync.events import SyncEventEmitter
from leaddesk.sync.models import (
    ConversationMode,
    Message,
    Notification,
    NotificationKind,
    Sender,
)


class RecordingObserver:
    """Observer that records every event it receives."""

    def __init__(self) -> None:
        self.appended: list[tuple[str, list[Message]]] = []
        self.directory: list[list[str]] = []
        self.notifications: list[tuple[str, Notification]] = []
        self.modes: list[tuple[str, ConversationMode]] = []
        self.halted: list[str] = []

    async def on_messages_appended(self, conversation_id, messages):
        self.appended.append((conversation_id, messages))

    async def on_directory_changed(self, conversation_ids):
        self.directory.append(conversation_ids)

    async def on_notification(self, conversation_id, notification):
        self.notifications.append((conversation_id, notification))

    async def on_mode_changed(self, conversation_id, mode):
        self.modes.append((conversation_id, mode))

    async def on_polling_halted(self, poller):
        self.halted.append(poller)


class TestSyncEventEmitter:
    """Tests for SyncEventEmitter."""

    @pytest.mark.asyncio
    async def test_emits_to_all_observers(self):
        emitter = SyncEventEmitter()
        first, second = RecordingObserver(), RecordingObserver()
        emitter.add_observer(first)
        emitter.add_observer(second)
        message = Message(id="m1", text="hola", sender=Sender.CONTACT)

        await emitter.emit_messages_appended("c1", [message])
        await emitter.emit_directory_changed(["c1", "c2"])
        await emitter.emit_mode_changed("c1", ConversationMode.AGENT)
        await emitter.emit_polling_halted("messages")

        for observer in (first, second):
            assert observer.appended == [("c1", [message])]
            assert observer.directory == [["c1", "c2"]]
            assert observer.modes == [("c1", ConversationMode.AGENT)]
            assert observer.halted == ["messages"]

    @pytest.mark.asyncio
    async def test_notification_event(self):
        emitter = SyncEventEmitter()
        observer = RecordingObserver()
        emitter.add_observer(observer)
        notification = Notification(
            NotificationKind.NEW_CONTACT, datetime(2024, 1, 1, tzinfo=timezone.utc)
        )

        await emitter.emit_notification("c9", notification)

        assert observer.notifications == [("c9", notification)]

    @pytest.mark.asyncio
    async def test_remove_observer(self):
        emitter = SyncEventEmitter()
        observer = RecordingObserver()
        emitter.add_observer(observer)
        emitter.remove_observer(observer)

        await emitter.emit_polling_halted("contacts")

        assert observer.halted == []

    @pytest.mark.asyncio
    async def test_partial_observer(self):
        """Observers may implement only the events they care about."""
        emitter = SyncEventEmitter()
        partial = MagicMock(spec=["on_polling_halted"])
        partial.on_polling_halted = AsyncMock()
        emitter.add_observer(partial)

        await emitter.emit_directory_changed(["c1"])
        await emitter.emit_polling_halted("messages")

        partial.on_polling_halted.assert_awaited_once_with("messages")

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_block_others(self):
        emitter = SyncEventEmitter()
        broken = RecordingObserver()
        broken.on_polling_halted = AsyncMock(side_effect=RuntimeError("render bug"))
        healthy = RecordingObserver()
        emitter.add_observer(broken)
        emitter.add_observer(healthy)

        await emitter.emit_polling_halted("messages")

        assert healthy.halted == ["messages"]
