"""Root-level pytest fixtures for all tests.

Provides:
- FakeBackend: ConsoleBackend whose collaborators are AsyncMocks
- Raw record / message factories in the backend's wire shape
- Fast SyncSettings so timer tests finish in well under a second
"""

from typing import Any
from unittest.mock import AsyncMock

import pytest

from leaddesk.sync.engine import SyncEngine, SyncSettings
from leaddesk.sync.envelope import ResultEnvelope


class FakeBackend:
    """ConsoleBackend with AsyncMock collaborators.

    The engine binds these attributes at construction, so tests configure
    them through ``return_value`` / ``side_effect`` rather than replacing them.
    """

    def __init__(self) -> None:
        self.fetch_contact_page = AsyncMock(return_value=ResultEnvelope.ok([]))
        self.fetch_conversation = AsyncMock(
            return_value=ResultEnvelope.ok({"messages": []})
        )
        self.fetch_recent_messages_delta = AsyncMock(
            return_value=ResultEnvelope.ok({"messages": []})
        )
        self.mutate_conversation_mode = AsyncMock(
            return_value=ResultEnvelope.ok({"status": "ok"})
        )
        self.send_agent_message = AsyncMock(
            return_value=ResultEnvelope.ok({"message_id": "out-1"})
        )


def raw_record(
    conversation_id: str,
    updated_at: Any = None,
    name: str | None = None,
    mode: str | None = "bot",
    **state: Any,
) -> dict[str, Any]:
    """Contact record in the recent-leads shape."""
    return {
        "id": conversation_id,
        "lead_id": f"lead-{conversation_id}",
        "updated_at": updated_at,
        "conversation_mode": mode,
        "asignado_asesor": None,
        "state": {"nombre": name, "telefono": conversation_id, **state},
    }


def raw_message(
    message_id: str,
    text: str = "hola",
    sender: str = "lead",
    timestamp: Any = "2024-01-01T18:30:00Z",
) -> dict[str, Any]:
    """Message in the conversation / recent-messages shape."""
    return {"id": message_id, "text": text, "sender": sender, "timestamp": timestamp}


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_record():
    return raw_record


@pytest.fixture
def make_message():
    return raw_message


@pytest.fixture
def fast_settings() -> SyncSettings:
    """Sub-second cadences; idle windows long enough not to fire by accident."""
    return SyncSettings(
        message_interval=0.05,
        message_idle_timeout=5.0,
        contact_interval=0.05,
        contact_idle_timeout=5.0,
    )


@pytest.fixture
def make_engine(backend, fast_settings):
    """Factory for a SyncEngine over the fake backend.

    Use as ``async with make_engine() as engine:`` so timers are torn down.
    """
    def _make(**overrides: Any) -> SyncEngine:
        settings = SyncSettings(**{**vars(fast_settings), **overrides})
        return SyncEngine(backend, settings)

    return _make
