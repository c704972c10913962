"""Conversation control mode registry (bot vs human agent).

The registry is what the chat panel renders from. Entries are written only
after the backend acknowledges a mode change, or once as a first-load seed
for a conversation with no entry. Polled payloads never write here: a poll
response issued before a mutation could otherwise revert it.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from leaddesk.sync.envelope import CallStats, ResultEnvelope, guarded_call
from leaddesk.sync.models import ConversationMode

logger = logging.getLogger(__name__)

# Humans must opt in to taking over a conversation.
DEFAULT_MODE = ConversationMode.BOT

ModeListener = Callable[[str, ConversationMode], None]


class ConversationModeRegistry:
    """conversation id → ConversationMode, defaulting to bot."""

    def __init__(
        self,
        mutate: Callable[[str, str], Awaitable[Any]],
        stats: CallStats | None = None,
    ) -> None:
        """Initialize with the mode-mutation collaborator.

        Args:
            mutate: Async collaborator ``(conversation_id, mode) -> envelope``.
            stats: Optional shared call counters.
        """
        self._mutate = mutate
        self._stats = stats
        self._modes: dict[str, ConversationMode] = {}
        self._listeners: list[ModeListener] = []
        self._epoch = 0

    def add_listener(self, listener: ModeListener) -> None:
        """Register a callback fired after a confirmed mode change."""
        self._listeners.append(listener)

    async def set_mode(self, conversation_id: str, mode: Any) -> ResultEnvelope:
        """Ask the backend to switch modes, then record the confirmed mode.

        Args:
            conversation_id: Conversation to switch.
            mode: ``"bot"``/``"agent"`` or a ConversationMode.

        Returns:
            The collaborator's envelope (failures are returned unmodified),
            or an invalid-input envelope without any network call.
        """
        if not conversation_id:
            return ResultEnvelope.invalid("conversation_id is required")
        parsed = ConversationMode.parse(mode)
        if parsed is None:
            return ResultEnvelope.invalid(f"Invalid conversation mode: {mode!r}")

        epoch = self._epoch
        result = await guarded_call(
            "mutate_conversation_mode",
            self._mutate,
            conversation_id,
            parsed.value,
            stats=self._stats,
        )
        if not result.success:
            logger.warning(
                "Mode change to %s rejected for %s: %s",
                parsed.value, conversation_id, result.error,
            )
            return result
        if epoch != self._epoch:
            logger.info("Registry cleared during mode change for %s; not recorded", conversation_id)
            return result

        self._modes[conversation_id] = parsed
        logger.info("Conversation %s switched to %s", conversation_id, parsed.value)
        for listener in self._listeners:
            try:
                listener(conversation_id, parsed)
            except Exception as e:
                logger.error("Mode listener %r failed: %s", listener, e)
        return result

    def get_mode(self, conversation_id: str) -> ConversationMode:
        return self._modes.get(conversation_id, DEFAULT_MODE)

    def has_entry(self, conversation_id: str) -> bool:
        return conversation_id in self._modes

    def seed(self, conversation_id: str, mode: Any) -> bool:
        """First-load initialization; never overwrites an existing entry.

        Returns:
            True if the entry was written.
        """
        parsed = ConversationMode.parse(mode)
        if parsed is None or conversation_id in self._modes:
            return False
        self._modes[conversation_id] = parsed
        return True

    def clear(self) -> None:
        self._modes.clear()
        self._epoch += 1

    def snapshot(self) -> dict[str, str]:
        return {cid: mode.value for cid, mode in self._modes.items()}
