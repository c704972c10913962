"""Per-conversation in-memory message store with a terminal-failure set.

An id is either cached-success (has an entry) or cached-failure (in the
failure set), never both. Failed ids short-circuit ``load_or_fetch`` until a
forced refresh, so a known-bad conversation is not hammered on every click.

Example:
    cache = MessageCache(backend.fetch_conversation)
    result = await cache.load_or_fetch("5215512345678")
    cache.append("5215512345678", delta_messages)
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import tzinfo
from typing import Any

from leaddesk.sync.envelope import CallStats, ResultEnvelope, guarded_call
from leaddesk.sync.models import ConversationMode, Message, format_message
from leaddesk.sync.protocol import ConversationPayload

logger = logging.getLogger(__name__)

UNAVAILABLE_ERROR = "Conversación no disponible"
DISCARDED_ERROR = "Cache cleared while loading"


class MessageCache:
    """Cache of formatted messages keyed by conversation id.

    Attributes:
        _entries: conversation id → messages in arrival order.
        _seen: conversation id → set of message ids in ``_entries``.
        _failed: conversation id → last error for ids that failed to load.
        _loading: ids with a fetch in flight.
        _epoch: bumped by clear(); a fetch that started in an older epoch
            is discarded instead of stored.
    """

    def __init__(
        self,
        fetch_conversation: Callable[[str], Awaitable[Any]],
        tz: tzinfo | None = None,
        stats: CallStats | None = None,
    ) -> None:
        """Initialize an empty cache.

        Args:
            fetch_conversation: Collaborator returning a conversation envelope.
            tz: Display timezone used when formatting messages.
            stats: Optional shared call counters.
        """
        self._fetch_conversation = fetch_conversation
        self._tz = tz
        self._stats = stats
        self._entries: dict[str, list[Message]] = {}
        self._seen: dict[str, set[str]] = {}
        self._failed: dict[str, str] = {}
        self._loading: set[str] = set()
        self._epoch = 0

    async def load_or_fetch(
        self, conversation_id: str, force_refresh: bool = False
    ) -> ResultEnvelope:
        """Serve a conversation from cache, or fetch it.

        Args:
            conversation_id: Conversation to load.
            force_refresh: Bypass both the cache and the failure set.

        Returns:
            Success envelope whose data holds ``messages`` plus, when fetched,
            ``mode``, ``name``, ``phone``, ``completed``, ``lead_info`` and
            ``updated_at``. Failure envelopes carry ``previously_failed``
            when short-circuited. A fetch overtaken by clear() returns a
            failure without touching the cache.
        """
        if not conversation_id:
            return ResultEnvelope.invalid("conversation_id is required")

        if not force_refresh and conversation_id in self._failed:
            logger.debug("Conversation %s failed previously, skipping fetch", conversation_id)
            return ResultEnvelope.fail(
                UNAVAILABLE_ERROR,
                from_cache=True,
                previously_failed=True,
            )

        if not force_refresh and conversation_id in self._entries:
            logger.debug("Serving conversation %s from cache", conversation_id)
            return ResultEnvelope.ok(
                {"messages": self.messages(conversation_id)},
                from_cache=True,
            )

        epoch = self._epoch
        self._loading.add(conversation_id)
        try:
            result = await guarded_call(
                "fetch_conversation",
                self._fetch_conversation,
                conversation_id,
                stats=self._stats,
            )
        finally:
            self._loading.discard(conversation_id)

        if epoch != self._epoch:
            logger.info("Discarding load of %s: cache was cleared meanwhile", conversation_id)
            return ResultEnvelope.fail(DISCARDED_ERROR)
        if result.auth_expired:
            # Not a property of the conversation; leave it retryable.
            logger.warning("Credential expired while loading %s", conversation_id)
            return result
        if not result.success:
            self._mark_failed(conversation_id, result.error or UNAVAILABLE_ERROR)
            logger.warning(
                "Failed to load conversation %s: %s", conversation_id, result.error
            )
            return result

        payload = ConversationPayload.from_api(result.data)
        fetched = [format_message(raw, self._tz) for raw in payload.messages]
        self._store(conversation_id, fetched)
        logger.info(
            "Loaded conversation %s (%d messages)", conversation_id, len(fetched)
        )

        lead_info = payload.lead_info or {}
        return ResultEnvelope.ok({
            "messages": self.messages(conversation_id),
            "mode": ConversationMode.parse(payload.conversation_mode),
            "name": lead_info.get("nombre"),
            "phone": lead_info.get("telefono"),
            "completed": payload.completed,
            "lead_info": payload.lead_info,
            "updated_at": payload.updated_at,
        })

    def append(self, conversation_id: str, raw_messages: list[dict[str, Any]]) -> list[Message]:
        """Format and append raw messages, skipping ids already cached.

        Args:
            conversation_id: Owning conversation.
            raw_messages: Raw backend messages, oldest first.

        Returns:
            The messages actually appended (may be empty).
        """
        return self._append_formatted(
            conversation_id, [format_message(raw, self._tz) for raw in raw_messages]
        )

    def append_message(self, conversation_id: str, message: Message) -> bool:
        """Append one already-formatted message. Returns False on a duplicate."""
        return bool(self._append_formatted(conversation_id, [message]))

    def _append_formatted(self, conversation_id: str, messages: list[Message]) -> list[Message]:
        # Re-read current state on every call: ticks and local appends interleave.
        entry = self._entries.setdefault(conversation_id, [])
        seen = self._seen.setdefault(conversation_id, set())
        accepted = []
        for message in messages:
            if message.id in seen:
                continue
            seen.add(message.id)
            entry.append(message)
            accepted.append(message)
        if conversation_id in self._failed:
            del self._failed[conversation_id]
            logger.info("Conversation %s recovered from failure", conversation_id)
        return accepted

    def _store(self, conversation_id: str, fetched: list[Message]) -> None:
        """Replace an entry with a fresh fetch, keeping later local arrivals."""
        current = self._entries.get(conversation_id, [])
        merged: list[Message] = []
        merged_ids: set[str] = set()
        for message in [*fetched, *current]:
            if message.id not in merged_ids:
                merged_ids.add(message.id)
                merged.append(message)
        self._entries[conversation_id] = merged
        self._seen[conversation_id] = merged_ids
        self._failed.pop(conversation_id, None)

    def _mark_failed(self, conversation_id: str, error: str) -> None:
        self._entries.pop(conversation_id, None)
        self._seen.pop(conversation_id, None)
        self._failed[conversation_id] = error

    def messages(self, conversation_id: str) -> list[Message]:
        """Cached messages for a conversation; empty list when unknown or failed."""
        return list(self._entries.get(conversation_id, ()))

    def has_entry(self, conversation_id: str) -> bool:
        return conversation_id in self._entries

    def is_failed(self, conversation_id: str) -> bool:
        return conversation_id in self._failed

    def failure_reason(self, conversation_id: str) -> str | None:
        return self._failed.get(conversation_id)

    def is_loading(self, conversation_id: str) -> bool:
        return conversation_id in self._loading

    def last_message_id(self, conversation_id: str) -> str | None:
        entry = self._entries.get(conversation_id)
        return entry[-1].id if entry else None

    def clear(self) -> None:
        """Drop every entry and failure mark (logout)."""
        logger.info(
            "Clearing message cache (%d cached, %d failed)",
            len(self._entries),
            len(self._failed),
        )
        self._entries.clear()
        self._seen.clear()
        self._failed.clear()
        self._loading.clear()
        self._epoch += 1

    def stats(self) -> dict[str, Any]:
        """Cache statistics for debugging."""
        return {
            "total_cached_conversations": len(self._entries),
            "cached_conversation_ids": list(self._entries),
            "total_failed_conversations": len(self._failed),
            "failed_conversation_ids": list(self._failed),
        }
