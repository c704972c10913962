"""SyncEngine: keeps the local console view consistent with the backend.

Owns the message cache, contact directory, mode registry, notification
ledger and both pollers. Constructed explicitly with an injected backend;
lifecycle is ``create → activate* → dispose``. Every public method returns
a ResultEnvelope (or plain data) and never raises on collaborator failure.

Example:
    async with SyncEngine(HttpBackend(api_config)) as engine:
        await engine.load_contacts()
        engine.start_contact_polling()
        await engine.activate("5215512345678")
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from leaddesk.sync.contact_directory import (
    DEFAULT_ECHO_THRESHOLD_MS,
    ContactDirectory,
    diff_contact_page,
)
from leaddesk.sync.envelope import CallStats, ResultEnvelope, guarded_call
from leaddesk.sync.events import SyncEventEmitter
from leaddesk.sync.message_cache import MessageCache
from leaddesk.sync.mode_registry import ConversationModeRegistry
from leaddesk.sync.models import (
    DEFAULT_PREVIEW_MAX_LENGTH,
    DEFAULT_TIMEZONE,
    ContactSummary,
    ConversationMode,
    Message,
    Notification,
    Sender,
    build_outbound_message,
    format_contact,
    merge_conversation_payload,
    resolve_timezone,
)
from leaddesk.sync.notifications import NotificationLedger
from leaddesk.sync.protocol import ConsoleBackend, ContactPage, ConversationPayload
from leaddesk.sync.scheduler import (
    CONTACT_IDLE_TIMEOUT_SECONDS,
    CONTACT_POLL_INTERVAL_SECONDS,
    MESSAGE_IDLE_TIMEOUT_SECONDS,
    MESSAGE_POLL_INTERVAL_SECONDS,
    PollerState,
    PollingScheduler,
)

logger = logging.getLogger(__name__)

CONTACTS_TARGET = "contacts"


@dataclass
class SyncSettings:
    """Engine tuning knobs (see LeadDeskConfig.to_sync_settings)."""

    message_interval: float = MESSAGE_POLL_INTERVAL_SECONDS
    message_idle_timeout: float = MESSAGE_IDLE_TIMEOUT_SECONDS
    contact_interval: float = CONTACT_POLL_INTERVAL_SECONDS
    contact_idle_timeout: float = CONTACT_IDLE_TIMEOUT_SECONDS
    echo_threshold_ms: int = DEFAULT_ECHO_THRESHOLD_MS
    timezone: str = DEFAULT_TIMEZONE
    preview_max_length: int = DEFAULT_PREVIEW_MAX_LENGTH


class SyncEngine:
    """Client-side conversation synchronization engine.

    Attributes:
        cache: Per-conversation message cache.
        directory: Ordered contact summaries.
        modes: Conversation mode registry.
        notifications: Pending notification markers.
        scheduler: Message-level and contact-level pollers.
        events: Observer fan-out for front ends.
        stats: Collaborator call counters.
    """

    def __init__(
        self,
        backend: ConsoleBackend,
        settings: SyncSettings | None = None,
        events: SyncEventEmitter | None = None,
    ) -> None:
        """Wire the stores and pollers around an injected backend.

        Args:
            backend: Collaborator implementation (HttpBackend or a fake).
            settings: Polling intervals, echo threshold, display options.
            events: Emitter to publish on; a fresh one by default.
        """
        self.settings = settings or SyncSettings()
        self._backend = backend
        self._tz = resolve_timezone(self.settings.timezone)
        self.stats = CallStats()
        self.events = events or SyncEventEmitter()

        self.cache = MessageCache(backend.fetch_conversation, self._tz, self.stats)
        self.directory = ContactDirectory(
            self.cache.messages, self.settings.preview_max_length
        )
        self.modes = ConversationModeRegistry(
            backend.mutate_conversation_mode, self.stats
        )
        self.modes.add_listener(self._on_mode_confirmed)
        self.notifications = NotificationLedger()
        self.scheduler = PollingScheduler(
            message_tick=self._message_tick,
            contact_tick=self._contact_tick,
            active_conversation=lambda: self._active_id,
            contacts_target=self._contacts_target,
            message_interval=self.settings.message_interval,
            message_idle_timeout=self.settings.message_idle_timeout,
            contact_interval=self.settings.contact_interval,
            contact_idle_timeout=self.settings.contact_idle_timeout,
            on_halted=self.events.emit_polling_halted,
        )

        self._active_id: str | None = None
        self._active_summary: ContactSummary | None = None
        self._contacts_enabled = False
        self._disposed = False
        # Bumped by logout(); work that awaited across a logout must not write.
        self._session = 0

    async def __aenter__(self) -> "SyncEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()

    # --- Selection -----------------------------------------------------

    @property
    def active_conversation_id(self) -> str | None:
        return self._active_id

    @property
    def active_summary(self) -> ContactSummary | None:
        """Summary of the open conversation, preferring the directory's copy."""
        if self._active_id is None:
            return None
        return self.directory.get(self._active_id) or self._active_summary

    async def activate(
        self,
        conversation_id: str | None,
        known_summary: ContactSummary | None = None,
    ) -> ResultEnvelope:
        """Open a conversation: load or catch up, then poll it.

        Args:
            conversation_id: Conversation to open; None deselects and stops
                message polling.
            known_summary: Summary the caller already holds, used to seed
                the mode registry on first open.

        Returns:
            The load or catch-up envelope for the conversation.
        """
        messages_poller = self.scheduler.messages
        if conversation_id is None:
            self._active_id = None
            self._active_summary = None
            messages_poller.start(None)
            return ResultEnvelope.ok({"messages": []})
        if not conversation_id:
            return ResultEnvelope.invalid("conversation_id is required")

        logger.info("Activating conversation %s", conversation_id)
        session = self._session
        self._active_id = conversation_id
        self._active_summary = known_summary or self.directory.get(conversation_id)
        messages_poller.stop()

        if known_summary is not None and known_summary.mode is not None:
            self.modes.seed(conversation_id, known_summary.mode)

        if self.cache.has_entry(conversation_id):
            result = await messages_poller.run_once(conversation_id)
            if result is None:
                result = ResultEnvelope.fail("Catch-up check failed")
        else:
            # Either a first load, or a failure-marked id that the cache
            # short-circuits without touching the network.
            result = await self._load_conversation(conversation_id)

        if session != self._session:
            logger.debug("Session ended while activating %s", conversation_id)
            return result
        if self._active_id != conversation_id:
            logger.debug("Conversation %s deselected while loading", conversation_id)
            return result
        if result.auth_expired and messages_poller.state != PollerState.HALTED:
            messages_poller.halt()
            await self.events.emit_polling_halted(messages_poller.name)

        if messages_poller.state != PollerState.HALTED:
            messages_poller.start(conversation_id)
        self.notifications.acknowledge(conversation_id)
        return result

    async def refresh_conversation(self, conversation_id: str) -> ResultEnvelope:
        """Force a full reload, clearing any failure mark."""
        return await self._load_conversation(conversation_id, force_refresh=True)

    async def _load_conversation(
        self, conversation_id: str, force_refresh: bool = False
    ) -> ResultEnvelope:
        session = self._session
        result = await self.cache.load_or_fetch(conversation_id, force_refresh)
        if session != self._session:
            logger.debug("Dropping load of %s after logout", conversation_id)
            return result
        if not result.success or result.from_cache:
            return result

        data = result.data
        if data.get("mode") is not None:
            self.modes.seed(conversation_id, data["mode"])
        self._fold_into_contact(conversation_id, {
            "conversation_mode": data["mode"].value if data.get("mode") else None,
            "lead_info": data.get("lead_info"),
            "completed": data.get("completed"),
            "updated_at": data.get("updated_at"),
        })
        await self.events.emit_messages_appended(conversation_id, data["messages"])
        await self.events.emit_directory_changed(self.directory.ids())
        return result

    def _fold_into_contact(self, conversation_id: str, update: dict[str, Any]) -> None:
        summary = self.directory.update_record(
            conversation_id, lambda record: merge_conversation_payload(record, update)
        )
        if summary is None and conversation_id == self._active_id and self._active_summary:
            record = merge_conversation_payload(self._active_summary.source_record, update)
            record.setdefault("id", conversation_id)
            self._active_summary = format_contact(
                record,
                self.cache.messages(conversation_id),
                preview_max_length=self.settings.preview_max_length,
            )

    # --- Message polling -------------------------------------------------

    async def _message_tick(self, conversation_id: str) -> ResultEnvelope | None:
        # The timer's target is fixed per start; skip if the selection moved.
        if conversation_id != self._active_id:
            logger.debug("Skipping stale message tick for %s", conversation_id)
            return None
        return await self.poll_messages_once(conversation_id)

    async def poll_messages_once(self, conversation_id: str) -> ResultEnvelope:
        """One delta check for a conversation.

        Skipped when nothing is cached yet. A failure-marked conversation is
        polled without a last message id so it can recover.

        Returns:
            Success envelope with the appended messages (possibly none), or
            the collaborator's failure.
        """
        last_id = self.cache.last_message_id(conversation_id)
        failed = self.cache.is_failed(conversation_id)
        if last_id is None and not failed:
            logger.debug("No cached messages for %s; skipping delta", conversation_id)
            return ResultEnvelope.ok({"messages": []})

        session = self._session
        result = await guarded_call(
            "fetch_recent_messages_delta",
            self._backend.fetch_recent_messages_delta,
            conversation_id,
            last_id,
            stats=self.stats,
        )
        if session != self._session:
            logger.debug("Dropping delta for %s after logout", conversation_id)
            return ResultEnvelope.ok({"messages": []})
        if not result.success:
            if not result.auth_expired:
                logger.warning("Delta fetch for %s failed: %s", conversation_id, result.error)
            return result

        payload = ConversationPayload.from_api(result.data)
        if not payload.messages:
            return ResultEnvelope.ok({"messages": []})

        appended = self.cache.append(conversation_id, payload.messages)
        if not appended:
            return ResultEnvelope.ok({"messages": []})

        logger.info("%d new message(s) in %s", len(appended), conversation_id)
        self._fold_into_contact(conversation_id, payload.as_record_update())
        self.directory.sort()
        await self.events.emit_messages_appended(conversation_id, appended)
        await self.events.emit_directory_changed(self.directory.ids())
        return ResultEnvelope.ok({"messages": appended})

    # --- Contact directory -------------------------------------------------

    async def load_contacts(self) -> ResultEnvelope:
        """Initial directory load, replacing whatever is held."""
        session = self._session
        result = await guarded_call(
            "fetch_contact_page", self._backend.fetch_contact_page, None,
            stats=self.stats,
        )
        if session != self._session:
            logger.debug("Dropping contact load after logout")
            return ResultEnvelope.ok([])
        if not result.success:
            logger.error("Failed to load contacts: %s", result.error)
            return result
        page = ContactPage.from_api(result.data)
        self.directory.load(page.conversations, page.has_more)
        await self.events.emit_directory_changed(self.directory.ids())
        return ResultEnvelope.ok(self.directory.summaries())

    async def load_next_contacts(self) -> ResultEnvelope:
        """Page in contacts after the ones already held.

        Returns:
            Success envelope with the summaries that were added.
        """
        session = self._session
        result = await guarded_call(
            "fetch_contact_page", self._backend.fetch_contact_page,
            self.directory.ids(), stats=self.stats,
        )
        if session != self._session:
            logger.debug("Dropping contact page after logout")
            return ResultEnvelope.ok([])
        self.mark_user_activity()
        if not result.success:
            if result.auth_expired and self.scheduler.contacts.halt():
                await self.events.emit_polling_halted(self.scheduler.contacts.name)
            logger.error("Failed to load more contacts: %s", result.error)
            return result
        page = ContactPage.from_api(result.data)
        added = self.directory.extend(page.conversations)
        self.directory.has_more = page.has_more and bool(added)
        if added:
            await self.events.emit_directory_changed(self.directory.ids())
        return ResultEnvelope.ok([self.directory.get(cid) for cid in added])

    def start_contact_polling(self) -> None:
        """Start (or restart) the contact-level poller."""
        self._contacts_enabled = True
        self.scheduler.contacts.start(CONTACTS_TARGET)

    def stop_contact_polling(self) -> None:
        self._contacts_enabled = False
        self.scheduler.contacts.stop()

    def _contacts_target(self) -> str | None:
        return CONTACTS_TARGET if self._contacts_enabled and not self._disposed else None

    async def _contact_tick(self, _target: str) -> ResultEnvelope:
        return await self.poll_contacts_once()

    async def poll_contacts_once(self) -> ResultEnvelope:
        """Fetch recent contacts, merge them, and raise notifications.

        Returns:
            Success envelope with ``notifications`` (id → Notification) and
            the resulting ``conversation_ids`` order.
        """
        session = self._session
        result = await guarded_call(
            "fetch_contact_page", self._backend.fetch_contact_page, None,
            stats=self.stats,
        )
        if session != self._session:
            logger.debug("Dropping contact poll after logout")
            return ResultEnvelope.ok({"notifications": {}, "conversation_ids": []})
        if not result.success:
            if not result.auth_expired:
                logger.warning("Contact poll failed: %s", result.error)
            return result

        page = ContactPage.from_api(result.data)
        changes = diff_contact_page(
            self.directory.updated_at_index(),
            page.conversations,
            self.settings.echo_threshold_ms,
        )
        self.directory.apply_page(page.conversations)

        now = datetime.now(timezone.utc)
        raised: dict[str, Notification] = {}
        for conversation_id, kind in changes:
            if conversation_id == self._active_id:
                continue
            raised[conversation_id] = self.notifications.record(conversation_id, kind, now)
        if raised:
            logger.info("Contact poll raised %d notification(s)", len(raised))
        for conversation_id, notification in raised.items():
            await self.events.emit_notification(conversation_id, notification)
        ids = self.directory.ids()
        await self.events.emit_directory_changed(ids)
        return ResultEnvelope.ok({"notifications": raised, "conversation_ids": ids})

    def search(self, term: str) -> list[ContactSummary]:
        return self.directory.search(term)

    # --- Modes -------------------------------------------------------------

    async def set_mode(self, conversation_id: str, mode: Any) -> ResultEnvelope:
        """Switch a conversation between bot and agent (see ConversationModeRegistry)."""
        session = self._session
        result = await self.modes.set_mode(conversation_id, mode)
        if result.success and session == self._session:
            await self.events.emit_mode_changed(
                conversation_id, self.modes.get_mode(conversation_id)
            )
        return result

    def get_mode(self, conversation_id: str) -> ConversationMode:
        return self.modes.get_mode(conversation_id)

    def _on_mode_confirmed(self, conversation_id: str, mode: ConversationMode) -> None:
        self.directory.set_mode(conversation_id, mode)
        if conversation_id == self._active_id and self._active_summary is not None:
            self._active_summary = replace(
                self._active_summary,
                mode=mode,
                source_record={
                    **self._active_summary.source_record,
                    "conversation_mode": mode.value,
                },
            )

    # --- Outbound ----------------------------------------------------------

    async def append_local(self, conversation_id: str, message: Message) -> ResultEnvelope:
        """Append an outbound message the backend already acknowledged.

        An agent's own reply stamps a fresh ``updated_at`` and re-sorts, so
        the conversation moves to the top without waiting for a poll.
        """
        if not conversation_id:
            return ResultEnvelope.invalid("conversation_id is required")
        if not self.cache.append_message(conversation_id, message):
            return ResultEnvelope.ok({"appended": False})
        if message.sender == Sender.HUMAN_AGENT:
            self.directory.touch(conversation_id)
            self.directory.sort()
        else:
            self.directory.refresh(conversation_id)
        await self.events.emit_messages_appended(conversation_id, [message])
        await self.events.emit_directory_changed(self.directory.ids())
        return ResultEnvelope.ok({"appended": True, "message": message})

    async def send_text(self, conversation_id: str, text: str) -> ResultEnvelope:
        """Send an agent text reply and append it locally once acknowledged."""
        if not conversation_id:
            return ResultEnvelope.invalid("conversation_id is required")
        if not text or not text.strip():
            return ResultEnvelope.invalid("message text is required")
        session = self._session
        result = await guarded_call(
            "send_agent_message", self._backend.send_agent_message,
            conversation_id, text, stats=self.stats,
        )
        self.mark_user_activity()
        if not result.success:
            logger.warning("Send to %s failed: %s", conversation_id, result.error)
            return result
        ack = result.data if isinstance(result.data, dict) else {}
        message = build_outbound_message(text, ack, self._tz)
        if session == self._session:
            await self.append_local(conversation_id, message)
        return ResultEnvelope.ok({"message": message, "ack": result.data})

    # --- Activity, credentials, teardown -------------------------------------

    def mark_user_activity(self) -> None:
        """Reset both inactivity countdowns, resuming suspended pollers."""
        if self._disposed:
            return
        self.scheduler.mark_activity()

    def resume_after_login(self) -> None:
        """Clear auth-halted pollers once a fresh credential exists."""
        if self._disposed:
            return
        logger.info("Resuming polling after login")
        self.scheduler.resume()

    def messages(self, conversation_id: str) -> list[Message]:
        return self.cache.messages(conversation_id)

    async def logout(self) -> None:
        """Cancel every timer and wipe all state; the engine stays usable.

        Loads still awaiting the backend finish into the void: their results
        are dropped because the session they started in is over.
        """
        self._session += 1
        await self.scheduler.shutdown()
        self._contacts_enabled = False
        self._active_id = None
        self._active_summary = None
        self.cache.clear()
        self.directory.clear()
        self.modes.clear()
        self.notifications.clear()
        logger.info("Sync engine state cleared")

    async def dispose(self) -> None:
        """Final teardown; idempotent."""
        if self._disposed:
            return
        self._disposed = True
        await self.logout()

    def debug_info(self) -> dict[str, Any]:
        return {
            **self.cache.stats(),
            "active_conversation": self._active_id,
            "active_loading": (
                self._active_id is not None and self.cache.is_loading(self._active_id)
            ),
            "contacts": len(self.directory),
            "pending_notifications": len(self.notifications),
            "polling": self.scheduler.debug_info(),
            "calls": {
                "total": self.stats.calls,
                "failures": self.stats.failures,
                "exceptions": self.stats.exceptions,
                "by_operation": dict(self.stats.by_operation),
            },
        }
