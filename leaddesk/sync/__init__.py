"""Conversation synchronization engine for LeadDesk.

Keeps a local view of lead conversations consistent with the backend using
tiered polling, caching, deduplication, inactivity suspension and
notification surfacing.
"""

from leaddesk.sync.contact_directory import ContactDirectory, diff_contact_page, sort_contacts
from leaddesk.sync.engine import CONTACTS_TARGET, SyncEngine, SyncSettings
from leaddesk.sync.envelope import TOKEN_EXPIRED, ErrorKind, ResultEnvelope
from leaddesk.sync.events import SyncEventEmitter, SyncEventObserver
from leaddesk.sync.message_cache import MessageCache
from leaddesk.sync.mode_registry import ConversationModeRegistry
from leaddesk.sync.models import (
    ContactSummary,
    ConversationMode,
    Message,
    Multimedia,
    Notification,
    NotificationKind,
    Sender,
    format_contact,
    format_message,
)
from leaddesk.sync.notifications import NotificationLedger
from leaddesk.sync.protocol import ConsoleBackend, ContactPage, ConversationPayload
from leaddesk.sync.scheduler import Poller, PollerState, PollingScheduler

__all__ = [
    # Engine
    "SyncEngine",
    "SyncSettings",
    "CONTACTS_TARGET",
    # Envelope
    "ResultEnvelope",
    "ErrorKind",
    "TOKEN_EXPIRED",
    # Stores
    "MessageCache",
    "ContactDirectory",
    "ConversationModeRegistry",
    "NotificationLedger",
    "sort_contacts",
    "diff_contact_page",
    # Polling
    "Poller",
    "PollerState",
    "PollingScheduler",
    # Events
    "SyncEventEmitter",
    "SyncEventObserver",
    # Models
    "Message",
    "Multimedia",
    "Sender",
    "ConversationMode",
    "ContactSummary",
    "Notification",
    "NotificationKind",
    "format_message",
    "format_contact",
    # Backend protocol
    "ConsoleBackend",
    "ContactPage",
    "ConversationPayload",
]
