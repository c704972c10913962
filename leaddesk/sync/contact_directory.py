"""Ordered directory of contact summaries.

Summaries are always re-derived from their ``source_record`` plus the
messages currently cached for the conversation, so the preview text stays
consistent with the cache without a second round trip.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from leaddesk.sync.models import (
    DEFAULT_PREVIEW_MAX_LENGTH,
    ContactSummary,
    ConversationMode,
    Message,
    NotificationKind,
    format_contact,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_ECHO_THRESHOLD_MS = 2000


def sort_contacts(summaries: Iterable[ContactSummary]) -> list[ContactSummary]:
    """Order by ``updated_at`` descending; missing/unparsable values go last.

    The sort is stable, so ties and missing values keep their input order.
    """
    dated: list[tuple[datetime, ContactSummary]] = []
    undated: list[ContactSummary] = []
    for summary in summaries:
        moment = parse_timestamp(summary.updated_at)
        if moment is None:
            undated.append(summary)
        else:
            dated.append((moment, summary))
    dated.sort(key=lambda pair: pair[0], reverse=True)
    return [summary for _, summary in dated] + undated


def diff_contact_page(
    known: dict[str, Any],
    records: list[dict[str, Any]],
    echo_threshold_ms: int = DEFAULT_ECHO_THRESHOLD_MS,
) -> list[tuple[str, NotificationKind]]:
    """Compare a polled page against the known ``updated_at`` values.

    Args:
        known: conversation id → ``updated_at`` currently held locally.
        records: Raw records from the contact poll, in response order.
        echo_threshold_ms: Changes this small are treated as echoes of the
            operator's own action and produce no notification.

    Returns:
        (conversation id, kind) pairs in response order.
    """
    changes: list[tuple[str, NotificationKind]] = []
    for record in records:
        conversation_id = str(record.get("id"))
        if conversation_id not in known:
            changes.append((conversation_id, NotificationKind.NEW_CONTACT))
            continue
        old_value = known[conversation_id]
        new_value = record.get("updated_at")
        if old_value == new_value:
            continue
        old_moment = parse_timestamp(old_value)
        new_moment = parse_timestamp(new_value)
        if old_moment is not None and new_moment is not None:
            gap_ms = abs((new_moment - old_moment).total_seconds()) * 1000
            if gap_ms <= echo_threshold_ms:
                logger.debug(
                    "Suppressing echo update for %s (%.0f ms)", conversation_id, gap_ms
                )
                continue
        changes.append((conversation_id, NotificationKind.UPDATED_CONTACT))
    return changes


class ContactDirectory:
    """Ordered, unique-by-id collection of ContactSummary.

    Attributes:
        has_more: Whether the backend probably has more contacts to page in.
    """

    def __init__(
        self,
        messages_for: Callable[[str], list[Message]] | None = None,
        preview_max_length: int = DEFAULT_PREVIEW_MAX_LENGTH,
    ) -> None:
        """Initialize an empty directory.

        Args:
            messages_for: Accessor returning the cached messages for an id,
                read at derivation time.
            preview_max_length: Truncation length for previews.
        """
        self._messages_for = messages_for or (lambda _id: [])
        self._preview_max_length = preview_max_length
        self._order: list[str] = []
        self._summaries: dict[str, ContactSummary] = {}
        self.has_more = False

    def _derive(self, record: dict[str, Any]) -> ContactSummary:
        conversation_id = str(record.get("id"))
        return format_contact(
            record,
            self._messages_for(conversation_id),
            preview_max_length=self._preview_max_length,
        )

    def load(self, records: list[dict[str, Any]], has_more: bool = False) -> None:
        """Replace the directory with a fresh page, sorted by ``updated_at``."""
        summaries: dict[str, ContactSummary] = {}
        for record in records:
            summary = self._derive(record)
            summaries[summary.id] = summary
        self._summaries = summaries
        self._order = [s.id for s in sort_contacts(summaries.values())]
        self.has_more = has_more
        logger.info("Contact directory loaded (%d contacts)", len(self._order))

    def extend(self, records: list[dict[str, Any]]) -> list[str]:
        """Append records whose ids are not present yet. Returns the added ids."""
        added = []
        for record in records:
            summary = self._derive(record)
            if summary.id in self._summaries:
                continue
            self._summaries[summary.id] = summary
            self._order.append(summary.id)
            added.append(summary.id)
        return added

    def apply_page(self, records: list[dict[str, Any]]) -> None:
        """Merge a polled page: response order first, then local-only ids."""
        response_ids: list[str] = []
        seen: set[str] = set()
        for record in records:
            summary = self._derive(record)
            if summary.id in seen:
                continue
            seen.add(summary.id)
            self._summaries[summary.id] = summary
            response_ids.append(summary.id)
        self._order = response_ids + [cid for cid in self._order if cid not in seen]

    def update_record(
        self,
        conversation_id: str,
        change: Callable[[dict[str, Any]], dict[str, Any]],
    ) -> ContactSummary | None:
        """Read-modify-write the current source record of a contact.

        Args:
            conversation_id: Contact to update.
            change: Function from the current record to the new record.

        Returns:
            The re-derived summary, or None when the id is unknown.
        """
        current = self._summaries.get(conversation_id)
        if current is None:
            return None
        summary = self._derive(change(dict(current.source_record)))
        self._summaries[conversation_id] = summary
        return summary

    def refresh(self, conversation_id: str) -> ContactSummary | None:
        """Re-derive a summary (preview text) from its stored source record."""
        return self.update_record(conversation_id, lambda record: record)

    def set_mode(self, conversation_id: str, mode: ConversationMode) -> ContactSummary | None:
        def _apply(record: dict[str, Any]) -> dict[str, Any]:
            record["conversation_mode"] = mode.value
            return record

        return self.update_record(conversation_id, _apply)

    def touch(self, conversation_id: str, at: datetime | None = None) -> ContactSummary | None:
        """Stamp a fresh ``updated_at`` on a contact."""
        moment = at or datetime.now(timezone.utc)

        def _apply(record: dict[str, Any]) -> dict[str, Any]:
            record["updated_at"] = moment.isoformat()
            return record

        return self.update_record(conversation_id, _apply)

    def sort(self) -> None:
        self._order = [s.id for s in sort_contacts(self.summaries())]

    def updated_at_index(self) -> dict[str, Any]:
        """conversation id → ``updated_at`` for every known contact."""
        return {cid: self._summaries[cid].updated_at for cid in self._order}

    def search(self, term: str) -> list[ContactSummary]:
        """Filter by case-insensitive name match or phone substring."""
        needle = term.strip()
        if not needle:
            return self.summaries()
        lowered = needle.lower()
        return [
            s for s in self.summaries()
            if lowered in s.name.lower() or (s.phone and needle in s.phone)
        ]

    def get(self, conversation_id: str) -> ContactSummary | None:
        return self._summaries.get(conversation_id)

    def ids(self) -> list[str]:
        return list(self._order)

    def summaries(self) -> list[ContactSummary]:
        return [self._summaries[cid] for cid in self._order]

    def clear(self) -> None:
        self._order.clear()
        self._summaries.clear()
        self.has_more = False

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._summaries

    def __len__(self) -> int:
        return len(self._order)
