"""Tests for contact ordering, echo suppression and directory merges."""

from datetime import datetime, timezone

from leaddesk.sync.contact_directory import (
    ContactDirectory,
    diff_contact_page,
    sort_contacts,
)
from leaddesk.sync.models import (
    UNLOADED_PREVIEW,
    ConversationMode,
    Message,
    NotificationKind,
    Sender,
    format_contact,
)


class TestSortContacts:
    """Tests for updated_at ordering."""

    def test_newest_first_missing_last(self, make_record):
        """[A: None, B: 2024-01-02, C: 2024-01-01] sorts to [B, C, A]."""
        summaries = [
            format_contact(make_record("A", None)),
            format_contact(make_record("B", "2024-01-02T00:00:00Z")),
            format_contact(make_record("C", "2024-01-01T00:00:00Z")),
        ]
        assert [s.id for s in sort_contacts(summaries)] == ["B", "C", "A"]

    def test_unparsable_counts_as_missing_and_ties_are_stable(self, make_record):
        summaries = [
            format_contact(make_record("X", "not a date")),
            format_contact(make_record("Y", "2024-01-01T00:00:00Z")),
            format_contact(make_record("Z", "2024-01-01T00:00:00Z")),
            format_contact(make_record("W", None)),
        ]
        assert [s.id for s in sort_contacts(summaries)] == ["Y", "Z", "X", "W"]

    def test_mixed_timestamp_formats(self, make_record):
        summaries = [
            format_contact(make_record("iso", "2024-01-01T00:00:00Z")),
            format_contact(make_record("epoch", 1704153600)),  # 2024-01-02
        ]
        assert [s.id for s in sort_contacts(summaries)] == ["epoch", "iso"]


class TestDiffContactPage:
    """Tests for new/updated detection with echo suppression."""

    def test_new_contact(self, make_record):
        changes = diff_contact_page({}, [make_record("c1", "2024-01-01T00:00:00Z")])
        assert changes == [("c1", NotificationKind.NEW_CONTACT)]

    def test_unchanged_is_silent(self, make_record):
        known = {"c1": "2024-01-01T00:00:00Z"}
        assert diff_contact_page(known, [make_record("c1", "2024-01-01T00:00:00Z")]) == []

    def test_echo_within_threshold_is_silent(self, make_record):
        """+1500 ms is an echo of the operator's own action."""
        known = {"c1": "2024-01-01T10:00:00.000Z"}
        page = [make_record("c1", "2024-01-01T10:00:01.500Z")]
        assert diff_contact_page(known, page) == []

    def test_change_beyond_threshold_notifies(self, make_record):
        """+3000 ms is a real remote change."""
        known = {"c1": "2024-01-01T10:00:00.000Z"}
        page = [make_record("c1", "2024-01-01T10:00:03.000Z")]
        assert diff_contact_page(known, page) == [("c1", NotificationKind.UPDATED_CONTACT)]

    def test_echo_threshold_is_symmetric(self, make_record):
        known = {"c1": "2024-01-01T10:00:01.000Z"}
        page = [make_record("c1", "2024-01-01T10:00:00.000Z")]
        assert diff_contact_page(known, page) == []

    def test_custom_threshold(self, make_record):
        known = {"c1": "2024-01-01T10:00:00Z"}
        page = [make_record("c1", "2024-01-01T10:00:03Z")]
        assert diff_contact_page(known, page, echo_threshold_ms=5000) == []

    def test_unparsable_change_notifies(self, make_record):
        known = {"c1": None}
        page = [make_record("c1", "2024-01-01T10:00:00Z")]
        assert diff_contact_page(known, page) == [("c1", NotificationKind.UPDATED_CONTACT)]


class TestContactDirectory:
    """Tests for ContactDirectory merges and derivation."""

    def test_load_sorts_and_records_has_more(self, make_record):
        directory = ContactDirectory()
        directory.load(
            [make_record("A"), make_record("B", "2024-01-02T00:00:00Z")],
            has_more=True,
        )
        assert directory.ids() == ["B", "A"]
        assert directory.has_more is True
        assert len(directory) == 2
        assert "A" in directory

    def test_extend_skips_known_ids(self, make_record):
        directory = ContactDirectory()
        directory.load([make_record("A")])
        added = directory.extend([make_record("A"), make_record("B"), make_record("C")])
        assert added == ["B", "C"]
        assert directory.ids() == ["A", "B", "C"]

    def test_apply_page_response_order_then_local(self, make_record):
        """Response ids lead in response order; local-only ids keep their order after."""
        directory = ContactDirectory()
        directory.load([
            make_record("x", "2024-01-03T00:00:00Z"),
            make_record("y", "2024-01-02T00:00:00Z"),
            make_record("z", "2024-01-01T00:00:00Z"),
        ])
        directory.apply_page([make_record("z", "2024-01-04T00:00:00Z"), make_record("new")])
        assert directory.ids() == ["z", "new", "x", "y"]
        assert directory.get("z").updated_at == "2024-01-04T00:00:00Z"

    def test_apply_page_ignores_duplicate_ids(self, make_record):
        directory = ContactDirectory()
        directory.apply_page([make_record("a"), make_record("a"), make_record("b")])
        assert directory.ids() == ["a", "b"]

    def test_preview_reads_cache_at_derivation_time(self, make_record):
        cached: dict[str, list[Message]] = {}
        directory = ContactDirectory(lambda cid: cached.get(cid, []))
        directory.load([make_record("c1")])
        assert directory.get("c1").last_message_preview == UNLOADED_PREVIEW

        cached["c1"] = [Message(id="m1", text="Precio?", sender=Sender.CONTACT)]
        directory.refresh("c1")
        assert directory.get("c1").last_message_preview == "Precio?"

    def test_update_record_reads_current_record(self, make_record):
        directory = ContactDirectory()
        directory.load([make_record("c1", mode="bot")])
        directory.set_mode("c1", ConversationMode.AGENT)
        directory.touch("c1", datetime(2024, 5, 1, tzinfo=timezone.utc))

        summary = directory.get("c1")
        assert summary.mode == ConversationMode.AGENT
        assert summary.updated_at == "2024-05-01T00:00:00+00:00"

    def test_update_unknown_id_returns_none(self):
        assert ContactDirectory().touch("missing") is None

    def test_search(self, make_record):
        directory = ContactDirectory()
        directory.load([
            make_record("5215511110000", name="Ana López"),
            make_record("5215522220000", name="Bruno"),
        ])
        assert [s.id for s in directory.search("ana")] == ["5215511110000"]
        assert [s.id for s in directory.search("2222")] == ["5215522220000"]
        assert len(directory.search("  ")) == 2
        assert directory.search("zzz") == []

    def test_clear(self, make_record):
        directory = ContactDirectory()
        directory.load([make_record("a")], has_more=True)
        directory.clear()
        assert directory.ids() == []
        assert directory.has_more is False
