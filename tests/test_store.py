"""Tests for SQLiteMemoryStore and AttachmentTracker."""

import json
import tempfile
from pathlib import Path

import pytest

from attachments.tracker import (
    AttachmentTracker,
    EXPIRED_PLACEHOLDER,
    extract_file_id,
    extract_file_id_from_error,
)
from memory.models import TrackedFile
from memory.sqlite_store import SQLiteMemoryStore, SummaryOrderError
from schemas.messages import AttachmentRef, ConversationMessage, MessagePart, Speaker
from fakes import model_message, user_message

HOUR_MS = 60 * 60 * 1000
NOW = 1_700_000_000_000


class TestSQLiteMemoryStore:
    """Test persistence of messages, summaries, memories and documents."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.mkdtemp()
        self.store = SQLiteMemoryStore(db_path=str(Path(self.tmpdir) / "test.db"))

    def test_conversation_round_trip(self):
        self.store.create_conversation("conv-1", title="Test")
        history = [user_message("Hi", timestamp=1), model_message("Hello", timestamp=2)]
        for message in history:
            self.store.append_message("conv-1", message)

        conversation = self.store.get_conversation("conv-1")

        assert conversation.title == "Test"
        assert conversation.messages == history
        assert self.store.get_conversation("missing") is None

    def test_save_messages_replaces(self):
        self.store.create_conversation("conv-1")
        self.store.append_message("conv-1", user_message("old", timestamp=1))
        replacement = [user_message("new", timestamp=2)]

        self.store.save_messages("conv-1", replacement)

        assert self.store.load_messages("conv-1") == replacement

    def test_summaries_are_append_only_and_ordered(self):
        first = model_message("first", timestamp=10, persona_name="Xaiver")
        second = model_message("second", timestamp=20, persona_name="Xaiver")
        self.store.append_summary("conv-1", first)
        self.store.append_summary("conv-1", second)

        with pytest.raises(SummaryOrderError):
            self.store.append_summary("conv-1", model_message("late", timestamp=15, persona_name="Xaiver"))

        assert self.store.get_summaries("conv-1") == [first, second]
        assert self.store.get_summaries("conv-2") == []

    def test_memories(self):
        self.store.set_memory("k1", "likes tea")
        self.store.set_memory("k1", "likes coffee")

        assert self.store.get_memory("k1") == "likes coffee"
        assert self.store.get_all_memories() == {"k1": "likes coffee"}
        assert self.store.delete_memory("k1") is True
        assert self.store.delete_memory("k1") is False
        assert self.store.get_memory("k1") is None

    def test_document(self):
        assert self.store.get_document() == ""
        self.store.set_document("# Draft")
        assert self.store.get_document() == "# Draft"

    def test_list_conversations(self):
        self.store.create_conversation("conv-1", title="First")
        self.store.create_conversation("conv-2", title="Second")
        self.store.append_message("conv-1", user_message("Hi", timestamp=1))

        listed = self.store.list_conversations()

        assert [c.conversation_id for c in listed] == ["conv-1", "conv-2"]
        assert listed[0].title == "First"

    def test_export_import_round_trip(self):
        """Test that a bundle restores messages, summaries and uploads in a fresh store."""
        uri = "https://generativelanguage.googleapis.com/v1beta/files/abc123"
        history = [
            ConversationMessage(
                speaker=Speaker.USER,
                parts=[
                    MessagePart(text="What is this?"),
                    MessagePart(attachment=AttachmentRef(mime_type="image/png", file_uri=uri)),
                ],
                timestamp=1
            ),
            model_message("A cat.", timestamp=2),
        ]
        summary = model_message("User sent a cat photo.", timestamp=3, persona_name="Xaiver")
        self.store.create_conversation("conv-1", title="Cats")
        self.store.save_messages("conv-1", history)
        self.store.append_summary("conv-1", summary)
        self.store.track_file(TrackedFile(file_id="abc123", file_uri=uri, upload_time=NOW))
        self.store.track_file(TrackedFile(file_id="other", file_uri="https://x/v1beta/files/other", upload_time=NOW))

        bundle = json.loads(json.dumps(self.store.export_conversation("conv-1")))

        other = SQLiteMemoryStore(db_path=str(Path(self.tmpdir) / "other.db"))
        imported_id = other.import_conversation(bundle)

        assert imported_id == "conv-1"
        assert other.get_conversation("conv-1").title == "Cats"
        assert other.load_messages("conv-1") == history
        assert other.get_summaries("conv-1") == [summary]
        assert other.list_tracked_files() == [TrackedFile(file_id="abc123", file_uri=uri, upload_time=NOW)]

    def test_import_under_new_id_replaces_messages(self):
        self.store.create_conversation("conv-1")
        self.store.save_messages("conv-1", [user_message("exported", timestamp=1)])
        bundle = self.store.export_conversation("conv-1")
        self.store.save_messages("conv-2", [user_message("stale", timestamp=5)])

        assert self.store.import_conversation(bundle, conversation_id="conv-2") == "conv-2"
        assert [m.visible_text() for m in self.store.load_messages("conv-2")] == ["exported"]

    def test_import_rejects_bad_bundle(self):
        with pytest.raises(ValueError):
            self.store.import_conversation({"version": 99})
        with pytest.raises(ValueError):
            self.store.import_conversation({"version": 1, "messages": []})
        with pytest.raises(KeyError):
            self.store.export_conversation("missing")


class TestAttachmentTracker:
    """Test handle TTL and expiry replacement."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.mkdtemp()
        self.store = SQLiteMemoryStore(db_path=str(Path(self.tmpdir) / "test.db"))
        self.tracker = AttachmentTracker(self.store, clock=lambda: NOW)

    def test_extract_file_id(self):
        assert extract_file_id("https://x/v1beta/files/abc123") == "abc123"
        assert extract_file_id("https://x/other") is None
        assert extract_file_id_from_error(
            "You do not have permission to access the File 3pkmvw1slxx8 or it may not exist."
        ) == "3pkmvw1slxx8"

    def test_ttl(self):
        self.tracker.track("https://x/files/fresh", upload_time=NOW - HOUR_MS)
        self.tracker.track("https://x/files/stale", upload_time=NOW - 13 * HOUR_MS)

        assert self.tracker.is_expired("fresh") is False
        assert self.tracker.is_expired("stale") is True

    def test_untracked_handle_is_expired(self):
        assert self.tracker.is_expired("never-seen") is True

    def test_mark_expired(self):
        self.tracker.track("https://x/files/gone", upload_time=NOW)
        self.tracker.mark_expired("gone")
        assert self.tracker.is_expired("gone") is True

    def test_clean_expired(self):
        self.tracker.track("https://x/files/fresh", upload_time=NOW)
        self.tracker.track("https://x/files/stale", upload_time=NOW - 13 * HOUR_MS)

        assert self.tracker.clean_expired() == ["stale"]
        assert [f.file_id for f in self.store.list_tracked_files()] == ["fresh"]

    def test_remove_expired_keeps_part_identity(self):
        """Test that expired parts keep uuid and timestamp, and others are untouched."""
        self.tracker.track("https://x/files/fresh", upload_time=NOW)
        stale_part = MessagePart(
            attachment=AttachmentRef(mime_type="image/png", file_uri="https://x/files/stale"),
            timestamp=5
        )
        with_stale = ConversationMessage(speaker=Speaker.USER, parts=[stale_part], timestamp=5)
        with_fresh = ConversationMessage(
            speaker=Speaker.USER,
            parts=[MessagePart(attachment=AttachmentRef(mime_type="image/png", file_uri="https://x/files/fresh"))],
            timestamp=6
        )

        cleaned = self.tracker.remove_expired_from_messages([with_stale, with_fresh])

        replaced = cleaned[0].parts[0]
        assert replaced.text == EXPIRED_PLACEHOLDER
        assert replaced.uuid == stale_part.uuid
        assert replaced.timestamp == 5
        assert replaced.last_update == NOW
        assert cleaned[1] is with_fresh
