"""Tests for preservation-first merging."""

from datetime import datetime, timezone

from chat_mirror.models import (
    Attachment,
    Conversation,
    ConversationKind,
    DownloadState,
    Message,
)
from chat_mirror.sync.merge import (
    derive_participants,
    is_preserved,
    merge_attachments,
    merge_conversation,
)


def _completed(source_id: str) -> Attachment:
    return Attachment(
        source_id=source_id,
        download_state=DownloadState.COMPLETED,
        local_storage_path=f"/media/1_{source_id}",
    )


def _failed(source_id: str) -> Attachment:
    return Attachment(source_id=source_id, download_state=DownloadState.FAILED, download_error="HTTP 500")


def _message(remote_id: str, sender: str = "users/2", mine: bool = False, **kwargs) -> Message:
    return Message(
        remote_id=remote_id,
        create_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        sender_remote_id=sender,
        sender_email=f"{sender.split('/')[-1]}@acme.test",
        sender_display_name=sender.split("/")[-1],
        is_sent_by_current_account=mine,
        **kwargs,
    )


class TestIsPreserved:
    """Tests for is_preserved."""

    def test_completed_with_path(self) -> None:
        """Completed downloads with a path should be preserved."""
        assert is_preserved(_completed("a")) is True

    def test_completed_without_path(self) -> None:
        """A completed state without a file should not be preserved."""
        assert is_preserved(Attachment(source_id="a", download_state=DownloadState.COMPLETED)) is False

    def test_other_states(self) -> None:
        """Failed, skipped and pending attachments should not be preserved."""
        assert is_preserved(_failed("a")) is False
        assert is_preserved(Attachment(source_id="a", download_state=DownloadState.SKIPPED)) is False
        assert is_preserved(Attachment(source_id="a")) is False


class TestMergeAttachments:
    """Tests for merge_attachments."""

    def test_completed_never_replaced(self) -> None:
        """A completed attachment should survive an incoming failure."""
        merged = merge_attachments([_completed("a")], [_failed("a")])

        assert merged[0].download_state == DownloadState.COMPLETED

    def test_failed_is_retried(self) -> None:
        """A failed attachment should be replaced by the incoming result."""
        merged = merge_attachments([_failed("a")], [_completed("a")])

        assert merged[0].download_state == DownloadState.COMPLETED

    def test_vanished_attachments_kept(self) -> None:
        """Attachments missing from the incoming list should remain."""
        merged = merge_attachments([_completed("a"), _failed("b")], [])

        assert [a.source_id for a in merged] == ["a", "b"]

    def test_new_attachments_appended(self) -> None:
        """New source ids should be appended after existing ones."""
        merged = merge_attachments([_completed("a")], [_completed("c"), _failed("a"), _completed("b")])

        assert [a.source_id for a in merged] == ["a", "c", "b"]
        assert len({a.source_id for a in merged}) == len(merged)


class TestDeriveParticipants:
    """Tests for derive_participants."""

    def test_distinct_senders_in_order(self) -> None:
        """Each sender should appear once, in first-seen order."""
        conversation = Conversation(
            account="me@acme.test",
            remote_id="spaces/A",
            display_name="Team",
            messages=[_message("1", "users/2"), _message("2", "users/3"), _message("3", "users/2")],
        )

        assert [p.remote_user_id for p in derive_participants(conversation)] == ["users/2", "users/3"]

    def test_dm_excludes_own_messages(self) -> None:
        """Direct messages should list only the other side."""
        conversation = Conversation(
            account="me@acme.test",
            remote_id="spaces/DM",
            display_name="DM",
            kind=ConversationKind.DIRECT_MESSAGE,
            messages=[_message("1", "users/me", mine=True), _message("2", "users/2")],
        )

        assert [p.remote_user_id for p in derive_participants(conversation)] == ["users/2"]


class TestMergeConversation:
    """Tests for merge_conversation."""

    def test_first_sighting(self) -> None:
        """Without a stored document every message should be new."""
        incoming = Conversation(
            account="me@acme.test",
            remote_id="spaces/A",
            display_name="Team",
            messages=[_message("1"), _message("2")],
        )

        merged, new_count = merge_conversation(None, incoming)

        assert new_count == 2
        assert merged.message_count == 2
        assert [p.remote_user_id for p in merged.participants] == ["users/2"]

    def test_existing_messages_refreshed(self) -> None:
        """Known messages should be refreshed, not duplicated."""
        existing = Conversation(
            account="me@acme.test",
            remote_id="spaces/A",
            display_name="Old name",
            messages=[_message("1", text="old", attachments=[_completed("a")])],
        )
        incoming = Conversation(
            account="me@acme.test",
            remote_id="spaces/A",
            display_name="New name",
            messages=[_message("1", text="edited", attachments=[_failed("a")]), _message("2")],
        )

        merged, new_count = merge_conversation(existing, incoming)

        assert new_count == 1
        assert merged.display_name == "New name"
        assert [m.remote_id for m in merged.messages] == ["1", "2"]
        assert merged.messages[0].text == "edited"
        assert merged.messages[0].attachments[0].download_state == DownloadState.COMPLETED

    def test_messages_missing_remotely_kept(self) -> None:
        """Stored messages absent from the incoming set should remain."""
        existing = Conversation(
            account="me@acme.test", remote_id="spaces/A", display_name="T", messages=[_message("1")]
        )
        incoming = Conversation(account="me@acme.test", remote_id="spaces/A", display_name="T")

        merged, new_count = merge_conversation(existing, incoming)

        assert new_count == 0
        assert merged.message_count == 1
