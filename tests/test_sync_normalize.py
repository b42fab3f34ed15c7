"""Tests for raw message normalization."""

from chat_mirror.sync.normalize import (
    compute_source_id,
    normalize_attachments,
    raw_attachments,
    sender_id,
)


class TestRawAttachments:
    """Tests for raw_attachments."""

    def test_plural_field(self) -> None:
        """The attachments list should be used when present."""
        message = {"attachments": [{"name": "a"}, "junk", {"name": "b"}]}

        assert raw_attachments(message) == [{"name": "a"}, {"name": "b"}]

    def test_singular_list(self) -> None:
        """The attachment field may hold a list."""
        assert raw_attachments({"attachment": [{"name": "a"}]}) == [{"name": "a"}]

    def test_singular_object(self) -> None:
        """The attachment field may hold a single object."""
        assert raw_attachments({"attachment": {"name": "a"}}) == [{"name": "a"}]

    def test_none(self) -> None:
        """Messages without attachments should yield nothing."""
        assert raw_attachments({"text": "hi"}) == []


class TestComputeSourceId:
    """Tests for compute_source_id."""

    def test_prefers_attachment_ref(self) -> None:
        """The attachment resource name should win over everything else."""
        raw = {
            "name": "spaces/A/messages/1/attachments/x",
            "attachmentDataRef": {"resourceName": "ref-9"},
            "driveDataRef": {"driveFileId": "drive-9"},
        }

        assert compute_source_id(raw, "m", 0) == "ref-9"

    def test_drive_file(self) -> None:
        """The Drive file id should be used for Drive attachments."""
        raw = {"driveDataRef": {"driveFileId": "drive-9"}, "contentName": "a.pdf"}

        assert compute_source_id(raw, "m", 0) == "drive-9"

    def test_falls_back_to_names(self) -> None:
        """Name then content name should be used."""
        assert compute_source_id({"name": "n", "contentName": "c"}, "m", 0) == "n"
        assert compute_source_id({"contentName": "c"}, "m", 0) == "c"

    def test_deterministic_fallback(self) -> None:
        """Without identifiers the key should depend only on message and position."""
        assert compute_source_id({}, "spaces/A/messages/1", 2) == "spaces/A/messages/1_attachment_2"
        assert compute_source_id({}, "spaces/A/messages/1", 2) == compute_source_id({}, "spaces/A/messages/1", 2)


class TestNormalizeAttachments:
    """Tests for normalize_attachments."""

    def test_descriptor_fields(self) -> None:
        """Reference fields should be copied onto the descriptor."""
        message = {
            "name": "spaces/A/messages/1",
            "attachment": [{
                "contentName": "photo.png",
                "contentType": "image/png",
                "attachmentDataRef": {"resourceName": "ref-1"},
                "downloadUri": "https://chat.example.test/d/1",
                "thumbnailUri": "https://chat.example.test/t/1",
            }],
        }

        [descriptor] = normalize_attachments(message)

        assert descriptor.source_id == "ref-1"
        assert descriptor.display_name == "photo.png"
        assert descriptor.content_type == "image/png"
        assert descriptor.resource_name == "ref-1"
        assert descriptor.download_uri == "https://chat.example.test/d/1"
        assert descriptor.thumbnail_uri == "https://chat.example.test/t/1"

    def test_defaults(self) -> None:
        """Missing names and types should get defaults."""
        [descriptor] = normalize_attachments({"name": "m", "attachment": {}})

        assert descriptor.display_name == "Unnamed attachment"
        assert descriptor.content_type == ""
        assert descriptor.kind is None

    def test_mime_type_alias(self) -> None:
        """mimeType and filename should be accepted as aliases."""
        [descriptor] = normalize_attachments({
            "name": "m",
            "attachment": {"mimeType": "application/pdf", "filename": "doc.pdf"},
        })

        assert descriptor.content_type == "application/pdf"
        assert descriptor.display_name == "doc.pdf"

    def test_duplicates_collapsed(self) -> None:
        """Two attachments with the same source id should become one."""
        message = {
            "name": "m",
            "attachments": [
                {"attachmentDataRef": {"resourceName": "ref-1"}, "contentName": "first"},
                {"attachmentDataRef": {"resourceName": "ref-1"}, "contentName": "second"},
                {"attachmentDataRef": {"resourceName": "ref-2"}},
            ],
        }

        descriptors = normalize_attachments(message)

        assert [d.source_id for d in descriptors] == ["ref-1", "ref-2"]
        assert descriptors[0].display_name == "first"


class TestSenderId:
    """Tests for sender_id."""

    def test_name_then_email(self) -> None:
        """The sender resource name should be preferred."""
        assert sender_id({"sender": {"name": "users/1", "email": "a@b.c"}}) == "users/1"
        assert sender_id({"sender": {"email": "a@b.c"}}) == "a@b.c"
        assert sender_id({}) is None
