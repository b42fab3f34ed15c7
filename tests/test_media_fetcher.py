"""Tests for the attachment fetcher."""

from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
import respx
from PIL import Image

from chat_mirror.media.fetcher import AttachmentFetcher
from chat_mirror.media.storage import MediaStorage
from chat_mirror.models import AttachmentDescriptor, DownloadState, MediaType
from chat_mirror.remote.base import FileMetadata
from fakes import FakeChatService, FakeFileStore, png_bytes

DOWNLOAD_URL = "https://chat.example.test/download/abc"
DRIVE_URL = "https://www.googleapis.com/drive/v3/files/drive-1?alt=media"


@pytest.fixture
def storage(tmp_path: Path) -> MediaStorage:
    """Provide a MediaStorage rooted in a temp dir."""
    return MediaStorage(tmp_path / "root")


@pytest.fixture
def chat() -> FakeChatService:
    """Provide a fake chat service with one media payload."""
    return FakeChatService(media={"ref-1": png_bytes(32, 16)})


@pytest.fixture
def files() -> FakeFileStore:
    """Provide a fake Drive with one small and one huge file."""
    return FakeFileStore({
        "drive-1": FileMetadata(file_id="drive-1", name="report.pdf", size=12, content_url=DRIVE_URL),
        "huge": FileMetadata(file_id="huge", name="movie.mp4", size=500 * 1024 * 1024, content_url=DRIVE_URL),
    })


def make_fetcher(
    storage: MediaStorage,
    chat: FakeChatService | None = None,
    files: FakeFileStore | None = None,
    max_bytes: int = 50 * 1024 * 1024,
) -> AttachmentFetcher:
    return AttachmentFetcher(storage, chat=chat, files=files, max_bytes=max_bytes, timeout=2.0)


class TestAttachmentRefStrategy:
    """Tests for chat media reference downloads."""

    def test_downloads_image(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """An image reference should end completed with metadata."""
        fetcher = make_fetcher(storage, chat=chat)
        descriptor = AttachmentDescriptor(
            source_id="src-1",
            content_type="image/png",
            display_name="photo.png",
            resource_name="ref-1",
        )

        attachment = fetcher.fetch(descriptor, "spaces/A/messages/1", chat)

        assert attachment.download_state == DownloadState.COMPLETED
        assert attachment.media_type == MediaType.IMAGE
        assert attachment.download_error is None
        assert attachment.downloaded_at is not None
        assert Path(attachment.local_storage_path).exists()
        assert Path(attachment.local_storage_path).name.endswith("_photo.png")
        assert (attachment.dimensions.width, attachment.dimensions.height) == (32, 16)
        assert Path(attachment.thumbnail_path).exists()
        assert chat.download_calls == ["ref-1"]

    def test_oversized_media_is_skipped(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """Exceeding the ceiling should yield skipped, not failed."""
        fetcher = make_fetcher(storage, chat=chat, max_bytes=10)
        descriptor = AttachmentDescriptor(source_id="src-1", content_type="image/png", resource_name="ref-1")

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.SKIPPED
        assert "10 bytes" in attachment.download_error
        assert attachment.local_storage_path is None
        assert not storage.media_dir.exists() or not list(storage.media_dir.iterdir())

    def test_image_over_pixel_limit_still_completes(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """An image Pillow refuses to decode should still be stored."""
        fetcher = make_fetcher(storage, chat=chat)
        descriptor = AttachmentDescriptor(source_id="src-1", content_type="image/png", resource_name="ref-1")

        with patch.object(Image, "MAX_IMAGE_PIXELS", 100):
            attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.COMPLETED
        assert attachment.dimensions is None
        assert Path(attachment.local_storage_path).exists()

    def test_metadata_errors_never_escape(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """Unexpected metadata errors should be logged, not raised."""
        fetcher = make_fetcher(storage, chat=chat)
        descriptor = AttachmentDescriptor(source_id="src-1", content_type="image/png", resource_name="ref-1")

        with patch("chat_mirror.media.fetcher.enrich_attachment", side_effect=KeyError("height")):
            attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.COMPLETED
        assert attachment.download_error is None
        assert Path(attachment.local_storage_path).exists()


class TestDriveStrategy:
    """Tests for Drive file downloads."""

    @respx.mock
    def test_downloads_drive_file_with_bearer_token(
        self, storage: MediaStorage, chat: FakeChatService, files: FakeFileStore
    ) -> None:
        """Drive files should be streamed from the content URL with the token."""
        route = respx.get(DRIVE_URL).mock(
            return_value=httpx.Response(200, content=b"%PDF-1.4 hi", headers={"content-type": "application/pdf"})
        )
        fetcher = make_fetcher(storage, chat=chat, files=files)
        descriptor = AttachmentDescriptor(
            source_id="drive-1",
            content_type="application/pdf",
            display_name="report.pdf",
            drive_file_id="drive-1",
        )

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.COMPLETED
        assert attachment.media_type == MediaType.DOCUMENT
        assert attachment.file_size_bytes == len(b"%PDF-1.4 hi")
        assert route.calls.last.request.headers["Authorization"] == "Bearer test-token"

    @respx.mock
    def test_known_size_over_ceiling_skips_without_download(
        self, storage: MediaStorage, chat: FakeChatService, files: FakeFileStore
    ) -> None:
        """A Drive size above the ceiling should skip before any download."""
        route = respx.get(DRIVE_URL).mock(return_value=httpx.Response(200, content=b"x"))
        fetcher = make_fetcher(storage, chat=chat, files=files)
        descriptor = AttachmentDescriptor(source_id="huge", content_type="video/mp4", drive_file_id="huge")

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.SKIPPED
        assert "500.0 MB" in attachment.download_error
        assert not route.called

    @respx.mock
    def test_falls_back_to_attachment_ref(
        self, storage: MediaStorage, chat: FakeChatService, files: FakeFileStore
    ) -> None:
        """A failing Drive download should fall through to the next strategy."""
        respx.get(DRIVE_URL).mock(return_value=httpx.Response(403))
        fetcher = make_fetcher(storage, chat=chat, files=files)
        descriptor = AttachmentDescriptor(
            source_id="drive-1",
            content_type="image/png",
            display_name="photo.png",
            drive_file_id="drive-1",
            resource_name="ref-1",
        )

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.COMPLETED
        assert chat.download_calls == ["ref-1"]


class TestDirectUrlStrategy:
    """Tests for direct URL downloads."""

    @respx.mock
    def test_downloads_direct_url(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """A downloadUri should be streamed."""
        respx.get(DOWNLOAD_URL).mock(
            return_value=httpx.Response(200, content=b"a,b\n1,2\n", headers={"content-type": "text/csv"})
        )
        fetcher = make_fetcher(storage, chat=chat)
        descriptor = AttachmentDescriptor(
            source_id="s", content_type="text/csv", display_name="data", download_uri=DOWNLOAD_URL
        )

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.COMPLETED
        assert attachment.local_storage_path.endswith("_data.csv")

    @respx.mock
    def test_rejects_html_error_page(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """An HTML page for a non-HTML attachment should fail."""
        respx.get(DOWNLOAD_URL).mock(
            return_value=httpx.Response(200, content=b"<html>login</html>", headers={"content-type": "text/html"})
        )
        fetcher = make_fetcher(storage, chat=chat)
        descriptor = AttachmentDescriptor(source_id="s", content_type="image/png", download_uri=DOWNLOAD_URL)

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.FAILED
        assert "HTML" in attachment.download_error

    @respx.mock
    def test_timeout_fails_strategy(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """A timeout should fail the attachment, not raise."""
        respx.get(DOWNLOAD_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        fetcher = make_fetcher(storage, chat=chat)
        descriptor = AttachmentDescriptor(source_id="s", content_type="image/png", download_uri=DOWNLOAD_URL)

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.FAILED
        assert "timed out" in attachment.download_error

    @respx.mock
    def test_streamed_size_over_ceiling_skips(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """A body larger than the ceiling without content-length should be skipped."""
        respx.get(DOWNLOAD_URL).mock(
            return_value=httpx.Response(200, content=iter([b"x" * 600, b"y" * 600]))
        )
        fetcher = make_fetcher(storage, chat=chat, max_bytes=1000)
        descriptor = AttachmentDescriptor(source_id="s", content_type="video/mp4", download_uri=DOWNLOAD_URL)

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.SKIPPED

    @respx.mock
    def test_declared_length_over_ceiling_skips(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """A content-length above the ceiling should skip."""
        respx.get(DOWNLOAD_URL).mock(return_value=httpx.Response(200, content=b"z" * 2048))
        fetcher = make_fetcher(storage, chat=chat, max_bytes=1024)
        descriptor = AttachmentDescriptor(source_id="s", content_type="audio/mpeg", download_uri=DOWNLOAD_URL)

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.SKIPPED


class TestFailures:
    """Tests for failure reporting."""

    def test_no_strategy_fails(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """A descriptor without any reference should fail cleanly."""
        fetcher = make_fetcher(storage, chat=chat)
        descriptor = AttachmentDescriptor(source_id="s", content_type="image/png")

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.FAILED
        assert attachment.download_error == "No download method available for attachment"

    @respx.mock
    def test_all_strategies_failing_joins_reasons(self, storage: MediaStorage, chat: FakeChatService) -> None:
        """Every strategy's reason should appear in the error."""
        respx.get(DOWNLOAD_URL).mock(return_value=httpx.Response(404))
        fetcher = make_fetcher(storage, chat=chat)
        descriptor = AttachmentDescriptor(
            source_id="s",
            content_type="image/png",
            resource_name="missing-ref",
            download_uri=DOWNLOAD_URL,
        )

        attachment = fetcher.fetch(descriptor, "m", chat)

        assert attachment.download_state == DownloadState.FAILED
        assert "attachment_ref" in attachment.download_error
        assert "direct_url" in attachment.download_error
        assert "HTTP 404" in attachment.download_error
