"""Tests for content-type classification."""

import pytest

from chat_mirror.media.classifier import classify
from chat_mirror.models import MediaType


class TestClassifyTables:
    """Tests for the fixed MIME tables."""

    @pytest.mark.parametrize(
        "content_type,expected",
        [
            ("image/jpeg", MediaType.IMAGE),
            ("image/png", MediaType.IMAGE),
            ("image/webp", MediaType.IMAGE),
            ("video/mp4", MediaType.VIDEO),
            ("video/quicktime", MediaType.VIDEO),
            ("audio/mpeg", MediaType.AUDIO),
            ("audio/aac", MediaType.AUDIO),
            ("application/pdf", MediaType.DOCUMENT),
            ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", MediaType.DOCUMENT),
            ("text/plain", MediaType.DOCUMENT),
            ("text/csv", MediaType.DOCUMENT),
            ("application/zip", MediaType.ARCHIVE),
            ("application/x-7z-compressed", MediaType.ARCHIVE),
        ],
    )
    def test_known_types(self, content_type: str, expected: MediaType) -> None:
        """Known MIME types should map to their category."""
        assert classify(content_type) == expected

    def test_ignores_case_and_parameters(self) -> None:
        """Case and MIME parameters should not affect the result."""
        assert classify("Text/Plain; charset=UTF-8") == MediaType.DOCUMENT
        assert classify("IMAGE/JPEG") == MediaType.IMAGE


class TestClassifyFallbacks:
    """Tests for family-level fallbacks and totality."""

    def test_unlisted_image_subtype(self) -> None:
        """Any image/* type should be an image."""
        assert classify("image/heic") == MediaType.IMAGE

    def test_unlisted_video_subtype(self) -> None:
        """Any video/* type should be a video."""
        assert classify("video/x-matroska") == MediaType.VIDEO

    def test_application_ogg_is_audio(self) -> None:
        """application/ogg should be audio."""
        assert classify("application/ogg") == MediaType.AUDIO

    def test_google_document_is_document(self) -> None:
        """Office-like application subtypes should be documents."""
        assert classify("application/vnd.google-apps.document") == MediaType.DOCUMENT
        assert classify("application/vnd.oasis.opendocument.presentation") == MediaType.DOCUMENT

    @pytest.mark.parametrize("content_type", [None, "", "   ", "garbage", "application/octet-stream", "text/html"])
    def test_unknown_is_other(self, content_type: str | None) -> None:
        """Unknown, empty or missing types should be other, never raise."""
        assert classify(content_type) == MediaType.OTHER
