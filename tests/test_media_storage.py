"""Tests for media storage naming and writes."""

from pathlib import Path

import pytest

from chat_mirror.media.storage import (
    MAX_NAME_LENGTH,
    MediaStorage,
    extension_for,
    sanitize_file_name,
)


@pytest.fixture
def storage(tmp_path: Path) -> MediaStorage:
    """Provide a MediaStorage rooted in a temp dir."""
    return MediaStorage(tmp_path / "media-root")


class TestSanitizeFileName:
    """Tests for sanitize_file_name."""

    def test_replaces_invalid_characters(self) -> None:
        """Path and shell-hostile characters should become underscores."""
        assert sanitize_file_name('a<b>c:d"e/f\\g|h?i*j') == "a_b_c_d_e_f_g_h_i_j"

    def test_collapses_whitespace(self) -> None:
        """Whitespace runs should become a single underscore."""
        assert sanitize_file_name("my  holiday\tphoto.png") == "my_holiday_photo.png"

    def test_caps_length(self) -> None:
        """Names should be capped."""
        assert len(sanitize_file_name("x" * 300)) == MAX_NAME_LENGTH

    def test_empty_name(self) -> None:
        """An unusable name should fall back to a generic one."""
        assert sanitize_file_name("") == "attachment"
        assert sanitize_file_name("...") == "attachment"


class TestExtensionFor:
    """Tests for extension_for."""

    def test_known_types(self) -> None:
        """Known types should map to their extension."""
        assert extension_for("image/jpeg") == ".jpg"
        assert extension_for("application/pdf; foo=bar") == ".pdf"

    def test_unknown_type(self) -> None:
        """Unknown or missing types should have no extension."""
        assert extension_for("application/x-unknown") == ""
        assert extension_for(None) == ""


class TestSafeFilename:
    """Tests for MediaStorage.safe_filename."""

    def test_prefixes_millis(self, storage: MediaStorage) -> None:
        """Names should be prefixed with the timestamp."""
        assert storage.safe_filename("report.pdf", "application/pdf", now_ms=1700000000000) == (
            "1700000000000_report.pdf"
        )

    def test_adds_extension_when_missing(self, storage: MediaStorage) -> None:
        """An extension should be derived from the content type."""
        assert storage.safe_filename("screenshot", "image/png", now_ms=1) == "1_screenshot.png"

    def test_avoids_existing_file(self, storage: MediaStorage) -> None:
        """An existing file should never be clobbered."""
        storage.ensure_dirs()
        (storage.media_dir / "5_a.txt").write_text("taken")

        assert storage.safe_filename("a.txt", "text/plain", now_ms=5) == "5_a_1.txt"


class TestWrite:
    """Tests for MediaStorage.write."""

    def test_writes_bytes(self, storage: MediaStorage) -> None:
        """write should store the payload under the media dir."""
        path = storage.write(b"hello", "note.txt", "text/plain")

        assert path.is_absolute()
        assert path.parent == storage.media_dir.resolve()
        assert path.read_bytes() == b"hello"
        assert path.name.endswith("_note.txt")
        assert not list(storage.media_dir.glob("*.part"))

    def test_same_name_twice_gives_two_files(self, storage: MediaStorage) -> None:
        """Two payloads with the same display name should both survive."""
        first = storage.write(b"one", "same.txt", "text/plain")
        second = storage.write(b"two", "same.txt", "text/plain")

        assert first != second
        assert first.read_bytes() == b"one"
        assert second.read_bytes() == b"two"

    def test_thumbnail_path(self, storage: MediaStorage) -> None:
        """Thumbnails should live in the thumbnails dir as JPEG."""
        thumb = storage.thumbnail_path_for(storage.media_dir / "123_photo.png")

        assert thumb == storage.thumbnails_dir / "thumb_123_photo.jpg"
        assert storage.thumbnails_dir.exists()
