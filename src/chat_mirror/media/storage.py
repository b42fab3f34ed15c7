"""Local media storage layout and file naming.

Payloads land in ``<media_root>/media/`` and generated thumbnails in
``<media_root>/thumbnails/``. File names are ``<epoch-millis>_<name>`` so
that two attachments with the same display name never collide.
"""

import re
import time
from pathlib import Path

from chat_mirror.logging import get_logger

logger = get_logger("storage")

MAX_NAME_LENGTH = 100

_INVALID_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE_RE = re.compile(r"\s+")

EXTENSIONS_BY_TYPE = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "video/avi": ".avi",
    "video/x-msvideo": ".avi",
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/ogg": ".ogg",
    "audio/aac": ".aac",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.ms-powerpoint": ".ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ".pptx",
    "application/zip": ".zip",
    "text/plain": ".txt",
    "text/csv": ".csv",
}


def sanitize_file_name(name: str) -> str:
    """Make a display name safe for use as a file name.

    Replaces path and shell-hostile characters and whitespace runs with
    underscores and caps the length.

    Args:
        name: Original attachment display name

    Returns:
        Sanitized name (``attachment`` if nothing usable remains)
    """
    cleaned = _INVALID_CHARS_RE.sub("_", name)
    cleaned = _WHITESPACE_RE.sub("_", cleaned)
    cleaned = cleaned[:MAX_NAME_LENGTH]
    # Leading dots would make the file hidden
    cleaned = cleaned.lstrip(".")
    return cleaned or "attachment"


def extension_for(content_type: str | None) -> str:
    """Return the conventional extension for a content type, or ''."""
    if not content_type:
        return ""
    mime = content_type.split(";", 1)[0].strip().lower()
    return EXTENSIONS_BY_TYPE.get(mime, "")


class MediaStorage:
    """Owns the on-disk media and thumbnail directories."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self.media_dir = root / "media"
        self.thumbnails_dir = root / "thumbnails"

    @property
    def root(self) -> Path:
        return self._root

    def ensure_dirs(self) -> None:
        """Create the media and thumbnail directories if needed."""
        self.media_dir.mkdir(parents=True, exist_ok=True)
        self.thumbnails_dir.mkdir(parents=True, exist_ok=True)

    def safe_filename(self, display_name: str, content_type: str | None, now_ms: int | None = None) -> str:
        """Build a collision-resistant file name for a new payload.

        Args:
            display_name: Attachment display name
            content_type: MIME type, used to add an extension when missing
            now_ms: Epoch milliseconds prefix (defaults to the current time)

        Returns:
            File name (not a path) that does not exist yet in the media dir
        """
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        name = sanitize_file_name(display_name)
        if not Path(name).suffix:
            name += extension_for(content_type)

        candidate = f"{now_ms}_{name}"
        stem, suffix = Path(candidate).stem, Path(candidate).suffix
        counter = 1
        while (self.media_dir / candidate).exists():
            candidate = f"{stem}_{counter}{suffix}"
            counter += 1
        return candidate

    def write(self, data: bytes, display_name: str, content_type: str | None) -> Path:
        """Write a downloaded payload to the media directory.

        Args:
            data: Payload bytes
            display_name: Attachment display name
            content_type: MIME type

        Returns:
            Absolute path of the written file
        """
        self.ensure_dirs()
        path = self.media_dir / self.safe_filename(display_name, content_type)
        partial = path.with_name(path.name + ".part")
        with open(partial, "wb") as f:
            f.write(data)
        partial.replace(path)

        logger.debug("Stored media: path=%s bytes=%d", path.name, len(data))
        return path.resolve()

    def thumbnail_path_for(self, media_path: Path) -> Path:
        """Return where the thumbnail for a stored payload belongs."""
        self.ensure_dirs()
        return self.thumbnails_dir / f"thumb_{media_path.stem}.jpg"
