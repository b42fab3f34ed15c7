"""Post-download metadata extraction and thumbnail generation."""

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from chat_mirror.logging import get_logger
from chat_mirror.media.storage import MediaStorage
from chat_mirror.models import Attachment, Dimensions, MediaType

logger = get_logger("metadata")

THUMBNAIL_SIZE = (300, 300)
THUMBNAIL_QUALITY = 80
PROBE_TIMEOUT_SECONDS = 30


@dataclass
class ProbeResult:
    width: int | None = None
    height: int | None = None
    duration_seconds: float | None = None


def image_dimensions(path: Path) -> Dimensions:
    """Read pixel dimensions of an image file.

    Raises:
        OSError: If the file cannot be opened or is not an image
    """
    with Image.open(path) as img:
        width, height = img.size
    return Dimensions(width=width, height=height)


def create_image_thumbnail(source: Path, dest: Path) -> Path:
    """Write a JPEG thumbnail bounded to 300x300, preserving aspect ratio.

    Args:
        source: Image to thumbnail
        dest: Output path

    Returns:
        The thumbnail path
    """
    with Image.open(source) as img:
        img.thumbnail(THUMBNAIL_SIZE)
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.save(dest, format="JPEG", quality=THUMBNAIL_QUALITY)
    return dest


def probe_media(path: Path, ffprobe_path: str = "ffprobe") -> ProbeResult:
    """Probe an audio/video file with ffprobe.

    Args:
        path: Media file
        ffprobe_path: ffprobe executable

    Returns:
        ProbeResult with whatever fields ffprobe reported

    Raises:
        RuntimeError: If ffprobe exits non-zero or emits unparsable output
        OSError: If ffprobe cannot be executed
    """
    result = subprocess.run(
        [
            ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(path),
        ],
        capture_output=True,
        text=True,
        check=False,
        timeout=PROBE_TIMEOUT_SECONDS,
    )
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr.strip()}")

    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise RuntimeError(f"ffprobe returned invalid JSON: {e}") from e

    probe = ProbeResult()
    try:
        for stream in data.get("streams") or []:
            if stream.get("codec_type") != "video":
                continue
            width, height = stream.get("width"), stream.get("height")
            if width and height:
                probe.width = int(width)
                probe.height = int(height)
                break

        duration = (data.get("format") or {}).get("duration")
        if duration not in (None, "N/A"):
            probe.duration_seconds = float(duration)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise RuntimeError(f"ffprobe returned unexpected output: {e}") from e

    return probe


def create_video_thumbnail(source: Path, dest: Path, ffmpeg_path: str = "ffmpeg") -> Path:
    """Grab a single frame one second in and scale it into 300x300.

    Raises:
        RuntimeError: If ffmpeg exits non-zero
    """
    result = subprocess.run(
        [
            ffmpeg_path,
            "-y",
            "-v", "error",
            "-ss", "1",
            "-i", str(source),
            "-frames:v", "1",
            "-vf", "scale=300:300:force_original_aspect_ratio=decrease",
            str(dest),
        ],
        capture_output=True,
        text=True,
        check=False,
        timeout=PROBE_TIMEOUT_SECONDS,
    )
    if result.returncode != 0 or not dest.exists():
        raise RuntimeError(f"ffmpeg failed: {result.stderr.strip()}")
    return dest


def enrich_attachment(
    attachment: Attachment,
    path: Path,
    storage: MediaStorage,
    ffprobe_path: str = "ffprobe",
    ffmpeg_path: str = "ffmpeg",
) -> Attachment:
    """Fill size, dimensions, duration and thumbnail for a stored payload.

    Every step is best effort: failures are logged and the attachment keeps
    whatever was filled in before the failure.

    Args:
        attachment: Attachment whose payload was just written
        path: Stored payload path
        storage: Media storage (for thumbnail placement)
        ffprobe_path: ffprobe executable
        ffmpeg_path: ffmpeg executable

    Returns:
        The same attachment, updated in place
    """
    try:
        attachment.file_size_bytes = path.stat().st_size
    except OSError:
        logger.warning("Could not stat stored media: path=%s", path, exc_info=True)

    if attachment.media_type == MediaType.IMAGE:
        try:
            attachment.dimensions = image_dimensions(path)
            thumb = create_image_thumbnail(path, storage.thumbnail_path_for(path))
            attachment.thumbnail_path = str(thumb.resolve())
        except Exception:
            # Includes DecompressionBombError, which is not an OSError.
            logger.warning("Image metadata failed: path=%s", path.name, exc_info=True)

    elif attachment.media_type in (MediaType.VIDEO, MediaType.AUDIO):
        try:
            probe = probe_media(path, ffprobe_path)
            if probe.width and probe.height:
                attachment.dimensions = Dimensions(width=probe.width, height=probe.height)
            attachment.duration_seconds = probe.duration_seconds
        except Exception:
            logger.warning("ffprobe failed: path=%s", path.name, exc_info=True)

        if attachment.media_type == MediaType.VIDEO:
            try:
                thumb = create_video_thumbnail(path, storage.thumbnail_path_for(path), ffmpeg_path)
                attachment.thumbnail_path = str(thumb.resolve())
            except Exception:
                logger.warning("Video thumbnail failed: path=%s", path.name, exc_info=True)

    return attachment
