"""Retention-based cleanup of stored media files."""

import time
from collections.abc import Iterable
from pathlib import Path

from chat_mirror.logging import get_logger

logger = get_logger("cleanup")

DEFAULT_RETENTION_DAYS = 180

PROTECTED_FILES = frozenset({".gitkeep", "README.md", ".DS_Store"})


def cleanup_media(
    media_root: Path,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    referenced_paths: Iterable[str] = (),
    dry_run: bool = False,
    now: float | None = None,
) -> dict[str, int]:
    """Delete media files older than the retention period.

    Walks ``<media_root>/media`` and ``<media_root>/thumbnails``. Protected
    names and any path still referenced by a stored attachment are kept.

    Args:
        media_root: Media storage root
        retention_days: Files with an mtime older than this are removed
        referenced_paths: Absolute paths referenced by stored attachments
        dry_run: Only count what would be deleted
        now: Reference epoch seconds (defaults to the current time)

    Returns:
        Dict with counts: {"scanned": N, "deleted": M, "kept": K,
        "protected": P, "referenced": R, "errors": E, "bytes_freed": B}
    """
    if now is None:
        now = time.time()
    cutoff = now - retention_days * 86400

    referenced = {str(Path(p).resolve()) for p in referenced_paths if p}
    stats = {
        "scanned": 0,
        "deleted": 0,
        "kept": 0,
        "protected": 0,
        "referenced": 0,
        "errors": 0,
        "bytes_freed": 0,
    }

    for directory in (media_root / "media", media_root / "thumbnails"):
        if not directory.exists():
            continue

        for path in sorted(directory.rglob("*")):
            if not path.is_file():
                continue
            stats["scanned"] += 1

            if path.name in PROTECTED_FILES:
                stats["protected"] += 1
                continue
            if str(path.resolve()) in referenced:
                stats["referenced"] += 1
                continue

            try:
                stat = path.stat()
                if stat.st_mtime >= cutoff:
                    stats["kept"] += 1
                    continue
                if not dry_run:
                    path.unlink()
            except OSError:
                logger.warning("Could not remove media file: path=%s", path, exc_info=True)
                stats["errors"] += 1
                continue

            stats["deleted"] += 1
            stats["bytes_freed"] += stat.st_size
            logger.debug("Removed media file: path=%s dry_run=%s", path.name, dry_run)

    logger.info(
        "Media cleanup complete: scanned=%d deleted=%d bytes_freed=%d dry_run=%s",
        stats["scanned"],
        stats["deleted"],
        stats["bytes_freed"],
        dry_run,
    )
    return stats
