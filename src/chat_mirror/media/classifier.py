"""Content-type to media category classification."""

from chat_mirror.models import MediaType

IMAGE_TYPES = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
})

VIDEO_TYPES = frozenset({
    "video/mp4",
    "video/webm",
    "video/avi",
    "video/x-msvideo",
    "video/mov",
    "video/quicktime",
    "video/wmv",
    "video/x-ms-wmv",
})

AUDIO_TYPES = frozenset({
    "audio/mp3",
    "audio/mpeg",
    "audio/wav",
    "audio/x-wav",
    "audio/ogg",
    "audio/m4a",
    "audio/x-m4a",
    "audio/mp4",
    "audio/aac",
})

DOCUMENT_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain",
    "text/csv",
})

ARCHIVE_TYPES = frozenset({
    "application/zip",
    "application/x-zip-compressed",
    "application/x-rar-compressed",
    "application/vnd.rar",
    "application/x-7z-compressed",
})

_TABLES: list[tuple[frozenset[str], MediaType]] = [
    (IMAGE_TYPES, MediaType.IMAGE),
    (VIDEO_TYPES, MediaType.VIDEO),
    (AUDIO_TYPES, MediaType.AUDIO),
    (DOCUMENT_TYPES, MediaType.DOCUMENT),
    (ARCHIVE_TYPES, MediaType.ARCHIVE),
]

_OFFICE_MARKERS = ("pdf", "document", "spreadsheet", "presentation")


def normalize_content_type(content_type: str | None) -> str:
    """Lower-case a content type and drop any parameters."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def classify(content_type: str | None) -> MediaType:
    """Map a MIME type onto a media category.

    Total over all inputs: unknown, empty or missing content types map to
    ``MediaType.OTHER``.

    Args:
        content_type: MIME type as reported by the remote service, may carry
            parameters such as ``; charset=utf-8``

    Returns:
        The media category
    """
    mime = normalize_content_type(content_type)
    if not mime:
        return MediaType.OTHER

    for types, media_type in _TABLES:
        if mime in types:
            return media_type

    family, _, subtype = mime.partition("/")
    if family == "image":
        return MediaType.IMAGE
    if family == "video":
        return MediaType.VIDEO
    if family == "audio" or mime == "application/ogg":
        return MediaType.AUDIO
    if family == "application" and any(marker in subtype for marker in _OFFICE_MARKERS):
        return MediaType.DOCUMENT

    return MediaType.OTHER
