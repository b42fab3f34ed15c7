"""Normalization of raw remote message resources.

Remote messages carry attachments under either ``attachments`` (list) or
``attachment`` (list or single object), with varying reference shapes. All
of that is flattened here into ``AttachmentDescriptor``s before the rest of
the sync touches it.
"""

from typing import Any

from chat_mirror.logging import get_logger
from chat_mirror.models import AttachmentDescriptor

logger = get_logger("normalize")


def raw_attachments(message_data: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the attachment objects of a message, whatever field holds them."""
    attachments = message_data.get("attachments")
    if isinstance(attachments, list):
        return [a for a in attachments if isinstance(a, dict)]

    attachment = message_data.get("attachment")
    if isinstance(attachment, list):
        return [a for a in attachment if isinstance(a, dict)]
    if isinstance(attachment, dict):
        return [attachment]
    return []


def compute_source_id(raw: dict[str, Any], message_id: str, index: int) -> str:
    """Derive the de-duplication key for a raw attachment.

    Preference: attachment resource name, Drive file id, attachment name,
    content name, then ``<message id>_attachment_<index>``.
    """
    data_ref = raw.get("attachmentDataRef") or {}
    drive_ref = raw.get("driveDataRef") or {}
    for candidate in (
        data_ref.get("resourceName"),
        drive_ref.get("driveFileId"),
        drive_ref.get("resourceName"),
        raw.get("name"),
        raw.get("contentName"),
    ):
        if candidate:
            return str(candidate)
    return f"{message_id}_attachment_{index}"


def normalize_attachment(raw: dict[str, Any], message_id: str, index: int) -> AttachmentDescriptor:
    """Build a descriptor from one raw attachment object."""
    data_ref = raw.get("attachmentDataRef") or {}
    drive_ref = raw.get("driveDataRef") or {}

    display_name = raw.get("contentName") or raw.get("filename") or raw.get("name") or "Unnamed attachment"

    return AttachmentDescriptor(
        source_id=compute_source_id(raw, message_id, index),
        content_type=raw.get("contentType") or raw.get("mimeType") or "",
        display_name=display_name,
        drive_file_id=drive_ref.get("driveFileId"),
        resource_name=data_ref.get("resourceName"),
        download_uri=raw.get("downloadUri"),
        thumbnail_uri=raw.get("thumbnailUri"),
    )


def normalize_attachments(message_data: dict[str, Any]) -> list[AttachmentDescriptor]:
    """Normalize every attachment of a message into descriptors.

    Descriptors sharing a source id are collapsed to the first occurrence.

    Args:
        message_data: Raw message resource

    Returns:
        Descriptors in remote order
    """
    message_id = message_data.get("name", "")
    descriptors: list[AttachmentDescriptor] = []
    seen: set[str] = set()

    for index, raw in enumerate(raw_attachments(message_data)):
        descriptor = normalize_attachment(raw, message_id, index)
        if descriptor.source_id in seen:
            logger.debug(
                "Duplicate attachment in message: message=%s source_id=%s",
                message_id,
                descriptor.source_id,
            )
            continue
        seen.add(descriptor.source_id)
        descriptors.append(descriptor)

    return descriptors


def sender_id(message_data: dict[str, Any]) -> str | None:
    """Return the raw sender id of a message, if any."""
    sender = message_data.get("sender") or {}
    return sender.get("name") or sender.get("email")
