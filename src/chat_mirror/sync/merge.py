"""Preservation-first merging of freshly synced data into stored documents.

Attachments are never dropped: a stored attachment survives even when the
remote stops reporting it, and a completed download is never replaced.
"""

from chat_mirror.models import (
    Attachment,
    Conversation,
    ConversationKind,
    DownloadState,
    Message,
    Participant,
)


def is_preserved(attachment: Attachment) -> bool:
    """True if the attachment downloaded successfully and must never be replaced."""
    return attachment.download_state == DownloadState.COMPLETED and bool(attachment.local_storage_path)


def merge_attachments(existing: list[Attachment], incoming: list[Attachment]) -> list[Attachment]:
    """Union two attachment lists by source id.

    Existing entries keep their position. An existing entry is replaced by
    the incoming one only when it never completed; incoming source ids not
    seen before are appended in order.

    Args:
        existing: Stored attachments
        incoming: Freshly fetched attachments

    Returns:
        New merged list
    """
    merged = list(existing)
    positions = {a.source_id: i for i, a in enumerate(merged)}

    for attachment in incoming:
        index = positions.get(attachment.source_id)
        if index is None:
            positions[attachment.source_id] = len(merged)
            merged.append(attachment)
        elif not is_preserved(merged[index]):
            merged[index] = attachment

    return merged


def merge_message(existing: Message, incoming: Message) -> Message:
    """Refresh a stored message from its latest remote version.

    Text and sender fields follow the incoming message; attachments are
    merged with ``merge_attachments``. The stored message is updated in place.
    """
    existing.text = incoming.text
    existing.sender_remote_id = incoming.sender_remote_id
    existing.sender_email = incoming.sender_email
    existing.sender_display_name = incoming.sender_display_name
    existing.sender_domain = incoming.sender_domain
    existing.is_sent_by_current_account = incoming.is_sent_by_current_account
    existing.is_external_sender = incoming.is_external_sender
    existing.attachments = merge_attachments(existing.attachments, incoming.attachments)
    return existing


def derive_participants(conversation: Conversation) -> list[Participant]:
    """Distinct senders in first-seen order.

    For direct messages the syncing account's own messages are left out so
    the participant list names the other side.
    """
    participants: list[Participant] = []
    seen: set[str] = set()
    is_dm = conversation.kind == ConversationKind.DIRECT_MESSAGE

    for message in conversation.messages:
        if is_dm and message.is_sent_by_current_account:
            continue
        key = message.sender_remote_id or message.sender_email
        if key in seen:
            continue
        seen.add(key)
        participants.append(
            Participant(
                remote_user_id=message.sender_remote_id,
                email=message.sender_email,
                display_name=message.sender_display_name,
            )
        )

    return participants


def merge_conversation(existing: Conversation | None, incoming: Conversation) -> tuple[Conversation, int]:
    """Fold a freshly synced conversation into the stored one.

    Args:
        existing: Stored conversation, or None on first sighting
        incoming: Conversation built from this sweep's messages

    Returns:
        Tuple of (merged conversation, number of newly added messages)
    """
    base = existing
    if base is None:
        base = Conversation(
            account=incoming.account,
            remote_id=incoming.remote_id,
            display_name=incoming.display_name,
            kind=incoming.kind,
        )

    by_id = {m.remote_id: m for m in base.messages}
    new_messages = 0

    for message in incoming.messages:
        current = by_id.get(message.remote_id)
        if current is None:
            base.messages.append(message)
            by_id[message.remote_id] = message
            new_messages += 1
        else:
            merge_message(current, message)

    base.display_name = incoming.display_name
    base.kind = incoming.kind
    base.participants = derive_participants(base)
    return base, new_messages
