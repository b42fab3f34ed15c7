"""Canonical data models."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class MediaType(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    ARCHIVE = "archive"
    OTHER = "other"


class DownloadState(StrEnum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ConversationKind(StrEnum):
    DIRECT_MESSAGE = "DIRECT_MESSAGE"
    SPACE = "SPACE"
    GROUP_CHAT = "GROUP_CHAT"

    @classmethod
    def from_remote(cls, value: str | None) -> "ConversationKind":
        """Map a remote spaceType (or legacy type) onto a kind, defaulting to SPACE."""
        if value in ("DIRECT_MESSAGE", "DM"):
            return cls.DIRECT_MESSAGE
        if value in ("GROUP_CHAT",):
            return cls.GROUP_CHAT
        return cls.SPACE


_FRACTION_RE = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime, truncated to microseconds."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Accepts the ``Z`` suffix and fractional seconds longer than the
    microsecond precision Python keeps (remote APIs emit nanoseconds).
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    """Format a datetime for persistence (ISO 8601, UTC)."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


class DescriptorKind(StrEnum):
    """How an attachment payload can be retrieved, in strategy order."""

    DRIVE_FILE = "drive_file"
    ATTACHMENT_REF = "attachment_ref"
    DIRECT_URL = "direct_url"


@dataclass
class AttachmentDescriptor:
    """Normalized remote attachment reference, prior to any download."""

    source_id: str
    content_type: str = ""
    display_name: str = "Unnamed attachment"
    drive_file_id: str | None = None
    resource_name: str | None = None
    download_uri: str | None = None
    thumbnail_uri: str | None = None

    @property
    def strategies(self) -> list[DescriptorKind]:
        """Retrieval strategies this descriptor supports, in preference order."""
        kinds = []
        if self.drive_file_id:
            kinds.append(DescriptorKind.DRIVE_FILE)
        if self.resource_name:
            kinds.append(DescriptorKind.ATTACHMENT_REF)
        if self.download_uri:
            kinds.append(DescriptorKind.DIRECT_URL)
        return kinds

    @property
    def kind(self) -> DescriptorKind | None:
        """Primary retrieval strategy, or None if nothing is retrievable."""
        strategies = self.strategies
        return strategies[0] if strategies else None


@dataclass
class Dimensions:
    width: int
    height: int


@dataclass
class Attachment:
    """A binary attachment referenced by a message."""

    source_id: str
    content_type: str = ""
    media_type: MediaType = MediaType.OTHER
    display_name: str = "Unnamed attachment"
    file_size_bytes: int | None = None
    local_storage_path: str | None = None
    download_state: DownloadState = DownloadState.PENDING
    download_error: str | None = None
    dimensions: Dimensions | None = None
    duration_seconds: float | None = None
    thumbnail_path: str | None = None
    downloaded_at: datetime | None = None
    # Ceiling in force when the payload was skipped as too large.
    size_limit_bytes: int | None = None

    @property
    def is_downloaded(self) -> bool:
        """True once the payload is safely on local storage."""
        return self.download_state == DownloadState.COMPLETED

    def to_record(self) -> dict[str, Any]:
        """Convert to the persisted document format."""
        return {
            "source_id": self.source_id,
            "content_type": self.content_type,
            "media_type": str(self.media_type),
            "display_name": self.display_name,
            "file_size_bytes": self.file_size_bytes,
            "local_storage_path": self.local_storage_path,
            "download_state": str(self.download_state),
            "download_error": self.download_error,
            "dimensions": (
                {"width": self.dimensions.width, "height": self.dimensions.height}
                if self.dimensions
                else None
            ),
            "duration_seconds": self.duration_seconds,
            "thumbnail_path": self.thumbnail_path,
            "downloaded_at": format_timestamp(self.downloaded_at),
            "size_limit_bytes": self.size_limit_bytes,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Attachment":
        dims = record.get("dimensions")
        return cls(
            source_id=record["source_id"],
            content_type=record.get("content_type") or "",
            media_type=MediaType(record.get("media_type") or MediaType.OTHER),
            display_name=record.get("display_name") or "Unnamed attachment",
            file_size_bytes=record.get("file_size_bytes"),
            local_storage_path=record.get("local_storage_path"),
            download_state=DownloadState(record.get("download_state") or DownloadState.PENDING),
            download_error=record.get("download_error"),
            dimensions=Dimensions(dims["width"], dims["height"]) if dims else None,
            duration_seconds=record.get("duration_seconds"),
            thumbnail_path=record.get("thumbnail_path"),
            downloaded_at=parse_timestamp(record.get("downloaded_at")),
            size_limit_bytes=record.get("size_limit_bytes"),
        )


@dataclass
class Message:
    """A single chat message, keyed by its remote resource name."""

    remote_id: str
    create_time: datetime
    text: str = ""
    sender_remote_id: str = "Unknown"
    sender_email: str = ""
    sender_display_name: str = ""
    sender_domain: str = ""
    is_sent_by_current_account: bool = False
    is_external_sender: bool = False
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def has_attachments(self) -> bool:
        return len(self.attachments) > 0

    @property
    def has_media(self) -> bool:
        return any(a.media_type in (MediaType.IMAGE, MediaType.VIDEO) for a in self.attachments)

    @property
    def has_documents(self) -> bool:
        return any(a.media_type == MediaType.DOCUMENT for a in self.attachments)

    def attachment(self, source_id: str) -> Attachment | None:
        """Return the attachment with the given source id, if present."""
        for attachment in self.attachments:
            if attachment.source_id == source_id:
                return attachment
        return None

    def to_record(self) -> dict[str, Any]:
        return {
            "remote_id": self.remote_id,
            "text": self.text,
            "sender_remote_id": self.sender_remote_id,
            "sender_email": self.sender_email,
            "sender_display_name": self.sender_display_name,
            "sender_domain": self.sender_domain,
            "is_sent_by_current_account": self.is_sent_by_current_account,
            "is_external_sender": self.is_external_sender,
            "create_time": format_timestamp(self.create_time),
            "attachments": [a.to_record() for a in self.attachments],
            "has_attachments": self.has_attachments,
            "has_media": self.has_media,
            "has_documents": self.has_documents,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Message":
        return cls(
            remote_id=record["remote_id"],
            create_time=parse_timestamp(record["create_time"]),
            text=record.get("text") or "",
            sender_remote_id=record.get("sender_remote_id") or "Unknown",
            sender_email=record.get("sender_email") or "",
            sender_display_name=record.get("sender_display_name") or "",
            sender_domain=record.get("sender_domain") or "",
            is_sent_by_current_account=bool(record.get("is_sent_by_current_account")),
            is_external_sender=bool(record.get("is_external_sender")),
            attachments=[Attachment.from_record(a) for a in record.get("attachments", [])],
        )

    def to_typesense_doc(self, account: str, conversation: "Conversation") -> dict[str, Any]:
        """Convert to Typesense document format."""
        return {
            "id": f"{account}:{self.remote_id}",
            "account": account,
            "conversation_id": conversation.remote_id,
            "conversation_name": conversation.display_name,
            "kind": str(conversation.kind),
            "sender_email": self.sender_email,
            "sender_name": self.sender_display_name,
            "ts": int(self.create_time.timestamp()),
            "text": self.text,
            "attachment_names": [a.display_name for a in self.attachments],
            "has_attachments": self.has_attachments,
        }


@dataclass
class Participant:
    remote_user_id: str
    email: str
    display_name: str

    def to_record(self) -> dict[str, str]:
        return {
            "remote_user_id": self.remote_user_id,
            "email": self.email,
            "display_name": self.display_name,
        }


@dataclass
class Conversation:
    """A mirrored space or direct-message thread."""

    account: str
    remote_id: str
    display_name: str
    kind: ConversationKind = ConversationKind.SPACE
    participants: list[Participant] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def last_message_time(self) -> datetime | None:
        if not self.messages:
            return None
        return max(m.create_time for m in self.messages)

    @property
    def id(self) -> str:
        """Stable unique ID for this conversation."""
        return f"{self.account}:{self.remote_id}"

    def message(self, remote_id: str) -> Message | None:
        for message in self.messages:
            if message.remote_id == remote_id:
                return message
        return None

    def to_typesense_doc(self) -> dict[str, Any]:
        """Convert to Typesense document format."""
        last = self.last_message_time
        preview = ""
        if self.messages:
            latest = max(self.messages, key=lambda m: m.create_time)
            preview = latest.text[:200].strip()
            if len(latest.text) > 200:
                preview += "..."
        return {
            "id": self.id,
            "account": self.account,
            "conversation_id": self.remote_id,
            "display_name": self.display_name,
            "kind": str(self.kind),
            "participants": [p.display_name for p in self.participants],
            "message_count": self.message_count,
            "last_ts": int(last.timestamp()) if last else 0,
            "preview": preview,
        }


@dataclass
class Identity:
    """A resolved sender identity."""

    email: str
    display_name: str
    domain: str
    resolved_by: str = "fallback"
    confidence: int = 50


@dataclass
class IdentityCacheEntry:
    """Identity cache row mapping an opaque remote user id to an identity."""

    remote_user_id: str
    email: str
    display_name: str
    domain: str
    resolved_by: str = "fallback"
    confidence: int = 50
    seen_count: int = 1
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    discovered_by_account: str | None = None

    def to_identity(self) -> Identity:
        return Identity(
            email=self.email,
            display_name=self.display_name,
            domain=self.domain,
            resolved_by=self.resolved_by,
            confidence=self.confidence,
        )


@dataclass
class Account:
    """An identity under which the remote API is called."""

    email: str
    created_at: datetime | None = None
    last_synced: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def domain(self) -> str:
        return self.email.split("@", 1)[1] if "@" in self.email else ""
