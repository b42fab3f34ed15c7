"""Remote collaborator interfaces.

The synchronizer and fetcher only see these abstractions; the Google
implementation lives in ``chat_mirror.remote.google`` and tests supply fakes.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from chat_mirror.logging import get_logger

logger = get_logger("remote")


class RemoteError(Exception):
    """A call to the remote chat or file service failed."""


class PayloadTooLarge(RemoteError):
    """A media download exceeded the caller's size ceiling."""


@dataclass
class FileMetadata:
    """Metadata for a file held by the remote file store."""

    file_id: str
    name: str = ""
    content_type: str = ""
    size: int | None = None
    content_url: str | None = None
    thumbnail_url: str | None = None


class TokenSource(ABC):
    """Provides bearer tokens for authenticated direct downloads."""

    @abstractmethod
    def access_token(self) -> str:
        """Return a currently valid OAuth access token."""


class ChatService(TokenSource):
    """Read-only view of the remote chat service for one account."""

    @abstractmethod
    def list_conversations(self) -> list[dict[str, Any]]:
        """List every space/DM visible to the account (paginated to exhaustion)."""

    @abstractmethod
    def list_messages(
        self,
        conversation_id: str,
        page_token: str | None = None,
        page_size: int = 100,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """Fetch one page of messages.

        Returns:
            Tuple of (messages, next_page_token); the token is None on the
            last page
        """

    @abstractmethod
    def get_message(self, message_id: str) -> dict[str, Any]:
        """Fetch the full message resource, including attachment payloads."""

    @abstractmethod
    def download_media(self, resource_name: str, max_bytes: int | None = None) -> bytes:
        """Download an attachment by its chat resource reference.

        Raises:
            RemoteError: On failure
        """


class FileStore(ABC):
    """Read-only view of the remote file store (Drive)."""

    @abstractmethod
    def get_file_metadata(self, file_id: str) -> FileMetadata:
        """Look up size and download URL for a stored file.

        Raises:
            RemoteError: On failure
        """


def iter_all_messages(
    service: ChatService,
    conversation_id: str,
    page_size: int = 100,
    max_pages: int = 0,
) -> Iterator[dict[str, Any]]:
    """Yield every message of a conversation, following page tokens.

    Stops when the service returns no next token, when ``max_pages`` pages
    were read (0 means unlimited) or when a page token repeats.

    Args:
        service: Chat service to page through
        conversation_id: Space resource name
        page_size: Messages per page
        max_pages: Safety cap on pages read, 0 for no cap

    Yields:
        Message resources in listing order
    """
    page_token: str | None = None
    seen_tokens: set[str] = set()
    pages = 0

    while True:
        messages, next_token = service.list_messages(
            conversation_id,
            page_token=page_token,
            page_size=page_size,
        )
        pages += 1
        yield from messages

        if not next_token:
            return
        if next_token in seen_tokens:
            logger.warning(
                "Repeated page token, stopping pagination: conversation=%s pages=%d",
                conversation_id,
                pages,
            )
            return
        if max_pages and pages >= max_pages:
            logger.warning(
                "Page cap reached: conversation=%s max_pages=%d",
                conversation_id,
                max_pages,
            )
            return

        seen_tokens.add(next_token)
        page_token = next_token
