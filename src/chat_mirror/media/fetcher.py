"""Attachment download pipeline.

Given a normalized descriptor, tries each applicable retrieval strategy in
order (Drive file, chat media reference, direct URL) until one yields the
payload, writes it to media storage and extracts metadata.
"""

from collections.abc import Callable

import httpx

from chat_mirror.logging import get_logger
from chat_mirror.media.classifier import classify, normalize_content_type
from chat_mirror.media.metadata import enrich_attachment
from chat_mirror.media.storage import MediaStorage
from chat_mirror.models import (
    Attachment,
    AttachmentDescriptor,
    DescriptorKind,
    DownloadState,
    utc_now,
)
from chat_mirror.remote.base import (
    ChatService,
    FileStore,
    PayloadTooLarge,
    RemoteError,
    TokenSource,
)

logger = get_logger("fetcher")

CHUNK_SIZE = 64 * 1024


class DownloadError(Exception):
    """A single retrieval strategy failed."""


class AttachmentTooLarge(Exception):
    """The payload exceeds the configured size ceiling."""


def _format_size(num_bytes: int) -> str:
    return f"{num_bytes / (1024 * 1024):.1f} MB"


class AttachmentFetcher:
    """Downloads attachment payloads into local media storage."""

    def __init__(
        self,
        storage: MediaStorage,
        chat: ChatService | None = None,
        files: FileStore | None = None,
        http_client: httpx.Client | None = None,
        max_bytes: int = 50 * 1024 * 1024,
        timeout: float = 30.0,
        ffprobe_path: str = "ffprobe",
        ffmpeg_path: str = "ffmpeg",
    ) -> None:
        """Initialize the fetcher.

        Args:
            storage: Where payloads and thumbnails are written
            chat: Chat service used for media-reference downloads
            files: Remote file store used for Drive lookups
            http_client: Client for URL downloads (created if None)
            max_bytes: Size ceiling per attachment
            timeout: Per-request timeout in seconds for URL downloads
            ffprobe_path: ffprobe executable
            ffmpeg_path: ffmpeg executable
        """
        self._storage = storage
        self._chat = chat
        self._files = files
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._max_bytes = max_bytes
        self._timeout = timeout
        self._ffprobe_path = ffprobe_path
        self._ffmpeg_path = ffmpeg_path

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            self._http.close()

    def fetch(
        self,
        descriptor: AttachmentDescriptor,
        message_id: str,
        credentials: TokenSource | None = None,
    ) -> Attachment:
        """Download one attachment.

        Never raises: every outcome is expressed through the returned
        attachment's ``download_state`` and ``download_error``.

        Args:
            descriptor: Normalized attachment reference
            message_id: Owning message (for logging)
            credentials: Bearer token source for URL downloads

        Returns:
            Attachment in state completed, skipped or failed
        """
        attachment = Attachment(
            source_id=descriptor.source_id,
            content_type=descriptor.content_type,
            media_type=classify(descriptor.content_type),
            display_name=descriptor.display_name,
        )

        strategies = descriptor.strategies
        if not strategies:
            attachment.download_state = DownloadState.FAILED
            attachment.download_error = "No download method available for attachment"
            logger.warning(
                "No retrieval strategy: message=%s source_id=%s",
                message_id,
                descriptor.source_id,
            )
            return attachment

        handlers: dict[DescriptorKind, Callable[[AttachmentDescriptor, TokenSource | None], bytes]] = {
            DescriptorKind.DRIVE_FILE: self._fetch_drive_file,
            DescriptorKind.ATTACHMENT_REF: self._fetch_attachment_ref,
            DescriptorKind.DIRECT_URL: self._fetch_direct_url,
        }

        errors: list[str] = []
        attachment.download_state = DownloadState.DOWNLOADING
        for kind in strategies:
            try:
                data = handlers[kind](descriptor, credentials)
            except AttachmentTooLarge as e:
                attachment.download_state = DownloadState.SKIPPED
                attachment.download_error = str(e)
                attachment.size_limit_bytes = self._max_bytes
                logger.info(
                    "Skipped oversized attachment: message=%s source_id=%s reason=%s",
                    message_id,
                    descriptor.source_id,
                    e,
                )
                return attachment
            except DownloadError as e:
                errors.append(f"{kind}: {e}")
                logger.debug("Strategy failed: source_id=%s strategy=%s error=%s", descriptor.source_id, kind, e)
                continue
            except Exception as e:
                errors.append(f"{kind}: {e}")
                logger.exception("Unexpected error in strategy: source_id=%s strategy=%s", descriptor.source_id, kind)
                continue

            return self._store(attachment, data, message_id)

        attachment.download_state = DownloadState.FAILED
        attachment.download_error = "All download methods failed: " + "; ".join(errors)
        logger.warning(
            "Attachment download failed: message=%s source_id=%s errors=%d",
            message_id,
            descriptor.source_id,
            len(errors),
        )
        return attachment

    def _store(self, attachment: Attachment, data: bytes, message_id: str) -> Attachment:
        try:
            path = self._storage.write(data, attachment.display_name, attachment.content_type)
        except OSError as e:
            logger.exception("Failed to write media: message=%s source_id=%s", message_id, attachment.source_id)
            attachment.download_state = DownloadState.FAILED
            attachment.download_error = f"Failed to write media file: {e}"
            return attachment

        attachment.local_storage_path = str(path)
        attachment.file_size_bytes = len(data)
        attachment.download_state = DownloadState.COMPLETED
        attachment.download_error = None
        attachment.downloaded_at = utc_now()

        # The payload is stored; metadata problems must not undo that.
        try:
            enrich_attachment(
                attachment,
                path,
                self._storage,
                ffprobe_path=self._ffprobe_path,
                ffmpeg_path=self._ffmpeg_path,
            )
        except Exception:
            logger.exception("Metadata extraction failed: message=%s file=%s", message_id, path.name)

        logger.info(
            "Downloaded attachment: message=%s file=%s bytes=%d type=%s",
            message_id,
            path.name,
            attachment.file_size_bytes or 0,
            attachment.media_type,
        )
        return attachment

    def _fetch_drive_file(self, descriptor: AttachmentDescriptor, credentials: TokenSource | None) -> bytes:
        if self._files is None:
            raise DownloadError("no file store configured")
        try:
            meta = self._files.get_file_metadata(descriptor.drive_file_id)
        except RemoteError as e:
            raise DownloadError(str(e)) from e

        if meta.size is not None and meta.size > self._max_bytes:
            raise AttachmentTooLarge(
                f"File too large: {_format_size(meta.size)} exceeds {_format_size(self._max_bytes)} limit"
            )
        if not meta.content_url:
            raise DownloadError("file store returned no content URL")
        return self._stream(meta.content_url, descriptor.content_type, credentials)

    def _fetch_attachment_ref(self, descriptor: AttachmentDescriptor, credentials: TokenSource | None) -> bytes:
        if self._chat is None:
            raise DownloadError("no chat service configured")
        try:
            data = self._chat.download_media(descriptor.resource_name, max_bytes=self._max_bytes)
        except PayloadTooLarge as e:
            raise AttachmentTooLarge(str(e)) from e
        except RemoteError as e:
            raise DownloadError(str(e)) from e

        if len(data) > self._max_bytes:
            raise AttachmentTooLarge(
                f"File too large: {_format_size(len(data))} exceeds {_format_size(self._max_bytes)} limit"
            )
        if not data:
            raise DownloadError("empty media payload")
        return data

    def _fetch_direct_url(self, descriptor: AttachmentDescriptor, credentials: TokenSource | None) -> bytes:
        return self._stream(descriptor.download_uri, descriptor.content_type, credentials)

    def _stream(self, url: str, expected_type: str, credentials: TokenSource | None) -> bytes:
        """Stream a URL with the bearer token, enforcing the size ceiling.

        Raises:
            AttachmentTooLarge: If the declared or streamed size exceeds the ceiling
            DownloadError: On HTTP, network or content errors
        """
        headers = {}
        if credentials is not None:
            try:
                headers["Authorization"] = f"Bearer {credentials.access_token()}"
            except Exception as e:
                raise DownloadError(f"could not obtain access token: {e}") from e

        try:
            with self._http.stream("GET", url, headers=headers, timeout=self._timeout) as response:
                if response.status_code >= 400:
                    raise DownloadError(f"HTTP {response.status_code}")

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self._max_bytes:
                    raise AttachmentTooLarge(
                        f"File too large: {_format_size(int(declared))} exceeds "
                        f"{_format_size(self._max_bytes)} limit"
                    )

                received_type = normalize_content_type(response.headers.get("content-type"))
                if received_type == "text/html" and normalize_content_type(expected_type) != "text/html":
                    raise DownloadError("received HTML error page instead of file content")

                chunks = []
                total = 0
                for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                    total += len(chunk)
                    if total > self._max_bytes:
                        raise AttachmentTooLarge(
                            f"File too large: exceeds {_format_size(self._max_bytes)} limit"
                        )
                    chunks.append(chunk)
        except httpx.TimeoutException as e:
            raise DownloadError(f"download timed out after {self._timeout:g}s") from e
        except httpx.HTTPError as e:
            raise DownloadError(f"request failed: {e}") from e

        if total == 0:
            raise DownloadError("empty response body")
        return b"".join(chunks)
