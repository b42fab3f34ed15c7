"""Google Chat and Drive implementations of the remote interfaces."""

import io
from pathlib import Path
from typing import Any

from google.auth.transport.requests import Request
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload

from chat_mirror.config import GoogleConfig
from chat_mirror.logging import get_logger
from chat_mirror.remote.base import (
    ChatService,
    FileMetadata,
    FileStore,
    PayloadTooLarge,
    RemoteError,
)

logger = get_logger("google")

DRIVE_CONTENT_URL = "https://www.googleapis.com/drive/v3/files/{file_id}?alt=media"
DRIVE_FILE_FIELDS = "id,name,mimeType,size,thumbnailLink,webContentLink"
SPACES_PAGE_SIZE = 1000


def build_credentials(config: GoogleConfig, subject: str) -> service_account.Credentials:
    """Service-account credentials impersonating ``subject``.

    Args:
        config: Google configuration (key file and scopes)
        subject: Account email to act as

    Returns:
        Delegated credentials
    """
    return service_account.Credentials.from_service_account_file(
        str(Path(config.service_account_file)),
        scopes=config.scopes,
        subject=subject,
    )


class GoogleChatService(ChatService):
    """Chat API v1 client for one impersonated account."""

    def __init__(self, credentials: service_account.Credentials, service: Any = None) -> None:
        """Initialize the chat client.

        Args:
            credentials: Delegated credentials
            service: Pre-built discovery client (built from credentials if None)
        """
        self._credentials = credentials
        self._service = service or build("chat", "v1", credentials=credentials, cache_discovery=False)

    def access_token(self) -> str:
        if not self._credentials.valid:
            self._credentials.refresh(Request())
        return self._credentials.token

    def list_conversations(self) -> list[dict[str, Any]]:
        spaces: list[dict[str, Any]] = []
        page_token: str | None = None
        try:
            while True:
                kwargs: dict[str, Any] = {"pageSize": SPACES_PAGE_SIZE}
                if page_token:
                    kwargs["pageToken"] = page_token
                response = self._service.spaces().list(**kwargs).execute()
                spaces.extend(response.get("spaces", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except HttpError as e:
            raise RemoteError(f"Failed to list spaces: {e}") from e
        return spaces

    def list_messages(
        self,
        conversation_id: str,
        page_token: str | None = None,
        page_size: int = 100,
    ) -> tuple[list[dict[str, Any]], str | None]:
        kwargs: dict[str, Any] = {"parent": conversation_id, "pageSize": page_size}
        if page_token:
            kwargs["pageToken"] = page_token
        try:
            response = self._service.spaces().messages().list(**kwargs).execute()
        except HttpError as e:
            raise RemoteError(f"Failed to list messages for {conversation_id}: {e}") from e
        return response.get("messages", []), response.get("nextPageToken") or None

    def get_message(self, message_id: str) -> dict[str, Any]:
        try:
            return self._service.spaces().messages().get(name=message_id).execute()
        except HttpError as e:
            raise RemoteError(f"Failed to get message {message_id}: {e}") from e

    def download_media(self, resource_name: str, max_bytes: int | None = None) -> bytes:
        buffer = io.BytesIO()
        try:
            request = self._service.media().download_media(resourceName=resource_name)
            downloader = MediaIoBaseDownload(buffer, request)
            done = False
            while not done:
                _, done = downloader.next_chunk()
                if max_bytes is not None and buffer.tell() > max_bytes:
                    raise PayloadTooLarge(
                        f"Attachment exceeds {max_bytes} bytes (chat media download)"
                    )
        except HttpError as e:
            raise RemoteError(f"Chat media download failed: {e}") from e
        return buffer.getvalue()


class GoogleDriveFileStore(FileStore):
    """Drive API v3 metadata lookups."""

    def __init__(self, credentials: service_account.Credentials, service: Any = None) -> None:
        self._service = service or build("drive", "v3", credentials=credentials, cache_discovery=False)

    def get_file_metadata(self, file_id: str) -> FileMetadata:
        try:
            data = self._service.files().get(
                fileId=file_id,
                fields=DRIVE_FILE_FIELDS,
                supportsAllDrives=True,
            ).execute()
        except HttpError as e:
            raise RemoteError(f"Drive metadata lookup failed for {file_id}: {e}") from e

        size = data.get("size")
        return FileMetadata(
            file_id=data.get("id", file_id),
            name=data.get("name", ""),
            content_type=data.get("mimeType", ""),
            size=int(size) if size is not None else None,
            content_url=DRIVE_CONTENT_URL.format(file_id=file_id),
            thumbnail_url=data.get("thumbnailLink"),
        )
