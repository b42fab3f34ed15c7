"""Per-account conversation synchronization."""

from collections.abc import Callable
from typing import Any, Protocol

from chat_mirror.logging import get_logger
from chat_mirror.media.fetcher import AttachmentFetcher
from chat_mirror.models import (
    Attachment,
    Conversation,
    ConversationKind,
    DownloadState,
    Message,
    parse_timestamp,
    utc_now,
)
from chat_mirror.remote.base import ChatService, RemoteError, iter_all_messages
from chat_mirror.store.accounts import AccountStore
from chat_mirror.store.conversations import ConversationStore
from chat_mirror.sync.identity import IdentityResolver
from chat_mirror.sync.merge import is_preserved, merge_conversation
from chat_mirror.sync.normalize import normalize_attachments, sender_id

logger = get_logger("sync")

DM_DISPLAY_NAME = "(Direct Message)"
SPACE_DISPLAY_NAME = "(Unnamed Space)"


class ConversationIndexer(Protocol):
    def index_conversation(self, conversation: Conversation) -> dict[str, int]: ...


def new_totals() -> dict[str, int]:
    """Zeroed sweep counters."""
    return {
        "conversations": 0,
        "created": 0,
        "updated": 0,
        "new_messages": 0,
        "attachments_downloaded": 0,
        "attachments_preserved": 0,
        "attachments_failed": 0,
        "attachments_skipped": 0,
        "failed": 0,
    }


def conversation_display_name(space: dict[str, Any], kind: ConversationKind) -> str:
    """Remote display name, or a placeholder when the space has none."""
    name = (space.get("displayName") or "").strip()
    if name:
        return name
    if kind == ConversationKind.DIRECT_MESSAGE:
        return DM_DISPLAY_NAME
    return SPACE_DISPLAY_NAME


class ConversationSynchronizer:
    """Mirrors every conversation visible to one account into the store.

    A sweep lists the account's spaces, pages through each space's
    messages, fetches full message detail, resolves senders, downloads new
    attachments and merges the result into the stored conversation without
    ever losing a completed attachment.
    """

    def __init__(
        self,
        chat: ChatService,
        fetcher: AttachmentFetcher,
        resolver: IdentityResolver,
        conversations: ConversationStore,
        accounts: AccountStore | None = None,
        organization_domain: str = "",
        page_size: int = 100,
        max_pages: int = 0,
        indexer: ConversationIndexer | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            chat: Chat service acting as the swept account
            fetcher: Attachment fetcher
            resolver: Sender identity resolver
            conversations: Conversation store
            accounts: Account store, for recording completed sweeps
            organization_domain: Senders outside this domain are external
            page_size: Messages requested per page
            max_pages: Page cap per conversation, 0 for no cap
            indexer: Optional search indexer
            should_stop: Polled between conversations; True ends the sweep early
        """
        self._chat = chat
        self._fetcher = fetcher
        self._resolver = resolver
        self._conversations = conversations
        self._accounts = accounts
        self._domain = organization_domain.lower()
        self._page_size = page_size
        self._max_pages = max_pages
        self._indexer = indexer
        self._should_stop = should_stop or (lambda: False)

    def close(self) -> None:
        """Release the fetcher's HTTP resources."""
        self._fetcher.close()

    def sweep(self, account: str) -> dict[str, int]:
        """Synchronize every conversation of an account.

        Args:
            account: Account email

        Returns:
            Sweep counters (see ``new_totals``)

        Raises:
            RemoteError: If the conversation list cannot be fetched
        """
        totals = new_totals()
        self._resolver.remember_account(account)

        spaces = self._chat.list_conversations()
        logger.info("Starting sweep: account=%s conversations=%d", account, len(spaces))

        finished = True
        for space in spaces:
            if self._should_stop():
                logger.info("Stop requested, ending sweep early: account=%s", account)
                finished = False
                break

            totals["conversations"] += 1
            try:
                self.sync_conversation(account, space, totals)
            except Exception:
                totals["failed"] += 1
                logger.exception(
                    "Failed to sync conversation: account=%s conversation=%s",
                    account,
                    space.get("name", "unknown"),
                )

        if finished and self._accounts is not None:
            self._accounts.mark_synced(account)

        logger.info(
            "Sweep complete: account=%s conversations=%d created=%d updated=%d "
            "new_messages=%d downloaded=%d preserved=%d failed_attachments=%d skipped=%d failed=%d",
            account,
            totals["conversations"],
            totals["created"],
            totals["updated"],
            totals["new_messages"],
            totals["attachments_downloaded"],
            totals["attachments_preserved"],
            totals["attachments_failed"],
            totals["attachments_skipped"],
            totals["failed"],
        )
        return totals

    def sync_conversation(
        self,
        account: str,
        space: dict[str, Any],
        totals: dict[str, int] | None = None,
    ) -> Conversation:
        """Synchronize one conversation and persist the merged document.

        Args:
            account: Account email
            space: Space resource as listed by the chat service
            totals: Counters to update (a fresh set if None)

        Returns:
            The persisted conversation
        """
        if totals is None:
            totals = new_totals()

        remote_id = space["name"]
        kind = ConversationKind.from_remote(space.get("spaceType") or space.get("type"))
        existing = self._conversations.get(account, remote_id)

        messages: list[Message] = []
        for listed in iter_all_messages(self._chat, remote_id, self._page_size, self._max_pages):
            if not listed.get("name"):
                logger.warning("Skipping message without id: conversation=%s", remote_id)
                continue
            detail = self._fetch_detail(listed)
            messages.append(self._build_message(account, detail, existing, totals))

        incoming = Conversation(
            account=account,
            remote_id=remote_id,
            display_name=conversation_display_name(space, kind),
            kind=kind,
            messages=messages,
        )
        merged, new_messages = merge_conversation(existing, incoming)

        created = self._conversations.save(merged)
        totals["created" if created else "updated"] += 1
        totals["new_messages"] += new_messages

        logger.info(
            "Synced conversation: account=%s conversation=%s messages=%d new=%d created=%s",
            account,
            remote_id,
            merged.message_count,
            new_messages,
            created,
        )

        if self._indexer is not None:
            try:
                self._indexer.index_conversation(merged)
            except Exception:
                logger.exception("Failed to index conversation: conversation=%s", remote_id)

        return merged

    def _fetch_detail(self, listed: dict[str, Any]) -> dict[str, Any]:
        """Full message resource; the listing omits attachment payloads."""
        try:
            return self._chat.get_message(listed["name"])
        except RemoteError as e:
            logger.warning("Message detail fetch failed, using listed payload: message=%s error=%s", listed["name"], e)
            return listed

    def _still_too_large(self, prior: Attachment) -> bool:
        """True if a skipped attachment would be skipped again under the current ceiling."""
        return (
            prior.download_state == DownloadState.SKIPPED
            and prior.size_limit_bytes is not None
            and prior.size_limit_bytes >= self._fetcher.max_bytes
        )

    def _build_message(
        self,
        account: str,
        data: dict[str, Any],
        existing: Conversation | None,
        totals: dict[str, int],
    ) -> Message:
        message_id = data["name"]
        raw_sender = sender_id(data)
        identity = self._resolver.resolve(account, raw_sender)

        stored = existing.message(message_id) if existing is not None else None

        attachments = []
        for descriptor in normalize_attachments(data):
            prior = stored.attachment(descriptor.source_id) if stored is not None else None
            if prior is not None and is_preserved(prior):
                attachments.append(prior)
                totals["attachments_preserved"] += 1
                continue
            if prior is not None and self._still_too_large(prior):
                attachments.append(prior)
                totals["attachments_skipped"] += 1
                continue

            attachment = self._fetcher.fetch(descriptor, message_id, self._chat)
            if attachment.download_state == DownloadState.COMPLETED:
                totals["attachments_downloaded"] += 1
            elif attachment.download_state == DownloadState.SKIPPED:
                totals["attachments_skipped"] += 1
            else:
                totals["attachments_failed"] += 1
            attachments.append(attachment)

        email = identity.email.lower()
        return Message(
            remote_id=message_id,
            create_time=parse_timestamp(data.get("createTime")) or utc_now(),
            text=data.get("text") or "",
            sender_remote_id=raw_sender or "Unknown",
            sender_email=identity.email,
            sender_display_name=identity.display_name,
            sender_domain=identity.domain,
            is_sent_by_current_account=(
                self._resolver.is_current_account(account, raw_sender) or email == account.lower()
            ),
            is_external_sender=bool(self._domain) and not email.endswith("@" + self._domain),
            attachments=attachments,
        )
