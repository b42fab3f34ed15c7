"""Sync daemon main loop: sweeps every registered account in turn."""

import time
from collections.abc import Callable

from chat_mirror.config import Config
from chat_mirror.logging import get_logger, setup_logging
from chat_mirror.media.fetcher import AttachmentFetcher
from chat_mirror.media.storage import MediaStorage
from chat_mirror.remote.google import GoogleChatService, GoogleDriveFileStore, build_credentials
from chat_mirror.search.indexer import TypesenseIndexer
from chat_mirror.store.accounts import AccountStore
from chat_mirror.store.conversations import ConversationStore
from chat_mirror.store.identities import IdentityCache
from chat_mirror.sync.identity import BackgroundWriter, IdentityResolver
from chat_mirror.sync.synchronizer import ConversationSynchronizer, new_totals

logger = get_logger("sync")

# Global flag for graceful shutdown
_shutdown_requested = False

TYPESENSE_CONNECT_ATTEMPTS = 10
TYPESENSE_RETRY_SECONDS = 5


def request_shutdown() -> None:
    """Request graceful shutdown of the sync daemon."""
    global _shutdown_requested
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return _shutdown_requested


def reset_shutdown() -> None:
    """Reset shutdown flag (useful for testing)."""
    global _shutdown_requested
    _shutdown_requested = False


def interruptible_sleep(seconds: float) -> None:
    """Sleep in small increments to allow graceful shutdown."""
    sleep_remaining = seconds
    while sleep_remaining > 0 and not is_shutdown_requested():
        sleep_time = min(1.0, sleep_remaining)
        time.sleep(sleep_time)
        sleep_remaining -= sleep_time


def build_account_synchronizer(
    config: Config,
    account: str,
    conversations: ConversationStore,
    identity_cache: IdentityCache,
    writer: BackgroundWriter,
    accounts: AccountStore | None = None,
    indexer: TypesenseIndexer | None = None,
) -> ConversationSynchronizer:
    """Wire a synchronizer acting as ``account`` against the Google APIs.

    Args:
        config: Application configuration
        account: Account email to impersonate
        conversations: Conversation store
        identity_cache: Identity cache
        writer: Background writer for identity cache updates
        accounts: Account store, for recording completed sweeps
        indexer: Optional search indexer

    Returns:
        Ready-to-run synchronizer
    """
    credentials = build_credentials(config.google, account)
    chat = GoogleChatService(credentials)
    files = GoogleDriveFileStore(credentials)

    fetcher = AttachmentFetcher(
        MediaStorage(config.storage.media_root),
        chat=chat,
        files=files,
        max_bytes=config.storage.max_attachment_bytes,
        timeout=config.storage.download_timeout_seconds,
        ffprobe_path=config.storage.ffprobe_path,
        ffmpeg_path=config.storage.ffmpeg_path,
    )
    resolver = IdentityResolver(identity_cache, writer, config.google.organization_domain)

    return ConversationSynchronizer(
        chat=chat,
        fetcher=fetcher,
        resolver=resolver,
        conversations=conversations,
        accounts=accounts,
        organization_domain=config.google.organization_domain,
        page_size=config.sync.page_size,
        max_pages=config.sync.max_pages,
        indexer=indexer,
        should_stop=is_shutdown_requested,
    )


def run_sync_cycle(
    accounts: AccountStore,
    synchronizer_factory: Callable[[str], ConversationSynchronizer],
    account_delay_seconds: float = 2.0,
) -> dict[str, int]:
    """Sweep every active account once, strictly one after another.

    A failure in one account (authentication, listing, store) is logged and
    the cycle moves on to the next account.

    Args:
        accounts: Account store
        synchronizer_factory: Builds a synchronizer for an account email
        account_delay_seconds: Pause between consecutive accounts

    Returns:
        Aggregated sweep counters plus "accounts" and "account_failures"
    """
    totals = new_totals()
    totals["accounts"] = 0
    totals["account_failures"] = 0

    for index, account in enumerate(accounts.list_accounts()):
        if is_shutdown_requested():
            break

        if index > 0 and account_delay_seconds > 0:
            interruptible_sleep(account_delay_seconds)
            if is_shutdown_requested():
                break

        totals["accounts"] += 1
        try:
            synchronizer = synchronizer_factory(account.email)
            try:
                result = synchronizer.sweep(account.email)
            finally:
                synchronizer.close()
        except Exception:
            totals["account_failures"] += 1
            logger.exception("Sweep failed for account: account=%s", account.email)
            continue

        for key, value in result.items():
            totals[key] = totals.get(key, 0) + value

    return totals


def connect_indexer(config: Config) -> TypesenseIndexer | None:
    """Connect to Typesense with retries; None if disabled or unreachable."""
    if not config.typesense.enabled:
        return None

    for attempt in range(TYPESENSE_CONNECT_ATTEMPTS):
        try:
            indexer = TypesenseIndexer(config.typesense)
            indexer.ensure_collections()
            logger.info(
                "Connected to Typesense: host=%s port=%d",
                config.typesense.host,
                config.typesense.port,
            )
            return indexer
        except Exception:
            if attempt < TYPESENSE_CONNECT_ATTEMPTS - 1:
                logger.warning(
                    "Could not connect to Typesense (attempt %d/%d), retrying in %ds...",
                    attempt + 1,
                    TYPESENSE_CONNECT_ATTEMPTS,
                    TYPESENSE_RETRY_SECONDS,
                )
                interruptible_sleep(TYPESENSE_RETRY_SECONDS)
                if is_shutdown_requested():
                    return None
            else:
                logger.warning(
                    "Could not connect to Typesense after %d attempts, indexing disabled",
                    TYPESENSE_CONNECT_ATTEMPTS,
                    exc_info=True,
                )
    return None


def run_sync(config: Config, once: bool = False) -> None:
    """Run the sync daemon main loop.

    Registers configured accounts, then sweeps all active accounts every
    ``sync.interval_seconds`` until shutdown is requested.

    Args:
        config: Application configuration
        once: Run a single cycle and return
    """
    reset_shutdown()
    setup_logging("sync")

    db_path = config.storage.database
    interval_seconds = config.sync.interval_seconds

    logger.info(
        "Starting sync daemon: database=%s media_root=%s interval=%ds",
        db_path,
        config.storage.media_root,
        interval_seconds,
    )

    indexer = connect_indexer(config)
    writer = BackgroundWriter()

    with (
        AccountStore(db_path) as accounts,
        ConversationStore(db_path) as conversations,
        IdentityCache(db_path) as identity_cache,
    ):
        for email in config.sync.accounts:
            accounts.ensure_account(email)

        def factory(account: str) -> ConversationSynchronizer:
            return build_account_synchronizer(
                config,
                account,
                conversations,
                identity_cache,
                writer,
                accounts=accounts,
                indexer=indexer,
            )

        try:
            while not is_shutdown_requested():
                totals = run_sync_cycle(accounts, factory, config.sync.account_delay_seconds)
                writer.flush()

                logger.info(
                    "Cycle complete: accounts=%d failures=%d conversations=%d new_messages=%d downloaded=%d",
                    totals["accounts"],
                    totals["account_failures"],
                    totals["conversations"],
                    totals["new_messages"],
                    totals["attachments_downloaded"],
                )

                if once or is_shutdown_requested():
                    break

                logger.debug("Waiting %ds until next cycle", interval_seconds)
                interruptible_sleep(interval_seconds)
        finally:
            writer.close()

    logger.info("Sync daemon stopped")
