"""Sender identity resolution.

Turns the opaque sender ids found on chat messages into display
identities. Resolution never raises and never waits on remote I/O: it
consults the identity cache, then synthesizes an identity from what the
id itself reveals. Cache writes happen on a background thread.
"""

import re
import sqlite3
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from chat_mirror.logging import get_logger
from chat_mirror.models import Identity, IdentityCacheEntry, utc_now
from chat_mirror.store.identities import IdentityCache

logger = get_logger("identity")

EMAIL_DIRECT_CONFIDENCE = 100
SYNC_ACCOUNT_CONFIDENCE = 100
FALLBACK_CONFIDENCE = 30
SHORT_ID_LENGTH = 8

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def normalize_user_id(remote_user_id: str | None) -> str:
    """Reduce a sender id to its bare form.

    ``users/123`` becomes ``123``; emails are kept as they are; a missing
    or blank id becomes ``unknown``.
    """
    raw = (remote_user_id or "").strip()
    if "@" not in raw and "/" in raw:
        raw = raw.rsplit("/", 1)[-1]
    return raw or "unknown"


class BackgroundWriter:
    """Single-thread executor for fire-and-forget cache writes.

    Failures are logged and never reach the caller.
    """

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="identity-writer")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        """Queue a write. Returns None if the writer is closed."""
        with self._lock:
            if self._closed:
                logger.warning("Background writer closed, dropping write: fn=%s", getattr(fn, "__name__", fn))
                return None
            future = self._executor.submit(fn, *args, **kwargs)
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.warning("Background identity write failed: %s", exc, exc_info=exc)

    def flush(self, timeout: float | None = None) -> None:
        """Wait for every queued write to finish."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Drain queued writes and stop the worker thread."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)


class IdentityResolver:
    """Resolves sender ids for one sweep.

    Results are memoized per resolver, so each distinct id costs at most one
    cache lookup per sweep.
    """

    def __init__(
        self,
        cache: IdentityCache,
        writer: BackgroundWriter,
        organization_domain: str,
    ) -> None:
        """Initialize the resolver.

        Args:
            cache: Identity cache to read and (in the background) write
            writer: Background writer for cache updates
            organization_domain: Domain used for synthesized placeholder emails
        """
        self._cache = cache
        self._writer = writer
        self._domain = organization_domain
        self._memo: dict[str, Identity] = {}
        self._account_ids: dict[str, str | None] = {}

    def remember_account(self, account_email: str) -> str | None:
        """Record the syncing account itself in the cache.

        Messages name their sender by chat user id, never by email, so the
        account's own id is looked up in the cache (by email) and, when
        known, recorded with the account's identity as well.

        Args:
            account_email: Account about to be swept

        Returns:
            The account's bare chat user id, or None if it is not known yet
        """
        local, _, domain = account_email.partition("@")
        identity = Identity(
            email=account_email,
            display_name=local or account_email,
            domain=domain,
            resolved_by="sync_account",
            confidence=SYNC_ACCOUNT_CONFIDENCE,
        )
        self._persist(account_email, account_email, identity)

        try:
            user_id = self._cache.find_user_id(account_email)
        except sqlite3.Error:
            logger.warning("Account id lookup failed: account=%s", account_email, exc_info=True)
            user_id = None

        if user_id is None:
            logger.info(
                "Chat user id unknown, own messages matched by email only: account=%s",
                account_email,
            )
        else:
            self._persist(account_email, user_id, identity)
            self._memo[user_id] = identity
        self._account_ids[account_email.lower()] = user_id
        return user_id

    def is_current_account(self, account_email: str, remote_user_id: str | None) -> bool:
        """True if a sender id names the account being swept."""
        raw = normalize_user_id(remote_user_id)
        if "@" in raw:
            return raw.lower() == account_email.lower()
        own_id = self._account_ids.get(account_email.lower())
        return own_id is not None and raw == own_id

    def resolve(self, account_email: str, remote_user_id: str | None) -> Identity:
        """Resolve a sender id to an identity.

        Args:
            account_email: Account performing the sweep
            remote_user_id: Raw sender id (``users/123``, ``123`` or an email)

        Returns:
            The resolved identity; never raises
        """
        raw = normalize_user_id(remote_user_id)

        if raw in self._memo:
            return self._memo[raw]

        identity = None
        if "@" in raw:
            identity = self._from_email(account_email, raw)
        if identity is None:
            identity = self._from_cache(raw) or self._from_directory(raw)
        if identity is None:
            identity = self._fallback(account_email, raw)

        self._memo[raw] = identity
        return identity

    def _from_cache(self, raw: str) -> Identity | None:
        try:
            entry = self._cache.lookup(raw)
        except sqlite3.Error:
            logger.warning("Identity cache lookup failed: user=%s", raw, exc_info=True)
            return None
        if entry is None:
            return None

        self._writer.submit(self._cache.touch, entry.remote_user_id)
        logger.debug("Identity cache hit: user=%s email=%s", raw, entry.email)
        return entry.to_identity()

    def _from_directory(self, raw: str) -> Identity | None:
        # Directory access needs admin scopes the sync accounts don't hold.
        return None

    def _from_email(self, account_email: str, email: str) -> Identity | None:
        local, _, domain = email.partition("@")
        if not local or not domain:
            return None
        identity = Identity(
            email=email,
            display_name=local,
            domain=domain,
            resolved_by="email_direct",
            confidence=EMAIL_DIRECT_CONFIDENCE,
        )
        self._persist(account_email, email, identity)
        return identity

    def _fallback(self, account_email: str, raw: str) -> Identity:
        short_id = _UNSAFE_ID_CHARS.sub("", raw)[:SHORT_ID_LENGTH] or "unknown"
        identity = Identity(
            email=f"user-{short_id}@{self._domain}",
            display_name=f"User {short_id}",
            domain=self._domain,
            resolved_by="fallback",
            confidence=FALLBACK_CONFIDENCE,
        )
        if raw != "unknown":
            self._persist(account_email, raw, identity)
        return identity

    def _persist(self, account_email: str, remote_user_id: str, identity: Identity) -> None:
        now = utc_now()
        self._writer.submit(
            self._cache.upsert,
            IdentityCacheEntry(
                remote_user_id=remote_user_id,
                email=identity.email,
                display_name=identity.display_name,
                domain=identity.domain,
                resolved_by=identity.resolved_by,
                confidence=identity.confidence,
                first_seen=now,
                last_seen=now,
                discovered_by_account=account_email,
            ),
        )
