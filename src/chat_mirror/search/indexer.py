"""Typesense indexer for mirrored chat messages and conversations."""

from typing import Any

import typesense
from typesense.exceptions import ObjectNotFound

from chat_mirror.config import TypesenseConfig
from chat_mirror.logging import get_logger
from chat_mirror.models import Conversation

logger = get_logger("indexer")

MESSAGES_COLLECTION = "chat_messages"
CONVERSATIONS_COLLECTION = "chat_conversations"

MESSAGES_SCHEMA: dict[str, Any] = {
    "name": MESSAGES_COLLECTION,
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "account", "type": "string", "facet": True},
        {"name": "conversation_id", "type": "string", "facet": True},
        {"name": "conversation_name", "type": "string"},
        {"name": "kind", "type": "string", "facet": True},
        {"name": "sender_email", "type": "string", "facet": True},
        {"name": "sender_name", "type": "string"},
        {"name": "ts", "type": "int64", "sort": True},
        {"name": "text", "type": "string"},
        {"name": "attachment_names", "type": "string[]"},
        {"name": "has_attachments", "type": "bool", "facet": True},
    ],
    "default_sorting_field": "ts",
}

CONVERSATIONS_SCHEMA: dict[str, Any] = {
    "name": CONVERSATIONS_COLLECTION,
    "fields": [
        {"name": "id", "type": "string"},
        {"name": "account", "type": "string", "facet": True},
        {"name": "conversation_id", "type": "string", "facet": True},
        {"name": "display_name", "type": "string"},
        {"name": "kind", "type": "string", "facet": True},
        {"name": "participants", "type": "string[]"},
        {"name": "message_count", "type": "int32"},
        {"name": "last_ts", "type": "int64", "sort": True},
        {"name": "preview", "type": "string"},
    ],
    "default_sorting_field": "last_ts",
}


class TypesenseIndexer:
    """Indexes conversations and their messages in Typesense.

    Handles collection creation/verification and document upserts.
    """

    def __init__(self, config: TypesenseConfig) -> None:
        """Initialize indexer with Typesense configuration.

        Args:
            config: TypesenseConfig with connection details
        """
        self._config = config
        self._client = typesense.Client({
            "nodes": [{
                "host": config.host,
                "port": str(config.port),
                "protocol": config.protocol,
            }],
            "api_key": config.api_key,
            "connection_timeout_seconds": 5,
        })

    @property
    def client(self) -> typesense.Client:
        """Access the underlying Typesense client."""
        return self._client

    def ensure_collections(self) -> None:
        """Create the message and conversation collections if missing."""
        self._ensure_collection(MESSAGES_SCHEMA)
        self._ensure_collection(CONVERSATIONS_SCHEMA)

    def _ensure_collection(self, schema: dict[str, Any]) -> None:
        name = schema["name"]
        try:
            self._client.collections[name].retrieve()
            logger.debug("Collection already exists: collection=%s", name)
        except ObjectNotFound:
            self._client.collections.create(schema)
            logger.info("Created collection: collection=%s", name)

    def index_conversation(self, conversation: Conversation) -> dict[str, int]:
        """Upsert every message of a conversation plus the conversation itself.

        Args:
            conversation: Conversation to index

        Returns:
            Dict with counts: {"success": N, "failed": M}
        """
        documents = [m.to_typesense_doc(conversation.account, conversation) for m in conversation.messages]

        success = 0
        failed = 0
        if documents:
            results = self._client.collections[MESSAGES_COLLECTION].documents.import_(
                documents,
                {"action": "upsert"},
            )
            for result in results:
                if result.get("success", False):
                    success += 1
                else:
                    failed += 1
                    logger.debug("Failed to index message: error=%s", result.get("error", "unknown"))

        if failed > 0:
            logger.warning(
                "Some messages failed to index: conversation=%s success=%d failed=%d",
                conversation.remote_id,
                success,
                failed,
            )

        self.update_conversation(conversation)
        return {"success": success, "failed": failed}

    def update_conversation(self, conversation: Conversation) -> bool:
        """Update or create a conversation document.

        Returns:
            True if successful, False otherwise
        """
        doc = conversation.to_typesense_doc()
        try:
            self._client.collections[CONVERSATIONS_COLLECTION].documents.upsert(doc)
            return True
        except Exception:
            logger.exception("Failed to update conversation: id=%s", doc["id"])
            return False

    def search_messages(
        self,
        query: str,
        page: int = 1,
        per_page: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Search for messages.

        Args:
            query: Search query string (use "*" for all)
            page: Page number (1-based)
            per_page: Number of results per page
            filters: dictionary of filters (account, conversation_id,
                sender_email, kind, has_attachments, start_ts, end_ts)

        Returns:
            Search results from Typesense
        """
        search_params: dict[str, Any] = {
            "q": query,
            "query_by": "text,attachment_names,sender_name",
            "page": page,
            "per_page": per_page,
            "sort_by": "ts:desc",
        }

        if filters:
            filter_parts = []
            for key in ("account", "conversation_id", "sender_email", "kind"):
                if key in filters:
                    filter_parts.append(f"{key}:={filters[key]}")
            if "has_attachments" in filters:
                filter_parts.append(f"has_attachments:={str(bool(filters['has_attachments'])).lower()}")
            if "start_ts" in filters:
                filter_parts.append(f"ts:>={filters['start_ts']}")
            if "end_ts" in filters:
                filter_parts.append(f"ts:<={filters['end_ts']}")

            if filter_parts:
                search_params["filter_by"] = " && ".join(filter_parts)

        return self._client.collections[MESSAGES_COLLECTION].documents.search(search_params)

    def search_conversations(
        self,
        query: str,
        page: int = 1,
        per_page: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Search for conversations.

        Args:
            query: Search query string (use "*" for all)
            page: Page number (1-based)
            per_page: Number of results per page
            filters: dictionary of filters (account, kind, start_ts, end_ts)

        Returns:
            Search results from Typesense
        """
        search_params: dict[str, Any] = {
            "q": query,
            "query_by": "display_name,participants,preview",
            "page": page,
            "per_page": per_page,
            "sort_by": "last_ts:desc",
        }

        if filters:
            filter_parts = []
            for key in ("account", "kind"):
                if key in filters:
                    filter_parts.append(f"{key}:={filters[key]}")
            if "start_ts" in filters:
                filter_parts.append(f"last_ts:>={filters['start_ts']}")
            if "end_ts" in filters:
                filter_parts.append(f"last_ts:<={filters['end_ts']}")

            if filter_parts:
                search_params["filter_by"] = " && ".join(filter_parts)

        return self._client.collections[CONVERSATIONS_COLLECTION].documents.search(search_params)
