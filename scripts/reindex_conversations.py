import sys
from pathlib import Path

# Add src to path if running from repo root
repo_root = Path(__file__).parent.parent
if (repo_root / "src").exists():
    sys.path.insert(0, str(repo_root / "src"))

from chat_mirror.config import load_config
from chat_mirror.search.indexer import TypesenseIndexer
from chat_mirror.store.conversations import ConversationStore


def reindex(account: str | None = None):
    """Rebuild the Typesense collections from the conversation store."""
    config = load_config()
    indexer = TypesenseIndexer(config.typesense)
    indexer.ensure_collections()

    indexed = 0
    failed = 0
    with ConversationStore(config.storage.database) as store:
        conversations = store.list_conversations(account=account)
        print(f"Reindexing {len(conversations)} conversations...")
        for conversation in conversations:
            try:
                result = indexer.index_conversation(conversation)
            except Exception as e:
                print(f"Failed to index {conversation.remote_id}: {e}")
                failed += 1
                continue
            indexed += result["success"]
            failed += result["failed"]

    print(f"Done: messages indexed={indexed} failed={failed}")


if __name__ == "__main__":
    reindex(sys.argv[1] if len(sys.argv) > 1 else None)
