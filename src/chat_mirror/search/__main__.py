"""CLI entry point for search.

Searches mirrored chat messages and conversations:
    python -m chat_mirror.search messages QUERY
    python -m chat_mirror.search conversations QUERY
"""

import sys
from datetime import datetime
from typing import Any

import click

from chat_mirror.config import load_config
from chat_mirror.logging import setup_logging
from chat_mirror.search.indexer import TypesenseIndexer


def format_timestamp(ts: int) -> str:
    """Format timestamp for display."""
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def print_message(hit: dict[str, Any], verbose: bool = False) -> None:
    """Print a message search hit."""
    doc = hit["document"]

    text = doc["text"]
    for hl in hit.get("highlights", []):
        if hl["field"] == "text":
            text = hl["snippet"]
            break

    text = text.replace("<mark>", "\033[1m").replace("</mark>", "\033[0m")

    click.echo(
        f"\033[36m[{format_timestamp(doc['ts'])}]\033[0m "
        f"\033[32m{doc['sender_name'] or doc['sender_email']}\033[0m in {doc['conversation_name']}"
    )
    if verbose:
        click.echo(f"Account: {doc['account']}")
        click.echo(f"Conversation: {doc['conversation_id']}")
        click.echo(f"Sender: {doc['sender_email']}")
    if doc.get("attachment_names"):
        click.echo(f"Attachments: {', '.join(doc['attachment_names'])}")

    click.echo(f"\n{text}\n")
    click.echo("-" * 40)


def print_conversation(hit: dict[str, Any], verbose: bool = False) -> None:
    """Print a conversation search hit."""
    doc = hit["document"]

    click.echo(f"\033[36m[{format_timestamp(doc['last_ts'])}]\033[0m \033[1m{doc['display_name']}\033[0m")
    click.echo(f"Kind: \033[32m{doc['kind']}\033[0m | Messages: {doc['message_count']}")
    click.echo(f"ID: {doc['conversation_id']}")
    if verbose:
        click.echo(f"Account: {doc['account']}")
        click.echo(f"Participants: {', '.join(doc.get('participants', []))}")

    click.echo(f"Preview: {doc['preview']}")
    click.echo("-" * 40)


@click.group()
def cli() -> None:
    """Search mirrored chat history."""
    setup_logging("search", console=False)


@cli.command()
@click.argument("query")
@click.option("--account", help="Filter by account email")
@click.option("--conversation", "conversation_id", help="Filter by space resource name")
@click.option("--sender", help="Filter by sender email")
@click.option("--attachments", is_flag=True, help="Only messages with attachments")
@click.option("--limit", "-n", default=10, help="Number of results")
@click.option("--verbose", "-v", is_flag=True, help="Show more details")
def messages(
    query: str,
    account: str | None,
    conversation_id: str | None,
    sender: str | None,
    attachments: bool,
    limit: int,
    verbose: bool,
) -> None:
    """Search individual messages."""
    config = load_config()
    indexer = TypesenseIndexer(config.typesense)

    filters: dict[str, Any] = {}
    if account:
        filters["account"] = account
    if conversation_id:
        filters["conversation_id"] = conversation_id
    if sender:
        filters["sender_email"] = sender
    if attachments:
        filters["has_attachments"] = True

    try:
        results = indexer.search_messages(query, per_page=limit, filters=filters)
    except Exception as e:
        click.echo(f"Error searching messages: {e}", err=True)
        sys.exit(1)

    found = results.get("found", 0)
    hits = results.get("hits", [])

    click.echo(f"Found {found} messages (showing {len(hits)}):\n")

    for hit in hits:
        print_message(hit, verbose)


@cli.command()
@click.argument("query")
@click.option("--account", help="Filter by account email")
@click.option(
    "--kind",
    type=click.Choice(["DIRECT_MESSAGE", "SPACE", "GROUP_CHAT"]),
    help="Filter by conversation kind",
)
@click.option("--limit", "-n", default=10, help="Number of results")
@click.option("--verbose", "-v", is_flag=True, help="Show more details")
def conversations(query: str, account: str | None, kind: str | None, limit: int, verbose: bool) -> None:
    """Search conversations."""
    config = load_config()
    indexer = TypesenseIndexer(config.typesense)

    filters = {}
    if account:
        filters["account"] = account
    if kind:
        filters["kind"] = kind

    try:
        results = indexer.search_conversations(query, per_page=limit, filters=filters)
    except Exception as e:
        click.echo(f"Error searching conversations: {e}", err=True)
        sys.exit(1)

    found = results.get("found", 0)
    hits = results.get("hits", [])

    click.echo(f"Found {found} conversations (showing {len(hits)}):\n")

    for hit in hits:
        print_conversation(hit, verbose)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
