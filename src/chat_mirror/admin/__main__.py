"""Administrative CLI.

    python -m chat_mirror.admin accounts add someone@example.com --user-id users/123456789
    python -m chat_mirror.admin sweep --account someone@example.com
    python -m chat_mirror.admin conversations
    python -m chat_mirror.admin identities
    python -m chat_mirror.admin cleanup --dry-run
"""

import sys
from datetime import datetime
from pathlib import Path

import click

from chat_mirror.config import Config, load_config
from chat_mirror.logging import setup_logging
from chat_mirror.media.cleanup import cleanup_media
from chat_mirror.models import IdentityCacheEntry
from chat_mirror.store.accounts import AccountStore
from chat_mirror.store.conversations import ConversationStore
from chat_mirror.store.identities import IdentityCache
from chat_mirror.sync.daemon import build_account_synchronizer, connect_indexer
from chat_mirror.sync.identity import BackgroundWriter, normalize_user_id

MANUAL_CONFIDENCE = 90


def _format_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "never"


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Path to config.yaml",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Manage the chat mirror."""
    setup_logging("admin", console=False)
    ctx.obj = load_config(config_path)


@cli.group()
def accounts() -> None:
    """Manage synced accounts."""


@accounts.command("add")
@click.argument("email")
@click.option(
    "--user-id",
    help="The account's chat user id (users/<id>), used to recognize its own messages",
)
@click.pass_obj
def accounts_add(config: Config, email: str, user_id: str | None) -> None:
    """Register an account for syncing."""
    with AccountStore(config.storage.database) as store:
        store.ensure_account(email)

    if user_id:
        bare_id = normalize_user_id(user_id)
        local, _, domain = email.partition("@")
        with IdentityCache(config.storage.database) as cache:
            cache.upsert(IdentityCacheEntry(
                remote_user_id=bare_id,
                email=email,
                display_name=local or email,
                domain=domain,
                resolved_by="manual",
                confidence=MANUAL_CONFIDENCE,
                discovered_by_account=email,
            ))
        click.echo(f"Added account {email} (users/{bare_id})")
        return

    click.echo(f"Added account {email}")


@accounts.command("list")
@click.option("--all", "include_deleted", is_flag=True, help="Include removed accounts")
@click.pass_obj
def accounts_list(config: Config, include_deleted: bool) -> None:
    """List registered accounts."""
    with AccountStore(config.storage.database) as store:
        rows = store.list_accounts(include_deleted=include_deleted)

    if not rows:
        click.echo("No accounts registered")
        return

    for account in rows:
        status = " (removed)" if account.deleted_at else ""
        click.echo(f"{account.email}{status}  last synced: {_format_time(account.last_synced)}")


@accounts.command("remove")
@click.argument("email")
@click.pass_obj
def accounts_remove(config: Config, email: str) -> None:
    """Stop syncing an account (its mirrored data is kept)."""
    with AccountStore(config.storage.database) as store:
        removed = store.remove_account(email)

    if not removed:
        click.echo(f"No active account {email}", err=True)
        sys.exit(1)
    click.echo(f"Removed account {email}")


@cli.command()
@click.option("--account", "account_email", help="Sweep only this account")
@click.pass_obj
def sweep(config: Config, account_email: str | None) -> None:
    """Run one sync sweep now."""
    db_path = config.storage.database
    indexer = connect_indexer(config)
    writer = BackgroundWriter()
    failures = 0

    try:
        with (
            AccountStore(db_path) as account_store,
            ConversationStore(db_path) as conversation_store,
            IdentityCache(db_path) as identity_cache,
        ):
            if account_email:
                account_store.ensure_account(account_email)
                emails = [account_email]
            else:
                emails = [a.email for a in account_store.list_accounts()]

            if not emails:
                click.echo("No accounts registered")
                return

            for email in emails:
                try:
                    synchronizer = build_account_synchronizer(
                        config,
                        email,
                        conversation_store,
                        identity_cache,
                        writer,
                        accounts=account_store,
                        indexer=indexer,
                    )
                except Exception as e:
                    failures += 1
                    click.echo(f"{email}: could not connect: {e}", err=True)
                    continue

                try:
                    totals = synchronizer.sweep(email)
                except Exception as e:
                    failures += 1
                    click.echo(f"{email}: sweep failed: {e}", err=True)
                    continue
                finally:
                    synchronizer.close()

                click.echo(
                    f"{email}: conversations={totals['conversations']} "
                    f"new_messages={totals['new_messages']} "
                    f"downloaded={totals['attachments_downloaded']} "
                    f"preserved={totals['attachments_preserved']} "
                    f"failed_attachments={totals['attachments_failed']} "
                    f"skipped={totals['attachments_skipped']} "
                    f"failed_conversations={totals['failed']}"
                )
            writer.flush()
    finally:
        writer.close()

    if failures:
        sys.exit(1)


@cli.command()
@click.option("--account", "account_email", help="Only this account's conversations")
@click.option("--search", "text", help="Only conversations whose name or messages contain TEXT")
@click.pass_obj
def conversations(config: Config, account_email: str | None, text: str | None) -> None:
    """List mirrored conversations."""
    with ConversationStore(config.storage.database) as store:
        if text:
            rows = store.search(text, account=account_email)
        else:
            rows = store.list_conversations(account=account_email)

    if not rows:
        click.echo("No conversations")
        return

    for conversation in rows:
        with_media = sum(1 for m in conversation.messages if m.has_media)
        click.echo(
            f"[{_format_time(conversation.last_message_time)}] {conversation.display_name} "
            f"({conversation.kind}) account={conversation.account} "
            f"messages={conversation.message_count} media={with_media} id={conversation.remote_id}"
        )


@cli.command()
@click.pass_obj
def identities(config: Config) -> None:
    """List cached sender identities."""
    with IdentityCache(config.storage.database) as cache:
        entries = cache.list_entries()

    if not entries:
        click.echo("Identity cache is empty")
        return

    for entry in entries:
        click.echo(
            f"{entry.remote_user_id}: {entry.display_name} <{entry.email}> "
            f"via={entry.resolved_by} confidence={entry.confidence} seen={entry.seen_count}"
        )


@cli.command()
@click.option("--dry-run", is_flag=True, help="Only report what would be deleted")
@click.option("--retention-days", type=int, default=None, help="Override storage.retention_days")
@click.pass_obj
def cleanup(config: Config, dry_run: bool, retention_days: int | None) -> None:
    """Delete unreferenced media older than the retention period."""
    if retention_days is None:
        retention_days = config.storage.retention_days

    with ConversationStore(config.storage.database) as store:
        referenced = store.referenced_paths()

    stats = cleanup_media(
        config.storage.media_root,
        retention_days=retention_days,
        referenced_paths=referenced,
        dry_run=dry_run,
    )

    verb = "Would delete" if dry_run else "Deleted"
    click.echo(
        f"{verb} {stats['deleted']} files ({stats['bytes_freed'] / (1024 * 1024):.1f} MB); "
        f"scanned={stats['scanned']} referenced={stats['referenced']} "
        f"protected={stats['protected']} errors={stats['errors']}"
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
