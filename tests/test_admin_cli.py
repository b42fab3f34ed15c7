"""Tests for the administrative CLI."""

import os
import time
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from chat_mirror.admin.__main__ import cli
from chat_mirror.models import Conversation, IdentityCacheEntry, Message
from chat_mirror.store.accounts import AccountStore
from chat_mirror.store.conversations import ConversationStore
from chat_mirror.store.identities import IdentityCache
from chat_mirror.sync.synchronizer import new_totals


@pytest.fixture(autouse=True)
def no_log_files() -> Iterator[None]:
    """Keep CLI runs from writing log files under the home directory."""
    with patch("chat_mirror.admin.__main__.setup_logging"):
        yield


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a config pointing every store into tmp_path."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "google": {"organization_domain": "acme.test"},
        "storage": {
            "database": str(tmp_path / "state" / "mirror.db"),
            "media_root": str(tmp_path / "media"),
        },
    }))
    return path


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Database path used by config_file."""
    return tmp_path / "state" / "mirror.db"


def invoke(config_file: Path, *args: str):
    return CliRunner().invoke(cli, ["--config", str(config_file), *args])


class TestAccountsCommands:
    """Tests for the accounts subcommands."""

    def test_add_and_list(self, config_file: Path) -> None:
        """Added accounts should show up in the list."""
        result = invoke(config_file, "accounts", "add", "alice@acme.test")
        assert result.exit_code == 0
        assert "Added account alice@acme.test" in result.output

        result = invoke(config_file, "accounts", "list")
        assert result.exit_code == 0
        assert "alice@acme.test" in result.output
        assert "last synced: never" in result.output

    def test_add_with_user_id(self, config_file: Path, db_path: Path) -> None:
        """--user-id should map the account's chat id to its email."""
        result = invoke(config_file, "accounts", "add", "alice@acme.test", "--user-id", "users/222222222222")

        assert result.exit_code == 0
        assert "users/222222222222" in result.output
        with IdentityCache(db_path) as cache:
            assert cache.find_user_id("alice@acme.test") == "222222222222"
            assert cache.get("222222222222").resolved_by == "manual"

    def test_list_empty(self, config_file: Path) -> None:
        """An empty registry should say so."""
        result = invoke(config_file, "accounts", "list")

        assert "No accounts registered" in result.output

    def test_remove(self, config_file: Path) -> None:
        """Removed accounts should only show with --all."""
        invoke(config_file, "accounts", "add", "alice@acme.test")

        result = invoke(config_file, "accounts", "remove", "alice@acme.test")
        assert result.exit_code == 0

        assert "alice@acme.test" not in invoke(config_file, "accounts", "list").output
        assert "(removed)" in invoke(config_file, "accounts", "list", "--all").output

    def test_remove_unknown(self, config_file: Path) -> None:
        """Removing an unknown account should fail."""
        result = invoke(config_file, "accounts", "remove", "nobody@acme.test")

        assert result.exit_code == 1


class TestSweepCommand:
    """Tests for the sweep command."""

    def test_sweeps_single_account(self, config_file: Path, db_path: Path) -> None:
        """--account should register and sweep just that account."""
        synchronizer = MagicMock()
        synchronizer.sweep.return_value = {**new_totals(), "conversations": 2, "new_messages": 5}

        with patch(
            "chat_mirror.admin.__main__.build_account_synchronizer",
            return_value=synchronizer,
        ) as mock_build:
            result = invoke(config_file, "sweep", "--account", "alice@acme.test")

        assert result.exit_code == 0
        assert "alice@acme.test: conversations=2 new_messages=5" in result.output
        assert mock_build.call_args[0][1] == "alice@acme.test"
        synchronizer.close.assert_called_once()
        with AccountStore(db_path) as store:
            assert store.get_account("alice@acme.test") is not None

    def test_failure_exits_nonzero(self, config_file: Path) -> None:
        """A failing account should make the command exit 1."""
        synchronizer = MagicMock()
        synchronizer.sweep.side_effect = RuntimeError("invalid_grant")

        with patch("chat_mirror.admin.__main__.build_account_synchronizer", return_value=synchronizer):
            result = invoke(config_file, "sweep", "--account", "alice@acme.test")

        assert result.exit_code == 1
        assert "sweep failed: invalid_grant" in result.output

    def test_no_accounts(self, config_file: Path) -> None:
        """Without registered accounts nothing should run."""
        with patch("chat_mirror.admin.__main__.build_account_synchronizer") as mock_build:
            result = invoke(config_file, "sweep")

        assert "No accounts registered" in result.output
        mock_build.assert_not_called()


class TestListingCommands:
    """Tests for conversations and identities."""

    def test_conversations(self, config_file: Path, db_path: Path) -> None:
        """Stored conversations should be listed and searchable."""
        with ConversationStore(db_path) as store:
            store.save(Conversation(
                account="alice@acme.test",
                remote_id="spaces/TEAM",
                display_name="Dispatch",
                messages=[Message(
                    remote_id="spaces/TEAM/messages/1",
                    create_time=datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
                    text="truck arrived",
                )],
            ))

        listed = invoke(config_file, "conversations")
        found = invoke(config_file, "conversations", "--search", "truck")
        missing = invoke(config_file, "conversations", "--search", "boat")

        assert "Dispatch" in listed.output
        assert "messages=1" in listed.output
        assert "spaces/TEAM" in found.output
        assert "No conversations" in missing.output

    def test_identities(self, config_file: Path, db_path: Path) -> None:
        """Cached identities should be printed."""
        with IdentityCache(db_path) as cache:
            cache.upsert(IdentityCacheEntry(
                remote_user_id="users/1",
                email="bob@acme.test",
                display_name="Bob",
                domain="acme.test",
                resolved_by="manual",
                confidence=90,
            ))

        result = invoke(config_file, "identities")

        assert "users/1: Bob <bob@acme.test> via=manual confidence=90" in result.output


class TestCleanupCommand:
    """Tests for the cleanup command."""

    def test_dry_run(self, config_file: Path, tmp_path: Path) -> None:
        """Dry run should report without deleting."""
        media = tmp_path / "media" / "media"
        media.mkdir(parents=True)
        old = media / "1_old.bin"
        old.write_bytes(b"x")
        month_ago = time.time() - 30 * 86400
        os.utime(old, (month_ago, month_ago))

        result = invoke(config_file, "cleanup", "--dry-run", "--retention-days", "7")

        assert result.exit_code == 0
        assert "Would delete 1 files" in result.output
        assert old.exists()

    def test_deletes_unreferenced(self, config_file: Path, tmp_path: Path) -> None:
        """Old files should be removed for real without --dry-run."""
        media = tmp_path / "media" / "media"
        media.mkdir(parents=True)
        old = media / "1_old.bin"
        old.write_bytes(b"x")
        month_ago = time.time() - 30 * 86400
        os.utime(old, (month_ago, month_ago))

        result = invoke(config_file, "cleanup", "--retention-days", "7")

        assert "Deleted 1 files" in result.output
        assert not old.exists()
