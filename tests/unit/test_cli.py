"""
Tests for the CLI module.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, List, Optional
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from clawstash_py.cli import (
    app,
    format_bytes,
    format_duration,
    format_time_ago,
    make_engine,
)
from clawstash_py.config import ClawstashConfig, Provider, StorageTarget
from clawstash_py.credentials import PASSPHRASE_ENV_VAR
from clawstash_py.engine import BackupSummary, RepoStats, Snapshot
from clawstash_py.errors import (
    ConfigurationError,
    ProcessExecutionError,
    RepositoryLockedError,
)
from clawstash_py.health import ERROR, OK, HealthCheck
from clawstash_py.storage import BucketCreation


@pytest.fixture
def runner() -> CliRunner:
    """Fixture to create a CLI runner."""
    return CliRunner()


@pytest.fixture
def config_home(tmp_path: Path) -> Generator[Path, None, None]:
    """Point the config directory at a temp dir with no passphrase set."""
    env = {k: v for k, v in os.environ.items() if k != PASSPHRASE_ENV_VAR}
    env["XDG_CONFIG_HOME"] = str(tmp_path / "xdg")
    with patch.dict(os.environ, env, clear=True):
        yield tmp_path


@pytest.fixture
def configured(config_home: Path) -> Generator[ClawstashConfig, None, None]:
    """A saved config plus a passphrase in the environment."""
    openclaw_dir = config_home / "openclaw"
    openclaw_dir.mkdir()
    config = ClawstashConfig(
        openclaw_dir=openclaw_dir,
        storage=StorageTarget(
            provider=Provider.R2,
            bucket="claw-backups",
            access_key_id="AKID",
            secret_access_key="SECRET",
            account_id="acct123",
        ),
        exclude=["*.bak"],
    )
    config.save()
    with patch.dict(os.environ, {PASSPHRASE_ENV_VAR: "test-password"}):
        yield config


@pytest.fixture
def mock_restic_engine() -> Generator[MagicMock, None, None]:
    """Fixture to mock ResticEngine."""
    with patch("clawstash_py.cli.ResticEngine") as mock_engine_class:
        mock_engine = MagicMock()
        mock_engine.check_repository.return_value = True
        mock_engine.backup.return_value = BackupSummary(
            files_new=2,
            files_changed=1,
            files_unmodified=7,
            data_added=4096,
            total_bytes_processed=10240,
            total_duration=1.2,
            snapshot_id="abc123def456",
        )
        mock_engine_class.return_value = mock_engine
        yield mock_engine


@pytest.fixture
def mock_ensure_bucket() -> Generator[MagicMock, None, None]:
    with patch("clawstash_py.cli.ensure_bucket") as mock_ensure:
        yield mock_ensure


def _snapshot(snapshot_id: str, when: datetime) -> Snapshot:
    return Snapshot(
        id=snapshot_id,
        short_id=snapshot_id[:8],
        time=when,
        hostname="test-host",
        paths=["/home/user/.openclaw"],
        tags=["clawstash"],
    )


@pytest.fixture
def two_snapshots() -> List[Snapshot]:
    return [
        _snapshot("aaaa1111bbbb", datetime(2024, 1, 1, tzinfo=timezone.utc)),
        _snapshot("cccc2222dddd", datetime(2024, 1, 2, tzinfo=timezone.utc)),
    ]


def test_version(runner: CliRunner) -> None:
    """Test the version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "Clawstash version" in result.stdout


class TestBackup:
    def test_full_backup(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
    ) -> None:
        result = runner.invoke(app, ["backup"])
        assert result.exit_code == 0, result.stdout
        assert "Backup complete" in result.stdout

        args, kwargs = mock_restic_engine.backup.call_args
        assert args[0] == configured.openclaw_dir
        assert kwargs["tags"] == ["clawstash"]
        assert kwargs["include_patterns"] is None
        assert "*.lock" in kwargs["exclude_patterns"]
        assert "*.bak" in kwargs["exclude_patterns"]
        assert kwargs["dry_run"] is False
        mock_restic_engine.forget.assert_called_once_with(configured.retention)

    def test_category_backup(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
    ) -> None:
        result = runner.invoke(app, ["backup", "--only", "workspace"])
        assert result.exit_code == 0, result.stdout

        _, kwargs = mock_restic_engine.backup.call_args
        assert kwargs["tags"] == ["clawstash", "workspace"]
        assert kwargs["include_patterns"] == ["workspace/**", "workspace-*/**"]

    def test_unknown_category(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
    ) -> None:
        result = runner.invoke(app, ["backup", "--only", "photos"])
        assert result.exit_code == 1
        assert "Unknown category" in result.stdout
        mock_restic_engine.backup.assert_not_called()

    def test_dry_run_skips_retention(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
    ) -> None:
        result = runner.invoke(app, ["backup", "--dry-run"])
        assert result.exit_code == 0
        assert mock_restic_engine.backup.call_args[1]["dry_run"] is True
        mock_restic_engine.forget.assert_not_called()

    def test_retention_failure_keeps_success(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A failed forget after a good backup is only a warning."""
        mock_restic_engine.forget.side_effect = RepositoryLockedError(
            "restic forget failed: repository is already locked", returncode=11
        )
        with caplog.at_level(logging.WARNING, logger="clawstash"):
            result = runner.invoke(app, ["backup"])
        assert result.exit_code == 0
        assert "Backup complete" in result.stdout
        assert "Retention policy failed" in caplog.text

    def test_backup_failure(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
    ) -> None:
        mock_restic_engine.backup.side_effect = ProcessExecutionError(
            "restic backup failed: boom", returncode=1
        )
        result = runner.invoke(app, ["backup"])
        assert result.exit_code == 1
        mock_restic_engine.forget.assert_not_called()

    def test_first_backup_provisions_repository(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        mock_ensure_bucket: MagicMock,
    ) -> None:
        mock_restic_engine.check_repository.return_value = False
        mock_ensure_bucket.return_value = BucketCreation.CREATED
        result = runner.invoke(app, ["backup"])
        assert result.exit_code == 0, result.stdout
        mock_ensure_bucket.assert_called_once_with(configured.storage)
        mock_restic_engine.init.assert_called_once()

    def test_dry_run_never_provisions(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        mock_ensure_bucket: MagicMock,
    ) -> None:
        """A dry run against a missing repository writes nothing remote."""
        mock_restic_engine.check_repository.return_value = False
        result = runner.invoke(app, ["backup", "--dry-run"])
        assert result.exit_code == 1
        assert "Repository unreachable" in result.stdout
        mock_ensure_bucket.assert_not_called()
        mock_restic_engine.init.assert_not_called()
        mock_restic_engine.backup.assert_not_called()

    @pytest.mark.parametrize(
        "outcome", [None, BucketCreation.ALREADY_OWNED], ids=["exists", "owned"]
    )
    def test_unreachable_repository_in_existing_bucket(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        mock_ensure_bucket: MagicMock,
        outcome: Optional[BucketCreation],
    ) -> None:
        """Wrong passphrase or network trouble must not trigger init."""
        mock_restic_engine.check_repository.return_value = False
        mock_ensure_bucket.return_value = outcome
        result = runner.invoke(app, ["backup"])
        assert result.exit_code == 1
        assert "Repository unreachable" in result.stdout
        mock_restic_engine.init.assert_not_called()
        mock_restic_engine.backup.assert_not_called()

    def test_existing_repository_not_reinitialized(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        mock_ensure_bucket: MagicMock,
    ) -> None:
        runner.invoke(app, ["backup"])
        mock_ensure_bucket.assert_not_called()
        mock_restic_engine.init.assert_not_called()

    def test_not_configured(
        self, runner: CliRunner, config_home: Path, mock_restic_engine: MagicMock
    ) -> None:
        result = runner.invoke(app, ["backup", "--passphrase", "pw"])
        assert result.exit_code == 1
        assert "No clawstash config found" in result.stdout

    def test_missing_passphrase(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
    ) -> None:
        store = MagicMock()
        store.get.return_value = None
        with patch.dict(os.environ, {PASSPHRASE_ENV_VAR: ""}), patch(
            "clawstash_py.credentials.default_secret_store", return_value=store
        ):
            result = runner.invoke(app, ["backup"])
        assert result.exit_code == 1
        assert "No passphrase found" in result.stdout
        mock_restic_engine.backup.assert_not_called()

    def test_passphrase_flag_reaches_engine(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
    ) -> None:
        with patch("clawstash_py.cli.ResticEngine") as mock_engine_class:
            mock_engine_class.return_value.backup.return_value = BackupSummary(
                0, 0, 0, 0, 0, 0.0, ""
            )
            runner.invoke(app, ["backup", "--passphrase", "from-flag"])
        _, kwargs = mock_engine_class.call_args
        assert kwargs["password"] == "from-flag"
        assert kwargs["target"] == configured.storage


class TestRestore:
    def test_latest_snapshot(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        two_snapshots: List[Snapshot],
    ) -> None:
        mock_restic_engine.snapshots.return_value = two_snapshots
        result = runner.invoke(app, ["restore", "--yes"])
        assert result.exit_code == 0, result.stdout
        mock_restic_engine.restore.assert_called_once_with(
            "cccc2222dddd", configured.openclaw_dir, include_patterns=None
        )

    def test_point_in_time(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        two_snapshots: List[Snapshot],
        tmp_path: Path,
    ) -> None:
        mock_restic_engine.snapshots.return_value = two_snapshots
        out = tmp_path / "restored"
        result = runner.invoke(
            app,
            ["restore", "--at", "2024-01-01T03:00:00Z", "--target", str(out)],
        )
        assert result.exit_code == 0, result.stdout
        mock_restic_engine.restore.assert_called_once_with(
            "aaaa1111bbbb", out, include_patterns=None
        )

    def test_category_restore(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        two_snapshots: List[Snapshot],
    ) -> None:
        mock_restic_engine.snapshots.return_value = two_snapshots
        result = runner.invoke(app, ["restore", "--only", "memory", "-y"])
        assert result.exit_code == 0, result.stdout
        _, kwargs = mock_restic_engine.restore.call_args
        assert kwargs["include_patterns"] == [
            "**/agents/*/memory.sqlite",
            "**/agents/*/memory.db",
            "**/memory/**",
        ]

    def test_dry_run_does_not_restore(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        two_snapshots: List[Snapshot],
    ) -> None:
        mock_restic_engine.snapshots.return_value = two_snapshots
        result = runner.invoke(app, ["restore", "--dry-run"])
        assert result.exit_code == 0
        assert "Dry run complete" in result.stdout
        mock_restic_engine.restore.assert_not_called()

    def test_confirmation_declined(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        two_snapshots: List[Snapshot],
    ) -> None:
        mock_restic_engine.snapshots.return_value = two_snapshots
        result = runner.invoke(app, ["restore"], input="n\n")
        assert result.exit_code == 0
        assert "Restore cancelled" in result.stdout
        mock_restic_engine.restore.assert_not_called()

    def test_no_snapshots(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
    ) -> None:
        mock_restic_engine.snapshots.return_value = []
        result = runner.invoke(app, ["restore", "-y"])
        assert result.exit_code == 1
        assert "No snapshots found" in result.stdout

    def test_bad_time_expression(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        two_snapshots: List[Snapshot],
    ) -> None:
        mock_restic_engine.snapshots.return_value = two_snapshots
        result = runner.invoke(app, ["restore", "--at", "last tuesday", "-y"])
        assert result.exit_code == 1
        assert "Cannot parse time" in result.stdout
        mock_restic_engine.restore.assert_not_called()

    def test_out_of_range_time_expression(
        self,
        runner: CliRunner,
        configured: ClawstashConfig,
        mock_restic_engine: MagicMock,
        two_snapshots: List[Snapshot],
    ) -> None:
        mock_restic_engine.snapshots.return_value = two_snapshots
        result = runner.invoke(
            app, ["restore", "--at", "100000 months ago", "-y"]
        )
        assert result.exit_code == 1
        assert "out of range" in result.stdout
        mock_restic_engine.restore.assert_not_called()


def test_snapshots_json(
    runner: CliRunner,
    configured: ClawstashConfig,
    mock_restic_engine: MagicMock,
    two_snapshots: List[Snapshot],
) -> None:
    """Test the snapshots command with JSON output."""
    mock_restic_engine.snapshots.return_value = two_snapshots
    result = runner.invoke(app, ["snapshots", "--json"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert [s["id"] for s in data] == ["aaaa1111bbbb", "cccc2222dddd"]
    assert data[0]["time"] == "2024-01-01T00:00:00+00:00"


def test_snapshots_table(
    runner: CliRunner,
    configured: ClawstashConfig,
    mock_restic_engine: MagicMock,
    two_snapshots: List[Snapshot],
) -> None:
    mock_restic_engine.snapshots.return_value = two_snapshots
    result = runner.invoke(app, ["snapshots", "--tag", "clawstash"])
    assert result.exit_code == 0
    assert "aaaa1111" in result.stdout
    mock_restic_engine.snapshots.assert_called_once_with(tags=["clawstash"])


def test_snapshots_empty(
    runner: CliRunner, configured: ClawstashConfig, mock_restic_engine: MagicMock
) -> None:
    mock_restic_engine.snapshots.return_value = []
    result = runner.invoke(app, ["snapshots"])
    assert result.exit_code == 0
    assert "No snapshots yet" in result.stdout


def test_forget_reports_counts(
    runner: CliRunner,
    configured: ClawstashConfig,
    mock_restic_engine: MagicMock,
    two_snapshots: List[Snapshot],
) -> None:
    mock_restic_engine.snapshots.side_effect = [two_snapshots, two_snapshots[1:]]
    result = runner.invoke(app, ["forget"])
    assert result.exit_code == 0
    assert "Removed  1 snapshots" in result.stdout
    mock_restic_engine.forget.assert_called_once_with(configured.retention)


def test_status_not_configured(runner: CliRunner, config_home: Path) -> None:
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 1


def test_status_without_passphrase(
    runner: CliRunner, configured: ClawstashConfig, mock_restic_engine: MagicMock
) -> None:
    with patch.dict(os.environ, {PASSPHRASE_ENV_VAR: ""}), patch(
        "clawstash_py.cli.CredentialResolver"
    ) as mock_resolver:
        mock_resolver.return_value.resolve_optional.return_value = None
        result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Skipped" in result.stdout
    mock_restic_engine.snapshots.assert_not_called()


def test_status_with_snapshots(
    runner: CliRunner,
    configured: ClawstashConfig,
    mock_restic_engine: MagicMock,
    two_snapshots: List[Snapshot],
) -> None:
    mock_restic_engine.snapshots.return_value = two_snapshots
    mock_restic_engine.stats.return_value = RepoStats(
        total_size=5 * 1024 * 1024, total_file_count=12
    )
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "cccc2222" in result.stdout
    assert "5.0 MB" in result.stdout


def test_doctor_exit_codes(runner: CliRunner, config_home: Path) -> None:
    healthy = [HealthCheck("Config", OK, "fine")]
    broken = [HealthCheck("Restic binary", ERROR, "missing")]
    with patch("clawstash_py.cli.run_health_checks", return_value=healthy):
        result = runner.invoke(app, ["doctor"])
        assert result.exit_code == 0
        assert "No issues found" in result.stdout
    with patch("clawstash_py.cli.run_health_checks", return_value=broken):
        result = runner.invoke(app, ["doctor"])
        assert result.exit_code == 1


def test_setup_r2(
    runner: CliRunner,
    config_home: Path,
    mock_restic_engine: MagicMock,
    mock_ensure_bucket: MagicMock,
) -> None:
    """Setup detects the jurisdiction, provisions storage and saves config."""
    mock_restic_engine.check_repository.return_value = False
    store = MagicMock()
    store.set.return_value = True
    with patch(
        "clawstash_py.cli.detect_jurisdiction", return_value="eu"
    ) as mock_detect, patch(
        "clawstash_py.cli.default_secret_store", return_value=store
    ):
        result = runner.invoke(
            app,
            [
                "setup",
                "--provider",
                "r2",
                "--bucket",
                "claw-backups",
                "--access-key-id",
                "AKID",
                "--secret-access-key",
                "SECRET",
                "--passphrase",
                "pw",
                "--account-id",
                "acct123",
                "--openclaw-dir",
                str(config_home / "openclaw"),
            ],
        )

    assert result.exit_code == 0, result.stdout
    mock_detect.assert_called_once_with("acct123", "AKID", "SECRET")
    mock_ensure_bucket.assert_called_once()
    mock_restic_engine.init.assert_called_once()
    store.set.assert_called_once_with("pw")

    saved = ClawstashConfig.require()
    assert saved.storage is not None
    assert saved.storage.jurisdiction == "eu"
    assert saved.openclaw_dir == config_home / "openclaw"


def test_setup_r2_requires_account(runner: CliRunner, config_home: Path) -> None:
    result = runner.invoke(
        app,
        [
            "setup",
            "--provider",
            "r2",
            "--bucket",
            "claw-backups",
            "--access-key-id",
            "AKID",
            "--secret-access-key",
            "SECRET",
            "--passphrase",
            "pw",
        ],
    )
    assert result.exit_code == 1
    assert not (config_home / "xdg" / "clawstash" / "config.yaml").exists()


def test_format_helpers() -> None:
    assert format_bytes(0) == "0 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(50 * 1024 * 1024) == "50 MB"
    assert format_duration(0.25) == "250ms"
    assert format_duration(12.34) == "12.3s"
    assert format_duration(125) == "2m 5s"
    now = datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert format_time_ago(now, now=now) == "just now"
    assert (
        format_time_ago(datetime(2024, 1, 1, 21, tzinfo=timezone.utc), now=now)
        == "3 hours ago"
    )
    assert (
        format_time_ago(datetime(2024, 1, 1, tzinfo=timezone.utc), now=now)
        == "1 day ago"
    )


def test_make_engine_requires_storage() -> None:
    with pytest.raises(ConfigurationError, match="clawstash setup"):
        make_engine(ClawstashConfig(), "test-password")
