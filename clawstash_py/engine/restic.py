"""
Restic engine implementation for Clawstash.

This module provides a wrapper around the Restic backup tool talking to an
S3-compatible repository, handling subprocess calls and JSON parsing.
"""

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import orjson  # High-performance JSON parser

from clawstash_py.config import Provider, StorageTarget
from clawstash_py.engine import BackupSummary, BaseEngine, RepoStats, Snapshot
from clawstash_py.errors import (
    ClawstashError,
    ProcessExecutionError,
    ProcessProtocolError,
    RepositoryLockedError,
)
from clawstash_py.retention import RetentionPolicy

logger = logging.getLogger("clawstash.engine.restic")

DEFAULT_TIMEOUT = 300
LONG_TIMEOUT = 600  # backup/restore/forget can move gigabytes
PROBE_TIMEOUT = 30
MAX_OUTPUT_BYTES = 50 * 1024 * 1024

# restic >= 0.17 exit codes
EXIT_INCOMPLETE = 3
EXIT_LOCKED = 11

LOCKED_MARKER = "repository is already locked"


class ResticEngine(BaseEngine):
    """Restic backup engine implementation."""

    def __init__(
        self,
        target: StorageTarget,
        password: str,
        binary_path: str = "restic",
    ):
        """
        Initialize the Restic engine.

        Args:
            target: Storage target holding the repository
            password: Repository password
            binary_path: Path to the Restic binary
        """
        if not password:
            raise ValueError("A repository password must be provided")
        self.target = target
        self.password = password
        self.binary_path = binary_path

    def _get_env(self) -> Dict[str, str]:
        """Get the environment variables for Restic commands."""
        env = os.environ.copy()
        env["RESTIC_REPOSITORY"] = self.target.repository_url()
        env["RESTIC_PASSWORD"] = self.password
        env["AWS_ACCESS_KEY_ID"] = self.target.access_key_id
        env["AWS_SECRET_ACCESS_KEY"] = self.target.secret_access_key
        env["AWS_DEFAULT_REGION"] = self.target.signing_region()
        return env

    def _extra_args(self) -> List[str]:
        """Non-AWS backends (R2, B2, MinIO) need path-style bucket addressing."""
        if self.target.provider is not Provider.S3:
            return ["-o", "s3.bucket-lookup=path"]
        return []

    def _run_command(
        self,
        args: List[str],
        timeout: float = DEFAULT_TIMEOUT,
        allowed_codes: Sequence[int] = (0,),
    ) -> str:
        """
        Run a Restic command.

        Args:
            args: Command arguments
            timeout: Seconds before the process is killed
            allowed_codes: Exit codes that count as success

        Returns:
            The command's stdout

        Raises:
            RepositoryLockedError: Another restic process holds the lock
            ProcessExecutionError: Nonzero exit, timeout, missing binary or
                oversized output. The size limit is checked on the captured
                stdout after the process has exited, whatever its exit code;
                it does not stop a process that is still writing.
        """
        cmd = [self.binary_path] + self._extra_args() + args
        cmd_str = " ".join(shlex.quote(str(arg)) for arg in cmd)
        logger.debug(f"Running command: {cmd_str}")

        try:
            result = subprocess.run(
                cmd,
                env=self._get_env(),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ProcessExecutionError(
                f"restic {args[0]} timed out after {timeout:g}s", timed_out=True
            ) from e
        except FileNotFoundError as e:
            raise ProcessExecutionError(
                f"restic binary not found at {self.binary_path}"
            ) from e

        stdout = result.stdout or ""
        stderr = result.stderr or ""
        if stderr:
            logger.debug(f"restic stderr: {stderr}")

        if len(stdout.encode("utf-8")) > MAX_OUTPUT_BYTES:
            raise ProcessExecutionError(
                f"restic {args[0]} output exceeded {MAX_OUTPUT_BYTES} bytes",
                returncode=result.returncode,
            )

        if result.returncode not in allowed_codes:
            message = stderr.strip() or f"exit code {result.returncode}"
            if result.returncode == EXIT_LOCKED or LOCKED_MARKER in stderr:
                raise RepositoryLockedError(
                    f"Repository is locked by another process: {message}",
                    returncode=result.returncode,
                    stderr=stderr,
                )
            raise ProcessExecutionError(
                f"restic {args[0]} failed: {message}",
                returncode=result.returncode,
                stderr=stderr,
            )

        return stdout

    def init(self) -> None:
        """Initialize the repository. Callers check ``check_repository`` first."""
        logger.info(f"Initializing repository at {self.target.repository_url()}")
        self._run_command(["init", "--json"])

    def check_repository(self) -> bool:
        """
        Check that the repository exists and the password opens it.

        Returns:
            False on any failure (auth, network, not initialized)
        """
        try:
            self._run_command(["cat", "config", "--json"], timeout=PROBE_TIMEOUT)
            return True
        except ClawstashError as e:
            logger.debug(f"Repository check failed: {e}")
            return False

    def backup(
        self,
        source_dir: Path,
        tags: Optional[Sequence[str]] = None,
        exclude_patterns: Optional[Sequence[str]] = None,
        include_patterns: Optional[Sequence[str]] = None,
        dry_run: bool = False,
    ) -> BackupSummary:
        """
        Create a new backup snapshot.

        Args:
            source_dir: Directory to back up
            tags: Tags to apply to the snapshot
            exclude_patterns: Patterns to exclude
            include_patterns: Patterns to include; None means everything
            dry_run: Report what would be stored without writing anything

        Returns:
            The summary record of the run

        Raises:
            ProcessProtocolError: restic printed no summary record
        """
        args = ["backup", str(source_dir), "--json"]

        for tag in tags or []:
            args.extend(["--tag", tag])

        for pattern in exclude_patterns or []:
            args.extend(["--exclude", pattern])

        if include_patterns is not None:
            for pattern in include_patterns:
                args.extend(["--include", pattern])

        if dry_run:
            args.append("--dry-run")

        stdout = self._run_command(
            args,
            timeout=LONG_TIMEOUT,
            allowed_codes=(0, EXIT_INCOMPLETE),
        )

        summary = self._parse_summary(stdout)
        if summary.snapshot_id:
            logger.info(f"Created snapshot: {summary.snapshot_id}")
        return summary

    @staticmethod
    def _parse_summary(stdout: str) -> BackupSummary:
        """Return the last ``summary`` record in restic's JSON-lines output."""
        for line in reversed(stdout.strip().splitlines()):
            try:
                data = orjson.loads(line)
            except orjson.JSONDecodeError:
                continue
            if isinstance(data, dict) and data.get("message_type") == "summary":
                return BackupSummary.from_dict(data)
        raise ProcessProtocolError("No backup summary found in restic output")

    def snapshots(self, tags: Optional[Sequence[str]] = None) -> List[Snapshot]:
        """
        List snapshots in the repository.

        Args:
            tags: Only return snapshots carrying these tags

        Returns:
            List of Snapshot objects, oldest first
        """
        args = ["snapshots", "--json"]
        for tag in tags or []:
            args.extend(["--tag", tag])

        stdout = self._run_command(args)
        try:
            data = orjson.loads(stdout)
        except orjson.JSONDecodeError as e:
            raise ProcessProtocolError(f"Unparseable snapshot list: {e}") from e

        # An empty repository prints null
        if data is None:
            return []
        if not isinstance(data, list):
            raise ProcessProtocolError("Snapshot list is not a JSON array")

        return [Snapshot.from_dict(snap) for snap in data]

    def forget(self, retention: RetentionPolicy) -> None:
        """
        Apply a retention policy and prune unreferenced data.

        Args:
            retention: Policy; zero fields are left out of the command
        """
        args = ["forget", "--prune", "--json"] + retention.forget_args()
        self._run_command(args, timeout=LONG_TIMEOUT)
        logger.info(f"Applied retention policy: {retention.describe()}")

    def restore(
        self,
        snapshot_id: str,
        target: Path,
        include_patterns: Optional[Sequence[str]] = None,
        exclude_patterns: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Restore files from a snapshot.

        Args:
            snapshot_id: ID of the snapshot to restore from
            target: Target directory for restoration
            include_patterns: Patterns to restore; None means everything
            exclude_patterns: Patterns to skip
        """
        args = ["restore", snapshot_id, "--target", str(target)]

        for pattern in include_patterns or []:
            args.extend(["--include", pattern])

        for pattern in exclude_patterns or []:
            args.extend(["--exclude", pattern])

        self._run_command(args, timeout=LONG_TIMEOUT)
        logger.info(f"Restored snapshot {snapshot_id} to {target}")

    def stats(self) -> RepoStats:
        stdout = self._run_command(["stats", "--json", "--mode", "raw-data"])
        try:
            data = orjson.loads(stdout)
        except orjson.JSONDecodeError as e:
            raise ProcessProtocolError(f"Unparseable stats output: {e}") from e
        if not isinstance(data, dict):
            raise ProcessProtocolError("Stats output is not a JSON object")
        return RepoStats.from_dict(data)
