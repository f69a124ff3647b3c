"""
Engine package for Clawstash.

Result types and the interface the CLI uses to drive a backup engine.
The only implementation is restic, in ``clawstash_py.engine.restic``.
"""

import abc
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from clawstash_py.retention import RetentionPolicy


def parse_engine_time(value: str) -> datetime:
    """Parse a restic RFC 3339 timestamp into an aware UTC datetime.

    restic emits nanosecond precision, which ``fromisoformat`` rejects on
    older interpreters, so the fraction is cut to microseconds.
    """
    text = value.strip().replace("Z", "+00:00")
    if "." in text:
        head, rest = text.split(".", 1)
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class Snapshot:
    """Represents a backup snapshot."""

    id: str
    short_id: str
    time: datetime
    hostname: str
    paths: List[str]
    tags: List[str]

    # Engine-specific metadata
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        snapshot_id = str(data["id"])
        return cls(
            id=snapshot_id,
            short_id=data.get("short_id") or snapshot_id[:8],
            time=parse_engine_time(data["time"]),
            hostname=data.get("hostname", ""),
            paths=list(data.get("paths") or []),
            tags=list(data.get("tags") or []),
            metadata=data,
        )


@dataclass
class BackupSummary:
    """The summary record restic prints at the end of ``backup --json``."""

    files_new: int
    files_changed: int
    files_unmodified: int
    data_added: int
    total_bytes_processed: int
    total_duration: float
    snapshot_id: str

    @property
    def total_files(self) -> int:
        return self.files_new + self.files_changed + self.files_unmodified

    @property
    def changed_files(self) -> int:
        return self.files_new + self.files_changed

    @property
    def short_id(self) -> str:
        return self.snapshot_id[:8]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupSummary":
        return cls(
            files_new=int(data.get("files_new", 0)),
            files_changed=int(data.get("files_changed", 0)),
            files_unmodified=int(data.get("files_unmodified", 0)),
            data_added=int(data.get("data_added", 0)),
            total_bytes_processed=int(data.get("total_bytes_processed", 0)),
            total_duration=float(data.get("total_duration", 0.0)),
            # Absent on --dry-run
            snapshot_id=str(data.get("snapshot_id") or ""),
        )


@dataclass
class RepoStats:
    total_size: int
    total_file_count: int
    snapshots_count: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepoStats":
        return cls(
            total_size=int(data.get("total_size", 0)),
            total_file_count=int(data.get("total_file_count", 0)),
            snapshots_count=data.get("snapshots_count"),
        )


class BaseEngine(abc.ABC):
    """Base class for backup engines."""

    @abc.abstractmethod
    def init(self) -> None:
        """Initialize a new repository."""
        pass

    @abc.abstractmethod
    def check_repository(self) -> bool:
        """Cheap reachability probe. Any failure returns False."""
        pass

    @abc.abstractmethod
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
            The summary of the run
        """
        pass

    @abc.abstractmethod
    def snapshots(self, tags: Optional[Sequence[str]] = None) -> List[Snapshot]:
        """List snapshots in the repository, oldest first."""
        pass

    @abc.abstractmethod
    def forget(self, retention: RetentionPolicy) -> None:
        """Apply a retention policy and prune unreferenced data."""
        pass

    @abc.abstractmethod
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
        pass

    @abc.abstractmethod
    def stats(self) -> RepoStats:
        """Return repository size information."""
        pass
