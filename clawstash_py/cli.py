"""
Command-line interface for Clawstash.

This module provides the command-line entry point for the Clawstash backup
application.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from clawstash_py import __version__
from clawstash_py.categories import (
    DEFAULT_EXCLUDES,
    Direction,
    filterable_categories,
    includes_for,
    parse_category,
)
from clawstash_py.config import ClawstashConfig, Provider, StorageTarget
from clawstash_py.credentials import CredentialResolver, default_secret_store
from clawstash_py.engine.restic import ResticEngine
from clawstash_py.errors import ClawstashError, ConfigurationError
from clawstash_py.health import ERROR, OK, WARN, run_health_checks
from clawstash_py.platform import restic_binary_path
from clawstash_py.storage import BucketCreation, detect_jurisdiction, ensure_bucket
from clawstash_py.timespec import resolve_snapshot

# Set up the console and logger
console = Console()
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)],
)
logger = logging.getLogger("clawstash")

app = typer.Typer(
    help="Encrypted, deduplicated backups of OpenClaw to S3-compatible storage.",
    add_completion=False,
)

PassphraseOption = Annotated[
    Optional[str],
    typer.Option(
        "--passphrase",
        "-p",
        help="Encryption passphrase. Uses CLAWSTASH_PASSPHRASE or the keychain "
        "if not set.",
    ),
]

CATEGORY_HELP = f"Only this category: {', '.join(filterable_categories())}."

NOT_CONFIGURED_MESSAGE = "Clawstash is not configured. Run `clawstash setup` first."
UNREACHABLE_MESSAGE = (
    "Repository unreachable. Check the passphrase and network, "
    "or run `clawstash setup`."
)


def log_error(message: str) -> None:
    """Log an error message to both logger and console."""
    logger.error(message)
    console.print(f"[red]{message}[/red]")
    return None


def format_bytes(size: float) -> str:
    """Format a byte count as a human-readable string."""
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    value = float(size)
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{value:.1f} {units[i]}" if value < 10 else f"{value:.0f} {units[i]}"


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{round(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    mins, secs = divmod(int(round(seconds)), 60)
    if mins < 60:
        return f"{mins}m {secs}s"
    hours, mins = divmod(mins, 60)
    return f"{hours}h {mins}m"


def format_time_ago(when: datetime, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    seconds = int((now - when).total_seconds())
    if seconds < 60:
        return "just now"
    for unit, size in (("day", 86_400), ("hour", 3_600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'' if count == 1 else 's'} ago"
    return "just now"


def make_engine(config: ClawstashConfig, passphrase: str) -> ResticEngine:
    if config.storage is None:
        raise ConfigurationError(NOT_CONFIGURED_MESSAGE)
    return ResticEngine(
        target=config.storage,
        password=passphrase,
        binary_path=config.restic_binary or restic_binary_path(),
    )


def load_engine(passphrase: Optional[str]) -> Tuple[ClawstashConfig, ResticEngine]:
    """Load the config and resolve the passphrase for a repository command."""
    config = ClawstashConfig.require()
    resolved = CredentialResolver().resolve(passphrase)
    return config, make_engine(config, resolved)


@app.callback()
def callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output."
    ),
    json: bool = typer.Option(False, "--json", help="Output logs in JSON format."),
    version: bool = typer.Option(
        False, "--version", help="Show the application version and exit."
    ),
) -> None:
    """
    Clawstash: encrypted, incremental backups for OpenClaw.
    """
    if version:
        console.print(f"Clawstash version: {__version__}")
        raise typer.Exit()

    if verbose:
        logger.setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")

    if json:
        for handler in logging.root.handlers:
            logging.root.removeHandler(handler)
        logging.basicConfig(
            level=logging.INFO if not verbose else logging.DEBUG,
            format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"message": "%(message)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stdout,
        )
        logger.debug("JSON logging enabled")


@app.command()
def setup(
    provider: Annotated[
        Provider,
        typer.Option("--provider", prompt=True, help="Storage provider."),
    ],
    bucket: Annotated[
        str, typer.Option("--bucket", prompt=True, help="Bucket name.")
    ],
    access_key_id: Annotated[
        str, typer.Option("--access-key-id", prompt=True, help="Access key ID.")
    ],
    secret_access_key: Annotated[
        str,
        typer.Option(
            "--secret-access-key",
            prompt=True,
            hide_input=True,
            help="Secret access key.",
        ),
    ],
    passphrase: Annotated[
        str,
        typer.Option(
            "--passphrase",
            "-p",
            prompt="Encryption passphrase",
            hide_input=True,
            confirmation_prompt=True,
            help="Encryption passphrase. Losing it means losing the backups.",
        ),
    ],
    account_id: Annotated[
        Optional[str],
        typer.Option("--account-id", help="Cloudflare account ID (R2 only)."),
    ] = None,
    region: Annotated[
        Optional[str], typer.Option("--region", help="AWS region (S3 only).")
    ] = None,
    endpoint: Annotated[
        Optional[str],
        typer.Option("--endpoint", help="Custom S3 endpoint (required for MinIO)."),
    ] = None,
    openclaw_dir: Annotated[
        Optional[Path],
        typer.Option("--openclaw-dir", help="OpenClaw data directory."),
    ] = None,
    save_passphrase: Annotated[
        bool,
        typer.Option(
            "--save-passphrase/--no-save-passphrase",
            help="Store the passphrase in the system keychain.",
        ),
    ] = True,
) -> None:
    """
    Configure storage, create the bucket and initialize the repository.
    """
    existing = ClawstashConfig.load()

    try:
        jurisdiction = None
        if provider is Provider.R2 and not endpoint:
            if not account_id:
                log_error("R2 requires --account-id (or a custom --endpoint).")
                raise typer.Exit(1)
            logger.info("Detecting R2 jurisdiction...")
            jurisdiction = detect_jurisdiction(
                account_id, access_key_id, secret_access_key
            )
            logger.info(f"R2 jurisdiction: {jurisdiction or 'default'}")

        target = StorageTarget(
            provider=provider,
            bucket=bucket,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            account_id=account_id,
            region=region,
            endpoint=endpoint,
            jurisdiction=jurisdiction or None,
        )
        config = ClawstashConfig(
            openclaw_dir=(
                openclaw_dir.expanduser() if openclaw_dir else existing.openclaw_dir
            ),
            storage=target,
            retention=existing.retention,
            exclude=existing.exclude,
            restic_binary=existing.restic_binary,
        )

        logger.info(f'Ensuring bucket "{target.bucket}" exists...')
        ensure_bucket(target)

        engine = make_engine(config, passphrase)
        if engine.check_repository():
            logger.info("Repository already exists, skipping initialization")
        else:
            engine.init()
            logger.info(f"Initialized repository at {target.repository_url()}")
    except ClawstashError as e:
        log_error(str(e))
        raise typer.Exit(1) from e

    path = config.save()
    logger.info(f"Saved config to {path}")

    if save_passphrase:
        if default_secret_store().set(passphrase):
            logger.info("Passphrase saved to secret store.")
        else:
            logger.warning(
                "Could not save the passphrase. Set CLAWSTASH_PASSPHRASE or pass "
                "--passphrase to every command."
            )

    console.print(f"[green]Clawstash is ready: {target.repository_url()}[/green]")


@app.command()
def backup(
    passphrase: PassphraseOption = None,
    only: Annotated[
        Optional[str], typer.Option("--only", help=CATEGORY_HELP)
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be backed up."),
    ] = False,
    forget: Annotated[
        bool,
        typer.Option("--forget/--no-forget", help="Apply retention after backup."),
    ] = True,
) -> None:
    """
    Run an incremental backup, then apply the retention policy.
    """
    try:
        category = parse_category(only) if only else None
        config, engine = load_engine(passphrase)

        if not config.openclaw_dir.is_dir():
            log_error(f"OpenClaw directory not found: {config.openclaw_dir}")
            raise typer.Exit(1)

        if not engine.check_repository():
            if dry_run:
                raise ConfigurationError(UNREACHABLE_MESSAGE)
            # Only a bucket created just now is known to hold no repository
            if ensure_bucket(config.storage) is not BucketCreation.CREATED:
                raise ConfigurationError(UNREACHABLE_MESSAGE)
            logger.info("Created bucket, initializing repository...")
            engine.init()

        tags = ["clawstash"]
        if category:
            tags.append(category.value)

        logger.info("Calculating backup (dry run)..." if dry_run else "Backing up...")
        summary = engine.backup(
            config.openclaw_dir,
            tags=tags,
            exclude_patterns=list(DEFAULT_EXCLUDES) + config.exclude,
            include_patterns=(
                includes_for(category, Direction.BACKUP) if category else None
            ),
            dry_run=dry_run,
        )
    except ClawstashError as e:
        log_error(f"Backup failed: {e}")
        raise typer.Exit(1) from e

    console.print(
        f"\n[bold]{'Dry run complete' if dry_run else 'Backup complete'}[/bold]"
    )
    if summary.snapshot_id:
        console.print(f"  Snapshot    [green]{summary.short_id}[/green]")
    console.print(
        f"  Files       {summary.total_files} total, {summary.changed_files} changed"
    )
    console.print(f"  Data added  {format_bytes(summary.data_added)}")
    console.print(f"  Processed   {format_bytes(summary.total_bytes_processed)}")
    console.print(f"  Duration    {format_duration(summary.total_duration)}")

    if dry_run or not forget:
        return

    logger.info("Applying retention policy...")
    try:
        engine.forget(config.retention)
        logger.info("Retention policy applied")
    except ClawstashError as e:
        logger.warning(f"Retention policy failed (backup was successful): {e}")


@app.command()
def restore(
    passphrase: PassphraseOption = None,
    only: Annotated[
        Optional[str], typer.Option("--only", help=CATEGORY_HELP)
    ] = None,
    at: Annotated[
        Optional[str],
        typer.Option("--at", help='Point in time: ISO date or "3 days ago".'),
    ] = None,
    target: Annotated[
        Optional[str],
        typer.Option("--target", help="Restore into this directory instead."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be restored."),
    ] = False,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")
    ] = False,
) -> None:
    """
    Restore the latest snapshot, or the one closest to --at.
    """
    try:
        category = parse_category(only) if only else None
        config, engine = load_engine(passphrase)

        snapshots = engine.snapshots()
        if not snapshots:
            log_error("No snapshots found. Run `clawstash backup` first.")
            raise typer.Exit(1)

        if at:
            selected = resolve_snapshot(snapshots, at)
            if selected is None:
                log_error("No snapshot found near that time.")
                raise typer.Exit(1)
            label = "Closest snapshot"
        else:
            selected = snapshots[-1]
            label = "Latest snapshot"
        logger.info(
            f"{label}: {selected.short_id} ({format_time_ago(selected.time)})"
        )

        target_dir = Path(target).expanduser() if target else config.openclaw_dir
        includes = includes_for(category, Direction.RESTORE) if category else None

        if dry_run:
            console.print("\n[bold]Dry run complete[/bold]")
            console.print(f"  Snapshot  {selected.short_id}")
            console.print(f"  To        {target_dir}")
            if includes:
                console.print(f"  Includes  {', '.join(includes)}")
            return

        if target_dir.exists() and not target and not yes:
            logger.warning(f"This will overwrite files in {target_dir}")
            if not typer.confirm(
                f"Restore snapshot {selected.short_id} to {target_dir}?",
                default=False,
            ):
                console.print("Restore cancelled.")
                return

        logger.info(f"Restoring snapshot {selected.short_id}...")
        engine.restore(selected.id, target_dir, include_patterns=includes)
    except ClawstashError as e:
        log_error(f"Restore failed: {e}")
        raise typer.Exit(1) from e

    console.print("\n[bold]Restore complete[/bold]")
    console.print(f"  Snapshot  [green]{selected.short_id}[/green]")
    console.print(f"  From      {format_time_ago(selected.time)}")
    console.print(f"  To        {target_dir}")
    if category:
        console.print(f"  Category  {category.value}")


@app.command(name="snapshots")
def list_snapshots(
    passphrase: PassphraseOption = None,
    tags: Annotated[
        Optional[List[str]],
        typer.Option("--tag", "-t", help="Only snapshots with this tag."),
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", help="Output snapshots in JSON format.")
    ] = False,
) -> None:
    """
    List backup snapshots.
    """
    try:
        _, engine = load_engine(passphrase)
        snapshots = engine.snapshots(tags=tags)
    except ClawstashError as e:
        log_error(f"Failed to list snapshots: {e}")
        raise typer.Exit(1) from e

    if json_output:
        snapshot_data = [
            {
                "id": snap.id,
                "short_id": snap.short_id,
                "time": snap.time.isoformat(),
                "hostname": snap.hostname,
                "paths": snap.paths,
                "tags": snap.tags,
            }
            for snap in snapshots
        ]
        typer.echo(json.dumps(snapshot_data, indent=2))
        return

    if not snapshots:
        console.print("No snapshots yet. Run `clawstash backup` to create one.")
        return

    table = Table(title=f"Snapshots ({len(snapshots)})")
    table.add_column("ID")
    table.add_column("Date")
    table.add_column("Age")
    table.add_column("Tags")

    for snap in snapshots:
        table.add_row(
            snap.short_id,
            snap.time.strftime("%Y-%m-%d %H:%M:%S"),
            format_time_ago(snap.time),
            ", ".join(snap.tags) or "-",
        )
    console.print(table)
    console.print(
        f'Restore any snapshot: clawstash restore --at "{snapshots[-1].time.isoformat()}"'
    )


@app.command()
def forget(passphrase: PassphraseOption = None) -> None:
    """
    Apply the retention policy and prune old snapshots.
    """
    try:
        config, engine = load_engine(passphrase)
        before = engine.snapshots()
        logger.info("Applying retention policy and pruning...")
        engine.forget(config.retention)
        after = engine.snapshots()
    except ClawstashError as e:
        log_error(f"Failed to apply retention policy: {e}")
        raise typer.Exit(1) from e

    removed = len(before) - len(after)
    console.print("\n[bold]Retention applied[/bold]")
    console.print(f"  Before   {len(before)} snapshots")
    console.print(f"  After    {len(after)} snapshots")
    console.print(f"  Removed  {removed} snapshots")


@app.command()
def status(passphrase: PassphraseOption = None) -> None:
    """
    Show backup status and repository size.
    """
    config = ClawstashConfig.load()
    if config.storage is None:
        log_error(NOT_CONFIGURED_MESSAGE)
        raise typer.Exit(1)

    storage = config.storage
    console.print("[bold]Clawstash status[/bold]")
    console.print(f"  OpenClaw dir  {config.openclaw_dir}")
    console.print(f"  Storage       {storage.provider.value.upper()} / {storage.bucket}")
    try:
        console.print(f"  Repository    {storage.repository_url()}")
    except ClawstashError as e:
        log_error(str(e))
        raise typer.Exit(1) from e
    console.print(f"  Retention     {config.retention.describe()}")

    resolved = CredentialResolver().resolve_optional(passphrase)
    if not resolved:
        console.print("  Snapshots     [yellow]Skipped (no passphrase)[/yellow]")
        return

    engine = make_engine(config, resolved)
    try:
        snapshots = engine.snapshots()
        repo_stats = engine.stats()
    except ClawstashError as e:
        log_error(f"Failed to check remote: {e}")
        raise typer.Exit(1) from e

    if snapshots:
        latest = snapshots[-1]
        console.print(
            f"  Last backup   [green]{format_time_ago(latest.time)} "
            f"({latest.short_id})[/green]"
        )
        console.print(f"  Snapshots     {len(snapshots)}")
    else:
        console.print("  Last backup   [yellow]Never[/yellow]")
    console.print(f"  Repo size     {format_bytes(repo_stats.total_size)}")


@app.command()
def doctor(passphrase: PassphraseOption = None) -> None:
    """
    Run diagnostic checks.
    """
    resolved = CredentialResolver().resolve_optional(passphrase)
    checks = run_health_checks(passphrase=resolved)

    styles = {OK: ("OK", "green"), WARN: ("!!", "yellow"), ERROR: ("XX", "red")}
    for check in checks:
        icon, color = styles[check.status]
        console.print(f"  [{color}]{icon}[/{color}] {check.name:<22}{check.message}")

    errors = [c for c in checks if c.status == ERROR]
    warnings = [c for c in checks if c.status == WARN]
    if not errors and not warnings:
        console.print("[green]No issues found.[/green]")
        return
    if warnings:
        console.print(f"[yellow]{len(warnings)} warning(s).[/yellow]")
    if errors:
        console.print(f"[red]{len(errors)} error(s) found.[/red]")
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show the application version and exit."""
    console.print(f"Clawstash version: {__version__}")


if __name__ == "__main__":
    app()
