"""
Diagnostic checks behind ``clawstash doctor``.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from clawstash_py.config import ClawstashConfig, default_config_path
from clawstash_py.engine.restic import ResticEngine
from clawstash_py.errors import ClawstashError
from clawstash_py.platform import restic_binary_path

logger = logging.getLogger("clawstash.health")

OK = "ok"
WARN = "warn"
ERROR = "error"


@dataclass
class HealthCheck:
    name: str
    status: str
    message: str


def restic_version(binary_path: str) -> Optional[str]:
    """Return the installed restic version, or None if it cannot be run."""
    try:
        result = subprocess.run(
            [binary_path, "version"],
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"restic version failed: {e}")
        return None
    if result.returncode != 0:
        return None
    # "restic 0.17.3 compiled with go1.23.3 on linux/amd64"
    parts = result.stdout.split()
    return parts[1] if len(parts) > 1 else None


def run_health_checks(
    config_path: Optional[Path] = None, passphrase: Optional[str] = None
) -> List[HealthCheck]:
    """Run all health checks and return their results in display order."""
    checks: List[HealthCheck] = []

    config = ClawstashConfig.load(config_path)
    binary = config.restic_binary or restic_binary_path()

    version = restic_version(binary)
    if version:
        checks.append(HealthCheck("Restic binary", OK, f"v{version} ({binary})"))
    else:
        checks.append(
            HealthCheck("Restic binary", ERROR, f"Not found or not runnable: {binary}")
        )

    if config.is_configured:
        checks.append(
            HealthCheck("Config", OK, str(config_path or default_config_path()))
        )
    else:
        checks.append(HealthCheck("Config", ERROR, "Not found. Run `clawstash setup`"))

    if config.openclaw_dir.is_dir():
        checks.append(HealthCheck("OpenClaw directory", OK, str(config.openclaw_dir)))
    else:
        checks.append(
            HealthCheck(
                "OpenClaw directory", ERROR, f"Not found at {config.openclaw_dir}"
            )
        )

    if config.storage is not None and passphrase:
        try:
            repo_url = config.storage.repository_url()
            engine = ResticEngine(config.storage, passphrase, binary_path=binary)
            reachable = engine.check_repository()
        except ClawstashError as e:
            logger.debug(f"Remote repository check failed: {e}")
            repo_url, reachable = "", False
        if reachable:
            checks.append(HealthCheck("Remote repository", OK, repo_url))
        else:
            checks.append(
                HealthCheck(
                    "Remote repository",
                    ERROR,
                    "Cannot reach repository. Check credentials and network.",
                )
            )
    elif config.storage is not None:
        checks.append(
            HealthCheck(
                "Remote repository",
                WARN,
                "Skipped (no passphrase; use --passphrase or CLAWSTASH_PASSPHRASE)",
            )
        )

    return checks
