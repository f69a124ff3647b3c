"""
File categories for the OpenClaw data directory.

Maps relative paths to a category and categories to the restic include
patterns used by ``backup --only`` and ``restore --only``.
"""

import re
from enum import Enum
from typing import Dict, List, Tuple, Union

from clawstash_py.errors import UnknownCategoryError


class Category(str, Enum):
    CONFIG = "config"
    SECRETS = "secrets"
    WORKSPACE = "workspace"
    SESSIONS = "sessions"
    MEMORY = "memory"
    SKILLS = "skills"
    AGENTS = "agents"
    SETTINGS = "settings"
    OTHER = "other"


class Direction(Enum):
    """Backup patterns are source-relative; restore patterns match inside the archive."""

    BACKUP = "backup"
    RESTORE = "restore"


# Files that should never be backed up
DEFAULT_EXCLUDES: Tuple[str, ...] = (
    # Lock files
    "*.lock",
    "gateway.lock",
    # Temp files
    "*.tmp",
    "*.temp",
    # SQLite WAL/SHM, restic snapshots the main DB file
    "*-wal",
    "*-shm",
    "node_modules",
    # OS junk
    ".DS_Store",
    "Thumbs.db",
    "*.log",
    "cache/",
    ".cache/",
    # Ephemeral sandbox workspaces
    "sandboxes/",
    # Re-downloadable model cache
    "*/qmd/xdg-cache/",
)

BACKUP_INCLUDES: Dict[Category, Tuple[str, ...]] = {
    Category.CONFIG: ("openclaw.json", "openclaw.json5", ".env"),
    Category.SECRETS: ("credentials/**", "auth/**", ".env"),
    Category.WORKSPACE: ("workspace/**", "workspace-*/**"),
    Category.SESSIONS: ("agents/*/sessions/**",),
    Category.MEMORY: ("agents/*/memory.sqlite", "agents/*/memory.db", "memory/**"),
    Category.SKILLS: ("skills/**", "workspace/skills/**"),
    Category.AGENTS: ("agents/*/agent/**",),
    Category.SETTINGS: ("settings/**",),
}

# restic stores the absolute source path, so restore patterns match at any depth
RESTORE_INCLUDES: Dict[Category, Tuple[str, ...]] = {
    Category.CONFIG: ("**/openclaw.json", "**/openclaw.json5", "**/.env"),
    Category.SECRETS: ("**/credentials/**", "**/auth/**", "**/.env"),
    Category.WORKSPACE: ("**/workspace/**", "**/workspace-*/**"),
    Category.SESSIONS: ("**/agents/*/sessions/**",),
    Category.MEMORY: (
        "**/agents/*/memory.sqlite",
        "**/agents/*/memory.db",
        "**/memory/**",
    ),
    Category.SKILLS: ("**/skills/**", "**/workspace/skills/**"),
    Category.AGENTS: ("**/agents/*/agent/**",),
    Category.SETTINGS: ("**/settings/**",),
}

_INCLUDES = {
    Direction.BACKUP: BACKUP_INCLUDES,
    Direction.RESTORE: RESTORE_INCLUDES,
}

_AGENT_CONFIG_RE = re.compile(r"^agents/[^/]+/agent/")


def filterable_categories() -> List[str]:
    """Names accepted by ``--only``."""
    return [category.value for category in BACKUP_INCLUDES]


def categorize(relative_path: str) -> Category:
    """Categorize a path relative to the OpenClaw directory. First match wins."""
    path = relative_path.replace("\\", "/")

    if (
        path in ("openclaw.json", "openclaw.json5")
        or path.startswith("openclaw.")
        and "/" not in path
    ):
        return Category.CONFIG

    if path == ".env" or path.startswith(("credentials/", "auth/")):
        return Category.SECRETS

    # Before skills, so workspace/skills/... stays workspace
    if path.startswith(("workspace/", "workspace-")):
        return Category.WORKSPACE

    if path.startswith("skills/"):
        return Category.SKILLS

    if "/sessions/" in path and path.endswith((".jsonl", "sessions.json")):
        return Category.SESSIONS

    if path.endswith(".sqlite") and (path.startswith("memory/") or "memory" in path):
        return Category.MEMORY

    if _AGENT_CONFIG_RE.match(path):
        return Category.AGENTS

    if path.startswith("settings/"):
        return Category.SETTINGS

    return Category.OTHER


def parse_category(name: Union[str, Category]) -> Category:
    """Turn an ``--only`` value into a category that has include patterns."""
    try:
        category = Category(name)
    except ValueError:
        raise UnknownCategoryError(str(name), filterable_categories()) from None
    if category not in BACKUP_INCLUDES:
        raise UnknownCategoryError(category.value, filterable_categories())
    return category


def includes_for(category: Union[str, Category], direction: Direction) -> List[str]:
    """Return the include globs for *category* in the given direction."""
    return list(_INCLUDES[direction][parse_category(category)])
