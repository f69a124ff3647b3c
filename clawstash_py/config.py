"""
Configuration file support for Clawstash.

Loads settings from ``~/.config/clawstash/config.yaml`` (or
``$XDG_CONFIG_HOME/clawstash/config.yaml``) and exposes them as typed
dataclasses. The file is written by ``clawstash setup`` and only read by
every other command.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from clawstash_py.errors import ConfigurationError, InvalidBucketNameError
from clawstash_py.platform import config_dir, default_openclaw_dir
from clawstash_py.retention import RetentionPolicy

logger = logging.getLogger("clawstash.config")

CONFIG_VERSION = 1

BUCKET_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")

B2_DEFAULT_ENDPOINT = "https://s3.us-west-004.backblazeb2.com"
S3_DEFAULT_REGION = "us-east-1"


def default_config_path() -> Path:
    """Return the default configuration file path."""
    return config_dir() / "config.yaml"


def validate_bucket_name(name: str) -> str:
    """Return *name* unchanged if it is a valid bucket name, else raise."""
    if not BUCKET_NAME_RE.match(name or ""):
        raise InvalidBucketNameError(
            f"Invalid bucket name: {name!r}. Use 3-63 lowercase letters, "
            "digits, dots or hyphens, starting and ending with a letter or digit."
        )
    return name


class Provider(str, Enum):
    """Supported S3-compatible storage providers."""

    R2 = "r2"
    S3 = "s3"
    B2 = "b2"
    MINIO = "minio"


@dataclass
class StorageTarget:
    """Where the restic repository lives and how to authenticate to it."""

    provider: Provider
    bucket: str
    access_key_id: str
    secret_access_key: str
    account_id: Optional[str] = None
    region: Optional[str] = None
    endpoint: Optional[str] = None
    jurisdiction: Optional[str] = None

    def __post_init__(self) -> None:
        self.provider = Provider(self.provider)
        validate_bucket_name(self.bucket)

    def endpoint_url(self) -> str:
        """Build the S3 endpoint URL. An explicit endpoint always wins."""
        if self.endpoint:
            return self.endpoint.rstrip("/")

        if self.provider is Provider.R2:
            if not self.account_id:
                raise ConfigurationError("R2 requires an account ID")
            jur = f".{self.jurisdiction}" if self.jurisdiction else ""
            return f"https://{self.account_id}{jur}.r2.cloudflarestorage.com"
        if self.provider is Provider.S3:
            return f"https://s3.{self.region or S3_DEFAULT_REGION}.amazonaws.com"
        if self.provider is Provider.B2:
            return B2_DEFAULT_ENDPOINT
        raise ConfigurationError("MinIO requires a custom endpoint")

    def signing_region(self) -> str:
        """Region for the SigV4 scope; matches the region in ``endpoint_url``."""
        if self.provider is Provider.S3:
            return self.region or S3_DEFAULT_REGION
        return self.region or "auto"

    def repository_url(self) -> str:
        """Return the restic repository locator, ``s3:<endpoint>/<bucket>``."""
        return f"s3:{self.endpoint_url()}/{self.bucket}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageTarget":
        try:
            return cls(
                provider=data["provider"],
                bucket=data["bucket"],
                access_key_id=data["accessKeyId"],
                secret_access_key=data["secretAccessKey"],
                account_id=data.get("accountId"),
                region=data.get("region"),
                endpoint=data.get("endpoint"),
                jurisdiction=data.get("jurisdiction"),
            )
        except KeyError as e:
            raise ConfigurationError(f"Storage config is missing {e.args[0]}") from e
        except ValueError as e:
            raise ConfigurationError(f"Invalid storage config: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "provider": self.provider.value,
            "bucket": self.bucket,
            "accessKeyId": self.access_key_id,
            "secretAccessKey": self.secret_access_key,
        }
        optional = {
            "accountId": self.account_id,
            "region": self.region,
            "endpoint": self.endpoint,
            "jurisdiction": self.jurisdiction,
        }
        data.update({k: v for k, v in optional.items() if v})
        return data


@dataclass
class ClawstashConfig:
    """Top-level configuration loaded from the YAML file."""

    openclaw_dir: Path = field(default_factory=default_openclaw_dir)
    storage: Optional[StorageTarget] = None
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    exclude: List[str] = field(default_factory=list)
    restic_binary: Optional[str] = None
    version: int = CONFIG_VERSION

    @property
    def is_configured(self) -> bool:
        return self.storage is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClawstashConfig":
        """Construct a ``ClawstashConfig`` from a parsed YAML dictionary."""
        if not isinstance(data, dict):
            return cls()

        storage_data = data.get("storage")
        storage = StorageTarget.from_dict(storage_data) if storage_data else None

        openclaw_dir = data.get("openclawDir")
        return cls(
            openclaw_dir=(
                Path(openclaw_dir).expanduser()
                if openclaw_dir
                else default_openclaw_dir()
            ),
            storage=storage,
            retention=RetentionPolicy.from_dict(data.get("retention") or {}),
            exclude=[str(e) for e in data.get("exclude") or []],
            restic_binary=data.get("resticBinary"),
            version=data.get("version", CONFIG_VERSION),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "version": self.version,
            "openclawDir": str(self.openclaw_dir),
            "retention": self.retention.to_dict(),
            "exclude": list(self.exclude),
        }
        if self.storage is not None:
            data["storage"] = self.storage.to_dict()
        if self.restic_binary:
            data["resticBinary"] = self.restic_binary
        return data

    @classmethod
    def from_file(cls, path: Path) -> "ClawstashConfig":
        """Read a YAML file and return a ``ClawstashConfig``.

        Returns an empty default config on read or parse errors.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f.read())
            if data is None:
                return cls()
            return cls.from_dict(data)
        except (IOError, yaml.YAMLError) as e:
            logger.error("Failed to load config from %s: %s", path, e)
            return cls()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "ClawstashConfig":
        """Load config from *config_path* or the default location.

        Returns an unconfigured default if the file does not exist.
        """
        path = config_path or default_config_path()
        if not path.exists():
            return cls()
        return cls.from_file(path)

    @classmethod
    def require(cls, config_path: Optional[Path] = None) -> "ClawstashConfig":
        """Load config, raising when storage has not been set up yet."""
        config = cls.load(config_path)
        if not config.is_configured:
            raise ConfigurationError(
                "No clawstash config found. Run `clawstash setup` first."
            )
        return config

    def save(self, config_path: Optional[Path] = None) -> Path:
        """Write the config as YAML, readable only by the current user."""
        path = config_path or default_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        os.chmod(path, 0o600)
        logger.debug("Saved config to %s", path)
        return path
