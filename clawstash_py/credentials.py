"""
Passphrase resolution for Clawstash.

The encryption passphrase is looked up, in order, from an explicit
``--passphrase`` value, the ``CLAWSTASH_PASSPHRASE`` environment variable,
and the secret store (system keychain with a file fallback).
"""

import abc
import logging
import os
from pathlib import Path
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from clawstash_py.errors import MissingCredentialError
from clawstash_py.platform import config_dir

logger = logging.getLogger("clawstash.credentials")

PASSPHRASE_ENV_VAR = "CLAWSTASH_PASSPHRASE"

SERVICE_NAME = "clawstash"
ACCOUNT_NAME = "backup-passphrase"

MISSING_PASSPHRASE_MESSAGE = (
    "No passphrase found. Options:\n"
    "  1. Save to keychain:  clawstash setup\n"
    f"  2. Set env var:       export {PASSPHRASE_ENV_VAR}=...\n"
    "  3. Pass flag:         --passphrase ..."
)


class SecretStore(abc.ABC):
    """Somewhere the passphrase can be kept between runs."""

    @abc.abstractmethod
    def get(self) -> Optional[str]:
        pass

    @abc.abstractmethod
    def set(self, passphrase: str) -> bool:
        pass

    @abc.abstractmethod
    def delete(self) -> bool:
        pass

    @abc.abstractmethod
    def is_available(self) -> bool:
        pass


class KeyringSecretStore(SecretStore):
    """System keychain via ``keyring`` (macOS Keychain, Secret Service, ...)."""

    def __init__(self, service: str = SERVICE_NAME, account: str = ACCOUNT_NAME):
        self.service = service
        self.account = account

    def get(self) -> Optional[str]:
        try:
            value = keyring.get_password(self.service, self.account)
        except KeyringError as e:
            logger.debug(f"Keychain lookup failed: {e}")
            return None
        return value.strip() if value and value.strip() else None

    def set(self, passphrase: str) -> bool:
        try:
            keyring.set_password(self.service, self.account, passphrase)
            return True
        except KeyringError as e:
            logger.debug(f"Keychain store failed: {e}")
            return False

    def delete(self) -> bool:
        try:
            keyring.delete_password(self.service, self.account)
            return True
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            logger.debug(f"Keychain delete failed: {e}")
            return False

    def is_available(self) -> bool:
        backend = keyring.get_keyring()
        # keyring.backends.fail.Keyring has priority 0 and raises on every call
        return getattr(backend, "priority", 0) > 0


class FileSecretStore(SecretStore):
    """Plain file readable only by the current user."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or config_dir() / "passphrase"

    def get(self) -> Optional[str]:
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        return content or None

    def set(self, passphrase: str) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Created 0600, never world-readable
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(passphrase)
            os.chmod(self.path, 0o600)
            logger.debug(f"Passphrase saved to {self.path} (mode 600)")
            return True
        except OSError as e:
            logger.debug(f"Failed to save passphrase to file: {e}")
            return False

    def delete(self) -> bool:
        try:
            self.path.unlink()
            return True
        except OSError:
            return False

    def is_available(self) -> bool:
        return True


class FallbackSecretStore(SecretStore):
    """Try *primary* first and fall back to *fallback*."""

    def __init__(self, primary: SecretStore, fallback: SecretStore):
        self.primary = primary
        self.fallback = fallback

    def get(self) -> Optional[str]:
        if self.primary.is_available():
            value = self.primary.get()
            if value:
                return value
        return self.fallback.get()

    def set(self, passphrase: str) -> bool:
        if self.primary.is_available() and self.primary.set(passphrase):
            return True
        logger.debug("Keychain unavailable, using file fallback")
        return self.fallback.set(passphrase)

    def delete(self) -> bool:
        deleted = self.primary.is_available() and self.primary.delete()
        return self.fallback.delete() or deleted

    def is_available(self) -> bool:
        return self.primary.is_available() or self.fallback.is_available()


def default_secret_store() -> SecretStore:
    return FallbackSecretStore(KeyringSecretStore(), FileSecretStore())


class CredentialResolver:
    """Resolve the repository passphrase. Nothing is cached between calls."""

    def __init__(self, store: Optional[SecretStore] = None):
        self.store = store if store is not None else default_secret_store()

    def resolve_optional(self, override: Optional[str] = None) -> Optional[str]:
        """Return the passphrase, or None when no source provides one."""
        if override:
            return override

        from_env = os.environ.get(PASSPHRASE_ENV_VAR)
        if from_env:
            return from_env

        try:
            from_store = self.store.get()
        except Exception as e:
            logger.debug(f"Secret store lookup failed: {e}")
            from_store = None
        if from_store:
            logger.debug("Passphrase loaded from secret store")
            return from_store

        return None

    def resolve(self, override: Optional[str] = None) -> str:
        """
        Return the passphrase.

        Args:
            override: Value passed explicitly for this invocation

        Raises:
            MissingCredentialError: No source had a passphrase
        """
        passphrase = self.resolve_optional(override)
        if passphrase is None:
            raise MissingCredentialError(MISSING_PASSPHRASE_MESSAGE)
        return passphrase
