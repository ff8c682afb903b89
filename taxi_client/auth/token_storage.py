"""
Credential stores for the Taxi Manager client.

This module provides the async key-value stores that hold the access token,
refresh token, user id and role. ``SecureCredentialStore`` uses the system
keyring when available and falls back to an encrypted file.
"""

import asyncio
import functools
import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional, Set

from cryptography.fernet import Fernet, InvalidToken

from taxi_shared.exceptions import CredentialStoreError, ErrorCode
from taxi_shared.interfaces import ICredentialStore
from taxi_shared.models import StorageKey

logger = logging.getLogger(__name__)

KNOWN_KEYS = tuple(key.value for key in StorageKey)


class InMemoryCredentialStore(ICredentialStore):
    """Dict-backed store for tests and sessions that must not persist."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    def snapshot(self) -> Dict[str, str]:
        """Copy of the current contents."""
        return dict(self._data)


class SecureCredentialStore(ICredentialStore):
    """
    Persistent credential store.

    Values are kept in the system keyring when one is usable, otherwise in a
    Fernet-encrypted JSON file readable only by the current user. Blocking
    keyring and file access runs in the event loop's default executor.
    """

    def __init__(
        self,
        service_name: str = "taxi-manager-client",
        storage_dir: Optional[Path] = None,
        use_keyring: Optional[bool] = None
    ):
        self.service_name = service_name
        self.storage_dir = Path(storage_dir) if storage_dir else self._get_default_storage_dir()
        self.storage_path = self.storage_dir / 'credentials.enc'
        self.key_path = self.storage_dir / 'credentials.key'
        self.keyring_available = self._check_keyring_availability() if use_keyring is None else use_keyring

        self._encryption_key: Optional[bytes] = None
        self._written_keys: Set[str] = set()
        # Serializes every backend operation; executor threads run in parallel
        self._lock = threading.RLock()

        logger.info(f"Credential store initialized (keyring: {self.keyring_available})")

    def _get_default_storage_dir(self) -> Path:
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            return Path(xdg_config) / 'taxi-manager'
        return Path.home() / '.config' / 'taxi-manager'

    def _check_keyring_availability(self) -> bool:
        """Check if the system keyring can store and return a value."""
        try:
            import keyring
            probe_key = f"{self.service_name}_probe"
            keyring.set_password(self.service_name, probe_key, "probe")
            result = keyring.get_password(self.service_name, probe_key)
            keyring.delete_password(self.service_name, probe_key)
            return result == "probe"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._locked, func, *args))

    def _locked(self, func, *args):
        with self._lock:
            return func(*args)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._run(self._get_sync, key)
        except CredentialStoreError:
            raise
        except Exception as e:
            raise CredentialStoreError(f"Failed to read {key}: {e}", ErrorCode.STORAGE_READ_FAILED,
                                       key=key, cause=e)

    async def set(self, key: str, value: str) -> None:
        try:
            await self._run(self._set_sync, key, value)
        except CredentialStoreError:
            raise
        except Exception as e:
            raise CredentialStoreError(f"Failed to store {key}: {e}", ErrorCode.STORAGE_WRITE_FAILED,
                                       key=key, cause=e)

    async def remove(self, key: str) -> None:
        try:
            await self._run(self._remove_sync, key)
        except CredentialStoreError:
            raise
        except Exception as e:
            raise CredentialStoreError(f"Failed to remove {key}: {e}", ErrorCode.STORAGE_WRITE_FAILED,
                                       key=key, cause=e)

    async def clear(self) -> None:
        try:
            await self._run(self._clear_sync)
        except CredentialStoreError:
            raise
        except Exception as e:
            raise CredentialStoreError(f"Failed to clear credentials: {e}", ErrorCode.STORAGE_WRITE_FAILED,
                                       cause=e)
        logger.info("Stored credentials cleared")

    # Keyring backend

    def _get_sync(self, key: str) -> Optional[str]:
        if self.keyring_available:
            import keyring
            return keyring.get_password(self.service_name, key)
        return self._load_file().get(key)

    def _set_sync(self, key: str, value: str) -> None:
        self._written_keys.add(key)
        if self.keyring_available:
            import keyring
            keyring.set_password(self.service_name, key, value)
            return
        data = self._load_file()
        data[key] = value
        self._save_file(data)

    def _remove_sync(self, key: str) -> None:
        if self.keyring_available:
            import keyring
            from keyring.errors import PasswordDeleteError
            try:
                keyring.delete_password(self.service_name, key)
            except PasswordDeleteError:
                pass
            return
        data = self._load_file()
        if key in data:
            del data[key]
            self._save_file(data)

    def _clear_sync(self) -> None:
        if self.keyring_available:
            for key in set(KNOWN_KEYS) | self._written_keys:
                self._remove_sync(key)
            return
        if self.storage_path.exists():
            self.storage_path.unlink()

    # Encrypted file backend

    def _get_encryption_key(self) -> bytes:
        """Get or create the Fernet key protecting the credentials file."""
        if self._encryption_key:
            return self._encryption_key

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.key_path.write_bytes(key)
        os.chmod(self.key_path, 0o600)

        self._encryption_key = key
        return key

    def _load_file(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}

        fernet = Fernet(self._get_encryption_key())
        try:
            decrypted = fernet.decrypt(self.storage_path.read_bytes())
        except InvalidToken as e:
            raise CredentialStoreError(
                "Credentials file cannot be decrypted",
                ErrorCode.STORAGE_READ_FAILED,
                context={'path': str(self.storage_path)},
                cause=e
            )
        return json.loads(decrypted.decode())

    def _save_file(self, data: Dict[str, str]) -> None:
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        fernet = Fernet(self._get_encryption_key())
        tmp_path = self.storage_path.with_suffix('.tmp')
        tmp_path.write_bytes(fernet.encrypt(json.dumps(data).encode()))
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.storage_path)

    def describe(self) -> Dict[str, str]:
        """Where credentials live, for diagnostics."""
        if self.keyring_available:
            return {'backend': 'keyring', 'service': self.service_name}
        return {'backend': 'encrypted_file', 'path': str(self.storage_path)}
