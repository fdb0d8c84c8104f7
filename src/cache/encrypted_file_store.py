# src/cache/encrypted_file_store.py — v1
"""Fernet-encrypted file store (SECURE_STORE_BACKEND=encrypted_file).

For hosts without a usable keychain. One ``.enc`` file per key under the
store root; the Fernet key lives in an owner-only key file that is created on
first use.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from quotabar.cache.base_cache_store import BaseSecureStore, SecureStoreError
from quotabar.cache.models import CacheKey

logger = logging.getLogger(__name__)


def load_or_create_key(key_file: Path) -> bytes:
    """Return the Fernet key stored in ``key_file``, generating it if absent."""
    key_file = Path(key_file).expanduser()
    if key_file.exists():
        key = key_file.read_bytes().strip()
        if key:
            return key
        logger.warning("Encryption key file %s is empty, regenerating", key_file)

    key_file.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    key = Fernet.generate_key()
    fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(key)
    logger.info("Generated new secure store key at %s", key_file)
    return key


class EncryptedFileSecureStore(BaseSecureStore):
    """Secure store writing one Fernet token per key.

    Args:
        root: Directory holding the encrypted entries.
        key: Fernet key (urlsafe base64, 32 bytes decoded).
    """

    def __init__(self, root: Path, key: bytes) -> None:
        super().__init__()
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True, mode=0o700)
        self._fernet = Fernet(key)

    @classmethod
    def from_key_file(cls, root: Path, key_file: Path) -> EncryptedFileSecureStore:
        return cls(root, load_or_create_key(key_file))

    async def _read(self, key: CacheKey) -> bytes | None:
        path = self._entry_path(key)
        if not path.exists():
            return None
        try:
            token = path.read_bytes()
        except OSError as exc:
            raise SecureStoreError(f"Cannot read {path.name}: {exc.strerror}") from exc
        try:
            return self._fernet.decrypt(token)
        except InvalidToken as exc:
            raise SecureStoreError(f"Cannot decrypt {path.name}") from exc

    async def _write(self, key: CacheKey, data: bytes) -> None:
        path = self._entry_path(key)
        token = self._fernet.encrypt(data)
        fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=".tmp-", suffix=".enc")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(token)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise SecureStoreError(f"Cannot write {path.name}: {exc.strerror}") from exc

    async def _delete(self, key: CacheKey) -> None:
        self._entry_path(key).unlink(missing_ok=True)

    def _entry_path(self, key: CacheKey) -> Path:
        """Hashed file name; identifiers never reach the filesystem."""
        digest = hashlib.sha256(key.account.encode("utf-8")).hexdigest()[:32]
        return self._root / f"{key.category}-{digest}.enc"
