"""
Namespace secret storage.

Persists the registered namespaces and their connection strings in a
Fernet-encrypted JSON file so they survive restarts. A namespace stored
with a ``None`` secret uses the federated credential.

Author: SBExplorer Contributors
Date: 2026-01-16
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from sbexplorer.auth.exceptions import AuthError

logger = logging.getLogger(__name__)


class SecretStore:
    """
    Encrypted namespace → connection string map on disk.

    The key is read from ``key_path`` and generated there (mode 0600) on
    first write.
    """

    def __init__(self, path: Path, key_path: Path):
        self._path = Path(path)
        self._key_path = Path(key_path)
        self._fernet: Optional[Fernet] = None

    def load(self) -> Dict[str, Optional[str]]:
        """
        Read all stored namespaces.

        Returns:
            Mapping of canonical namespace to connection string (or None)

        Raises:
            AuthError: If the file exists but cannot be decrypted
        """
        if not self._path.exists():
            return {}
        try:
            decrypted = self._get_fernet().decrypt(self._path.read_bytes())
        except InvalidToken as e:
            raise AuthError(f"Secret store {self._path} cannot be decrypted with {self._key_path}") from e
        data = json.loads(decrypted.decode("utf-8"))
        return dict(data.get("namespaces", {}))

    def get(self, namespace: str) -> Optional[str]:
        return self.load().get(namespace)

    def contains(self, namespace: str) -> bool:
        return namespace in self.load()

    def set(self, namespace: str, connection_string: Optional[str]) -> None:
        """Store (or replace) a namespace entry."""
        entries = self.load()
        entries[namespace] = connection_string
        self._save(entries)

    def delete(self, namespace: str) -> bool:
        """Erase a namespace entry. Returns whether it existed."""
        entries = self.load()
        if namespace not in entries:
            return False
        del entries[namespace]
        self._save(entries)
        return True

    def _save(self, entries: Dict[str, Optional[str]]) -> None:
        payload = json.dumps({"namespaces": entries}, sort_keys=True).encode("utf-8")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_bytes(self._get_fernet().encrypt(payload))
        os.replace(tmp_path, self._path)
        logger.debug(f"Saved {len(entries)} namespace entries to {self._path}")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        key = Fernet.generate_key()
        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self._key_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        logger.info(f"Generated secret store key at {self._key_path}")
        return key
