"""
File-backed NEAR keystore.

Layout matches the JavaScript ``UnencryptedFileSystemKeyStore`` so existing
key directories can be shared:

    <key_dir>/<network_id>/<account_id>.json
    {"account_id": ..., "public_key": "ed25519:...", "private_key": "ed25519:..."}
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from near_keys import KeyPair

logger = logging.getLogger(__name__)


class FileSystemKeyStore:
    """Unencrypted keystore; one key per account per network."""

    def __init__(self, key_dir: str | Path) -> None:
        self.key_dir = Path(key_dir).expanduser()

    def _key_path(self, network_id: str, account_id: str) -> Path:
        if not account_id or "/" in account_id or account_id.startswith("."):
            raise ValueError(f"Invalid account id for keystore: {account_id!r}")
        return self.key_dir / network_id / f"{account_id}.json"

    def set_key(self, network_id: str, account_id: str, key_pair: KeyPair) -> None:
        path = self._key_path(network_id, account_id)
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        content = {
            "account_id": account_id,
            "public_key": str(key_pair.public_key),
            "private_key": key_pair.to_string(),
        }
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(content, fh)
        logger.info("Stored key for %s on %s", account_id, network_id)

    def get_key(self, network_id: str, account_id: str) -> KeyPair | None:
        path = self._key_path(network_id, account_id)
        if not path.is_file():
            return None
        content = json.loads(path.read_text(encoding="utf-8"))
        return KeyPair.from_string(content.get("private_key") or content["secret_key"])

    def remove_key(self, network_id: str, account_id: str) -> bool:
        """Delete the key file. Returns False when there was nothing to delete."""
        path = self._key_path(network_id, account_id)
        if not path.is_file():
            return False
        path.unlink()
        logger.info("Removed key for %s on %s", account_id, network_id)
        return True

    def get_accounts(self, network_id: str) -> list[str]:
        network_dir = self.key_dir / network_id
        if not network_dir.is_dir():
            return []
        return sorted(p.stem for p in network_dir.glob("*.json") if p.is_file())
