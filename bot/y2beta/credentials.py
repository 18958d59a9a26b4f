"""File-backed store for the WhatsApp session credentials.

The bundle is opaque to the bot: whatever the bridge emits in a ``creds``
frame is written to ``<auth_dir>/creds.json`` as-is and handed back on the
next start.
"""

import json
import logging
from pathlib import Path
from typing import Any

from y2beta.errors import CredentialStoreError

logger = logging.getLogger(__name__)

CREDS_FILENAME = "creds.json"


class CredentialStore:
    """Persist and load the credential bundle under a fixed directory."""

    def __init__(self, auth_dir: Path):
        self.auth_dir = auth_dir

    @property
    def path(self) -> Path:
        return self.auth_dir / CREDS_FILENAME

    def load(self) -> dict[str, Any] | None:
        """Read the stored bundle.

        Returns None if nothing has been stored yet. Raises
        CredentialStoreError if the file exists but is unreadable.
        """
        if not self.path.exists():
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            raise CredentialStoreError(f"Failed to read {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise CredentialStoreError(f"{self.path} does not hold a JSON object")
        return data

    def save(self, snapshot: dict[str, Any]) -> None:
        """Write the bundle atomically (temp file, then rename)."""
        tmp = self.path.with_suffix(".tmp")
        try:
            self.auth_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(snapshot, ensure_ascii=False), encoding="utf-8")
            tmp.chmod(0o600)
            tmp.replace(self.path)
        except OSError as e:
            raise CredentialStoreError(f"Failed to write {self.path}: {e}") from e
        logger.debug("Saved credentials to %s", self.path)

    def clear(self) -> None:
        """Forget the stored bundle so the next start pairs again."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.info("Removed stored credentials at %s", self.path)
