"""
Credential store: a small JSON file keyed by provider name.

Each entry is a tagged record::

    {"github-copilot": {"type": "oauth", "refresh": "...", "access": "...", "expires": 0},
     "other":          {"type": "api", "key": "..."}}

File hardening:
- A missing parent directory is created with mode 0o700 (owner-only).
- The file itself is rewritten with mode 0o600 on every change.
- A missing, unreadable or corrupt file reads as an empty store.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


@dataclass
class OAuthCredential:
    """
    A GitHub OAuth token plus the short-lived service token derived from it.

    ``expires`` is an epoch timestamp in milliseconds; ``0`` means the
    access token has never been fetched.
    """

    refresh: str
    access: str = ""
    expires: int = 0
    type: str = "oauth"

    def access_valid(self, now_ms: int | None = None) -> bool:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return bool(self.access) and self.expires > now_ms


@dataclass
class ApiCredential:
    key: str
    type: str = "api"


Credential = Union[OAuthCredential, ApiCredential]


def credential_from_dict(data: dict) -> Credential | None:
    kind = data.get("type")
    if kind == "oauth":
        try:
            expires = int(data.get("expires") or 0)
        except (TypeError, ValueError):
            logger.warning("Ignoring oauth credential with bad expiry: %r", data.get("expires"))
            return None
        return OAuthCredential(
            refresh=str(data.get("refresh") or ""),
            access=str(data.get("access") or ""),
            expires=expires,
        )
    if kind == "api":
        return ApiCredential(key=str(data.get("key") or ""))
    logger.warning("Ignoring credential of unknown type: %r", kind)
    return None


class CredentialStore:
    """
    Get, set and remove credential records by provider key.

    Parameters
    ----------
    path:
        Location of the JSON file.  Created on first write.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def all(self) -> dict[str, dict]:
        """Return the raw records, keyed by provider."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Cannot read credential file %s: %s", self.path, exc)
            return {}

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Credential file %s is corrupt; treating as empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Credential | None:
        raw = self.all().get(key)
        if not isinstance(raw, dict):
            return None
        return credential_from_dict(raw)

    def set(self, key: str, credential: Credential) -> None:
        data = self.all()
        data[key] = asdict(credential)
        self._write(data)

    def remove(self, key: str) -> bool:
        """Delete *key*.  Returns ``True`` if an entry was removed."""
        data = self.all()
        if key not in data:
            return False
        del data[key]
        self._write(data)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write(self, data: dict) -> None:
        if not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, mode=0o700)

        # Write to a sibling temp file first so a crash never truncates the store.
        tmp = self.path.with_name(self.path.name + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)
        os.chmod(self.path, 0o600)
