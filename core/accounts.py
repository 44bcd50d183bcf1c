"""Platform account store.  In-memory only.

Credentials are base64-obfuscated JSON so they do not show up verbatim in
reprs or debug dumps.  This is NOT encryption.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _obfuscate(credentials: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(credentials).encode()).decode()


def _deobfuscate(blob: str) -> dict[str, Any]:
    return json.loads(base64.b64decode(blob))


@dataclass
class _Account:
    credentials: str = field(repr=False)
    status: str = "active"
    added_at: datetime = field(default_factory=_now)
    last_used: datetime | None = None
    last_health_check: datetime | None = None
    last_rotation: datetime | None = None
    disabled_reason: str = ""


class AccountManager:
    def __init__(self) -> None:
        self._accounts: dict[str, _Account] = {}
        self._lock = threading.Lock()

    def add_account(self, platform: str, credentials: dict[str, Any]) -> None:
        with self._lock:
            self._accounts[platform] = _Account(credentials=_obfuscate(credentials))
        logger.debug("account added: platform=%s", platform)

    def get_account(self, platform: str) -> dict[str, Any] | None:
        """Return credentials for an active account, or None."""
        with self._lock:
            account = self._accounts.get(platform)
            if account is None:
                logger.debug("account not found: platform=%s", platform)
                return None
            if account.status != "active":
                logger.debug("account not active: platform=%s status=%s", platform, account.status)
                return None
            account.last_used = _now()
            return _deobfuscate(account.credentials)

    def rotate_credentials(self, platform: str, credentials: dict[str, Any]) -> None:
        with self._lock:
            account = self._accounts.get(platform)
            if account is None:
                raise KeyError(f"Account not found for platform: {platform}")
            account.credentials = _obfuscate(credentials)
            account.last_rotation = _now()
        logger.debug("credentials rotated: platform=%s", platform)

    def check_account_health(self, platform: str) -> dict[str, Any]:
        with self._lock:
            account = self._accounts.get(platform)
            if account is None:
                return {"platform": platform, "healthy": False, "reason": "Account not found"}
            now = _now()
            days_since_last_use = (
                (now - account.last_used).total_seconds() / 86400 if account.last_used else 0.0
            )
            account.last_health_check = now
            healthy = account.status == "active"
        logger.debug("health check: platform=%s healthy=%s", platform, healthy)
        return {
            "platform": platform,
            "healthy": healthy,
            "status": account.status,
            "days_since_last_use": days_since_last_use,
            "last_health_check": account.last_health_check,
        }

    def list_accounts(self) -> list[dict[str, Any]]:
        """Account metadata without credentials."""
        with self._lock:
            return [
                {
                    "platform": platform,
                    "status": a.status,
                    "added_at": a.added_at,
                    "last_used": a.last_used,
                    "last_health_check": a.last_health_check,
                }
                for platform, a in self._accounts.items()
            ]

    def remove_account(self, platform: str) -> bool:
        with self._lock:
            removed = self._accounts.pop(platform, None) is not None
        if removed:
            logger.debug("account removed: platform=%s", platform)
        return removed

    def disable_account(self, platform: str, reason: str = "") -> None:
        with self._lock:
            account = self._accounts.get(platform)
            if account is None:
                return
            account.status = "disabled"
            account.disabled_reason = reason
        logger.info("account disabled: platform=%s reason=%s", platform, reason)

    def enable_account(self, platform: str) -> None:
        with self._lock:
            account = self._accounts.get(platform)
            if account is None:
                return
            account.status = "active"
            account.disabled_reason = ""
        logger.info("account enabled: platform=%s", platform)
