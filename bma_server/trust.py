"""
Trust Layer: pairing tokens and connected-device sessions.

Two independent pieces of shared state, each behind its own lock:

* the active token set (token -> absolute expiry)
* the device sessions (one per token that has authenticated)

No operation ever holds both locks at once, so there is no lock ordering to
get wrong. Token validity is re-derived on every check; an expired token is
evicted by the same critical section that notices it.
"""

import secrets
import threading
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from .models import ConnectedDevice


DEFAULT_INACTIVITY = timedelta(minutes=10)

# (user-agent substring, device name), first match wins
DEVICE_NAME_RULES: Tuple[Tuple[str, str], ...] = (
    ("Android", "Android Device"),
    ("iPhone", "iPhone"),
    ("iPad", "iPad"),
    ("Mac", "Mac"),
    ("BMA", "BMA App"),
)
UNKNOWN_DEVICE = "Unknown Device"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def truncate_token(token: str) -> str:
    """Loggable form of a token: first 8 characters only."""
    if len(token) <= 8:
        return "*" * len(token)
    return token[:8] + "..."


def parse_device_name(user_agent: str) -> str:
    """Best-effort device name from a User-Agent string."""
    if not user_agent:
        return UNKNOWN_DEVICE
    for needle, name in DEVICE_NAME_RULES:
        if needle in user_agent:
            return name
    return UNKNOWN_DEVICE


class TokenStatus(str, Enum):
    VALID = "valid"
    UNKNOWN = "unknown"
    EXPIRED = "expired"


class TrustLayer:
    """Issues, validates and revokes pairing tokens and tracks devices."""

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        inactivity: timedelta = DEFAULT_INACTIVITY,
    ) -> None:
        self._clock = clock
        self.inactivity = inactivity

        self._tokens_lock = threading.Lock()
        self._tokens: Dict[str, datetime] = {}
        self._current_token: Optional[str] = None

        self._devices_lock = threading.Lock()
        self._devices: Dict[str, ConnectedDevice] = {}  # keyed by token

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_token(self, ttl_minutes: int) -> str:
        """Create a new token valid for ``ttl_minutes``; earlier tokens stay valid."""
        token, _ = self.issue_token_with_expiry(ttl_minutes)
        return token

    def issue_token_with_expiry(self, ttl_minutes: int) -> Tuple[str, datetime]:
        """Like ``issue_token`` but also return the expiry the token was stored with."""
        token = secrets.token_urlsafe(32)
        expires_at = self._clock() + timedelta(minutes=ttl_minutes)

        with self._tokens_lock:
            self._tokens[token] = expires_at
            self._current_token = token
            purged = self._purge_expired_locked()

        if purged:
            logger.debug(f"Purged {purged} expired pairing token(s)")
        logger.info(
            f"Issued pairing token {truncate_token(token)} "
            f"(expires in {ttl_minutes} minutes)"
        )
        return token, expires_at

    def validate(self, token: str) -> TokenStatus:
        """Classify ``token``, evicting it if it has expired."""
        with self._tokens_lock:
            expires_at = self._tokens.get(token)
            if expires_at is None:
                return TokenStatus.UNKNOWN
            if self._clock() >= expires_at:
                self._drop_locked(token)
                return TokenStatus.EXPIRED
            return TokenStatus.VALID

    def is_valid(self, token: str) -> bool:
        return self.validate(token) is TokenStatus.VALID

    def revoke(self, token: str) -> None:
        with self._tokens_lock:
            self._drop_locked(token)
        logger.info(f"Revoked pairing token {truncate_token(token)}")

    def revoke_all(self) -> None:
        with self._tokens_lock:
            self._tokens.clear()
            self._current_token = None
        logger.info("All pairing tokens revoked")

    @property
    def current_token(self) -> Optional[str]:
        """The most recently issued token, while it is still active."""
        with self._tokens_lock:
            return self._current_token

    def expires_at(self, token: str) -> Optional[datetime]:
        with self._tokens_lock:
            return self._tokens.get(token)

    def active_tokens(self) -> Dict[str, datetime]:
        """Copy of the token set (may include tokens not yet lazily evicted)."""
        with self._tokens_lock:
            return dict(self._tokens)

    def _drop_locked(self, token: str) -> None:
        self._tokens.pop(token, None)
        if self._current_token == token:
            self._current_token = None

    def _purge_expired_locked(self) -> int:
        now = self._clock()
        expired = [t for t, expires_at in self._tokens.items() if now >= expires_at]
        for token in expired:
            self._drop_locked(token)
        return len(expired)

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def track_authenticated(self, token: str, ip_address: str, user_agent: str) -> ConnectedDevice:
        """Record a successful authentication for ``token``."""
        now = self._clock()
        with self._devices_lock:
            device = self._devices.get(token)
            if device is not None:
                device.last_seen_at = now
                device.ip_address = ip_address
                device.user_agent = user_agent
                logger.debug(f"Device activity: {device.device_name} ({ip_address})")
                return device.model_copy()

            device = ConnectedDevice(
                id=str(uuid.uuid4()),
                token=token,
                device_name=parse_device_name(user_agent),
                ip_address=ip_address,
                user_agent=user_agent,
                connected_at=now,
                last_seen_at=now,
            )
            self._devices[token] = device
            reaped = self._reap_locked(now)

        logger.info(f"New device connected: {device.device_name} ({ip_address})")
        if reaped:
            logger.info(f"Cleaned up {reaped} inactive device(s)")
        return device.model_copy()

    def disconnect(self, token: str) -> bool:
        """Forget the device holding ``token`` and revoke the token."""
        with self._devices_lock:
            device = self._devices.pop(token, None)

        self.revoke(token)

        if device is None:
            logger.info(f"Disconnect for unknown device (token {truncate_token(token)})")
            return False
        logger.info(f"Device disconnected: {device.device_name} ({device.ip_address})")
        return True

    def list_devices(self) -> List[ConnectedDevice]:
        with self._devices_lock:
            return [device.model_copy() for device in self._devices.values()]

    def reap_inactive_devices(self) -> int:
        """Remove devices not seen within the inactivity window."""
        now = self._clock()
        with self._devices_lock:
            reaped = self._reap_locked(now)
        if reaped:
            logger.info(f"Cleaned up {reaped} inactive device(s)")
        return reaped

    def clear_devices(self) -> None:
        with self._devices_lock:
            self._devices.clear()
        logger.info("All devices disconnected")

    def reset(self) -> None:
        """Drop every device session and every token."""
        self.clear_devices()
        self.revoke_all()

    def _reap_locked(self, now: datetime) -> int:
        cutoff = now - self.inactivity
        stale = [t for t, d in self._devices.items() if d.last_seen_at < cutoff]
        for token in stale:
            del self._devices[token]
        return len(stale)
