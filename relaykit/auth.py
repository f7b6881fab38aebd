"""Access rules for relay clients, with NIP-42 authentication state.

A :class:`Permission` restricts a command by client IP, by the pubkey the
client authenticated with, and, for events, by the event author's pubkey.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

AUTH_KIND = 22242


class PermissionDenied(Exception):
    """Raised when a client is not allowed to perform a command."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _parse_list(data: Mapping[str, Any], name: str) -> Optional[frozenset[str]]:
    value = data.get(name)
    if value is None:
        return None
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
        raise ValueError(f"{name}: expected a list of strings")
    if not all(isinstance(entry, str) for entry in value):
        raise ValueError(f"{name}: expected a list of strings")
    return frozenset(value)


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{what}: expected a mapping")
    return data


@dataclass(frozen=True)
class Permission:
    """Allow and deny lists; a list left as ``None`` places no restriction."""

    ip_whitelist: Optional[frozenset[str]] = None
    pubkey_whitelist: Optional[frozenset[str]] = None
    ip_blacklist: Optional[frozenset[str]] = None
    pubkey_blacklist: Optional[frozenset[str]] = None
    event_pubkey_whitelist: Optional[frozenset[str]] = None
    event_pubkey_blacklist: Optional[frozenset[str]] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Permission":
        data = _require_mapping(data, "permission")
        return cls(
            ip_whitelist=_parse_list(data, "ip_whitelist"),
            pubkey_whitelist=_parse_list(data, "pubkey_whitelist"),
            ip_blacklist=_parse_list(data, "ip_blacklist"),
            pubkey_blacklist=_parse_list(data, "pubkey_blacklist"),
            event_pubkey_whitelist=_parse_list(data, "event_pubkey_whitelist"),
            event_pubkey_blacklist=_parse_list(data, "event_pubkey_blacklist"),
        )


@dataclass(frozen=True)
class AuthSetting:
    """Settings of the auth extension.

    ``req`` guards reads (``REQ``); ``event`` guards writes (``EVENT``).
    """

    enabled: bool = False
    req: Optional[Permission] = None
    event: Optional[Permission] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AuthSetting":
        data = _require_mapping(data, "auth")
        enabled = data.get("enabled", False)
        if not isinstance(enabled, bool):
            raise ValueError("enabled: expected a boolean")
        req = data.get("req")
        event = data.get("event")
        return cls(
            enabled=enabled,
            req=None if req is None else Permission.from_dict(req),
            event=None if event is None else Permission.from_dict(event),
        )


class _StateKind(enum.Enum):
    CHALLENGE = "challenge"
    PUBKEY = "pubkey"


@dataclass(frozen=True)
class AuthState:
    """A session's auth state: a pending challenge or an authenticated pubkey."""

    kind: _StateKind
    value: str = field(default="")

    @classmethod
    def challenge(cls, value: Optional[str] = None) -> "AuthState":
        """A pending challenge; a random one is made when ``value`` is omitted."""
        return cls(_StateKind.CHALLENGE, str(uuid.uuid4()) if value is None else value)

    @classmethod
    def authenticated(cls, pubkey: str) -> "AuthState":
        return cls(_StateKind.PUBKEY, pubkey)

    def authed(self) -> bool:
        return self.kind is _StateKind.PUBKEY

    def pubkey(self) -> Optional[str]:
        return self.value if self.authed() else None

    @property
    def challenge_value(self) -> Optional[str]:
        return self.value if self.kind is _StateKind.CHALLENGE else None


def verify_permission(
    permission: Optional[Permission],
    pubkey: Optional[str],
    event_pubkey: Optional[str],
    ip: str,
) -> None:
    """Raise :class:`PermissionDenied` if ``permission`` forbids the request."""
    if permission is None:
        return
    if permission.ip_whitelist is not None and ip not in permission.ip_whitelist:
        raise PermissionDenied("ip not in whitelist")
    if permission.ip_blacklist is not None and ip in permission.ip_blacklist:
        raise PermissionDenied("ip in blacklist")

    if event_pubkey is not None:
        allowed = permission.event_pubkey_whitelist
        if allowed is not None and event_pubkey not in allowed:
            raise PermissionDenied("event author pubkey not in whitelist")
        denied = permission.event_pubkey_blacklist
        if denied is not None and event_pubkey in denied:
            raise PermissionDenied("event author pubkey in blacklist")

    if permission.pubkey_whitelist is not None:
        if pubkey is None:
            raise PermissionDenied("NIP-42 auth required")
        if pubkey not in permission.pubkey_whitelist:
            raise PermissionDenied("pubkey not in whitelist")
    if permission.pubkey_blacklist is not None:
        if pubkey is None:
            raise PermissionDenied("NIP-42 auth required")
        if pubkey in permission.pubkey_blacklist:
            raise PermissionDenied("pubkey in blacklist")