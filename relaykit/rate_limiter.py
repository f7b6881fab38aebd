"""Per-IP rate limiting of incoming events.

Each :class:`EventQuota` allows ``limit`` events per ``period`` from one IP,
optionally only for some event kinds. Limiting uses the generic cell rate
algorithm (GCRA), so a full burst of ``limit`` events is allowed at once and
capacity then refills evenly over the period.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence, Union

U64_MAX = 2**64 - 1
U32_MAX = 2**32 - 1
NANOS_PER_SECOND = 1_000_000_000
DEFAULT_CLEAR_INTERVAL = 60.0

Clock = Callable[[], int]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_u64(value: Any, what: str) -> int:
    if not _is_int(value) or not 0 <= value <= U64_MAX:
        raise ValueError(f"{what}: expected an unsigned integer, got {value!r}")
    return value


def _parse_duration(value: Any, what: str) -> float:
    """A positive number of seconds."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{what}: expected a number of seconds, got {value!r}")
    if value <= 0:
        raise ValueError(f"{what}: duration must be non zero")
    return float(value)


def _to_nanos(seconds: float) -> int:
    return int(round(seconds * NANOS_PER_SECOND))


@dataclass(frozen=True)
class KindRange:
    """Kinds from ``start`` (included) to ``end`` (excluded)."""

    start: int
    end: int

    def contains(self, value: int) -> bool:
        return self.start <= value < self.end

    def __contains__(self, value: int) -> bool:
        return self.contains(value)

    @classmethod
    def parse(cls, data: Any) -> "KindRange":
        """Parse a single kind ``n`` or a ``[start, end]`` pair."""
        if _is_int(data):
            value = _parse_u64(data, "kind")
            return cls(value, value + 1)
        if isinstance(data, (list, tuple)):
            if len(data) != 2:
                raise ValueError(f"kind range: expected two bounds, got {len(data)}")
            lower = _parse_u64(data[0], "kind range start")
            upper = _parse_u64(data[1], "kind range end")
            return cls(lower, upper)
        raise ValueError(f"kind range: expected an integer or a sequence, got {data!r}")


def parse_ranges(data: Any) -> list[KindRange]:
    """Parse a list such as ``[1, 2, [30000, 40000]]``."""
    if isinstance(data, (str, bytes)) or not isinstance(data, (list, tuple)):
        raise ValueError("kinds: expected a list")
    return [KindRange.parse(item) for item in data]


def _parse_str_list(value: Any, what: str) -> Optional[tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
        raise ValueError(f"{what}: expected a list of strings")
    if not all(isinstance(entry, str) for entry in value):
        raise ValueError(f"{what}: expected a list of strings")
    return tuple(value)


@dataclass(frozen=True)
class EventQuota:
    """A limit of ``limit`` events per ``period`` seconds for each IP.

    ``name`` labels the quota; ``description`` is told to a limited client.
    """

    period: float
    limit: int
    name: str = ""
    description: str = ""
    kinds: Optional[tuple[KindRange, ...]] = None
    ip_whitelist: Optional[tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.period <= 0:
            raise ValueError("period: duration must be non zero")
        if not _is_int(self.limit) or not 0 < self.limit <= U32_MAX:
            raise ValueError("limit: expected a non zero 32-bit unsigned integer")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EventQuota":
        if not isinstance(data, Mapping):
            raise ValueError("event quota: expected a mapping")
        for required in ("period", "limit"):
            if required not in data:
                raise ValueError(f"event quota: missing field `{required}`")
        name = data.get("name", "")
        description = data.get("description", "")
        if not isinstance(name, str) or not isinstance(description, str):
            raise ValueError("event quota: name and description must be strings")
        kinds = data.get("kinds")
        return cls(
            period=_parse_duration(data["period"], "period"),
            limit=data["limit"],
            name=name,
            description=description,
            kinds=None if kinds is None else tuple(parse_ranges(kinds)),
            ip_whitelist=_parse_str_list(data.get("ip_whitelist"), "ip_whitelist"),
        )

    def hit(self, kind: int, ip: str) -> bool:
        """Whether an event of ``kind`` from ``ip`` counts against this quota."""
        if self.ip_whitelist is not None and ip in self.ip_whitelist:
            return False
        if self.kinds is not None:
            return any(kind in kind_range for kind_range in self.kinds)
        return True

    @property
    def emission_interval(self) -> int:
        """Nanoseconds needed to regain one unit of capacity."""
        return _to_nanos(self.period) // self.limit

    def limiter(self, clock: Optional[Clock] = None) -> "KeyedRateLimiter":
        return KeyedRateLimiter(self.emission_interval, self.limit, clock)


class KeyedRateLimiter:
    """GCRA rate limiter keeping one state per key.

    ``interval`` is in nanoseconds; ``clock`` returns monotonic nanoseconds.
    """

    def __init__(self, interval: int, burst: int, clock: Optional[Clock] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        if burst <= 0:
            raise ValueError("burst must be positive")
        self.interval = interval
        self.burst = burst
        self._tolerance = interval * burst
        self._clock = clock or time.monotonic_ns
        self._tats: dict[str, int] = {}
        self._lock = threading.Lock()

    def check_key(self, key: str) -> bool:
        """Take one unit for ``key``; return False if it is over its limit."""
        now = self._clock()
        with self._lock:
            tat = max(self._tats.get(key, now), now)
            new_tat = tat + self.interval
            if new_tat - now > self._tolerance:
                return False
            self._tats[key] = new_tat
            return True

    def retain_recent(self) -> None:
        """Forget keys whose state has fully recovered."""
        now = self._clock()
        with self._lock:
            self._tats = {key: tat for key, tat in self._tats.items() if tat > now}

    def __len__(self) -> int:
        return len(self._tats)


@dataclass(frozen=True)
class RatelimiterSetting:
    """Settings of the rate limiter; ``event`` quotas guard ``EVENT`` messages.

    ``clear_interval`` is how often, in seconds, idle state is dropped.
    """

    enabled: bool = False
    event: tuple[EventQuota, ...] = ()
    clear_interval: float = DEFAULT_CLEAR_INTERVAL

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "RatelimiterSetting":
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError("rate_limiter: expected a mapping")
        enabled = data.get("enabled", False)
        if not isinstance(enabled, bool):
            raise ValueError("enabled: expected a boolean")
        events = data.get("event", [])
        if isinstance(events, (str, bytes)) or not isinstance(events, (list, tuple)):
            raise ValueError("event: expected a list")
        return cls(
            enabled=enabled,
            event=tuple(EventQuota.from_dict(item) for item in events),
            clear_interval=_parse_duration(
                data.get("clear_interval", DEFAULT_CLEAR_INTERVAL), "clear_interval"
            ),
        )


@dataclass
class Ratelimiter:
    """Applies the configured event quotas to incoming events."""

    clock: Clock = field(default=time.monotonic_ns)
    setting: RatelimiterSetting = field(default_factory=RatelimiterSetting)
    event_limiters: list[KeyedRateLimiter] = field(default_factory=list)
    clear_time: int = field(init=False)

    def __post_init__(self) -> None:
        self.clear_time = self.clock()
        self._lock = threading.Lock()

    name = "rate_limiter"

    def configure(
        self, setting: Union[RatelimiterSetting, Mapping[str, Any], None]
    ) -> None:
        """Install ``setting`` (or its mapping form) and build fresh limiters."""
        if not isinstance(setting, RatelimiterSetting):
            setting = RatelimiterSetting.from_dict(setting)
        self.setting = setting
        self.event_limiters = [quota.limiter(self.clock) for quota in setting.event]

    def clear(self) -> None:
        """Drop recovered per-IP state once ``clear_interval`` has passed."""
        now = self.clock()
        with self._lock:
            if now - self.clear_time <= _to_nanos(self.setting.clear_interval):
                return
            self.clear_time = now
        for limiter in self.event_limiters:
            limiter.retain_recent()

    def check_event(self, kind: int, ip: str) -> Optional[EventQuota]:
        """Return the quota an event of ``kind`` from ``ip`` exceeds, or None."""
        if not self.setting.enabled:
            return None
        self.clear()
        for quota, limiter in zip(self.setting.event, self.event_limiters):
            if quota.hit(kind, ip) and not limiter.check_key(ip):
                return quota
        return None