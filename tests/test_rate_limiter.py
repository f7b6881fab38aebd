import pytest

from relaykit.rate_limiter import (
    EventQuota,
    KeyedRateLimiter,
    KindRange,
    Ratelimiter,
    RatelimiterSetting,
    parse_ranges,
)

MS = 1_000_000


class FakeClock:
    def __init__(self):
        self.now = 0

    def __call__(self):
        return self.now

    def advance_ms(self, ms):
        self.now += ms * MS


def test_quota_per_second_matches_burst_and_refill():
    clock = FakeClock()
    quota = EventQuota(period=1, limit=10)
    assert quota.emission_interval == 100 * MS
    limiter = quota.limiter(clock)
    results = [limiter.check_key("ip") for _ in range(11)]
    assert results == [True] * 10 + [False]
    clock.advance_ms(100)
    assert limiter.check_key("ip") is True
    assert limiter.check_key("ip") is False


def test_range():
    ranges = parse_ranges([1, 2, [30000, 40000]])
    assert len(ranges) == 3
    assert ranges[0].contains(1)
    assert not ranges[0].contains(0)
    assert not ranges[0].contains(2)
    assert ranges[2].contains(30000)
    assert ranges[2].contains(30001)
    assert ranges[2].contains(39999)
    assert not ranges[2].contains(40000)
    assert ranges == [KindRange(1, 2), KindRange(2, 3), KindRange(30000, 40000)]


@pytest.mark.parametrize("data", [["1", 2, [30000, 40000]], [[1]], [[1, 2, 3]], [-1], [True]])
def test_range_invalid(data):
    with pytest.raises(ValueError):
        parse_ranges(data)


def test_hit():
    ip = "127.0.0.1"
    q = EventQuota(name="test", period=1, limit=1)
    assert q.hit(1, ip)

    q = EventQuota(
        name="test",
        period=1,
        limit=1,
        kinds=(KindRange(1, 100), KindRange(200, 300)),
        ip_whitelist=(ip,),
    )
    assert not q.hit(1, ip)
    assert q.hit(1, "127")
    assert not q.hit(101, "127")


def test_event_quota_from_dict():
    q = EventQuota.from_dict(
        {"period": 2, "limit": 3, "name": "n", "kinds": [5, [10, 20]]}
    )
    assert q.period == 2.0
    assert q.limit == 3
    assert q.name == "n"
    assert q.description == ""
    assert q.kinds == (KindRange(5, 6), KindRange(10, 20))
    assert q.ip_whitelist is None


@pytest.mark.parametrize(
    "data",
    [{"limit": 1}, {"period": 1}, {"period": 0, "limit": 1}, {"period": 1, "limit": 0}],
)
def test_event_quota_invalid(data):
    with pytest.raises(ValueError):
        EventQuota.from_dict(data)


def test_setting_defaults():
    setting = RatelimiterSetting.from_dict({})
    assert setting.enabled is False
    assert setting.event == ()
    assert setting.clear_interval == 60.0


def test_check():
    clock = FakeClock()
    limiter = Ratelimiter(clock=clock)
    limiter.configure(
        {"enabled": True, "event": [{"period": 1, "limit": 3}]}
    )
    assert limiter.setting.enabled
    assert len(limiter.event_limiters) == 1
    lim = limiter.event_limiters[0]
    ip = "127.0.0.1"
    assert lim.check_key(ip)
    assert lim.check_key(ip)
    assert lim.check_key(ip)
    assert not lim.check_key(ip)
    clock.advance_ms(100)
    assert not lim.check_key(ip)
    clock.advance_ms(1100)
    assert lim.check_key(ip)


def test_check_event_with_kinds():
    clock = FakeClock()
    limiter = Ratelimiter(clock=clock)
    limiter.configure(
        {
            "enabled": True,
            "event": [
                {"period": 1, "limit": 2, "kinds": [1, 2, [100, 200]], "description": "slow"}
            ],
        }
    )
    ip = "127.0.0.1"
    assert limiter.check_event(1, ip) is None
    assert limiter.check_event(1, ip) is None
    exceeded = limiter.check_event(1, ip)
    assert exceeded is not None and exceeded.description == "slow"
    assert [limiter.check_event(3, ip) for _ in range(5)] == [None] * 5
    assert limiter.check_event(1, "10.0.0.1") is None


def test_disabled_never_limits():
    limiter = Ratelimiter(clock=FakeClock())
    limiter.configure({"enabled": False, "event": [{"period": 1, "limit": 1}]})
    assert [limiter.check_event(1, "ip") for _ in range(5)] == [None] * 5


def test_clear_drops_recovered_state():
    clock = FakeClock()
    limiter = Ratelimiter(clock=clock)
    limiter.configure(
        {"enabled": True, "clear_interval": 1, "event": [{"period": 1, "limit": 1}]}
    )
    assert limiter.check_event(1, "a") is None
    assert len(limiter.event_limiters[0]) == 1
    clock.advance_ms(500)
    limiter.clear()
    assert len(limiter.event_limiters[0]) == 1
    clock.advance_ms(1000)
    limiter.clear()
    assert len(limiter.event_limiters[0]) == 0
    assert limiter.clear_time == clock.now


def test_keyed_limiter_invalid():
    with pytest.raises(ValueError):
        KeyedRateLimiter(0, 1)
    with pytest.raises(ValueError):
        KeyedRateLimiter(1, 0)