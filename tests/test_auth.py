import pytest

from relaykit.auth import (
    AuthSetting,
    AuthState,
    Permission,
    PermissionDenied,
    verify_permission,
)

LOCAL = "127.0.0.1"
OTHER = "127.0.0.2"


def _allowed(permission, pubkey, event_pubkey, ip):
    try:
        verify_permission(permission, pubkey, event_pubkey, ip)
    except PermissionDenied:
        return False
    return True


@pytest.mark.parametrize(
    "permission, pubkey, event_pubkey, ip, expected",
    [
        (Permission(ip_whitelist=frozenset({LOCAL})), None, None, LOCAL, True),
        (Permission(ip_whitelist=frozenset({LOCAL})), None, None, OTHER, False),
        (Permission(ip_blacklist=frozenset({LOCAL})), None, None, LOCAL, False),
        (Permission(ip_blacklist=frozenset({LOCAL})), None, None, OTHER, True),
        (Permission(pubkey_whitelist=frozenset({"xx"})), "xx", None, LOCAL, True),
        (Permission(pubkey_whitelist=frozenset({"xx"})), "xxxx", None, LOCAL, False),
        (Permission(pubkey_blacklist=frozenset({"xx"})), "xx", None, LOCAL, False),
        (Permission(pubkey_blacklist=frozenset({"xx"})), "xxxx", None, LOCAL, True),
        (Permission(event_pubkey_whitelist=frozenset({"xx"})), None, "xx", LOCAL, True),
        (Permission(event_pubkey_whitelist=frozenset({"xx"})), None, "xxxx", LOCAL, False),
        (Permission(event_pubkey_blacklist=frozenset({"xx"})), None, "xx", LOCAL, False),
        (Permission(event_pubkey_blacklist=frozenset({"xx"})), None, "xxxx", LOCAL, True),
    ],
)
def test_verify(permission, pubkey, event_pubkey, ip, expected):
    assert _allowed(permission, pubkey, event_pubkey, ip) is expected


@pytest.mark.parametrize(
    "permission, pubkey, event_pubkey, ip, reason",
    [
        (Permission(ip_whitelist=frozenset({LOCAL})), None, None, OTHER, "ip not in whitelist"),
        (Permission(ip_blacklist=frozenset({LOCAL})), None, None, LOCAL, "ip in blacklist"),
        (
            Permission(event_pubkey_whitelist=frozenset({"xx"})),
            None,
            "yy",
            LOCAL,
            "event author pubkey not in whitelist",
        ),
        (
            Permission(event_pubkey_blacklist=frozenset({"xx"})),
            None,
            "xx",
            LOCAL,
            "event author pubkey in blacklist",
        ),
        (Permission(pubkey_whitelist=frozenset({"xx"})), "yy", None, LOCAL, "pubkey not in whitelist"),
        (Permission(pubkey_blacklist=frozenset({"xx"})), "xx", None, LOCAL, "pubkey in blacklist"),
        (Permission(pubkey_whitelist=frozenset({"xx"})), None, None, LOCAL, "NIP-42 auth required"),
        (Permission(pubkey_blacklist=frozenset({"xx"})), None, None, LOCAL, "NIP-42 auth required"),
    ],
)
def test_verify_reasons(permission, pubkey, event_pubkey, ip, reason):
    with pytest.raises(PermissionDenied) as info:
        verify_permission(permission, pubkey, event_pubkey, ip)
    assert info.value.reason == reason
    assert str(info.value) == reason


@pytest.mark.parametrize(
    "pubkey, event_pubkey, ip",
    [(None, None, OTHER), ("xx", None, LOCAL), (None, "yy", OTHER)],
)
def test_no_permission_allows_everything(pubkey, event_pubkey, ip):
    assert verify_permission(None, pubkey, event_pubkey, ip) is None


def test_ip_checked_before_pubkey():
    permission = Permission(
        ip_whitelist=frozenset({LOCAL}), pubkey_whitelist=frozenset({"xx"})
    )
    with pytest.raises(PermissionDenied) as info:
        verify_permission(permission, None, None, OTHER)
    assert info.value.reason == "ip not in whitelist"


def test_event_pubkey_ignored_without_event():
    permission = Permission(event_pubkey_whitelist=frozenset({"xx"}))
    assert _allowed(permission, None, None, LOCAL) is True


def test_permission_from_dict():
    permission = Permission.from_dict(
        {"pubkey_whitelist": ["aa", "bb"], "ip_blacklist": [OTHER], "unknown": 1}
    )
    assert permission.pubkey_whitelist == frozenset({"aa", "bb"})
    assert permission.ip_blacklist == frozenset({OTHER})
    assert permission.ip_whitelist is None
    assert _allowed(permission, "aa", None, OTHER) is False


@pytest.mark.parametrize("bad", [{"ip_whitelist": "127.0.0.1"}, {"ip_whitelist": [1]}, ["x"]])
def test_permission_from_dict_rejects_bad_lists(bad):
    with pytest.raises(ValueError):
        Permission.from_dict(bad)


def test_auth_setting_defaults():
    setting = AuthSetting.from_dict({})
    assert setting == AuthSetting(enabled=False, req=None, event=None)


def test_auth_setting_from_dict():
    setting = AuthSetting.from_dict(
        {"enabled": True, "event": {"pubkey_whitelist": ["ab12"]}}
    )
    assert setting.enabled is True
    assert setting.req is None
    assert setting.event == Permission(pubkey_whitelist=frozenset({"ab12"}))


def test_auth_setting_rejects_non_bool_enabled():
    with pytest.raises(ValueError):
        AuthSetting.from_dict({"enabled": "yes"})


def test_auth_state_challenge():
    state = AuthState.challenge("abc")
    assert state.authed() is False
    assert state.pubkey() is None
    assert state.challenge_value == "abc"


def test_auth_state_random_challenges_differ():
    first = AuthState.challenge()
    second = AuthState.challenge()
    assert len(first.challenge_value) == 36
    assert first.challenge_value != second.challenge_value


def test_auth_state_authenticated():
    state = AuthState.authenticated("ab12")
    assert state.authed() is True
    assert state.pubkey() == "ab12"
    assert state.challenge_value is None
    assert _allowed(
        Permission(pubkey_whitelist=frozenset({"ab12"})), state.pubkey(), None, LOCAL
    ) is True