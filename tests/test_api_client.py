import http.client
import json
from io import BytesIO
from urllib.error import HTTPError, URLError

import pytest

import pvptracker.api_client as api_module
from pvptracker.api_client import BattleNetAPIClient, parse_bracket_payload, parse_summary_brackets
from pvptracker.errors import AuthError, FetchError, PayloadError


def _bracket_payload(**overrides):
    payload = {
        "character": {"name": "Bigbrainwiz", "id": 1},
        "faction": {"type": "HORDE"},
        "bracket": {"id": 7, "type": "SHUFFLE"},
        "rating": 1516,
        "season": {"id": 39},
        "season_match_statistics": {"played": 12, "won": 7, "lost": 5},
        "weekly_match_statistics": {"played": 2, "won": 1, "lost": 1},
    }
    payload.update(overrides)
    return payload


class _Response(BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def _json_response(body):
    return _Response(json.dumps(body).encode("utf-8"))


def _http_error(req, code, reason="Error"):
    return HTTPError(req.full_url, code, reason, hdrs=None, fp=BytesIO(b"{}"))


class _BrokenResponse(_Response):
    """Response whose body read fails after headers arrived."""

    def read(self, *args):
        raise http.client.IncompleteRead(b"{\"rat", 40)


TRANSPORT_FAILURES = [
    http.client.RemoteDisconnected("Remote end closed connection without response"),
    ConnectionResetError(104, "Connection reset by peer"),
    http.client.BadStatusLine(""),
    TimeoutError("timed out"),
]


@pytest.fixture
def client():
    return BattleNetAPIClient("id", "secret", region="us", rate_limit_pause_seconds=0)


# --- Payload parsing ---


def test_parse_bracket_payload():
    data = parse_bracket_payload(_bracket_payload())
    assert data.rating == 1516
    assert (data.season_played, data.season_won, data.season_lost) == (12, 7, 5)
    assert (data.weekly_played, data.weekly_won, data.weekly_lost) == (2, 1, 1)
    assert data.season_id == 39


def test_parse_bracket_payload_defaults_missing_weekly():
    payload = _bracket_payload()
    del payload["weekly_match_statistics"]
    del payload["season"]
    data = parse_bracket_payload(payload)
    assert (data.weekly_played, data.weekly_won, data.weekly_lost) == (0, 0, 0)
    assert data.season_id is None


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        _bracket_payload(rating=None),
        _bracket_payload(rating="1516"),
        _bracket_payload(rating=True),
        _bracket_payload(rating=1516.5),
        _bracket_payload(season_match_statistics=None),
        _bracket_payload(season_match_statistics={"played": 12, "won": 7}),
        _bracket_payload(weekly_match_statistics={"played": 1, "won": "x", "lost": 0}),
        _bracket_payload(weekly_match_statistics=[1, 2, 3]),
    ],
)
def test_parse_bracket_payload_rejects_bad_shapes(payload):
    with pytest.raises(PayloadError):
        parse_bracket_payload(payload)


def test_parse_summary_brackets():
    summary = {
        "brackets": [
            {"href": "https://us.api.blizzard.com/profile/wow/character/malganis/bigbrainwiz/pvp-bracket/shuffle-priest-shadow?namespace=profile-us"},
            {"href": "https://us.api.blizzard.com/profile/wow/character/malganis/bigbrainwiz/pvp-bracket/blitz-priest-shadow?namespace=profile-us"},
            {"href": "https://us.api.blizzard.com/profile/wow/character/malganis/bigbrainwiz/pvp-bracket/3v3?namespace=profile-us"},
            {"href": "https://us.api.blizzard.com/profile/wow/character/malganis/bigbrainwiz/pvp-bracket/3v3?namespace=profile-us"},
            {"nope": True},
        ]
    }
    assert parse_summary_brackets(summary) == ["shuffle-priest-shadow", "blitz-priest-shadow", "3v3"]
    assert parse_summary_brackets(None) == []
    assert parse_summary_brackets({"honor_level": 10}) == []


# --- Token ---


def test_access_token_is_cached(client, monkeypatch):
    calls = []

    def fake_urlopen(req, timeout=20):
        calls.append(req)
        return _json_response({"access_token": "abc", "token_type": "bearer", "expires_in": 86399})

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    assert client.get_access_token() == "abc"
    assert client.get_access_token() == "abc"
    assert len(calls) == 1
    assert calls[0].full_url == BattleNetAPIClient.TOKEN_URL
    assert calls[0].get_method() == "POST"
    assert calls[0].get_header("Authorization").startswith("Basic ")
    assert calls[0].data == b"grant_type=client_credentials"


def test_access_token_refreshes_when_forced(client, monkeypatch):
    tokens = iter(["first", "second"])
    monkeypatch.setattr(
        api_module,
        "urlopen",
        lambda req, timeout=20: _json_response({"access_token": next(tokens), "expires_in": 86399}),
    )
    assert client.get_access_token() == "first"
    assert client.get_access_token(force_refresh=True) == "second"


def test_access_token_rejected(client, monkeypatch):
    def fake_urlopen(req, timeout=20):
        raise _http_error(req, 401, "Unauthorized")

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    with pytest.raises(AuthError, match="401"):
        client.get_access_token()


def test_access_token_unreachable(client, monkeypatch):
    def fake_urlopen(req, timeout=20):
        raise URLError("connection refused")

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    with pytest.raises(AuthError):
        client.get_access_token()


@pytest.mark.parametrize("failure", TRANSPORT_FAILURES)
def test_access_token_connection_dropped(client, monkeypatch, failure):
    def fake_urlopen(req, timeout=20):
        raise failure

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    with pytest.raises(AuthError):
        client.get_access_token()


def test_access_token_truncated_body(client, monkeypatch):
    monkeypatch.setattr(api_module, "urlopen", lambda req, timeout=20: _BrokenResponse(b""))
    with pytest.raises(AuthError):
        client.get_access_token()


def test_access_token_missing_from_response(client, monkeypatch):
    monkeypatch.setattr(api_module, "urlopen", lambda req, timeout=20: _json_response({"error": "invalid_client"}))
    with pytest.raises(AuthError):
        client.get_access_token()


def test_access_token_requires_credentials():
    with pytest.raises(AuthError):
        BattleNetAPIClient(None, None).get_access_token()


# --- Bracket fetch ---


def test_get_pvp_bracket(client, monkeypatch):
    seen = []

    def fake_urlopen(req, timeout=20):
        seen.append(req)
        return _json_response(_bracket_payload())

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    data = client.get_pvp_bracket("tok", "Malganis", "BigBrainWiz", "shuffle-priest-shadow")

    assert data.rating == 1516
    url = seen[0].full_url
    assert url.startswith(
        "https://us.api.blizzard.com/profile/wow/character/malganis/bigbrainwiz/pvp-bracket/shuffle-priest-shadow?"
    )
    assert "namespace=profile-us" in url
    assert "locale=en_US" in url
    assert seen[0].get_header("Authorization") == "Bearer tok"


def test_get_pvp_bracket_not_found(client, monkeypatch):
    def fake_urlopen(req, timeout=20):
        raise _http_error(req, 404, "Not Found")

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    assert client.get_pvp_bracket("tok", "malganis", "bigbrainwiz", "3v3") is None


def test_get_pvp_bracket_server_error(client, monkeypatch):
    def fake_urlopen(req, timeout=20):
        raise _http_error(req, 503, "Service Unavailable")

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    with pytest.raises(FetchError) as excinfo:
        client.get_pvp_bracket("tok", "malganis", "bigbrainwiz", "3v3")
    assert excinfo.value.status == 503
    assert "3v3" in str(excinfo.value)


def test_get_pvp_bracket_network_error(client, monkeypatch):
    def fake_urlopen(req, timeout=20):
        raise URLError("timed out")

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    with pytest.raises(FetchError) as excinfo:
        client.get_pvp_bracket("tok", "malganis", "bigbrainwiz", "3v3")
    assert excinfo.value.status is None


@pytest.mark.parametrize("failure", TRANSPORT_FAILURES)
def test_get_pvp_bracket_connection_dropped(client, monkeypatch, failure):
    def fake_urlopen(req, timeout=20):
        raise failure

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    with pytest.raises(FetchError) as excinfo:
        client.get_pvp_bracket("tok", "malganis", "bigbrainwiz", "3v3")
    assert excinfo.value.status is None
    assert "3v3" in str(excinfo.value)


def test_get_pvp_bracket_truncated_body(client, monkeypatch):
    monkeypatch.setattr(api_module, "urlopen", lambda req, timeout=20: _BrokenResponse(b""))
    with pytest.raises(FetchError) as excinfo:
        client.get_pvp_bracket("tok", "malganis", "bigbrainwiz", "3v3")
    assert excinfo.value.status is None


def test_get_pvp_bracket_invalid_payload(client, monkeypatch):
    monkeypatch.setattr(api_module, "urlopen", lambda req, timeout=20: _json_response({"rating": 1500}))
    with pytest.raises(PayloadError):
        client.get_pvp_bracket("tok", "malganis", "bigbrainwiz", "3v3")


def test_rate_limit_retry(client, monkeypatch):
    calls = {"count": 0}

    def fake_urlopen(req, timeout=20):
        calls["count"] += 1
        if calls["count"] == 1:
            raise _http_error(req, 429, "Too Many Requests")
        return _json_response(_bracket_payload())

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    monkeypatch.setattr(api_module.time, "sleep", lambda *_: None)

    data = client.get_pvp_bracket("tok", "malganis", "bigbrainwiz", "3v3")
    assert data.rating == 1516
    assert calls["count"] == 2


def test_rate_limit_retry_only_once(client, monkeypatch):
    def fake_urlopen(req, timeout=20):
        raise _http_error(req, 429, "Too Many Requests")

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    monkeypatch.setattr(api_module.time, "sleep", lambda *_: None)
    with pytest.raises(FetchError) as excinfo:
        client.get_pvp_bracket("tok", "malganis", "bigbrainwiz", "3v3")
    assert excinfo.value.status == 429


def test_unauthorized_fetch_drops_cached_token(client, monkeypatch):
    responses = iter([
        _json_response({"access_token": "stale", "expires_in": 86399}),
        None,
        _json_response({"access_token": "fresh", "expires_in": 86399}),
    ])

    def fake_urlopen(req, timeout=20):
        item = next(responses)
        if item is None:
            raise _http_error(req, 401, "Unauthorized")
        return item

    monkeypatch.setattr(api_module, "urlopen", fake_urlopen)
    token = client.get_access_token()
    with pytest.raises(FetchError):
        client.get_pvp_bracket(token, "malganis", "bigbrainwiz", "3v3")
    assert client.get_access_token() == "fresh"


def test_get_active_brackets(client, monkeypatch):
    summary = {
        "brackets": [
            {"href": "https://us.api.blizzard.com/profile/wow/character/malganis/bigbrainwiz/pvp-bracket/2v2?namespace=profile-us"},
        ]
    }
    monkeypatch.setattr(client, "_get_json", lambda url, token, retry_429=True: summary)
    assert client.get_active_brackets("tok", "malganis", "bigbrainwiz") == ["2v2"]
