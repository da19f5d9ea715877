# pvptracker/api_client.py

from __future__ import annotations

import base64
import http.client
import json
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode, urlparse
from urllib.request import Request, urlopen

from pvptracker.errors import AuthError, FetchError, PayloadError
from pvptracker.models import SnapshotData

logger = logging.getLogger(__name__)


def _require_int(node: Dict[str, Any], key: str, where: str) -> int:
    value = node.get(key)
    # bool is an int subclass; a flag is never a counter.
    if isinstance(value, bool) or not isinstance(value, int):
        raise PayloadError(f"{where}.{key} must be an integer, got {value!r}")
    return value


def parse_bracket_payload(payload: Any) -> SnapshotData:
    """
    Validate a pvp-bracket response and convert it to SnapshotData.

    `rating` and `season_match_statistics.{played,won,lost}` are required.
    Weekly statistics default to zero when the section is missing.
    """
    if not isinstance(payload, dict):
        raise PayloadError(f"Bracket payload must be an object, got {type(payload).__name__}")

    season = payload.get("season_match_statistics")
    if not isinstance(season, dict):
        raise PayloadError("Bracket payload is missing season_match_statistics")

    weekly = payload.get("weekly_match_statistics")
    if weekly is None:
        weekly = {"played": 0, "won": 0, "lost": 0}
    elif not isinstance(weekly, dict):
        raise PayloadError("weekly_match_statistics must be an object")

    season_ref = payload.get("season")
    season_id = None
    if isinstance(season_ref, dict):
        raw_id = season_ref.get("id")
        if isinstance(raw_id, int) and not isinstance(raw_id, bool):
            season_id = raw_id

    return SnapshotData(
        rating=_require_int(payload, "rating", "bracket"),
        season_played=_require_int(season, "played", "season_match_statistics"),
        season_won=_require_int(season, "won", "season_match_statistics"),
        season_lost=_require_int(season, "lost", "season_match_statistics"),
        weekly_played=_require_int(weekly, "played", "weekly_match_statistics"),
        weekly_won=_require_int(weekly, "won", "weekly_match_statistics"),
        weekly_lost=_require_int(weekly, "lost", "weekly_match_statistics"),
        season_id=season_id,
    )


def parse_summary_brackets(payload: Any) -> List[str]:
    """Extract bracket ids from the `brackets[].href` links of a pvp-summary response."""
    if not isinstance(payload, dict):
        return []
    out: List[str] = []
    for item in payload.get("brackets") or []:
        href = item.get("href") if isinstance(item, dict) else None
        if not href:
            continue
        path = urlparse(href).path.rstrip("/")
        marker = "/pvp-bracket/"
        if marker not in path:
            continue
        bracket = path.rsplit(marker, 1)[1]
        if bracket and bracket not in out:
            out.append(bracket)
    return out


class BattleNetAPIClient:
    TOKEN_URL = "https://oauth.battle.net/token"
    API_HOST = "https://{region}.api.blizzard.com"
    TOKEN_REFRESH_MARGIN_SECONDS = 60

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        region: str = "us",
        locale: str = "en_US",
        timeout_seconds: int = 20,
        rate_limit_pause_seconds: float = 10.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.region = region.lower()
        self.locale = locale
        self.timeout_seconds = timeout_seconds
        self.rate_limit_pause_seconds = rate_limit_pause_seconds
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    # --- Auth ---

    def get_access_token(self, force_refresh: bool = False) -> str:
        """Return a bearer token, reusing the cached one until shortly before it expires."""
        now = time.monotonic()
        if not force_refresh and self._token and now < self._token_expires_at:
            return self._token

        if not self.client_id or not self.client_secret:
            raise AuthError("Client credentials are not configured")

        credentials = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode("utf-8")).decode("ascii")
        req = Request(
            self.TOKEN_URL,
            data=b"grant_type=client_credentials",
            headers={
                "Authorization": f"Basic {credentials}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout_seconds) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            raise AuthError(f"Failed to get token: {exc.code} {exc.reason}")
        except (URLError, OSError, http.client.HTTPException) as exc:
            raise AuthError(f"Token endpoint unreachable: {exc}")
        except ValueError as exc:
            raise AuthError(f"Token endpoint returned invalid JSON: {exc}")

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthError("Token response did not include an access_token")

        try:
            expires_in = float(data.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0.0
        self._token = token
        self._token_expires_at = now + max(0.0, expires_in - self.TOKEN_REFRESH_MARGIN_SECONDS)
        logger.debug("Obtained access token, valid for %ss", int(expires_in))
        return token

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    # --- Profile API ---

    def _character_url(self, realm_slug: str, character_name: str, resource: str) -> str:
        host = self.API_HOST.format(region=self.region)
        query = urlencode({"namespace": f"profile-{self.region}", "locale": self.locale})
        return (
            f"{host}/profile/wow/character/{quote(realm_slug.lower())}/"
            f"{quote(character_name.lower())}/{resource}?{query}"
        )

    def _get_json(self, url: str, token: str, retry_429: bool = True) -> Optional[Dict[str, Any]]:
        """GET a profile resource. Returns None on 404."""
        req = Request(url, headers={"Authorization": f"Bearer {token}"}, method="GET")
        try:
            with urlopen(req, timeout=self.timeout_seconds) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            if exc.code == 404:
                return None
            if exc.code == 429 and retry_429:
                logger.warning("Rate limited, retrying in %ss", self.rate_limit_pause_seconds)
                time.sleep(self.rate_limit_pause_seconds)
                return self._get_json(url, token, retry_429=False)
            if exc.code == 401:
                # Next call gets a fresh token.
                self.invalidate_token()
            raise FetchError(f"Request failed: {exc.code} {exc.reason}", status=exc.code)
        except (URLError, OSError, http.client.HTTPException) as exc:
            raise FetchError(f"Request failed: {exc}")
        except ValueError as exc:
            raise PayloadError(f"Response is not valid JSON: {exc}")

    def get_pvp_bracket(self, token: str, realm_slug: str, character_name: str, bracket: str) -> Optional[SnapshotData]:
        """Current statistics for one bracket, or None when the character has no data there."""
        url = self._character_url(realm_slug, character_name, f"pvp-bracket/{quote(bracket)}")
        try:
            payload = self._get_json(url, token)
        except FetchError as exc:
            raise FetchError(f"Failed to fetch bracket {bracket}: {exc}", status=exc.status)
        if payload is None:
            return None
        return parse_bracket_payload(payload)

    def get_pvp_summary(self, token: str, realm_slug: str, character_name: str) -> Optional[Dict[str, Any]]:
        url = self._character_url(realm_slug, character_name, "pvp-summary")
        return self._get_json(url, token)

    def get_active_brackets(self, token: str, realm_slug: str, character_name: str) -> List[str]:
        summary = self.get_pvp_summary(token, realm_slug, character_name)
        return parse_summary_brackets(summary)
