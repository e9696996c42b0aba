"""Client for the MRA (mobile risk API).

Authentication is a client-credentials exchange: the static application key
is sent as a bearer token to ``/oauth2/token`` and the returned access token
is used for every other call until it expires.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, NamedTuple, Optional

import requests
from pydantic import ValidationError as PydanticValidationError

from .api_models import DevicesResponse, TokenResponse, VulnerabilitiesResponse
from .config import APIConfig
from .errors import APIError, AuthError, SyncCancelled, ValidationError
from .models import Platform, utc_now

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth2/token"
DEVICES_PATH = "/mra/api/v2/devices"
ANDROID_VULNS_PATH = "/mra/api/v2/os-vulns/android"
IOS_VULNS_PATH = "/mra/api/v2/os-vulns/ios"


class AccessToken(NamedTuple):
    value: str
    expires_at: datetime


class TokenManager:
    """Caches the access token and refreshes it once it has expired.

    The token is an immutable tuple replaced by a single assignment, so a
    reader sees either the old or the new token. Refreshes are serialized.
    """

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        application_key: str,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session = session
        self._url = f"{base_url}{TOKEN_PATH}"
        self._application_key = application_key
        self._timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[AccessToken] = None
        self.refresh_count = 0

    def ensure_valid_token(self) -> str:
        token = self._token
        if self._usable(token):
            return token.value
        with self._lock:
            # another thread may have refreshed while we waited
            token = self._token
            if self._usable(token):
                return token.value
            token = self._refresh()
            self._token = token
            return token.value

    def _usable(self, token: Optional[AccessToken]) -> bool:
        return token is not None and bool(token.value) and self._clock() < token.expires_at

    def _refresh(self) -> AccessToken:
        headers = {
            "Authorization": f"Bearer {self._application_key}",
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        try:
            resp = self._session.post(
                self._url, data="grant_type=client_credentials", headers=headers, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise AuthError(None, f"requesting token: {e}") from e

        if resp.status_code != 200:
            raise AuthError(resp.status_code, resp.text)

        try:
            payload = TokenResponse.model_validate(resp.json())
        except (ValueError, PydanticValidationError) as e:
            raise AuthError(resp.status_code, f"decoding token response: {e}") from e

        self.refresh_count += 1
        logger.debug("Access token refreshed, expires in %ss", payload.expires_in)
        return AccessToken(payload.access_token, self._clock() + timedelta(seconds=payload.expires_in))


class MraClient:
    """Device list and vulnerability lookups with fixed-delay retries.

    Transport errors, 5xx and 429 are retried up to ``max_retries`` times with
    ``retry_delay`` seconds between attempts; any other 4xx fails at once.
    """

    def __init__(
        self,
        base_url: str,
        application_key: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 5.0,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        clock: Callable[[], datetime] = utc_now,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()
        self.cancel_event = cancel_event
        self._sleep = sleep
        self.tokens = TokenManager(self.session, self.base_url, application_key, timeout, clock)
        self.request_count = 0
        self.retry_count = 0

    @classmethod
    def from_config(cls, cfg: APIConfig, cancel_event: Optional[threading.Event] = None) -> "MraClient":
        return cls(
            cfg.base_url,
            cfg.application_key,
            timeout=cfg.timeout,
            max_retries=cfg.max_retries,
            retry_delay=cfg.retry_delay,
            cancel_event=cancel_event,
        )

    def get_devices(self, cursor: str = "", limit: int = 1000) -> DevicesResponse:
        """Return up to ``limit`` devices after ``cursor`` plus the declared total."""
        params: Dict[str, Any] = {"limit": limit}
        if cursor:
            params["oid"] = cursor
        payload = self._request("GET", DEVICES_PATH, params)
        try:
            return DevicesResponse.model_validate(payload)
        except PydanticValidationError as e:
            raise APIError(200, str(e), "decoding devices response") from e

    def get_vulnerabilities(self, platform: str, version: str) -> VulnerabilitiesResponse:
        """Known OS vulnerabilities for an Android patch level or an iOS version."""
        if not version:
            raise ValidationError("version", version, "version is required")
        if platform == Platform.ANDROID.value:
            if "-" not in version:
                raise ValidationError("version", version, "invalid security patch level format")
            path, params = ANDROID_VULNS_PATH, {"aspl": version}
        elif platform == Platform.IOS.value:
            path, params = IOS_VULNS_PATH, {"version": version}
        else:
            raise ValidationError("platform", platform, "invalid platform")

        payload = self._request("GET", path, params)
        try:
            return VulnerabilitiesResponse.model_validate(payload)
        except PydanticValidationError as e:
            raise APIError(200, str(e), "decoding vulnerabilities response") from e

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        token = self.tokens.ensure_valid_token()
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}

        last_error: Optional[APIError] = None
        last_cause: Optional[BaseException] = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                self.retry_count += 1
                logger.warning("Retrying %s %s (attempt %d/%d): %s", method, path, attempt, self.max_retries, last_error)
                self._pause()
            if self._cancelled():
                raise SyncCancelled(f"{method} {path} cancelled")

            self.request_count += 1
            try:
                resp = self.session.request(method, url, params=params, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                last_error = APIError(None, str(e), f"request failed after {self.max_retries} retries")
                last_cause = e
                continue

            if resp.status_code == 429:
                last_error, last_cause = APIError(429, resp.text, "rate limit exceeded"), None
                continue
            if resp.status_code >= 500:
                last_error, last_cause = APIError(resp.status_code, resp.text), None
                continue
            if resp.status_code >= 400:
                raise APIError(resp.status_code, resp.text)

            try:
                return resp.json()
            except ValueError as e:
                raise APIError(resp.status_code, resp.text, "decoding response") from e

        raise last_error from last_cause

    def _pause(self) -> None:
        if self._sleep is not None:
            self._sleep(self.retry_delay)
        elif self.cancel_event is not None:
            self.cancel_event.wait(self.retry_delay)
        else:
            time.sleep(self.retry_delay)

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()
