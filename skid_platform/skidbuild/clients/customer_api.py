import logging
import threading
import time
from typing import Any, Callable

import requests

from skidbuild.config import CustomerApiConfig

logger = logging.getLogger(__name__)

# Tokens are refreshed this many seconds before they expire.
TOKEN_REFRESH_MARGIN_SEC = 300
DEFAULT_TOKEN_TTL_SEC = 3600


class ExternalSubmissionError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _token_expiry(body: dict, now: float) -> float:
    expires_on = body.get("expires_on")
    if expires_on is not None and str(expires_on).isdigit():
        return float(expires_on)
    # Some identity providers send expires_in as a string.
    expires_in = str(body.get("expires_in", ""))
    ttl = int(expires_in) if expires_in.isdigit() else DEFAULT_TOKEN_TTL_SEC
    return now + ttl


def first_message(body: dict) -> str | None:
    for entry in body.get("messages") or []:
        texts = entry.get("message") if isinstance(entry, dict) else None
        if isinstance(texts, list) and texts:
            return str(texts[0])
        if isinstance(texts, str) and texts:
            return texts
    return None


class CustomerApiClient:
    """Client for the customer's shipment API (OAuth2 client credentials)."""

    def __init__(
        self,
        config: CustomerApiConfig,
        http: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._http = http or requests.Session()
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._lock = threading.Lock()

    def access_token(self) -> str:
        with self._lock:
            now = self._clock()
            if self._token and self._token_expires_at - TOKEN_REFRESH_MARGIN_SEC > now:
                return self._token

            logger.info("Requesting customer API token from %s", self._config.token_url)
            try:
                resp = self._http.post(
                    self._config.token_url,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self._config.client_id,
                        "client_secret": self._config.client_secret,
                    },
                    timeout=self._config.timeout_sec,
                )
            except requests.RequestException as exc:
                raise ExternalSubmissionError(f"Token request failed: {exc}") from exc

            if resp.status_code != 200:
                logger.error("Token request failed: HTTP %s %s", resp.status_code, resp.text)
                raise ExternalSubmissionError(
                    "Failed to authenticate with the customer API", status_code=resp.status_code
                )
            try:
                body = resp.json()
            except ValueError as exc:
                raise ExternalSubmissionError("Token response was not JSON") from exc

            token = body.get("access_token")
            if not token:
                raise ExternalSubmissionError("Token response did not include an access token")

            self._token = token
            self._token_expires_at = _token_expiry(body, now)
            return token

    def submit(self, path: str, payload: Any) -> str:
        """POST a payload and return the confirmation number."""
        if not self._config.configured:
            raise ExternalSubmissionError("Customer API is not configured")

        token = self.access_token()
        url = f"{self._config.base_url.rstrip('/')}/{path.lstrip('/')}"
        logger.info("Submitting to customer API %s", url)
        try:
            resp = self._http.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._config.timeout_sec,
            )
        except requests.RequestException as exc:
            logger.error("Customer API request to %s failed: %s", url, exc)
            raise ExternalSubmissionError(f"Customer API request failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise ExternalSubmissionError(
                f"Customer API returned an unreadable response (HTTP {resp.status_code})",
                status_code=resp.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ExternalSubmissionError(
                f"Customer API returned an unexpected response (HTTP {resp.status_code})",
                status_code=resp.status_code,
            )

        code = body.get("code", resp.status_code)
        message = first_message(body)
        confirmation = body.get("confirmationNumber")
        if code == 200 and message is None and confirmation:
            logger.info("Customer API accepted submission, confirmation %s", confirmation)
            return str(confirmation)

        error = message or f"Customer API rejected the submission (code {code})"
        logger.error("Customer API rejected submission to %s: %s", url, error)
        raise ExternalSubmissionError(error, status_code=code if isinstance(code, int) else None)
