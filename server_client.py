"""
HTTP client for the DEC0D3 backend.

Every call to the backend goes through `ServerClient`. Writes and lookups are
wrapped in a bounded retry with exponential backoff; the queue-polling reads
are issued once because the next scheduler cycle repeats them anyway.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from models import NotificationJob, ReferralResponse, User, UserProfile, UserStats


SECRET_HEADER = "X-Bot-Secret"


class ServerError(Exception):
    """Backend answered with a non-success status or an unreadable body."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ServerClient:
    """Talk to the backend REST API with retry and backoff."""

    MAX_RETRIES = 3
    RETRY_DELAY = 1.0
    MAX_RETRY_DELAY = 5.0
    TIMEOUT = 10

    def __init__(self, base_url: str, bot_secret: str = "", session: Optional[requests.Session] = None) -> None:
        """Initialize the client.

        Args:
            base_url: Backend root, e.g. http://localhost:8081.
            bot_secret: Shared secret sent as X-Bot-Secret. Empty sends no header.
            session: Optional session to reuse (tests pass a mock).
        """
        self.base_url = base_url.rstrip("/")
        self.bot_secret = bot_secret
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)
        self.logger.info(f"[CLIENT] Initialized ServerClient with URL: {self.base_url}")

    def _headers(self, json_body: bool = False) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if json_body:
            headers["Content-Type"] = "application/json"
        if self.bot_secret:
            headers[SECRET_HEADER] = self.bot_secret
        return headers

    def _send(self, method: str, path: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self.session.request(
            method,
            self.base_url + path,
            json=json,
            params=params,
            headers=self._headers(json_body=json is not None),
            timeout=self.TIMEOUT,
        )

    def request_with_retry(self, method: str, path: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Issue a request, retrying transport errors and 5xx responses.

        Any status below 500 is returned immediately. Once retries are spent
        the last response is returned as-is, even if it is a 5xx; only a
        transport error on the final attempt is raised.

        Raises:
            requests.RequestException: If the last attempt never got a response.
        """
        attempts = self.MAX_RETRIES + 1
        for attempt in range(self.MAX_RETRIES):
            delay = self._backoff(attempt)
            try:
                response = self._send(method, path, json=json, params=params)
            except requests.RequestException as e:
                self.logger.warning(
                    f"[CLIENT] {method} {path} failed (attempt {attempt + 1}/{attempts}): {e}, retrying in {delay:.0f}s..."
                )
            else:
                if response.status_code < 500:
                    return response
                self.logger.warning(
                    f"[CLIENT] {method} {path} returned {response.status_code} (attempt {attempt + 1}/{attempts}), retrying in {delay:.0f}s..."
                )
                response.close()
            time.sleep(delay)

        try:
            response = self._send(method, path, json=json, params=params)
        except requests.RequestException as e:
            self.logger.error(f"[CLIENT] {method} {path} failed after {attempts} attempts: {e}")
            raise
        if response.status_code >= 500:
            self.logger.error(f"[CLIENT] {method} {path} returned {response.status_code} after {attempts} attempts")
        return response

    def _backoff(self, attempt: int) -> float:
        return min(self.RETRY_DELAY * (2 ** attempt), self.MAX_RETRY_DELAY)

    def _request_once(self, method: str, path: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        self.logger.info(f"[CLIENT] {method} {self.base_url}{path}")
        try:
            response = self._send(method, path, json=json, params=params)
        except requests.RequestException as e:
            self.logger.error(f"[CLIENT] Request failed: {e}")
            raise
        self.logger.info(f"[CLIENT] Response status: {response.status_code}")
        return response

    @staticmethod
    def _expect(response: requests.Response, action: str, ok: tuple = (200,)) -> None:
        if response.status_code not in ok:
            raise ServerError(
                f"failed to {action}: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

    @staticmethod
    def _json(response: requests.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ServerError(f"invalid JSON while trying to {action}: {e}", status_code=response.status_code)

    def health_check(self) -> None:
        """Check that the backend is up. Raises on anything but 200."""
        response = self.session.get(self.base_url + "/api/health", timeout=self.TIMEOUT)
        if response.status_code != 200:
            raise ServerError(f"server health check failed: {response.status_code}", status_code=response.status_code)

    def register_user(self, user: User) -> None:
        response = self.request_with_retry("POST", "/api/bot/register", json=user.to_dict())
        self._expect(response, "register user", ok=(200, 201))
        self.logger.info(f"[API] User registered: {user.telegram_id} (@{user.username})")

    def get_user_profile(self, telegram_id: int) -> UserProfile:
        response = self.request_with_retry("GET", f"/api/bot/stats/{telegram_id}")
        self._expect(response, "get user profile")
        data = self._json(response, "get user profile")
        if not isinstance(data, dict):
            raise ServerError("unexpected user profile payload", status_code=response.status_code)
        return UserProfile.from_dict(data)

    def process_referral(self, referrer_id: int, referred_id: int) -> ReferralResponse:
        """Credit `referrer_id` for bringing in `referred_id`.

        The backend reports rejected referrals (self-referral, already
        referred) with `success: false` in the body, so a 4xx with a JSON
        body is decoded rather than raised.
        """
        payload = {"referrer_id": referrer_id, "referred_id": referred_id}
        response = self.request_with_retry("POST", "/api/bot/referral", json=payload)
        if response.status_code >= 500:
            self._expect(response, "process referral")
        data = self._json(response, "process referral")
        if not isinstance(data, dict):
            raise ServerError("unexpected referral payload", status_code=response.status_code)
        return ReferralResponse.from_dict(data)

    def schedule_notifications(self) -> None:
        """Ask the backend to generate pending notification jobs."""
        response = self._request_once("POST", "/api/bot/notifications/schedule")
        self._expect(response, "schedule notifications")

    def get_pending_notifications(self, limit: int) -> List[NotificationJob]:
        response = self._request_once("GET", "/api/bot/notifications/pending", params={"limit": limit})
        self._expect(response, "get pending notifications")
        data = self._json(response, "get pending notifications")
        if data is None:
            return []
        if not isinstance(data, list):
            raise ServerError("unexpected pending notifications payload", status_code=response.status_code)
        return [NotificationJob.from_dict(item) for item in data if isinstance(item, dict)]

    def update_job_status(self, job_id: int, status: str) -> None:
        response = self.request_with_retry("POST", f"/api/bot/notifications/{job_id}", json={"status": status})
        self._expect(response, "update job status")

    def get_user_stats(self) -> UserStats:
        response = self._request_once("GET", "/api/bot/stats")
        self._expect(response, "get user stats")
        data = self._json(response, "get user stats")
        if not isinstance(data, dict):
            raise ServerError("unexpected user stats payload", status_code=response.status_code)
        return UserStats.from_dict(data)
