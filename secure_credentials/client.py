"""
Polling client for the initiating side of a two-factor login.

After /v1/auth/login returns requires_two_factor, the web client shows the
verification code and polls the challenge until the device acts on it:

    poller = ChallengePoller("https://credentials.example.com")
    status = poller.wait(challenge_id)
    if status == "approved":
        result = poller.complete(challenge_id)
"""

import time
import logging
from typing import Any, Callable, Dict, Optional

import httpx

from secure_credentials.core.config import settings

logger = logging.getLogger(__name__)

RESOLVED_STATUSES = {"approved", "rejected", "expired", "completed", "used"}


class ClientError(Exception):
    """Raised when the service answers with an unexpected error."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class PollingTimeout(ClientError):
    """Raised when the poll budget runs out before the challenge resolves."""
    pass


class ChallengePoller:
    """Polls a challenge's status until it leaves pending."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.Client] = None,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            base_url: Service URL (e.g. "http://localhost:8000")
            client: httpx client to reuse (optional)
            interval: Seconds between polls (CLIENT_POLL_INTERVAL_SECONDS)
            max_attempts: Poll budget (CLIENT_POLL_MAX_ATTEMPTS)
            sleep: Sleep function, replaceable in tests
        """
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(base_url=self.base_url, timeout=10.0)
        self.interval = settings.CLIENT_POLL_INTERVAL_SECONDS if interval is None else interval
        self.max_attempts = settings.CLIENT_POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.sleep = sleep

    def status(self, challenge_id: str) -> Dict[str, Any]:
        """Fetch the current challenge status once."""
        return self._request("GET", f"{settings.API_V1_PREFIX}/challenges/{challenge_id}")

    def wait(self, challenge_id: str) -> str:
        """
        Poll until the challenge is resolved.

        Returns:
            The first non-pending status seen

        Raises:
            PollingTimeout: If max_attempts polls all report pending
            ClientError: If the service reports an error (e.g. unknown challenge)
        """
        for attempt in range(1, self.max_attempts + 1):
            data = self.status(challenge_id)
            status = data.get("status")
            if status in RESOLVED_STATUSES:
                logger.debug(f"Challenge {challenge_id} resolved as {status} after {attempt} poll(s)")
                return status
            if attempt < self.max_attempts:
                self.sleep(self.interval)

        raise PollingTimeout(f"Challenge {challenge_id} still pending after {self.max_attempts} polls")

    def complete(
        self,
        challenge_id: str,
        proof: Optional[str] = None,
        backup_code: Optional[str] = None
    ) -> Dict[str, Any]:
        """Finish the login once the challenge is approved; returns the session payload."""
        payload = {"challenge_id": challenge_id, "proof": proof, "backup_code": backup_code}
        return self._request("POST", f"{settings.API_V1_PREFIX}/auth/complete", json=payload)

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ClientError(f"Request to {path} failed: {e}")

        try:
            data = response.json()
        except ValueError:
            raise ClientError(
                f"Unexpected response from {path}: {response.text[:200]}",
                status_code=response.status_code
            )

        if response.status_code >= 400 or not data.get("success", False):
            raise ClientError(
                data.get("message") or f"Request to {path} failed",
                status_code=response.status_code,
                response=data
            )
        return data
