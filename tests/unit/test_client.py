"""
Unit tests for the challenge polling client
"""

import httpx
import pytest

from secure_credentials.client import ChallengePoller, ClientError, PollingTimeout


def make_poller(handler, max_attempts=5):
    sleeps = []
    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://testserver")
    poller = ChallengePoller(
        "http://testserver",
        client=client,
        interval=2.0,
        max_attempts=max_attempts,
        sleep=sleeps.append
    )
    return poller, sleeps


def status_sequence(*statuses):
    remaining = list(statuses)

    def handler(request):
        assert request.url.path == "/v1/challenges/ch-1"
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(200, json={"success": True, "challenge_id": "ch-1", "status": status})

    return handler


class TestChallengePoller:
    """Test polling until resolution"""

    def test_waits_until_approved(self):
        poller, sleeps = make_poller(status_sequence("pending", "pending", "approved"))

        assert poller.wait("ch-1") == "approved"
        assert sleeps == [2.0, 2.0]

    def test_rejection_ends_polling(self):
        poller, sleeps = make_poller(status_sequence("rejected"))

        assert poller.wait("ch-1") == "rejected"
        assert sleeps == []

    def test_timeout(self):
        poller, sleeps = make_poller(status_sequence("pending"), max_attempts=3)

        with pytest.raises(PollingTimeout):
            poller.wait("ch-1")
        assert len(sleeps) == 2

    def test_unknown_challenge(self):
        def handler(request):
            return httpx.Response(404, json={
                "success": False,
                "error": "challenge_not_found",
                "error_type": "not_found",
                "message": "Challenge not found"
            })

        poller, _ = make_poller(handler)

        with pytest.raises(ClientError) as exc_info:
            poller.wait("ch-1")
        assert exc_info.value.status_code == 404
        assert exc_info.value.response["error"] == "challenge_not_found"

    def test_non_json_response(self):
        poller, _ = make_poller(lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(ClientError) as exc_info:
            poller.status("ch-1")
        assert exc_info.value.status_code == 502

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        poller, _ = make_poller(handler)

        with pytest.raises(ClientError):
            poller.status("ch-1")

    def test_complete_posts_challenge(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = request.read()
            return httpx.Response(200, json={"success": True, "session": {"access_token": "t"}})

        poller, _ = make_poller(handler)

        data = poller.complete("ch-1")

        assert seen["path"] == "/v1/auth/complete"
        assert b'"challenge_id":"ch-1"' in seen["body"].replace(b" ", b"")
        assert data["session"]["access_token"] == "t"
