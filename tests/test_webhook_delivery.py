"""Tests for webhook signing, URL checks and delivery."""

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from podflow_admin.core.webhooks import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    build_test_payload,
    deliver_webhook,
    generate_webhook_secret,
    sign_payload,
    validate_webhook_url,
    verify_signature,
)

SECRET = "whsec_" + "ab" * 32


class TestSigning:
    """HMAC signatures."""

    def test_signs_timestamp_and_body(self):
        expected = hmac.new(SECRET.encode(), b"1700000000.{}", hashlib.sha256).hexdigest()
        assert sign_payload(SECRET, 1700000000, "{}") == expected

    def test_verify(self):
        body = json.dumps({"event": "campaign.created"})
        signature = sign_payload(SECRET, 1700000000, body)

        assert verify_signature(SECRET, 1700000000, body, signature)
        assert not verify_signature(SECRET, 1700000001, body, signature)
        assert not verify_signature("whsec_other", 1700000000, body, signature)
        assert not verify_signature(SECRET, 1700000000, body + " ", signature)

    def test_generated_secret_format(self):
        secret = generate_webhook_secret()

        assert secret.startswith("whsec_")
        assert len(secret) == 6 + 64
        int(secret[6:], 16)
        assert generate_webhook_secret() != secret

    def test_test_payload(self):
        payload = build_test_payload("wh-1", "org-1")

        assert payload["event"] == "webhook.test"
        assert payload["data"]["webhook_id"] == "wh-1"
        assert payload["data"]["organization_id"] == "org-1"
        assert isinstance(payload["timestamp"], int)


class TestURLValidation:
    """SSRF protection."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://hooks.example.com/podflow",
            "http://example.com:8080/callback",
            "https://93.184.216.34/hook",
        ],
    )
    def test_allowed(self, url):
        assert validate_webhook_url(url)

    @pytest.mark.parametrize(
        "url",
        [
            "ftp://example.com/hook",
            "file:///etc/passwd",
            "https:///nohost",
            "http://localhost:8000/hook",
            "http://api.localhost/hook",
            "http://127.0.0.1/hook",
            "http://10.1.2.3/hook",
            "http://192.168.0.10/hook",
            "http://169.254.169.254/latest/meta-data",
            "http://metadata.google.internal/computeMetadata",
            "http://0.0.0.0/hook",
            "http://[::1]/hook",
        ],
    )
    def test_blocked(self, url):
        assert not validate_webhook_url(url)


def _mock_client(mock_session):
    # session.post() is a plain call returning an async context manager
    client = MagicMock()
    mock_session.return_value.__aenter__.return_value = client
    return client


def _mock_post(mock_session, status=200):
    response = MagicMock()
    response.status = status
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    post = _mock_client(mock_session).post
    post.return_value = context
    return post


class TestDelivery:
    """Signed POST delivery."""

    @pytest.mark.asyncio
    async def test_success(self):
        payload = {"event": "campaign.created", "data": {"id": "c1"}}

        with patch("aiohttp.ClientSession") as mock_session:
            post = _mock_post(mock_session, 204)
            result = await deliver_webhook("https://hooks.example.com/x", payload, SECRET)

        assert result.success is True
        assert result.status_code == 204
        assert result.error is None

        kwargs = post.call_args.kwargs
        assert kwargs["allow_redirects"] is False
        headers = kwargs["headers"]
        assert verify_signature(
            SECRET, int(headers[TIMESTAMP_HEADER]), kwargs["data"], headers[SIGNATURE_HEADER]
        )
        assert json.loads(kwargs["data"]) == payload

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [301, 302, 307, 308])
    async def test_redirect_is_a_failure(self, status):
        with patch("aiohttp.ClientSession") as mock_session:
            _mock_post(mock_session, status)
            result = await deliver_webhook("https://hooks.example.com/x", {}, SECRET)

        assert result.success is False
        assert result.status_code == status
        assert result.error == "Redirects are not followed"

    @pytest.mark.asyncio
    async def test_error_status(self):
        with patch("aiohttp.ClientSession") as mock_session:
            _mock_post(mock_session, 500)
            result = await deliver_webhook("https://hooks.example.com/x", {}, SECRET)

        assert result.success is False
        assert result.error == "Endpoint responded with HTTP 500"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        with patch("aiohttp.ClientSession") as mock_session:
            post = _mock_client(mock_session).post
            post.side_effect = ConnectionRefusedError("refused")
            result = await deliver_webhook("https://hooks.example.com/x", {}, SECRET)

        assert result.success is False
        assert result.status_code is None
        assert result.error == "refused"

    @pytest.mark.asyncio
    async def test_timeout_without_message(self):
        import asyncio

        with patch("aiohttp.ClientSession") as mock_session:
            post = _mock_client(mock_session).post
            post.side_effect = asyncio.TimeoutError()
            result = await deliver_webhook("https://hooks.example.com/x", {}, SECRET)

        assert result.success is False
        assert result.error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_blocked_url_is_never_requested(self):
        with patch("aiohttp.ClientSession") as mock_session:
            result = await deliver_webhook("http://127.0.0.1:9000/hook", {}, SECRET)

        mock_session.assert_not_called()
        assert result.success is False
        assert result.error == "URL points to a blocked destination"
