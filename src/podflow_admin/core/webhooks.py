"""Outbound webhook signing, URL checks and delivery."""

import hashlib
import hmac
import ipaddress
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Allowed schemes for webhook URLs
WEBHOOK_ALLOWED_SCHEMES = {"http", "https"}

# Blocked hostnames for webhook URLs (SSRF prevention)
WEBHOOK_BLOCKED_HOSTS = {
    "localhost",
    "localhost.localdomain",
    "0.0.0.0",
    "metadata.google.internal",
}

TIMESTAMP_HEADER = "X-Webhook-Timestamp"
SIGNATURE_HEADER = "X-Webhook-Signature"

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


@dataclass
class DeliveryResult:
    """Outcome of one webhook POST."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    duration_ms: float = 0.0


def validate_webhook_url(url: str) -> bool:
    """Validate webhook URL to prevent SSRF attacks.

    Args:
        url: Webhook URL to validate

    Returns:
        True if URL is safe to call, False otherwise
    """
    try:
        parsed = urlparse(url)

        if parsed.scheme.lower() not in WEBHOOK_ALLOWED_SCHEMES:
            logger.warning(f"Webhook URL blocked: invalid scheme '{parsed.scheme}'")
            return False

        hostname = (parsed.hostname or "").lower()
        if not hostname:
            logger.warning("Webhook URL blocked: missing host")
            return False

        if hostname in WEBHOOK_BLOCKED_HOSTS or hostname.endswith(".localhost"):
            logger.warning("Webhook URL blocked: localhost/loopback address")
            return False

        try:
            address = ipaddress.ip_address(hostname)
        except ValueError:
            return True

        if (
            address.is_private
            or address.is_loopback
            or address.is_link_local
            or address.is_reserved
            or address.is_unspecified
        ):
            logger.warning("Webhook URL blocked: internal network address")
            return False

        return True

    except ValueError as e:
        logger.warning(f"Webhook URL validation error: {e}")
        return False


def generate_webhook_secret() -> str:
    """New signing secret, ``whsec_`` plus 64 hex characters."""
    return f"whsec_{secrets.token_hex(32)}"


def sign_payload(secret: str, timestamp: int, body: str) -> str:
    """HMAC-SHA256 hex digest of ``"<timestamp>.<body>"``."""
    message = f"{timestamp}.{body}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, timestamp: int, body: str, signature: str) -> bool:
    """Constant-time check of a received signature."""
    return hmac.compare_digest(sign_payload(secret, timestamp, body), signature)


def build_test_payload(webhook_id: str, organization_id: str) -> dict[str, Any]:
    """Payload sent by the test endpoint."""
    return {
        "event": "webhook.test",
        "timestamp": int(time.time()),
        "data": {
            "message": "This is a test webhook from PodcastFlow Pro",
            "webhook_id": webhook_id,
            "organization_id": organization_id,
        },
    }


async def deliver_webhook(
    url: str,
    payload: dict[str, Any],
    secret: str,
    timeout: float = 5.0,
) -> DeliveryResult:
    """
    POST a signed JSON payload.

    Redirects are not followed and count as failures, as do 4xx/5xx
    responses, timeouts and connection errors.
    """
    import aiohttp

    if not validate_webhook_url(url):
        return DeliveryResult(success=False, error="URL points to a blocked destination")

    body = json.dumps(payload, separators=(",", ":"))
    timestamp = int(time.time())
    headers = {
        "Content-Type": "application/json",
        TIMESTAMP_HEADER: str(timestamp),
        SIGNATURE_HEADER: sign_payload(secret, timestamp, body),
    }

    start = time.perf_counter()
    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                data=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
                # Disable redirects to prevent SSRF via redirect
                allow_redirects=False,
            ) as response:
                duration_ms = (time.perf_counter() - start) * 1000
                if response.status in REDIRECT_STATUSES:
                    logger.warning(f"Webhook redirect blocked for security: {response.status}")
                    return DeliveryResult(
                        success=False,
                        status_code=response.status,
                        error="Redirects are not followed",
                        duration_ms=duration_ms,
                    )
                if response.status >= 400:
                    logger.warning(f"Webhook failed: {response.status}")
                    return DeliveryResult(
                        success=False,
                        status_code=response.status,
                        error=f"Endpoint responded with HTTP {response.status}",
                        duration_ms=duration_ms,
                    )
                return DeliveryResult(
                    success=True, status_code=response.status, duration_ms=duration_ms
                )
    except Exception as e:
        logger.warning(f"Webhook error: {e}")
        return DeliveryResult(
            success=False,
            error=str(e) or type(e).__name__,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
