"""
Outbound webhook adapter.

POSTs each file message to an HTTP endpoint.

Example:
    from sftpsource.streaming import WebhookAdapter

    adapter = WebhookAdapter(
        url="https://api.example.com/webhooks/files",
        headers={"Authorization": "Bearer token123"},
        signing_secret="s3cret",
    )

    async with adapter:
        await adapter.produce("files", message)
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from typing import Dict, Optional

import aiohttp

from sftpsource.exceptions import DeliveryError
from sftpsource.streaming.adapters.base import Message, MessageAdapter
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.streaming.webhook")

HEADER_PREFIX = "X-Sftpsource-"


class WebhookAdapter(MessageAdapter):
    """
    Outbound webhook adapter.

    Byte payloads and remote streams are sent as ``application/octet-stream``
    with the file headers as ``X-Sftpsource-*`` request headers; local file
    references are sent as a JSON descriptor. Supports:
    - HMAC signature over ``<timestamp>.<body>``
    - Retry with exponential backoff on 5xx and connection errors

    A 2xx response is the only success. A 4xx, or running out of retries,
    raises ``DeliveryError``.

    Args:
        url: Default endpoint for every topic
        endpoints: Per-topic endpoints, overriding ``url``
        headers: Default headers for all requests
        signing_secret: HMAC signing secret for webhook signatures
        timeout: Request timeout in seconds
        retry_count: Number of retries on failure
        max_backoff: Cap on the delay between retries, in seconds
    """

    def __init__(
        self,
        url: Optional[str] = None,
        endpoints: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        signing_secret: Optional[str] = None,
        timeout: float = 30.0,
        retry_count: int = 3,
        max_backoff: float = 30.0,
    ):
        super().__init__()
        self.url = url
        self.endpoints = endpoints or {}
        self.default_headers = headers or {}
        self.signing_secret = signing_secret
        self.timeout = timeout
        self.retry_count = retry_count
        self.max_backoff = max_backoff
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        """Initialize HTTP session."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        self._session = aiohttp.ClientSession(
            headers=self.default_headers,
            timeout=timeout,
        )
        self._connected = True
        logger.info(f"Webhook adapter initialized ({self.url or f'{len(self.endpoints)} endpoint(s)'})")

    async def disconnect(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
        self._connected = False

    def endpoint_for(self, topic: str) -> Optional[str]:
        return self.endpoints.get(topic, self.url)

    async def produce(self, topic: str, message: Message) -> None:
        """Send one webhook; raises DeliveryError unless the endpoint answers 2xx."""
        url = self.endpoint_for(topic)
        if not url:
            raise DeliveryError(f"No webhook endpoint configured for topic '{topic}'", details={"topic": topic})

        if message.is_stream:
            body = await asyncio.to_thread(message.value.read)
            content_type = "application/octet-stream"
        elif isinstance(message.value, (bytes, bytearray)):
            body = bytes(message.value)
            content_type = "application/octet-stream"
        else:
            body = json.dumps(message.to_dict(), default=str).encode("utf-8")
            content_type = "application/json"

        headers = {f"{HEADER_PREFIX}{_header_name(k)}": str(v) for k, v in message.headers.items()}
        headers["Content-Type"] = content_type
        await self._send_webhook(url, body, topic, headers)

    async def _send_webhook(self, url: str, body: bytes, topic: str, headers: Dict[str, str]) -> None:
        """Send a webhook with retry logic."""
        if not self._session:
            raise DeliveryError("Webhook adapter not connected. Call connect() first.")

        headers[f"{HEADER_PREFIX}Topic"] = topic
        headers[f"{HEADER_PREFIX}Timestamp"] = str(int(time.time()))

        if self.signing_secret:
            timestamp = headers[f"{HEADER_PREFIX}Timestamp"]
            signature = hmac.new(
                self.signing_secret.encode("utf-8"),
                timestamp.encode("utf-8") + b"." + body,
                hashlib.sha256,
            ).hexdigest()
            headers[f"{HEADER_PREFIX}Signature"] = f"sha256={signature}"

        last_error = None
        for attempt in range(self.retry_count + 1):
            try:
                async with self._session.post(url, data=body, headers=headers) as resp:
                    if resp.status < 300:
                        logger.debug(f"Webhook sent to {url} (status={resp.status}, topic={topic})")
                        return
                    if resp.status < 500:
                        # Client error - don't retry
                        response_text = await resp.text()
                        raise DeliveryError(
                            f"Webhook to {url} rejected (status={resp.status}): {response_text[:200]}",
                            details={"url": url, "status": resp.status},
                        )
                    last_error = f"HTTP {resp.status}"
                    logger.warning(
                        f"Webhook to {url} failed (status={resp.status}), "
                        f"attempt {attempt + 1}/{self.retry_count + 1}"
                    )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = str(e) or type(e).__name__
                logger.warning(f"Webhook to {url} error: {last_error}, attempt {attempt + 1}/{self.retry_count + 1}")

            # Exponential backoff
            if attempt < self.retry_count:
                await asyncio.sleep(min(2**attempt, self.max_backoff))

        raise DeliveryError(
            f"Webhook to {url} failed after {self.retry_count + 1} attempts: {last_error}",
            details={"url": url, "attempts": self.retry_count + 1},
        )


def _header_name(key: str) -> str:
    return "-".join(part.capitalize() for part in key.split("_"))
