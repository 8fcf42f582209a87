"""
Outbound channels for dispatched file messages.

Usage:
    from sftpsource.streaming import WebhookAdapter, build_adapter

    adapter = build_adapter(config)
    async with adapter:
        await adapter.produce("files", message)
"""

from __future__ import annotations

from typing import Any

from sftpsource.exceptions import ConfigurationError
from sftpsource.streaming.adapters.base import Message, MessageAdapter
from sftpsource.streaming.adapters.memory import DEFAULT_RETAIN, InMemoryAdapter
from sftpsource.streaming.adapters.webhook import WebhookAdapter

__all__ = [
    "MessageAdapter",
    "Message",
    "WebhookAdapter",
    "InMemoryAdapter",
    "build_adapter",
]


def build_adapter(config: Any) -> MessageAdapter:
    """Create the adapter named by ``output.adapter``."""
    data = config.data if hasattr(config, "data") else config
    output = data.get("output", {}) or {}
    kind = str(output.get("adapter", "memory")).lower()

    if kind == "memory":
        retain = output.get("retain", DEFAULT_RETAIN)
        try:
            return InMemoryAdapter(
                max_pending=int(output.get("max_pending", 0)),
                retain=None if retain is None else int(retain),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid in-memory output settings: {e}") from e

    if kind == "webhook":
        webhook = output.get("webhook", {}) or {}
        if not webhook.get("url"):
            raise ConfigurationError("output.webhook.url is required for the webhook adapter")
        return WebhookAdapter(
            url=webhook["url"],
            headers=webhook.get("headers") or {},
            signing_secret=webhook.get("signing_secret"),
            timeout=float(webhook.get("timeout", 30.0)),
            retry_count=int(webhook.get("retry_count", 3)),
        )

    raise ConfigurationError(f"Unknown output adapter '{kind}'. Use 'memory' or 'webhook'.")
