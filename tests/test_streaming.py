"""
Tests for outbound message adapters.
"""

import asyncio
import hashlib
import hmac
import io
from pathlib import Path

import pytest
from aiohttp import web
from aiohttp import test_utils

from sftpsource.exceptions import ConfigurationError, DeliveryError
from sftpsource.source.types import RemoteEntry, RemoteStreamHandle
from sftpsource.streaming import InMemoryAdapter, Message, WebhookAdapter, build_adapter


class TestMessage:
    def test_to_dict_local_ref(self):
        msg = Message(key="/in/a.txt", value=Path("/out/a.txt"), headers={"file_name": "a.txt"}, topic="files")
        data = msg.to_dict()
        assert data["local_path"] == "/out/a.txt"
        assert data["file_name"] == "a.txt"
        assert data["_message_key"] == "/in/a.txt"
        assert data["_topic"] == "files"

    def test_to_dict_bytes_not_inlined(self):
        data = Message(value=b"12345").to_dict()
        assert data["content_length"] == 5
        assert "payload" not in data

    def test_is_stream(self):
        entry = RemoteEntry(name="a.txt", full_path="/in/a.txt")
        assert Message(value=RemoteStreamHandle(io.BytesIO(b""), entry)).is_stream
        assert not Message(value=b"abc").is_stream
        assert not Message(value=Path("/x")).is_stream


class TestInMemoryAdapter:
    @pytest.mark.asyncio
    async def test_produce_and_collect(self):
        adapter = InMemoryAdapter()
        async with adapter:
            await adapter.produce("files", Message(key="a", value=b"1"))
            await adapter.produce("files", Message(key="b", value=b"2"))

            messages = adapter.get_topic_messages("files")
            assert [m.key for m in messages] == ["a", "b"]
            assert [m.offset for m in messages] == [0, 1]
            assert messages[0].timestamp is not None

    @pytest.mark.asyncio
    async def test_produce_requires_connection(self):
        with pytest.raises(DeliveryError):
            await InMemoryAdapter().produce("files", Message(key="a"))

    @pytest.mark.asyncio
    async def test_produce_batch(self):
        async with InMemoryAdapter() as adapter:
            sent = await adapter.produce_batch("files", [Message(key="a"), Message(key="b")])
            assert sent == 2
            assert [m.offset for m in adapter.get_topic_messages("files")] == [0, 1]

    @pytest.mark.asyncio
    async def test_consume_from_beginning(self):
        adapter = InMemoryAdapter()
        await adapter.connect()
        await adapter.produce("files", Message(key="a"))

        received = []

        async def consumer():
            async for msg in adapter.consume("files", from_beginning=True):
                received.append(msg.key)
                if len(received) == 2:
                    break

        task = asyncio.create_task(consumer())
        await asyncio.sleep(0.05)
        await adapter.produce("files", Message(key="b"))
        await asyncio.wait_for(task, timeout=2.0)
        await adapter.disconnect()

        assert received == ["a", "b"]

    @pytest.mark.asyncio
    async def test_bounded_queue_applies_backpressure(self):
        adapter = InMemoryAdapter(max_pending=1)
        await adapter.connect()
        stream = adapter.consume("files")
        first = asyncio.create_task(stream.__anext__())
        await asyncio.sleep(0.05)

        await adapter.produce("files", Message(key="a"))
        assert (await first).key == "a"
        await adapter.produce("files", Message(key="b"))
        blocked = asyncio.create_task(adapter.produce("files", Message(key="c")))
        await asyncio.sleep(0.05)
        assert not blocked.done()

        assert (await stream.__anext__()).key == "b"
        await asyncio.wait_for(blocked, timeout=1.0)
        await stream.aclose()
        await adapter.disconnect()

    @pytest.mark.asyncio
    async def test_clear_topic(self):
        async with InMemoryAdapter() as adapter:
            await adapter.produce("files", Message(key="a"))
            adapter.clear_topic("files")
            assert adapter.get_topic_messages("files") == []

    @pytest.mark.asyncio
    async def test_retained_log_is_bounded(self):
        async with InMemoryAdapter(retain=3) as adapter:
            for i in range(1000):
                await adapter.produce("files", Message(key=f"/in/{i}.txt", value=b"x" * 100))

            retained = adapter.get_topic_messages("files")
            assert [m.offset for m in retained] == [997, 998, 999]

    @pytest.mark.asyncio
    async def test_retain_zero_still_delivers_to_subscribers(self):
        async with InMemoryAdapter(retain=0) as adapter:
            stream = adapter.consume("files")
            pending = asyncio.create_task(stream.__anext__())
            await asyncio.sleep(0.05)

            await adapter.produce("files", Message(key="a"))

            assert (await asyncio.wait_for(pending, timeout=1.0)).key == "a"
            assert adapter.get_topic_messages("files") == []
            await stream.aclose()

    def test_default_retention_is_bounded(self):
        assert InMemoryAdapter().retain is not None

    def test_negative_retain_rejected(self):
        with pytest.raises(ValueError):
            InMemoryAdapter(retain=-1)


def _hook_app(statuses, received):
    """aiohttp app answering with the given statuses in turn."""

    async def handler(request: web.Request) -> web.Response:
        received.append((request.headers.copy(), await request.read()))
        status = statuses.pop(0) if statuses else 200
        return web.Response(status=status, text="nope" if status >= 400 else "ok")

    app = web.Application()
    app.router.add_post("/hook", handler)
    return app


class TestWebhookAdapter:
    @pytest.mark.asyncio
    async def test_bytes_sent_with_file_headers_and_signature(self):
        received = []
        server = test_utils.TestServer(_hook_app([200], received))
        await server.start_server()
        try:
            adapter = WebhookAdapter(url=str(server.make_url("/hook")), signing_secret="s3cret", retry_count=0)
            async with adapter:
                await adapter.produce("files", Message(key="/in/a.txt", value=b"alpha", headers={"file_name": "a.txt"}))
        finally:
            await server.close()

        headers, body = received[0]
        assert body == b"alpha"
        assert headers["Content-Type"] == "application/octet-stream"
        assert headers["X-Sftpsource-File-Name"] == "a.txt"
        assert headers["X-Sftpsource-Topic"] == "files"
        expected = hmac.new(
            b"s3cret", headers["X-Sftpsource-Timestamp"].encode() + b"." + body, hashlib.sha256
        ).hexdigest()
        assert headers["X-Sftpsource-Signature"] == f"sha256={expected}"

    @pytest.mark.asyncio
    async def test_local_ref_sent_as_json(self):
        received = []
        server = test_utils.TestServer(_hook_app([200], received))
        await server.start_server()
        try:
            async with WebhookAdapter(url=str(server.make_url("/hook")), retry_count=0) as adapter:
                await adapter.produce("files", Message(key="/in/a.txt", value=Path("/out/a.txt")))
        finally:
            await server.close()

        headers, body = received[0]
        assert headers["Content-Type"] == "application/json"
        assert b'"local_path": "/out/a.txt"' in body

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        received = []
        server = test_utils.TestServer(_hook_app([503, 200], received))
        await server.start_server()
        try:
            async with WebhookAdapter(url=str(server.make_url("/hook")), retry_count=2, max_backoff=0) as adapter:
                await adapter.produce("files", Message(key="k", value=b"x"))
        finally:
            await server.close()

        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_client_error_raises_without_retry(self):
        received = []
        server = test_utils.TestServer(_hook_app([400], received))
        await server.start_server()
        try:
            async with WebhookAdapter(url=str(server.make_url("/hook")), retry_count=3) as adapter:
                with pytest.raises(DeliveryError, match="400"):
                    await adapter.produce("files", Message(key="k", value=b"x"))
        finally:
            await server.close()

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self):
        received = []
        server = test_utils.TestServer(_hook_app([500, 500], received))
        await server.start_server()
        try:
            async with WebhookAdapter(url=str(server.make_url("/hook")), retry_count=1, max_backoff=0) as adapter:
                with pytest.raises(DeliveryError, match="after 2 attempts"):
                    await adapter.produce("files", Message(key="k", value=b"x"))
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_missing_endpoint(self):
        async with WebhookAdapter(endpoints={"other": "http://localhost/x"}) as adapter:
            with pytest.raises(DeliveryError):
                await adapter.produce("files", Message(key="k", value=b"x"))

    @pytest.mark.asyncio
    async def test_not_connected(self):
        with pytest.raises(DeliveryError, match="not connected"):
            await WebhookAdapter(url="http://localhost/x").produce("files", Message(key="k", value=b"x"))


class TestBuildAdapter:
    def test_default_memory(self):
        assert isinstance(build_adapter({}), InMemoryAdapter)

    def test_memory_retention_settings(self):
        assert build_adapter({"output": {"adapter": "memory", "retain": 10}}).retain == 10
        assert build_adapter({"output": {"adapter": "memory", "retain": None}}).retain is None

    def test_memory_invalid_retain(self):
        with pytest.raises(ConfigurationError):
            build_adapter({"output": {"adapter": "memory", "retain": -5}})

    def test_webhook(self):
        adapter = build_adapter(
            {"output": {"adapter": "webhook", "webhook": {"url": "http://hooks/x", "retry_count": 1}}}
        )
        assert isinstance(adapter, WebhookAdapter)
        assert adapter.url == "http://hooks/x"
        assert adapter.retry_count == 1

    def test_webhook_requires_url(self):
        with pytest.raises(ConfigurationError):
            build_adapter({"output": {"adapter": "webhook"}})

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            build_adapter({"output": {"adapter": "kafka"}})
