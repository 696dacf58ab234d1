"""Tests for the HTTP transport."""

import httpx
import pytest

from core.exceptions import ConfigurationError, TransientCallError
from services.http_transport import validate_url_safety
from support import RecordingHandler


@pytest.mark.unit
class TestUrlSafety:
    @pytest.mark.parametrize("url", [
        "ftp://example.com/file",
        "http://localhost:8080/",
        "http://10.1.2.3/api",
        "http://192.168.0.10/api",
        "http:///path",
    ])
    def test_blocked(self, url):
        with pytest.raises(ValueError):
            validate_url_safety(url)

    def test_public_host_allowed(self):
        validate_url_safety("https://api.example.com/v1")


@pytest.mark.unit
class TestHttpTransport:
    async def test_post_sends_json(self, make_transport):
        handler = RecordingHandler(201, body="created")
        transport = make_transport(handler)

        response = await transport.send("post", "https://api.example.com/items", body='{"a": 1}')

        assert response.status_code == 201
        assert response.body == "created"
        request = handler.requests[0]
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/json"
        assert request.content == b'{"a": 1}'

    async def test_custom_content_type_kept(self, make_transport):
        handler = RecordingHandler(200)
        transport = make_transport(handler)

        await transport.send(
            "PUT", "https://api.example.com/items/1",
            headers={"Content-Type": "text/plain"}, body="hello",
        )

        assert handler.requests[0].headers["content-type"] == "text/plain"

    async def test_delete_has_no_body(self, make_transport):
        handler = RecordingHandler(204)
        transport = make_transport(handler)

        await transport.send("DELETE", "https://api.example.com/items/1", body="ignored")

        assert handler.requests[0].content == b""

    async def test_error_status(self, make_transport):
        transport = make_transport(RecordingHandler(404))

        with pytest.raises(TransientCallError, match="HTTP 404 Not Found from GET"):
            await transport.send("GET", "https://api.example.com/missing")

    async def test_transport_failure(self, make_transport):
        transport = make_transport(RecordingHandler(httpx.ConnectError("connection refused")))

        with pytest.raises(TransientCallError, match="connection refused"):
            await transport.send("GET", "https://api.example.com/")

    async def test_timeout(self, make_transport):
        transport = make_transport(RecordingHandler(httpx.ReadTimeout("slow")))

        with pytest.raises(TransientCallError, match="timed out after 5"):
            await transport.send("GET", "https://api.example.com/", timeout=5)

    async def test_unsupported_method(self, make_transport):
        transport = make_transport(RecordingHandler(200))

        with pytest.raises(ConfigurationError, match="Unsupported HTTP method"):
            await transport.send("TRACE", "https://api.example.com/")

    async def test_private_network_blocked(self, make_transport):
        handler = RecordingHandler(200)
        transport = make_transport(handler, block_private_networks=True)

        with pytest.raises(ConfigurationError, match="private IP"):
            await transport.send("GET", "http://10.0.0.5/admin")
        assert handler.requests == []
