"""
Tests for the httpx-backed transport in odatapipe.transport.
"""

import json

import httpx
import pytest
import respx

from odatapipe.transport import HttpxClient, default_client_factory


@pytest.mark.asyncio
async def test_fetch_sends_method_and_options():
    """Test that the verb and request options reach the wire."""
    with respx.mock:
        route = respx.post("https://example.com/odata/People").mock(
            return_value=httpx.Response(201, json={"id": "1"})
        )

        response = await HttpxClient().fetch(
            "https://example.com/odata/People",
            method="POST",
            json={"name": "Ada"},
            headers={"X-Custom": "value"},
        )

    assert response.status_code == 201
    assert response.json() == {"id": "1"}
    assert route.called
    sent = route.calls.last.request
    assert sent.headers["x-custom"] == "value"
    assert json.loads(sent.read()) == {"name": "Ada"}


@pytest.mark.asyncio
async def test_fetch_body_readable_after_short_lived_client_closes():
    with respx.mock:
        respx.get("https://example.com/odata/Plain").mock(
            return_value=httpx.Response(200, text="plain body")
        )

        response = await HttpxClient().fetch("https://example.com/odata/Plain", method="GET")

    assert response.text == "plain body"


@pytest.mark.asyncio
async def test_fetch_uses_shared_client():
    """Test that a provided client is reused and left open."""
    transport = httpx.MockTransport(handler=lambda request: httpx.Response(200, json={"a": 1}))
    async with httpx.AsyncClient(transport=transport) as shared:
        client = HttpxClient(client=shared)

        first = await client.fetch("https://example.com/odata/Plain", method="GET")
        second = await client.fetch("https://example.com/odata/Plain", method="GET")

        assert not shared.is_closed

    assert first.json() == second.json() == {"a": 1}


@pytest.mark.asyncio
async def test_fetch_does_not_raise_on_error_status():
    """Test that HTTP error statuses are left to the parser."""
    with respx.mock:
        respx.get("https://example.com/odata/Nothing").mock(
            return_value=httpx.Response(404, json={"error": "missing"})
        )

        response = await HttpxClient().fetch("https://example.com/odata/Nothing", method="GET")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_fetch_propagates_transport_errors():
    with respx.mock:
        respx.get("https://example.com/odata/People").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with pytest.raises(httpx.ConnectError):
            await HttpxClient().fetch("https://example.com/odata/People", method="GET")


def test_default_client_factory_builds_httpx_client():
    assert isinstance(default_client_factory(), HttpxClient)
