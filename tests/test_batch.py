"""
Tests for the batch coordinator and transmitters in odatapipe.batch.
"""

import asyncio

import httpx
import pytest

from odatapipe.batch import JsonBatch, ODataBatch, SequentialBatch
from odatapipe.exceptions import ProcessHttpClientResponseException
from odatapipe.parsers import ODataDefaultParser, TextParser
from odatapipe.transport import HttpxClient
from tests.conftest import SERVICE_URL
from tests.mocks.odata import FakeODataService


class RecordingBatch(ODataBatch):
    """Batch recording when it transmits and resolving requests with their URL."""

    def __init__(self) -> None:
        super().__init__(batch_id="recording")
        self.transmitted = asyncio.Event()

    async def _execute_impl(self) -> None:
        self.transmitted.set()
        for request in self.requests:
            request.resolve(request.url)


class ExplodingBatch(ODataBatch):
    async def _execute_impl(self) -> None:
        raise ConnectionError("network down")


async def _settle_loop(ticks: int = 5) -> None:
    for _ in range(ticks):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_execute_without_dependencies_runs_immediately():
    batch = RecordingBatch()

    await asyncio.wait_for(batch.execute(), timeout=1)

    assert batch.transmitted.is_set()


@pytest.mark.asyncio
async def test_wait_for_dependencies_runs_at_least_two_passes():
    assert await RecordingBatch().wait_for_dependencies() == 2


@pytest.mark.asyncio
async def test_execute_waits_for_every_dependency():
    """Test that transmission starts only after all N dependencies are released."""
    batch = RecordingBatch()
    releases = [batch.add_dependency() for _ in range(3)]
    execution = asyncio.create_task(batch.execute())

    for release in releases[:-1]:
        release()
        await _settle_loop()
        assert not batch.transmitted.is_set()

    releases[-1]()
    await asyncio.wait_for(execution, timeout=1)

    assert batch.transmitted.is_set()


@pytest.mark.asyncio
async def test_release_is_idempotent():
    batch = RecordingBatch()
    release = batch.add_dependency()

    release()
    release()

    await asyncio.wait_for(batch.execute(), timeout=1)


@pytest.mark.asyncio
async def test_dependency_added_while_waiting_is_awaited():
    """Test that a dependency registered as another is released still blocks the batch."""
    batch = RecordingBatch()
    release_first = batch.add_dependency()
    execution = asyncio.create_task(batch.execute())
    await _settle_loop()

    release_late = batch.add_dependency()
    release_first()
    await _settle_loop()
    assert not batch.transmitted.is_set()

    release_late()
    await asyncio.wait_for(execution, timeout=1)

    assert batch.transmitted.is_set()


@pytest.mark.asyncio
async def test_requests_settle_in_registration_order():
    batch = RecordingBatch()
    futures = [
        batch.add(url=f"{SERVICE_URL}/{name}", method="get", options=None, parser=TextParser())
        for name in ("A", "B", "C")
    ]
    order: list[str] = []
    for future in futures:
        future.add_done_callback(lambda done: order.append(done.result()))

    await batch.execute()
    await _settle_loop()

    assert [request.method for request in batch.requests] == ["GET"] * 3
    assert order == [f"{SERVICE_URL}/{name}" for name in ("A", "B", "C")]


@pytest.mark.asyncio
async def test_add_copies_options():
    batch = RecordingBatch()
    options = {"headers": {"x-test": "1"}}

    batch.add(url=SERVICE_URL, method="POST", options=options, parser=TextParser())
    options["json"] = {"late": True}

    assert "json" not in batch.requests[0].options


@pytest.mark.asyncio
async def test_transmission_failure_rejects_every_request():
    """Test that a transport failure fails all entries with the same error and propagates."""
    batch = ExplodingBatch()
    futures = [
        batch.add(url=f"{SERVICE_URL}/{name}", method="GET", options=None, parser=TextParser())
        for name in ("A", "B")
    ]

    with pytest.raises(ConnectionError) as exc_info:
        await batch.execute()

    for future in futures:
        assert future.exception() is exc_info.value


@pytest.mark.asyncio
async def test_sequential_batch_sends_in_order(client_factory, service: FakeODataService):
    batch = SequentialBatch(client_factory=client_factory)
    people = batch.add(
        url=f"{SERVICE_URL}/People", method="GET", options=None, parser=ODataDefaultParser()
    )
    created = batch.add(
        url=f"{SERVICE_URL}/People",
        method="POST",
        options={"json": {"name": "Linus"}},
        parser=ODataDefaultParser(),
    )
    me = batch.add(
        url=f"{SERVICE_URL}/Me", method="GET", options=None, parser=ODataDefaultParser()
    )

    await batch.execute()

    assert await people == [{"name": "Ada"}, {"name": "Grace"}]
    assert await created == {"created": {"name": "Linus"}}
    assert await me == {"name": "Ada"}
    assert [request.method for request in service.requests] == ["GET", "POST", "GET"]


@pytest.mark.asyncio
async def test_sequential_batch_parse_failure_only_fails_its_entry(client_factory):
    """Test that one failing entry does not fail the others."""
    batch = SequentialBatch(client_factory=client_factory)
    missing = batch.add(
        url=f"{SERVICE_URL}/Nothing", method="GET", options=None, parser=ODataDefaultParser()
    )
    plain = batch.add(
        url=f"{SERVICE_URL}/Plain", method="GET", options=None, parser=ODataDefaultParser()
    )

    await batch.execute()

    with pytest.raises(ProcessHttpClientResponseException):
        await missing
    assert await plain == {"a": 1}


@pytest.mark.asyncio
async def test_json_batch_sends_one_request(client_factory, service: FakeODataService):
    """Test that every entry travels in one $batch POST and is parsed on its own."""
    batch = JsonBatch(base_url=f"{SERVICE_URL}/", client_factory=client_factory)
    people = batch.add(
        url=f"{SERVICE_URL}/People", method="GET", options=None, parser=ODataDefaultParser()
    )
    airlines = batch.add(
        url=f"{SERVICE_URL}/Airlines", method="GET", options=None, parser=ODataDefaultParser()
    )
    missing = batch.add(
        url=f"{SERVICE_URL}/Nothing", method="GET", options=None, parser=ODataDefaultParser()
    )

    await batch.execute()

    assert len(service.requests) == 1
    assert service.requests[0].url == httpx.URL(f"{SERVICE_URL}/$batch")
    assert await people == [{"name": "Ada"}, {"name": "Grace"}]
    assert await airlines == [{"code": "AA"}]
    with pytest.raises(ProcessHttpClientResponseException) as exc_info:
        await missing
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_json_batch_payload(client_factory, service: FakeODataService):
    batch = JsonBatch(base_url=SERVICE_URL, client_factory=client_factory, batch_id="b1")
    batch.add(
        url=f"{SERVICE_URL}/People",
        method="post",
        options={"json": {"name": "Linus"}, "headers": {"X-Test": "1"}},
        parser=ODataDefaultParser(),
    )
    batch.add(url=f"{SERVICE_URL}/Me", method="GET", options=None, parser=ODataDefaultParser())

    await batch.execute()

    assert service.batch_payloads == [
        {
            "requests": [
                {
                    "id": "0",
                    "method": "POST",
                    "url": f"{SERVICE_URL}/People",
                    "body": {"name": "Linus"},
                    "headers": {"x-test": "1", "content-type": "application/json"},
                },
                {"id": "1", "method": "GET", "url": f"{SERVICE_URL}/Me"},
            ]
        }
    ]


@pytest.mark.asyncio
async def test_json_batch_atomic_payload():
    """Test that an atomic batch puts every entry in one atomicity group."""
    plain = JsonBatch(base_url=SERVICE_URL)
    atomic = JsonBatch(base_url=SERVICE_URL, batch_id="group", atomic=True)
    for batch in (plain, atomic):
        batch.add(url=f"{SERVICE_URL}/A", method="DELETE", options=None, parser=TextParser())
        batch.add(
            url=f"{SERVICE_URL}/B", method="PATCH", options={"content": b"x"}, parser=TextParser()
        )

    entries = atomic.build_payload()["requests"]

    assert [entry["atomicityGroup"] for entry in entries] == ["group", "group"]
    assert entries[1]["body"] == "x"
    assert entries[1]["headers"] == {"content-type": "application/json"}
    assert "atomicityGroup" not in plain.build_payload()["requests"][0]


@pytest.mark.asyncio
async def test_json_batch_missing_result_rejects_entry():
    """Test that an entry without a matching response fails while others resolve."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"responses": [{"id": "0", "status": 200, "body": {"value": [1]}}]}
        )

    transport = httpx.MockTransport(handler=handler)
    batch = JsonBatch(base_url=SERVICE_URL, client_factory=lambda: HttpxClient(transport=transport))
    first = batch.add(
        url=f"{SERVICE_URL}/A", method="GET", options=None, parser=ODataDefaultParser()
    )
    second = batch.add(
        url=f"{SERVICE_URL}/B", method="GET", options=None, parser=ODataDefaultParser()
    )

    await batch.execute()

    assert await first == [1]
    with pytest.raises(RuntimeError, match="Missing result for batched GET"):
        await second


@pytest.mark.asyncio
async def test_json_batch_http_failure_fails_every_entry(client_factory, service: FakeODataService):
    service.fail_batch = True
    batch = JsonBatch(base_url=SERVICE_URL, client_factory=client_factory)
    futures = [
        batch.add(url=f"{SERVICE_URL}/People", method="GET", options=None, parser=TextParser())
        for _ in range(2)
    ]

    with pytest.raises(ProcessHttpClientResponseException) as exc_info:
        await batch.execute()

    assert exc_info.value.status == 500
    for future in futures:
        assert future.exception() is exc_info.value


@pytest.mark.asyncio
async def test_empty_json_batch_sends_nothing(client_factory, service: FakeODataService):
    await JsonBatch(base_url=SERVICE_URL, client_factory=client_factory).execute()

    assert service.requests == []
