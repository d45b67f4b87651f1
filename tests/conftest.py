from pathlib import Path

import pytest

from odatapipe.config import RuntimeConfig, reset_default_config
from odatapipe.transport import HttpxClient
from tests.mocks.odata import FakeODataService, make_odata_transport

SERVICE_URL = "https://example.com/odata"


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("ODATAPIPE_CACHE_PATH", str(tmp_path / "cache.sqlite3"))
    for name in (
        "ODATAPIPE_DEFAULT_CACHING_STORE",
        "ODATAPIPE_DEFAULT_CACHING_TIMEOUT_SECONDS",
        "ODATAPIPE_GLOBAL_CACHE_DISABLE",
    ):
        # set first so monkeypatch restores the variable after .env loads
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    reset_default_config()
    yield
    reset_default_config()


@pytest.fixture
def service() -> FakeODataService:
    """
    Create a fake OData service with a few entity sets.
    """
    return FakeODataService(
        routes={
            "/odata/People": {"value": [{"name": "Ada"}, {"name": "Grace"}]},
            "/odata/Airlines": {"d": {"results": [{"code": "AA"}]}},
            "/odata/Me": {"d": {"name": "Ada"}},
            "/odata/Plain": {"a": 1},
        }
    )


@pytest.fixture
def client_factory(service: FakeODataService):
    """
    Build a client factory whose clients talk to the fake service.
    """
    transport = make_odata_transport(service=service)
    return lambda: HttpxClient(transport=transport)


@pytest.fixture
def config() -> RuntimeConfig:
    return RuntimeConfig()
