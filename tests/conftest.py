from typing import Iterator, List, Optional, Tuple

from unittest.mock import MagicMock, patch
import pytest
from starlette.requests import Request


# Configure anyio to only use asyncio backend
@pytest.fixture
def anyio_backend() -> str:
    """Force tests to use asyncio backend only."""
    return "asyncio"


@pytest.fixture(autouse=True, scope="session")
def mock_logger() -> Iterator[MagicMock]:
    with patch("rbicache.logging._logger", MagicMock()) as mock_logger:
        mock_logger.log.return_value = None
        yield mock_logger


class FakeClock:
    """Manually advanced clock returning epoch-style seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_request(
    method: str = "GET",
    path: str = "/api/residents",
    query: str = "",
    headers: Optional[dict] = None,
    client: Tuple[str, int] = ("127.0.0.1", 50000),
) -> Request:
    """Build a bare Starlette request without running an app."""
    raw_headers: List[Tuple[bytes, bytes]] = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in (headers or {}).items()
    ]
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "server": ("testserver", 80),
        "client": client,
        "root_path": "",
        "path": path,
        "raw_path": path.encode(),
        "query_string": query.encode(),
        "headers": raw_headers,
    }
    return Request(scope)


@pytest.fixture
def request_factory():
    return make_request
