"""Shared test fixtures and configuration for backend tests."""
import asyncio
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from roomcast.chat.hub import ChatHub, set_hub
from roomcast.config import ChatSettings
from roomcast.main import app


class FakeWebSocket:
    """Records every event the dispatcher sends to it."""

    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.close_code: Optional[int] = None

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)

    def types(self) -> List[str]:
        return [m["type"] for m in self.sent]

    def of_type(self, event_type: str) -> List[dict]:
        return [m for m in self.sent if m["type"] == event_type]

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    @property
    def closed(self) -> bool:
        return self.close_code is not None

    def clear(self) -> None:
        self.sent.clear()


class BrokenWebSocket(FakeWebSocket):
    """A connection whose peer has gone away."""

    async def send_json(self, data: dict) -> None:
        raise RuntimeError("connection closed")


class StallingWebSocket(FakeWebSocket):
    """A connection whose next send blocks for a while before completing."""

    def __init__(self) -> None:
        super().__init__()
        self._stall = 0.0

    def stall_next(self, seconds: float) -> None:
        self._stall = seconds

    async def send_json(self, data: dict) -> None:
        stall, self._stall = self._stall, 0.0
        if stall:
            await asyncio.sleep(stall)
        self.sent.append(data)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def hub():
    """Install a fresh ChatHub as the process-wide instance for one test."""
    fresh = ChatHub(ChatSettings())
    set_hub(fresh)
    yield fresh
    set_hub(None)


@pytest.fixture
def api_client(hub):
    """Provide a TestClient for the main FastAPI app.

    Entered as a context manager so the lifespan runs and every WebSocket
    session shares one event loop.
    """
    with TestClient(app) as test_client:
        yield test_client
