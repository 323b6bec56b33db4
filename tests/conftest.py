"""Shared fixtures for the Ascent workspace test suite."""

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport
from websockets.protocol import State

# Ensure the project root is on sys.path so 'workspace' package resolves
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# ---------------------------------------------------------------------------
# Fake socket standing in for a websockets ClientConnection
# ---------------------------------------------------------------------------

class FakeConnection:
    """Records outbound frames; inbound frames are injected with push()."""

    def __init__(self):
        self.state = State.OPEN
        self.sent: list[str] = []
        self.close_calls = 0
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, frame: str) -> None:
        self.sent.append(frame)

    def push(self, raw) -> None:
        self._inbox.put_nowait(raw)

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self._inbox.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    async def close(self) -> None:
        self.close_calls += 1
        self.state = State.CLOSED
        self._inbox.put_nowait(None)

    def frames(self) -> list[dict]:
        return [json.loads(f) for f in self.sent]

    def types(self) -> list[str]:
        return [f["type"] for f in self.frames()]


class FakeConnector:
    """Callable passed as TransportSession(connector=...)."""

    def __init__(self, *, fail: bool = False, gate: asyncio.Event | None = None):
        self.fail = fail
        self.gate = gate
        self.uris: list[str] = []
        self.connections: list[FakeConnection] = []

    async def __call__(self, uri: str) -> FakeConnection:
        self.uris.append(uri)
        if self.fail:
            raise OSError("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        if self.gate is not None:
            # Hold the handshake open until the test releases it.
            await self.gate.wait()
        return conn

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


async def settle(rounds: int = 10) -> None:
    """Let reader/writer tasks run until the queues are drained."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Lesson data
# ---------------------------------------------------------------------------

def ide_payload(**overrides) -> dict:
    """A minimal ascent-ide response body with two JavaScript files."""
    payload = {
        "lesson": {
            "id": 42,
            "title": "Sum Two Numbers",
            "description": "Return a + b.",
            "course_id": 7,
            "teacher_id": "t-1",
            "created_at": "2024-01-01T00:00:00",
        },
        "files": [
            {"id": "f1", "filename": "a.js", "content": "const a = 1;\n"},
            {"id": "f2", "filename": "b.js", "content": "const b = 2;\n"},
        ],
        "testCases": [{"description": "adds", "input": "sum(1, 2)", "expectedOutput": "3"}],
        "submissionHistory": [],
        "gradedSubmission": None,
        "courseId": "7",
        "previousLessonId": None,
        "nextLessonId": None,
    }
    payload.update(overrides)
    return payload


def make_fake_api(*, token: str | None = "test-token", ide: dict | None = None):
    """PlatformClient stand-in with every endpoint as an AsyncMock."""
    from workspace.models import Accepted, IdeState, TestResult

    api = MagicMock()
    api.token = token
    api.get_ide_state = AsyncMock(return_value=IdeState.model_validate(ide or ide_payload()))
    api.save_progress = AsyncMock(return_value={"message": "Progress saved successfully."})
    api.run_tests = AsyncMock(
        return_value=TestResult(passed=2, failed=0, total=2, raw_output="PASS a.js\nPASS b.js")
    )
    api.submit = AsyncMock(return_value=Accepted(message="Solution submitted successfully!"))
    api.get_hint = AsyncMock(return_value="What does the function return?")
    api.get_conceptual_feedback = AsyncMock(return_value=Accepted())
    api.aclose = AsyncMock()
    return api


# ---------------------------------------------------------------------------
# Controller factories
# ---------------------------------------------------------------------------

def make_controller(api=None, *, connector: FakeConnector | None = None, **kwargs):
    """Build a WorkspaceController wired to fakes.

    Navigation targets are collected in ``controller.routes`` and the fake
    socket connector is exposed as ``controller.connector``.
    """
    from workspace.config import WorkspaceConfig
    from workspace.controller import WorkspaceController
    from workspace.transport import TransportSession

    connector = connector or FakeConnector()
    routes: list[str] = []
    kwargs.setdefault("config", WorkspaceConfig(api_url="http://testserver", redirect_delay=0.01))
    controller = WorkspaceController(
        kwargs.pop("lesson_id", "42"),
        api or make_fake_api(),
        navigate=routes.append,
        transport_factory=lambda: TransportSession("ws://testserver", connector=connector),
        **kwargs,
    )
    controller.routes = routes
    controller.connector = connector
    return controller


def make_bare_controller(*, files: list[dict] | None = None, user_id: str | None = "u-1"):
    """Create a READY WorkspaceController with __new__ (skip __init__).

    Only the state touched by the inbound live-homework handlers is set up;
    callers add more as needed.
    """
    from workspace.churn import ChurnTracker, PasteTracker
    from workspace.controller import WorkspaceController, WorkspaceState
    from workspace.file_store import FileSetStore
    from workspace.models import WorkspaceFile

    controller = WorkspaceController.__new__(WorkspaceController)
    controller.files = FileSetStore()
    controller.files.load([WorkspaceFile.model_validate(f) for f in (files or ide_payload()["files"])])
    controller.churn = ChurnTracker(controller.files.active.content)
    controller.paste = PasteTracker()
    controller.state = WorkspaceState.READY
    controller.user_id = user_id
    controller.is_frozen = False
    controller.is_controlled = False
    controller.transport = None
    controller.teacher_session_id = None
    controller._alive = True
    return controller


# ---------------------------------------------------------------------------
# Dev backend
# ---------------------------------------------------------------------------

@pytest.fixture
def dev_app(monkeypatch):
    """The dev backend with a freshly seeded store and open token policy."""
    from workspace import dev_server

    monkeypatch.setattr(dev_server, "DEV_TOKEN", "")
    dev_server.store.reset()
    yield dev_server.app
    dev_server.store.reset()


@pytest.fixture
async def platform(dev_app):
    """PlatformClient talking to the dev backend in-process."""
    from workspace.api_client import PlatformClient

    async with PlatformClient(
        "http://testserver", "test-token", transport=ASGITransport(app=dev_app)
    ) as api:
        yield api
