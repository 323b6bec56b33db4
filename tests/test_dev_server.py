"""Tests for workspace.dev_server -- REST error shapes and the workspace socket."""

import json

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from workspace import dev_server


@pytest.fixture
async def client(dev_app):
    """Async HTTP client for testing REST endpoints."""
    transport = ASGITransport(app=dev_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def ws_app(dev_app):
    """Wrap the FastAPI app in a synchronous TestClient for WebSocket tests."""
    return TestClient(dev_app, raise_server_exceptions=False)


AUTH = {"Authorization": "Bearer test-token"}


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------

class TestRest:

    @pytest.mark.asyncio
    async def test_health_check_needs_no_auth(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_missing_bearer_token(self, client):
        resp = await client.get("/api/lessons/1/ascent-ide")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_run_tests_without_files(self, client):
        resp = await client.post("/api/lessons/1/run-tests", json={"files": []}, headers=AUTH)
        assert resp.status_code == 200
        data = resp.json()
        assert (data["passed"], data["failed"], data["total"]) == (1, 0, 1)

    @pytest.mark.asyncio
    async def test_empty_file_fails(self, client):
        files = [{"filename": "a.js", "content": "   "}, {"filename": "b.js", "content": "ok"}]
        resp = await client.post("/api/lessons/1/run-tests", json={"files": files}, headers=AUTH)
        assert resp.json()["results"] == "FAIL a.js: file is empty\nPASS b.js"

    @pytest.mark.asyncio
    async def test_create_course_requires_title(self, client):
        resp = await client.post("/api/courses", json={"title": ""}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Title is required."}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("selected", ["", "   ", "\n\t\n"])
    async def test_hint_requires_selected_code(self, client, selected):
        resp = await client.post(
            "/api/ai/get-hint", json={"selectedCode": selected, "lessonId": "1"}, headers=AUTH
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Selected code and lesson ID are required."}

    @pytest.mark.asyncio
    async def test_chapter_requires_known_course(self, client):
        resp = await client.post(
            "/api/lessons/chapter", json={"title": "T", "content": "C", "courseId": "nope"}, headers=AUTH
        )
        assert resp.status_code == 404


class TestGradeFiles:

    def test_accepts_name_or_filename(self):
        summary = dev_server.grade_files([{"name": "a.js", "content": "x"}, {"filename": "b.js", "content": "TODO"}])
        assert summary == {
            "passed": 1, "failed": 1, "total": 2,
            "results": "PASS a.js\nFAIL b.js: unfinished TODO",
        }


# ---------------------------------------------------------------------------
# Workspace socket
# ---------------------------------------------------------------------------

def _frame(msg_type, payload=None):
    msg = {"type": msg_type}
    if payload is not None:
        msg["payload"] = payload
    return json.dumps(msg)


class TestWorkspaceSocket:

    def test_terminal_input_echoed(self, ws_app):
        with ws_app.websocket_connect("/?sessionId=s1&token=t&lessonId=1") as ws:
            ws.send_text(_frame("TERMINAL_IN", "ls\r"))
            assert ws.receive_json() == {"type": "TERMINAL_OUT", "payload": "ls\r"}

    def test_malformed_frames_ignored(self, ws_app):
        with ws_app.websocket_connect("/?sessionId=s1&token=t&lessonId=1") as ws:
            ws.send_text("{garbage")
            ws.send_text(json.dumps([1, 2, 3]))
            ws.send_text(_frame("UNKNOWN", "x"))
            ws.send_text(_frame("TERMINAL_IN", "pwd\r"))
            assert ws.receive_json() == {"type": "TERMINAL_OUT", "payload": "pwd\r"}

    def test_live_session_bookkeeping(self, ws_app):
        payload = {"files": [{"name": "a.js", "language": "javascript", "content": "x"}], "activeFileName": "a.js"}
        with ws_app.websocket_connect("/?sessionId=s1&token=t&teacherSessionId=T1&lessonId=1") as ws:
            ws.send_text(_frame("HOMEWORK_JOIN"))
            ws.send_text(_frame("HOMEWORK_CODE_UPDATE", payload))
            ws.send_text(_frame("HOMEWORK_TERMINAL_IN", "node a.js\r"))
            assert ws.receive_json()["payload"] == "node a.js\r"
            assert dev_server.store.live_workspaces["T1"]["s1"] == payload

            ws.send_text(_frame("HOMEWORK_LEAVE"))
            ws.send_text(_frame("HOMEWORK_TERMINAL_IN", "\r"))
            ws.receive_json()
            assert "s1" not in dev_server.store.live_workspaces["T1"]

    def test_bad_token_rejected(self, ws_app, monkeypatch):
        monkeypatch.setattr(dev_server, "DEV_TOKEN", "secret")
        with pytest.raises(WebSocketDisconnect):
            with ws_app.websocket_connect("/?sessionId=s1&token=wrong&lessonId=1") as ws:
                ws.receive_text()
