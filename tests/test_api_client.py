"""Tests for workspace.api_client -- PlatformClient against the dev backend.

Requests go through httpx.ASGITransport straight into the FastAPI app (no
real server needed). Transport failures are simulated with httpx.MockTransport.
"""

import httpx
import pytest
from httpx import ASGITransport

from workspace.api_client import ApiError, PlatformClient
from workspace.auth import AuthRequiredError
from workspace.models import Accepted, ConceptualHint, Course, WorkspaceFile


def _files(*pairs) -> list[WorkspaceFile]:
    return [WorkspaceFile(id=f"id-{i}", filename=name, content=content) for i, (name, content) in enumerate(pairs)]


SOLVED = _files(("main.js", "module.exports = (a, b) => a + b;\n"), ("helpers.js", "module.exports = {};\n"))


# ---------------------------------------------------------------------------
# Lesson workspace
# ---------------------------------------------------------------------------

class TestIdeState:

    @pytest.mark.asyncio
    async def test_get_ide_state(self, platform):
        ide = await platform.get_ide_state("1")
        assert ide.lesson.title == "Sum Two Numbers"
        assert [f.filename for f in ide.files] == ["main.js", "helpers.js"]
        assert ide.test_cases[0].expected_output == "3"
        assert ide.course_id == "1"
        assert ide.submission_history == []

    @pytest.mark.asyncio
    async def test_unknown_lesson(self, platform):
        with pytest.raises(ApiError) as exc_info:
            await platform.get_ide_state("999")
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Lesson not found."
        assert not exc_info.value.is_network_error

    @pytest.mark.asyncio
    async def test_get_lesson(self, platform):
        lesson = await platform.get_lesson("1")
        assert lesson.id == "1"
        assert lesson.course_id == "1"

    @pytest.mark.asyncio
    async def test_saved_progress_is_restored(self, platform):
        await platform.save_progress("1", _files(("main.js", "// draft\n")))
        ide = await platform.get_ide_state("1")
        assert [(f.filename, f.content) for f in ide.files] == [("main.js", "// draft\n")]

    @pytest.mark.asyncio
    async def test_save_empty_rejected(self, platform):
        with pytest.raises(ApiError) as exc_info:
            await platform.save_progress("1", [])
        assert exc_info.value.status_code == 400


class TestRunTestsAndSubmit:

    @pytest.mark.asyncio
    async def test_run_tests_reports_per_file(self, platform):
        ide = await platform.get_ide_state("1")
        result = await platform.run_tests("1", ide.files)
        assert (result.passed, result.failed, result.total) == (1, 1, 2)
        assert "FAIL main.js: unfinished TODO" in result.raw_output

    @pytest.mark.asyncio
    async def test_failing_submission_raises(self, platform):
        ide = await platform.get_ide_state("1")
        with pytest.raises(ApiError) as exc_info:
            await platform.submit("1", ide.files, time_to_solve_seconds=10, code_churn=0)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Your solution did not pass all the tests."

    @pytest.mark.asyncio
    async def test_first_pass_gets_conceptual_hint_then_accepted(self, platform):
        outcome = await platform.submit("1", SOLVED, time_to_solve_seconds=60, code_churn=3, copy_paste_activity=10)
        assert isinstance(outcome, ConceptualHint)
        assert "objective" in outcome.message
        outcome = await platform.submit("1", SOLVED, time_to_solve_seconds=70, code_churn=4)
        assert isinstance(outcome, Accepted)

    @pytest.mark.asyncio
    async def test_submission_history_recorded(self, platform):
        await platform.submit("1", SOLVED, time_to_solve_seconds=60, code_churn=3, copy_paste_activity=25)
        ide = await platform.get_ide_state("1")
        entry = ide.submission_history[-1]
        assert entry.is_correct is True
        assert entry.code_churn == 3
        assert entry.copy_paste_activity == 25
        # Latest submission becomes the starting code.
        assert ide.files[0].content == SOLVED[0].content


# ---------------------------------------------------------------------------
# AI assistance
# ---------------------------------------------------------------------------

class TestAi:

    @pytest.mark.asyncio
    async def test_get_hint(self, platform):
        hint = await platform.get_hint("1", "return a - b;", "")
        assert "return a - b;" in hint

    @pytest.mark.asyncio
    async def test_get_hint_requires_selection(self, platform):
        with pytest.raises(ApiError) as exc_info:
            await platform.get_hint("1", "", "")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_conceptual_feedback(self, platform):
        outcome = await platform.get_conceptual_feedback("1", "const x = a + b; return x;")
        assert isinstance(outcome, ConceptualHint)


# ---------------------------------------------------------------------------
# Course authoring
# ---------------------------------------------------------------------------

class TestCourses:

    @pytest.mark.asyncio
    async def test_create_and_publish_course(self, platform):
        course = await platform.create_course("Algorithms", "Sorting and searching")
        assert isinstance(course, Course)
        assert course.is_published is False
        updated = await platform.set_course_published(course.id, True)
        assert updated["is_published"] is True

    @pytest.mark.asyncio
    async def test_publish_unknown_course(self, platform):
        with pytest.raises(ApiError) as exc_info:
            await platform.set_course_published("nope", True)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_create_lesson_and_chapter(self, platform):
        lesson = await platform.create_lesson({
            "title": "Reverse a string",
            "files": [{"filename": "index.js", "content": "// reverse\n"}],
            "courseId": "1",
        })
        ide = await platform.get_ide_state(lesson["id"])
        assert ide.files[0].filename == "index.js"
        chapter = await platform.create_chapter("1", "Intro", "Welcome!")
        assert chapter["lesson_type"] == "chapter"


# ---------------------------------------------------------------------------
# Auth and transport failures
# ---------------------------------------------------------------------------

class TestFailures:

    @pytest.mark.asyncio
    async def test_missing_token_raises_before_request(self, dev_app):
        async with PlatformClient("http://testserver", None, transport=ASGITransport(app=dev_app)) as api:
            with pytest.raises(AuthRequiredError):
                await api.get_ide_state("1")

    @pytest.mark.asyncio
    async def test_wrong_token_rejected(self, dev_app, monkeypatch):
        from workspace import dev_server

        monkeypatch.setattr(dev_server, "DEV_TOKEN", "secret")
        async with PlatformClient("http://testserver", "guess", transport=ASGITransport(app=dev_app)) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.get_ide_state("1")
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Unauthorized"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with PlatformClient("http://testserver", "tok", transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.run_tests("1", SOLVED)
        assert exc_info.value.is_network_error

    @pytest.mark.asyncio
    async def test_error_body_preserved(self):
        body = {"passed": 0, "failed": 1, "total": 1, "results": "An internal error occurred"}

        def handler(request):
            return httpx.Response(500, json=body)

        async with PlatformClient("http://testserver", "tok", transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.run_tests("1", SOLVED)
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == body

    @pytest.mark.asyncio
    async def test_bearer_header_sent(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"hint": "ok"})

        async with PlatformClient("http://testserver/", "tok", transport=httpx.MockTransport(handler)) as api:
            assert await api.get_hint("1", "x", "") == "ok"
        assert seen["auth"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_missing_hint_field(self):
        def handler(request):
            return httpx.Response(200, json={})

        async with PlatformClient("http://testserver", "tok", transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(ApiError):
                await api.get_hint("1", "x", "")

    @pytest.mark.asyncio
    async def test_unexpected_result_shape(self):
        def handler(request):
            return httpx.Response(200, json={"message": "ok"})

        async with PlatformClient("http://testserver", "tok", transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.run_tests("1", SOLVED)
        assert exc_info.value.message == "Invalid response body"
        assert exc_info.value.status_code == 200
        assert exc_info.value.body == {"message": "ok"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [b"", b'{"files": []}'])
    async def test_ide_state_body_must_validate(self, content):
        def handler(request):
            return httpx.Response(200, content=content, headers={"Content-Type": "application/json"})

        async with PlatformClient("http://testserver", "tok", transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.get_ide_state("1")
        assert exc_info.value.message == "Invalid response body"
        assert not exc_info.value.is_network_error
