"""Async REST client for the course platform API.

All endpoints share one ``httpx.AsyncClient`` bound to the configured base
URL. Non-2xx responses and transport failures are both raised as
``ApiError`` so call sites only have one thing to catch.
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from .auth import AuthRequiredError, bearer_headers
from .models import Course, IdeState, Lesson, SubmitOutcome, TestResult, WorkspaceFile, parse_feedback

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key], body
    return f"Request failed with status {response.status_code}", body


def _files_payload(files: list[WorkspaceFile]) -> list[dict]:
    return [f.model_dump() for f in files]


class PlatformClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self, method: str, path: str, *, json: Any = None, model: type[BaseModel] | None = None
    ) -> Any:
        """Send one request. With ``model``, the 2xx body must validate into it."""
        if not self.token:
            raise AuthRequiredError("No auth token available; log in first.")
        try:
            response = await self._client.request(
                method, path, json=json, headers=bearer_headers(self.token)
            )
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ApiError(str(e) or type(e).__name__) from e
        if response.is_error:
            message, body = _error_message(response)
            logger.info("%s %s -> %d: %s", method, path, response.status_code, message)
            raise ApiError(message, status_code=response.status_code, body=body)
        data = None
        if response.content:
            try:
                data = response.json()
            except ValueError as e:
                raise ApiError("Invalid JSON in response", status_code=response.status_code) from e
        if model is None:
            return data
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning("%s %s returned an unexpected body: %s", method, path, e)
            raise ApiError("Invalid response body", status_code=response.status_code, body=data) from e

    # ------------------------------------------------------------------
    # Lesson workspace
    # ------------------------------------------------------------------

    async def get_ide_state(self, lesson_id: str) -> IdeState:
        return await self._request("GET", f"/api/lessons/{lesson_id}/ascent-ide", model=IdeState)

    async def get_lesson(self, lesson_id: str) -> Lesson:
        return await self._request("GET", f"/api/lessons/{lesson_id}", model=Lesson)

    async def save_progress(self, lesson_id: str, files: list[WorkspaceFile]) -> dict:
        data = await self._request(
            "POST", f"/api/lessons/{lesson_id}/save-progress", json={"files": _files_payload(files)}
        )
        return data or {}

    async def run_tests(self, lesson_id: str, files: list[WorkspaceFile]) -> TestResult:
        return await self._request(
            "POST", f"/api/lessons/{lesson_id}/run-tests",
            json={"files": _files_payload(files)}, model=TestResult,
        )

    async def submit(
        self,
        lesson_id: str,
        files: list[WorkspaceFile],
        *,
        time_to_solve_seconds: int,
        code_churn: int,
        copy_paste_activity: int = 0,
    ) -> SubmitOutcome:
        payload = {
            "files": _files_payload(files),
            "lessonId": lesson_id,
            "time_to_solve_seconds": time_to_solve_seconds,
            "code_churn": code_churn,
            "copy_paste_activity": copy_paste_activity,
        }
        data = await self._request("POST", f"/api/lessons/{lesson_id}/submit", json=payload)
        return parse_feedback(data or {})

    # ------------------------------------------------------------------
    # AI assistance
    # ------------------------------------------------------------------

    async def get_hint(self, lesson_id: str, selected_code: str, prompt_modifier: str) -> str:
        data = await self._request(
            "POST",
            "/api/ai/get-hint",
            json={"selectedCode": selected_code, "lessonId": lesson_id, "promptModifier": prompt_modifier},
        )
        hint = (data or {}).get("hint")
        if not isinstance(hint, str):
            raise ApiError("The AI assistant could not provide a hint.", body=data)
        return hint

    async def get_conceptual_feedback(self, lesson_id: str, student_code: str) -> SubmitOutcome:
        data = await self._request(
            "POST",
            "/api/ai/get-conceptual-feedback",
            json={"studentCode": student_code, "lessonId": lesson_id},
        )
        return parse_feedback(data or {})

    # ------------------------------------------------------------------
    # Course authoring
    # ------------------------------------------------------------------

    async def set_course_published(self, course_id: str, is_published: bool) -> dict:
        data = await self._request(
            "PATCH", f"/api/courses/{course_id}/publish", json={"is_published": is_published}
        )
        return data or {}

    async def create_course(self, title: str, description: str = "") -> Course:
        return await self._request(
            "POST", "/api/courses", json={"title": title, "description": description}, model=Course
        )

    async def create_lesson(self, payload: dict) -> dict:
        return await self._request("POST", "/api/lessons", json=payload) or {}

    async def create_chapter(self, course_id: str, title: str, content: str) -> dict:
        return await self._request(
            "POST", "/api/lessons/chapter", json={"title": title, "content": content, "courseId": course_id}
        ) or {}
