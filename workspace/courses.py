"""Course authoring actions with optimistic local updates."""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from .api_client import ApiError, PlatformClient
from .auth import AuthRequiredError
from .models import Course

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class MutationResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: str | None = None


async def optimistic_update(
    apply: Callable[[], None],
    revert: Callable[[], None],
    call: Callable[[], Awaitable[T]],
) -> MutationResult[T]:
    """Apply a tentative local change, await the server, undo it on failure.

    API and auth failures come back as a failed ``MutationResult``; anything
    else propagates once the change has been undone.
    """
    apply()
    try:
        value = await call()
    except (ApiError, AuthRequiredError) as e:
        revert()
        message = e.message if isinstance(e, ApiError) else str(e)
        logger.info("Optimistic update reverted: %s", message)
        return MutationResult(ok=False, error=message)
    except BaseException:
        revert()
        raise
    return MutationResult(ok=True, value=value)


class CourseManager:
    def __init__(self, api: PlatformClient):
        self.api = api

    async def set_published(self, course: Course, is_published: bool) -> MutationResult[dict]:
        original = course.is_published

        def _apply():
            course.is_published = is_published

        def _revert():
            course.is_published = original

        return await optimistic_update(
            _apply, _revert, lambda: self.api.set_course_published(course.id, is_published)
        )

    async def create_course(self, title: str, description: str = "") -> Course:
        if not title or not title.strip():
            raise ValueError("Title is required.")
        return await self.api.create_course(title.strip(), description)

    async def create_lesson(
        self,
        course_id: str,
        title: str,
        files: list[dict],
        *,
        description: str = "",
        objective: str = "",
        test_code: str = "",
        concepts: list[str] | None = None,
        lesson_type: str = "algorithmic",
    ) -> dict[str, Any]:
        if not title or not title.strip() or not course_id or not files:
            raise ValueError("Title, files, and courseId are required.")
        payload = {
            "title": title.strip(),
            "description": description,
            "objective": objective,
            "files": files,
            "courseId": course_id,
            "testCode": test_code,
            "concepts": concepts or [],
            "lesson_type": lesson_type,
        }
        return await self.api.create_lesson(payload)

    async def create_chapter(self, course_id: str, title: str, content: str) -> dict[str, Any]:
        if not title or not content or not course_id:
            raise ValueError("Title, content, and courseId are required.")
        return await self.api.create_chapter(course_id, title, content)
