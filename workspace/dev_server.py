"""Development stand-in for the course platform.

Serves the REST endpoints and the workspace socket the client talks to, with
an in-memory catalogue seeded with one course and lesson. There is no real
grading: a file passes when it is non-empty and has no ``TODO`` left in it.
Run it with ``python run.py``.
"""

import hmac
import json
import logging
import os
from datetime import datetime
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.requests import Request

from .auth import get_token_from_header
from .hints import DIRECT_MODIFIER, HINT_BASED_MODIFIER
from .ws_constants import (
    MSG_HOMEWORK_CODE_UPDATE,
    MSG_HOMEWORK_JOIN,
    MSG_HOMEWORK_LEAVE,
    MSG_HOMEWORK_TERMINAL_IN,
    MSG_TERMINAL_IN,
    MSG_TERMINAL_OUT,
    PARAM_LESSON_ID,
    PARAM_SESSION_ID,
    PARAM_TEACHER_SESSION_ID,
    PARAM_TOKEN,
)

logger = logging.getLogger(__name__)

# --- Configuration ---

DEV_TOKEN = os.environ.get("ASCENT_DEV_TOKEN", "")


def token_is_valid(token: str | None) -> bool:
    if not token:
        return False
    if not DEV_TOKEN:
        return True
    return hmac.compare_digest(token, DEV_TOKEN)


async def require_auth(request: Request):
    """FastAPI dependency that enforces a bearer token on every API route."""
    if not token_is_valid(get_token_from_header(request.headers.get("Authorization"))):
        raise HTTPException(status_code=401, detail="Unauthorized")


# --- In-memory platform state ---

def _seed_lesson() -> dict:
    return {
        "id": "1",
        "title": "Sum Two Numbers",
        "description": "Export a function sum(a, b) that returns a + b.",
        "objective": "Use a single return statement without intermediate variables.",
        "course_id": "1",
        "teacher_id": "teacher-1",
        "created_at": "2024-01-01T00:00:00",
        "files": [
            {"id": "f-main", "filename": "main.js", "content": "// TODO: implement sum\n"},
            {"id": "f-helpers", "filename": "helpers.js", "content": "module.exports = {};\n"},
        ],
        "test_cases": [
            {"description": "adds positives", "input": "sum(1, 2)", "expectedOutput": "3"},
        ],
    }


class DevStore:
    def __init__(self):
        self.reset()

    def reset(self):
        lesson = _seed_lesson()
        self.lessons: dict[str, dict] = {lesson["id"]: lesson}
        self.courses: dict[str, dict] = {
            "1": {"id": "1", "title": "JavaScript Basics", "description": "", "is_published": False,
                  "student_count": 0, "lesson_count": 1},
        }
        self.saved_progress: dict[str, list[dict]] = {}
        self.submissions: dict[str, list[dict]] = {}
        self.hinted_lessons: set[str] = set()
        # teacher session id -> learner session id -> last broadcast workspace
        self.live_workspaces: dict[str, dict[str, dict]] = {}

    def lesson_or_404(self, lesson_id: str) -> dict:
        lesson = self.lessons.get(lesson_id)
        if lesson is None:
            raise HTTPException(status_code=404, detail="Lesson not found.")
        return lesson


store = DevStore()


def grade_files(files: list[dict]) -> dict:
    lines = []
    passed = 0
    for f in files:
        name = f.get("filename") or f.get("name") or "?"
        content = f.get("content") or ""
        if not content.strip():
            lines.append(f"FAIL {name}: file is empty")
        elif "TODO" in content:
            lines.append(f"FAIL {name}: unfinished TODO")
        else:
            lines.append(f"PASS {name}")
            passed += 1
    total = len(files)
    return {"passed": passed, "failed": total - passed, "total": total, "results": "\n".join(lines)}


# --- Request models ---

class FilesRequest(BaseModel):
    files: list[dict] = Field(default_factory=list)


class SubmitRequest(FilesRequest):
    time_to_solve_seconds: int = 0
    code_churn: int = 0
    copy_paste_activity: int = 0


class HintRequest(BaseModel):
    selectedCode: str = ""
    lessonId: str = ""
    promptModifier: str = ""


class FeedbackRequest(BaseModel):
    studentCode: str = ""
    lessonId: str = ""


class PublishRequest(BaseModel):
    is_published: bool


class CourseRequest(BaseModel):
    title: str = ""
    description: str = ""


class ChapterRequest(BaseModel):
    title: str = ""
    content: str = ""
    courseId: str = ""


# --- App ---

app = FastAPI(title="Ascent dev backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def _error_body(request: Request, exc: HTTPException):
    # The platform reports failures as {"error": "..."}.
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


@app.get("/api/lessons/{lesson_id}/ascent-ide", dependencies=[Depends(require_auth)])
async def api_ascent_ide(lesson_id: str):
    lesson = store.lesson_or_404(lesson_id)
    history = store.submissions.get(lesson_id, [])
    files = store.saved_progress.get(lesson_id)
    if files is None:
        files = history[-1]["submitted_code"] if history else lesson["files"]
    return {
        "lesson": {k: lesson[k] for k in ("id", "title", "description", "course_id", "teacher_id", "created_at")},
        "files": files,
        "testCases": lesson["test_cases"],
        "submissionHistory": [
            {k: s[k] for k in ("id", "submitted_at", "is_correct", "code_churn",
                               "copy_paste_activity", "time_to_solve_seconds")}
            for s in history
        ],
        "gradedSubmission": None,
        "courseId": lesson["course_id"],
        "previousLessonId": None,
        "nextLessonId": lesson.get("next_lesson_id"),
    }


@app.get("/api/lessons/{lesson_id}", dependencies=[Depends(require_auth)])
async def api_get_lesson(lesson_id: str):
    lesson = store.lesson_or_404(lesson_id)
    return {k: v for k, v in lesson.items() if k != "test_cases"}


@app.post("/api/lessons/chapter", status_code=201, dependencies=[Depends(require_auth)])
async def api_create_chapter(req: ChapterRequest):
    if not req.title or not req.content or not req.courseId:
        raise HTTPException(status_code=400, detail="Title, content, and courseId are required.")
    if req.courseId not in store.courses:
        raise HTTPException(status_code=404, detail="Course not found.")
    chapter = {"id": uuid4().hex, "title": req.title, "content": req.content,
               "course_id": req.courseId, "lesson_type": "chapter"}
    return chapter


@app.post("/api/lessons", status_code=201, dependencies=[Depends(require_auth)])
async def api_create_lesson(payload: dict):
    title = payload.get("title")
    files = payload.get("files")
    course_id = payload.get("courseId")
    if not title or not isinstance(files, list) or not files or not course_id:
        raise HTTPException(status_code=400, detail="Title, files, and courseId are required.")
    lesson_id = uuid4().hex
    store.lessons[lesson_id] = {
        "id": lesson_id,
        "title": title,
        "description": payload.get("description", ""),
        "objective": payload.get("objective", ""),
        "course_id": str(course_id),
        "teacher_id": "teacher-1",
        "created_at": datetime.now().isoformat(),
        "files": [{"id": uuid4().hex, "filename": f.get("filename", ""), "content": f.get("content", "")}
                  for f in files],
        "test_cases": [],
    }
    return {k: v for k, v in store.lessons[lesson_id].items() if k != "test_cases"}


@app.post("/api/lessons/{lesson_id}/save-progress", dependencies=[Depends(require_auth)])
async def api_save_progress(lesson_id: str, req: FilesRequest):
    store.lesson_or_404(lesson_id)
    if not req.files:
        raise HTTPException(status_code=400, detail="Invalid file data provided.")
    store.saved_progress[lesson_id] = req.files
    return {"message": "Progress saved successfully."}


@app.post("/api/lessons/{lesson_id}/run-tests", dependencies=[Depends(require_auth)])
async def api_run_tests(lesson_id: str, req: FilesRequest):
    store.lesson_or_404(lesson_id)
    if not req.files:
        return {"passed": 1, "failed": 0, "total": 1,
                "results": "No tests found for this lesson. Marked as complete."}
    return grade_files(req.files)


@app.post("/api/lessons/{lesson_id}/submit", dependencies=[Depends(require_auth)])
async def api_submit(lesson_id: str, req: SubmitRequest):
    lesson = store.lesson_or_404(lesson_id)
    if not req.files:
        raise HTTPException(status_code=400, detail="Submitted code cannot be empty.")
    summary = grade_files(req.files)
    correct = summary["failed"] == 0
    store.submissions.setdefault(lesson_id, []).append({
        "id": uuid4().hex,
        "submitted_at": datetime.now().isoformat(),
        "is_correct": correct,
        "submitted_code": req.files,
        "code_churn": req.code_churn,
        "copy_paste_activity": req.copy_paste_activity,
        "time_to_solve_seconds": req.time_to_solve_seconds,
    })
    if not correct:
        raise HTTPException(status_code=400, detail="Your solution did not pass all the tests.")
    if lesson.get("objective") and lesson_id not in store.hinted_lessons:
        store.hinted_lessons.add(lesson_id)
        return {"feedback_type": "conceptual_hint",
                "message": f"Your code works. Revisit the objective: {lesson['objective']}"}
    return {"message": "Solution submitted successfully!"}


@app.post("/api/ai/get-hint", dependencies=[Depends(require_auth)])
async def api_get_hint(req: HintRequest):
    if not req.selectedCode.strip() or not req.lessonId:
        raise HTTPException(status_code=400, detail="Selected code and lesson ID are required.")
    store.lesson_or_404(req.lessonId)
    first_line = req.selectedCode.strip().splitlines()[0]
    if req.promptModifier == DIRECT_MODIFIER:
        hint = f"`{first_line}` needs to return the computed value directly."
    elif req.promptModifier == HINT_BASED_MODIFIER:
        hint = f"Focus on `{first_line}`: what value should leave this function?"
    else:
        hint = f"What do you expect `{first_line}` to produce, and what does it produce now?"
    return {"hint": hint}


@app.post("/api/ai/get-conceptual-feedback", dependencies=[Depends(require_auth)])
async def api_conceptual_feedback(req: FeedbackRequest):
    if not req.studentCode or not req.lessonId:
        raise HTTPException(status_code=400, detail="Student code and lesson ID are required.")
    lesson = store.lesson_or_404(req.lessonId)
    if not lesson.get("objective"):
        return {"feedback_type": "standard_success"}
    return {"feedback_type": "conceptual_hint",
            "message": f"Check your approach against the objective: {lesson['objective']}"}


@app.post("/api/courses", status_code=201, dependencies=[Depends(require_auth)])
async def api_create_course(req: CourseRequest):
    if not req.title:
        raise HTTPException(status_code=400, detail="Title is required.")
    course_id = uuid4().hex
    course = {"id": course_id, "title": req.title, "description": req.description,
              "is_published": False, "student_count": 0, "lesson_count": 0}
    store.courses[course_id] = course
    return course


@app.patch("/api/courses/{course_id}/publish", dependencies=[Depends(require_auth)])
async def api_publish_course(course_id: str, req: PublishRequest):
    course = store.courses.get(course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found.")
    course["is_published"] = req.is_published
    return course


# --- Workspace socket ---

class DevSocketSession:
    """Echo pty for one workspace socket plus live-homework bookkeeping."""

    def __init__(self, websocket: WebSocket, *, session_id: str, teacher_session_id: str | None):
        self.ws = websocket
        self.session_id = session_id
        self.teacher_session_id = teacher_session_id

    async def handle_terminal_in(self, msg: dict) -> None:
        data = msg.get("payload")
        if isinstance(data, str):
            await self.ws.send_json({"type": MSG_TERMINAL_OUT, "payload": data})

    async def handle_join(self, msg: dict) -> None:
        if self.teacher_session_id:
            store.live_workspaces.setdefault(self.teacher_session_id, {})[self.session_id] = {}
            logger.info("Learner %s joined teacher session %s", self.session_id, self.teacher_session_id)

    async def handle_code_update(self, msg: dict) -> None:
        if self.teacher_session_id and isinstance(msg.get("payload"), dict):
            store.live_workspaces.setdefault(self.teacher_session_id, {})[self.session_id] = msg["payload"]

    async def handle_leave(self, msg: dict) -> None:
        if self.teacher_session_id:
            store.live_workspaces.get(self.teacher_session_id, {}).pop(self.session_id, None)

    _HANDLERS = {
        MSG_TERMINAL_IN: "handle_terminal_in",
        MSG_HOMEWORK_TERMINAL_IN: "handle_terminal_in",
        MSG_HOMEWORK_JOIN: "handle_join",
        MSG_HOMEWORK_CODE_UPDATE: "handle_code_update",
        MSG_HOMEWORK_LEAVE: "handle_leave",
    }

    async def run(self) -> None:
        try:
            while True:
                data = await self.ws.receive_text()
                try:
                    msg = json.loads(data)
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning("Malformed JSON from workspace client: %s", e)
                    continue
                if not isinstance(msg, dict):
                    continue
                handler_name = self._HANDLERS.get(msg.get("type"))
                if not handler_name:
                    continue
                try:
                    await getattr(self, handler_name)(msg)
                except Exception:
                    logger.exception("Unexpected error handling message type=%s", msg.get("type"))
        except (WebSocketDisconnect, RuntimeError):
            pass
        finally:
            await self.handle_leave({})


@app.websocket("/")
async def workspace_socket(websocket: WebSocket):
    params = websocket.query_params
    if not token_is_valid(params.get(PARAM_TOKEN)):
        await websocket.close(code=4001, reason="Unauthorized")
        return
    await websocket.accept()
    session = DevSocketSession(
        websocket,
        session_id=params.get(PARAM_SESSION_ID) or uuid4().hex,
        teacher_session_id=params.get(PARAM_TEACHER_SESSION_ID) or None,
    )
    logger.info("Workspace socket %s opened (lesson=%s)", session.session_id, params.get(PARAM_LESSON_ID))
    await session.run()
