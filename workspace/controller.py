"""Workspace controller: owns the state of one lesson view.

The controller wires the file store, churn metrics, socket transport and
terminal together and talks to the platform API. Editor events
(``on_content_change``, ``on_switch_file``, ...) are synchronous; anything
that hits the network is a coroutine. Results that arrive after ``close()``
or after a newer ``load()`` are discarded.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .analytics import (
    EVENT_CODE_PASTED,
    EVENT_HINT_REQUESTED,
    EVENT_LESSON_STARTED,
    EVENT_SOLUTION_SUBMITTED,
    EVENT_TEST_RUN,
    EventTracker,
)
from .api_client import ApiError, PlatformClient
from .auth import TokenStore
from .churn import ChurnTracker, PasteTracker, line_count
from .config import LOGIN_ROUTE, WorkspaceConfig, load_config
from .file_store import DuplicateFilenameError, FileSetStore, LastFileError
from .hints import EMPTY_SELECTION_MESSAGE, TutorStyle, prompt_modifier_for
from .models import ConceptualHint, IdeState, SubmitOutcome, TestResult, WorkspaceFile
from .terminal import TerminalAdapter
from .transport import MessageKind, TransportError, TransportSession, mode_for
from .ws_constants import MODE_LIVE

logger = logging.getLogger(__name__)

PANEL_WORKSPACE = "workspace"
PANEL_FILES = "files"
PANEL_SAVE = "save"
PANEL_SUBMIT = "submit"
PANEL_TESTS = "tests"
PANEL_HINT = "hint"

LEVEL_INFO = "info"
LEVEL_SUCCESS = "success"
LEVEL_WARNING = "warning"
LEVEL_ERROR = "error"


class WorkspaceState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    SUBMITTING = "submitting"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: str
    message: str


class WorkspaceController:
    def __init__(
        self,
        lesson_id: str | None,
        api: PlatformClient,
        *,
        teacher_session_id: str | None = None,
        tutor_style: TutorStyle | str = TutorStyle.SOCRATIC,
        terminal_container=None,
        navigate: Callable[[str], None] | None = None,
        tracker: EventTracker | None = None,
        config: WorkspaceConfig | None = None,
        transport_factory: Callable[[], TransportSession] | None = None,
        user_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.lesson_id = lesson_id
        self.api = api
        self.teacher_session_id = teacher_session_id or None
        self.tutor_style = tutor_style
        self.terminal_container = terminal_container
        self.config = config or WorkspaceConfig()
        self.tracker = tracker or EventTracker(user_id=user_id)
        self.user_id = user_id
        self._navigate = navigate
        self._transport_factory = transport_factory or (lambda: TransportSession(self.config.socket_url))
        self._clock = clock
        self._owns_api = False

        self.state = WorkspaceState.LOADING
        self.error: str | None = None
        self.files = FileSetStore()
        self.churn = ChurnTracker()
        self.paste = PasteTracker()
        self.terminal = TerminalAdapter()
        self.transport: TransportSession | None = None

        self.ide: IdeState | None = None
        self.solution_unlocked = False
        self.test_result: TestResult | None = None
        self.conceptual_hint: str | None = None
        self.hint: str | None = None
        self.is_testing = False
        self.is_hint_loading = False
        self.is_frozen = False
        self.is_controlled = False
        self.notices: dict[str, Notice] = {}

        self._started_at = clock()
        self._generation = 0
        self._busy = 0
        self._alive = True
        self._redirect_handle: asyncio.TimerHandle | None = None

    @classmethod
    def from_config(
        cls,
        lesson_id: str | None,
        *,
        config: WorkspaceConfig | None = None,
        token_store: TokenStore | None = None,
        **kwargs,
    ) -> "WorkspaceController":
        """Build a controller whose API client uses the persisted login token."""
        config = config or load_config()
        store = token_store or TokenStore(config.token_file)
        api = PlatformClient(config.api_url, store.token, timeout=config.request_timeout)
        user_id = kwargs.pop("user_id", None) or config.user_id or (store.user or {}).get("id")
        controller = cls(lesson_id, api, config=config, user_id=user_id, **kwargs)
        controller._owns_api = True
        return controller

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def mode(self) -> str:
        if self.transport is not None and self.transport.mode is not None:
            return self.transport.mode
        return mode_for(self.teacher_session_id)

    @property
    def is_live(self) -> bool:
        return self.mode == MODE_LIVE

    @property
    def editor_locked(self) -> bool:
        return self.is_frozen or self.is_controlled

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def elapsed_seconds(self) -> int:
        return round(self._clock() - self._started_at)

    def _stale(self, generation: int) -> bool:
        return not self._alive or generation != self._generation

    def _ready(self) -> bool:
        return self._alive and self.state in (WorkspaceState.READY, WorkspaceState.SUBMITTING)

    def notify(self, panel: str, level: str, message: str) -> None:
        self.notices[panel] = Notice(level, message)

    def notice(self, panel: str) -> Notice | None:
        return self.notices.get(panel)

    def dismiss(self, panel: str) -> None:
        self.notices.pop(panel, None)

    def _go(self, route: str) -> None:
        logger.info("Navigating to %s", route)
        if self._navigate is not None:
            self._navigate(route)

    def _snapshot(self) -> list[WorkspaceFile]:
        return [f.model_copy() for f in self.files]

    def _begin_busy(self) -> None:
        self._busy += 1
        self.state = WorkspaceState.SUBMITTING

    def _end_busy(self, generation: int) -> None:
        self._busy = max(0, self._busy - 1)
        if self._busy == 0 and not self._stale(generation) and self.state is WorkspaceState.SUBMITTING:
            self.state = WorkspaceState.READY

    def _broadcast(self) -> bool:
        if self.transport is None or not self.transport.supports(MessageKind.CODE_BROADCAST):
            return False
        return self.transport.try_send(MessageKind.CODE_BROADCAST, self.files.to_broadcast())

    # ------------------------------------------------------------------
    # Load / lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> bool:
        """Fetch the lesson state and bring the workspace to READY."""
        if not self._alive:
            return False
        self._generation += 1
        generation = self._generation
        self._cancel_redirect()

        if not self.api.token or not self.lesson_id:
            self.state = WorkspaceState.ERROR
            self.error = "Login required."
            self._go(LOGIN_ROUTE)
            return False

        self.state = WorkspaceState.LOADING
        self.error = None
        await self._teardown_session()
        if self._stale(generation):
            return False

        try:
            ide = await self.api.get_ide_state(self.lesson_id)
        except ApiError as e:
            if self._stale(generation):
                return False
            logger.warning("Failed to load lesson %s: %s", self.lesson_id, e.message)
            self.state = WorkspaceState.ERROR
            self.error = e.message
            self.notify(PANEL_WORKSPACE, LEVEL_ERROR, e.message)
            return False
        if self._stale(generation):
            return False

        self._apply_ide_state(ide)
        await self._open_transport(generation)
        if self._stale(generation):
            return False
        self.state = WorkspaceState.READY
        return True

    def _apply_ide_state(self, ide: IdeState) -> None:
        self.ide = ide
        self.files.load(ide.files)
        active = self.files.active
        self.churn.reset_all(active.content if active else "")
        self.paste.reset()
        self._started_at = self._clock()
        self.solution_unlocked = any(entry.is_correct for entry in ide.submission_history)
        self.test_result = None
        self.conceptual_hint = None
        self.hint = None
        self.notices.clear()
        self.tracker.track(EVENT_LESSON_STARTED, {"lesson_id": ide.lesson.id, "lesson_title": ide.lesson.title})

    async def _open_transport(self, generation: int) -> None:
        session = self._transport_factory()
        self.transport = session
        try:
            await session.open(self.lesson_id, self.api.token, self.teacher_session_id)
        except TransportError as e:
            # The socket only carries the terminal and live broadcast.
            logger.warning("Workspace socket unavailable for lesson %s: %s", self.lesson_id, e)
        if self._stale(generation) or self.transport is not session:
            await session.close()
            return

        session.on(MessageKind.CODE_BROADCAST, self._handle_code_broadcast)
        session.on(MessageKind.FREEZE_STATE, self._handle_freeze_state)
        session.on(MessageKind.CONTROL_STATE, self._handle_control_state)
        if self.terminal_container is not None:
            self.terminal.attach(self.terminal_container, session)
        if session.is_live:
            self._broadcast()

    async def _teardown_session(self) -> None:
        self.terminal.dispose()
        transport, self.transport = self.transport, None
        self.is_frozen = False
        self.is_controlled = False
        if transport is not None:
            await transport.close()

    async def reconnect(self, teacher_session_id: str | None = None) -> None:
        """Replace the socket, e.g. when a teacher session reference appears."""
        self.teacher_session_id = teacher_session_id or None
        generation = self._generation
        await self._teardown_session()
        if self._ready() and not self._stale(generation):
            await self._open_transport(generation)

    async def change_lesson(self, lesson_id: str) -> bool:
        self.lesson_id = lesson_id
        return await self.load()

    async def close(self) -> None:
        """Tear down on navigation away. Safe to call more than once."""
        if not self._alive:
            return
        self._alive = False
        self._cancel_redirect()
        await self._teardown_session()
        if self._owns_api:
            await self.api.aclose()

    # ------------------------------------------------------------------
    # Editor events
    # ------------------------------------------------------------------

    def on_content_change(self, text: str | None) -> bool:
        if not self._alive or self.editor_locked:
            return False
        text = text or ""
        self.paste.record_typed(len(text) - len(self.churn.baseline))
        self.churn.observe(text)
        self.files.update_active_content(text)
        if self.is_live:
            self._broadcast()
        return True

    def on_paste(self, text: str) -> None:
        if not self._alive:
            return
        self.paste.record_paste(text)
        active = self.files.active
        self.tracker.track(EVENT_CODE_PASTED, {
            "character_count": len(text),
            "line_count": line_count(text),
            "active_file": active.filename if active else None,
            "lesson_id": self.lesson_id,
        })

    def on_switch_file(self, file_id: str) -> bool:
        if not self._alive or self.editor_locked:
            return False
        if not self.files.set_active(file_id):
            return False
        self.churn.reset(self.files.active.content)
        if self.is_live:
            self._broadcast()
        return True

    def add_file(self, filename: str) -> WorkspaceFile | None:
        try:
            new_file = self.files.add(filename)
        except DuplicateFilenameError:
            self.notify(PANEL_FILES, LEVEL_ERROR, "A file with that name already exists.")
            return None
        except ValueError:
            self.notify(PANEL_FILES, LEVEL_ERROR, "File name must not be empty.")
            return None
        self.dismiss(PANEL_FILES)
        self.churn.reset(new_file.content)
        return new_file

    def delete_file(self, file_id: str) -> bool:
        try:
            active_changed = self.files.remove(file_id)
        except LastFileError:
            self.notify(PANEL_FILES, LEVEL_WARNING, "You must have at least one file.")
            return False
        except KeyError:
            return False
        self.dismiss(PANEL_FILES)
        if active_changed:
            self.churn.reset(self.files.active.content)
        return True

    # ------------------------------------------------------------------
    # API actions
    # ------------------------------------------------------------------

    async def save(self) -> bool:
        if not self._ready():
            return False
        generation = self._generation
        self._begin_busy()
        try:
            await self.api.save_progress(self.lesson_id, self._snapshot())
        except ApiError as e:
            if not self._stale(generation):
                self.notify(PANEL_SAVE, LEVEL_ERROR, e.message or "Could not save progress.")
            return False
        finally:
            self._end_busy(generation)
        if self._stale(generation):
            return False
        self.notify(PANEL_SAVE, LEVEL_SUCCESS, "Progress saved!")
        return True

    async def run_tests(self) -> TestResult | None:
        if not self._ready():
            return None
        generation = self._generation
        self.is_testing = True
        self.test_result = None
        self.dismiss(PANEL_TESTS)
        try:
            result = await self.api.run_tests(self.lesson_id, self._snapshot())
        except ApiError as e:
            logger.info("Test run failed for lesson %s: %s", self.lesson_id, e.message)
            result = self._result_from_error(e)
            if not self._stale(generation):
                self.notify(PANEL_TESTS, LEVEL_ERROR, e.message)
        else:
            self.tracker.track(EVENT_TEST_RUN, {
                "passed_count": result.passed,
                "failed_count": result.failed,
                "lesson_id": self.lesson_id,
            })
        if self._stale(generation):
            return None
        self.is_testing = False
        self.test_result = result
        return result

    @staticmethod
    def _result_from_error(error: ApiError) -> TestResult:
        # The runner reports its own failures in the result shape.
        body = error.body
        if isinstance(body, dict) and {"passed", "failed", "total"} <= body.keys():
            try:
                return TestResult.model_validate(body)
            except ValueError:
                pass
        return TestResult.from_failure(error.message)

    async def submit(self) -> SubmitOutcome | None:
        if not self._ready():
            return None
        generation = self._generation
        self.conceptual_hint = None
        self.dismiss(PANEL_SUBMIT)
        elapsed = self.elapsed_seconds
        churn = self.churn.count
        paste_activity = self.paste.activity
        files = self._snapshot()
        self.tracker.track(EVENT_SOLUTION_SUBMITTED, {
            "lesson_id": self.lesson_id,
            "time_to_solve_seconds": elapsed,
            "code_churn": churn,
            "copy_paste_activity": paste_activity,
        })

        self._begin_busy()
        try:
            await self.run_tests()
            if self._stale(generation):
                return None
            try:
                outcome = await self.api.submit(
                    self.lesson_id,
                    files,
                    time_to_solve_seconds=elapsed,
                    code_churn=churn,
                    copy_paste_activity=paste_activity,
                )
            except ApiError as e:
                if not self._stale(generation):
                    self.notify(PANEL_SUBMIT, LEVEL_ERROR, e.message or "Submission failed.")
                return None
            if self._stale(generation):
                return None

            self.solution_unlocked = True
            if isinstance(outcome, ConceptualHint):
                self.conceptual_hint = outcome.message
                self.notify(PANEL_SUBMIT, LEVEL_INFO, "The AI has some feedback on your approach.")
            else:
                self.notify(PANEL_SUBMIT, LEVEL_SUCCESS, "Correct! All tests passed.")
                await self._refresh_history(generation)
                if not self._stale(generation):
                    self._schedule_redirect()
            return outcome
        finally:
            self._end_busy(generation)

    async def _refresh_history(self, generation: int) -> None:
        """Reload lesson metadata and history; the local files stay as they are."""
        try:
            ide = await self.api.get_ide_state(self.lesson_id)
        except ApiError as e:
            logger.warning("Could not refresh submission history: %s", e.message)
            return
        if not self._stale(generation):
            self.ide = ide

    def redirect_target(self) -> str:
        ide = self.ide
        if ide is not None and ide.next_lesson_id:
            return f"/lesson/{ide.next_lesson_id}"
        course_id = (ide.course_id or ide.lesson.course_id) if ide is not None else None
        if course_id:
            return f"/courses/{course_id}/learn"
        return "/dashboard"

    def _schedule_redirect(self) -> None:
        self._cancel_redirect()
        target = self.redirect_target()
        loop = asyncio.get_running_loop()
        self._redirect_handle = loop.call_later(self.config.redirect_delay, self._redirect, target)

    def _redirect(self, target: str) -> None:
        self._redirect_handle = None
        if self._alive:
            self._go(target)

    def _cancel_redirect(self) -> None:
        if self._redirect_handle is not None:
            self._redirect_handle.cancel()
            self._redirect_handle = None

    @property
    def redirect_pending(self) -> bool:
        return self._redirect_handle is not None

    async def get_hint(self, selection: str | None) -> str | None:
        active = self.files.active
        if not self._ready() or active is None:
            return None
        style = self.tutor_style.value if isinstance(self.tutor_style, TutorStyle) else self.tutor_style
        self.tracker.track(EVENT_HINT_REQUESTED, {
            "lesson_id": self.lesson_id,
            "active_file": active.filename,
            "tutor_style_used": style,
        })
        if not (selection or "").strip():
            self.notify(PANEL_HINT, LEVEL_INFO, EMPTY_SELECTION_MESSAGE)
            return None

        generation = self._generation
        self.dismiss(PANEL_HINT)
        self.hint = None
        self.is_hint_loading = True
        try:
            hint = await self.api.get_hint(self.lesson_id, selection, prompt_modifier_for(self.tutor_style))
        except ApiError as e:
            if not self._stale(generation):
                self.is_hint_loading = False
                self.hint = f"Error: {e.message}"
                self.notify(PANEL_HINT, LEVEL_ERROR, e.message)
            return None
        if self._stale(generation):
            return None
        self.is_hint_loading = False
        self.hint = hint
        return hint

    async def request_conceptual_feedback(self) -> SubmitOutcome | None:
        if not self._ready():
            return None
        generation = self._generation
        student_code = "\n\n".join(f.content for f in self.files)
        try:
            outcome = await self.api.get_conceptual_feedback(self.lesson_id, student_code)
        except ApiError as e:
            if not self._stale(generation):
                self.notify(PANEL_SUBMIT, LEVEL_ERROR, e.message)
            return None
        if self._stale(generation):
            return None
        if isinstance(outcome, ConceptualHint):
            self.conceptual_hint = outcome.message
        return outcome

    # ------------------------------------------------------------------
    # Inbound live-homework messages
    # ------------------------------------------------------------------

    def _handle_code_broadcast(self, payload) -> None:
        if not isinstance(payload, dict) or not isinstance(payload.get("files"), list):
            logger.warning("Ignoring malformed workspace broadcast")
            return
        if self.files.apply_remote(payload["files"], payload.get("activeFileName")):
            # Teacher edits are not the learner's churn.
            self.churn.reset(self.files.active.content)

    def _handle_freeze_state(self, payload) -> None:
        if isinstance(payload, dict):
            self.is_frozen = bool(payload.get("isFrozen"))

    def _handle_control_state(self, payload) -> None:
        if not isinstance(payload, dict):
            return
        controlled = payload.get("controlledStudentId")
        self.is_controlled = (
            self.user_id is not None and controlled is not None and str(controlled) == str(self.user_id)
        )
