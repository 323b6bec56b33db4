"""Single duplex socket shared by the terminal and the live-homework channel.

One ``TransportSession`` is opened per lesson view and never reused. Its mode
("standalone" or "live") is fixed at ``open()`` from whether a teacher session
reference was supplied; everything mode-specific is confined to the wire tag
table below, so callers only deal in ``MessageKind`` values.
"""

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode
from uuid import uuid4

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from .ws_constants import (
    MODE_LIVE,
    MODE_STANDALONE,
    MSG_CONTROL_STATE_UPDATE,
    MSG_FREEZE_STATE_UPDATE,
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

DRAIN_TIMEOUT = 2.0  # seconds to flush pending frames on close


class MessageKind(Enum):
    TERMINAL_IN = "terminal_in"
    TERMINAL_OUT = "terminal_out"
    CODE_BROADCAST = "code_broadcast"
    JOIN = "join"
    LEAVE = "leave"
    FREEZE_STATE = "freeze_state"
    CONTROL_STATE = "control_state"


_WIRE_TAGS: dict[str, dict[MessageKind, str]] = {
    MODE_STANDALONE: {
        MessageKind.TERMINAL_IN: MSG_TERMINAL_IN,
        MessageKind.TERMINAL_OUT: MSG_TERMINAL_OUT,
    },
    MODE_LIVE: {
        MessageKind.TERMINAL_IN: MSG_HOMEWORK_TERMINAL_IN,
        MessageKind.TERMINAL_OUT: MSG_TERMINAL_OUT,
        MessageKind.CODE_BROADCAST: MSG_HOMEWORK_CODE_UPDATE,
        MessageKind.JOIN: MSG_HOMEWORK_JOIN,
        MessageKind.LEAVE: MSG_HOMEWORK_LEAVE,
        MessageKind.FREEZE_STATE: MSG_FREEZE_STATE_UPDATE,
        MessageKind.CONTROL_STATE: MSG_CONTROL_STATE_UPDATE,
    },
}

_KINDS_BY_TAG: dict[str, dict[str, MessageKind]] = {
    mode: {tag: kind for kind, tag in tags.items()} for mode, tags in _WIRE_TAGS.items()
}


class TransportError(Exception):
    """The socket could not be opened (or was opened twice)."""


class NotConnectedError(TransportError):
    """Send attempted while the socket is not open."""


class MalformedFrameError(ValueError):
    pass


@dataclass(frozen=True)
class SessionDescriptor:
    session_id: str
    teacher_session_id: str | None
    mode: str


def mode_for(teacher_session_id: str | None) -> str:
    return MODE_LIVE if teacher_session_id else MODE_STANDALONE


def encode_frame(mode: str, kind: MessageKind, payload: Any = None) -> str:
    tag = _WIRE_TAGS[mode].get(kind)
    if tag is None:
        raise ValueError(f"{kind.name} cannot be sent in {mode} mode")
    frame: dict[str, Any] = {"type": tag}
    if payload is not None:
        frame["payload"] = payload
    return json.dumps(frame)


def decode_frame(mode: str, raw: str | bytes) -> tuple[MessageKind | None, Any]:
    """Parse one inbound frame. Unknown types decode to ``(None, payload)``."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrameError("frame is not valid UTF-8") from e
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as e:
        raise MalformedFrameError(f"invalid JSON: {e}") from e
    if not isinstance(msg, dict):
        raise MalformedFrameError("frame is not a JSON object")
    msg_type = msg.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise MalformedFrameError("missing message type")
    return _KINDS_BY_TAG[mode].get(msg_type), msg.get("payload")


def build_uri(
    ws_url: str,
    *,
    session_id: str,
    token: str,
    lesson_id: str,
    teacher_session_id: str | None = None,
) -> str:
    params = {PARAM_SESSION_ID: session_id, PARAM_TOKEN: token}
    if teacher_session_id:
        params[PARAM_TEACHER_SESSION_ID] = teacher_session_id
    params[PARAM_LESSON_ID] = lesson_id
    separator = "&" if "?" in ws_url else "?"
    return f"{ws_url}{separator}{urlencode(params)}"


Handler = Callable[[Any], Awaitable[None] | None]


class TransportSession:
    """Owns one socket connection for the lifetime of one lesson view."""

    def __init__(
        self,
        ws_url: str,
        *,
        connector: Callable[[str], Awaitable[Any]] | None = None,
        drain_timeout: float = DRAIN_TIMEOUT,
    ):
        self.ws_url = ws_url
        self._connect = connector or connect
        self.drain_timeout = drain_timeout

        self.session_id: str | None = None
        self.teacher_session_id: str | None = None
        self.lesson_id: str | None = None
        self._mode: str | None = None

        self._ws = None
        self._outbox: asyncio.Queue | None = None
        self._reader_task: asyncio.Task | None = None
        self._writer_task: asyncio.Task | None = None
        self._handlers: dict[MessageKind, list[Handler]] = defaultdict(list)
        self._opened = False
        self._closed = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def mode(self) -> str | None:
        return self._mode

    @property
    def is_live(self) -> bool:
        return self._mode == MODE_LIVE

    @property
    def descriptor(self) -> SessionDescriptor | None:
        if self.session_id is None or self._mode is None:
            return None
        return SessionDescriptor(self.session_id, self.teacher_session_id, self._mode)

    @property
    def is_open(self) -> bool:
        return (
            self._ws is not None
            and not self._closed
            and getattr(self._ws, "state", None) is State.OPEN
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def supports(self, kind: MessageKind) -> bool:
        return self._mode is not None and kind in _WIRE_TAGS[self._mode]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(
        self, lesson_id: str, auth_token: str, teacher_session_id: str | None = None
    ) -> SessionDescriptor:
        if self._opened:
            raise TransportError("TransportSession is single-use; create a new one to reconnect")
        self._opened = True

        self.session_id = str(uuid4())
        self.teacher_session_id = teacher_session_id or None
        self.lesson_id = lesson_id
        self._mode = mode_for(self.teacher_session_id)

        uri = build_uri(
            self.ws_url,
            session_id=self.session_id,
            token=auth_token,
            lesson_id=lesson_id,
            teacher_session_id=self.teacher_session_id,
        )
        try:
            ws = await self._connect(uri)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self._closed = True
            raise TransportError(f"Could not connect to {self.ws_url}: {e}") from e
        if self._closed:
            # close() ran while the handshake was in flight.
            try:
                await ws.close()
            except Exception:
                logger.debug("Socket %s: error while closing", self.session_id, exc_info=True)
            raise TransportError("TransportSession was closed while connecting")
        self._ws = ws

        self._outbox = asyncio.Queue()
        if self.is_live:
            # Must precede any other traffic on a live session.
            self.send(MessageKind.JOIN)
        self._writer_task = asyncio.ensure_future(self._write_loop())
        self._reader_task = asyncio.ensure_future(self._read_loop())
        logger.info("Socket %s connected for lesson %s (mode=%s)", self.session_id, lesson_id, self._mode)
        return self.descriptor

    async def close(self) -> None:
        """Idempotent. A close during ``open()`` is finished by ``open()`` itself."""
        if self._closed:
            return
        if self.is_live and self.is_open:
            self.try_send(MessageKind.LEAVE)
        self._closed = True

        if self._writer_task is not None and self._outbox is not None:
            self._outbox.put_nowait(None)
            try:
                await asyncio.wait_for(asyncio.shield(self._writer_task), self.drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("Socket %s: pending frames dropped on close", self.session_id)
                self._writer_task.cancel()
            except Exception:
                logger.exception("Socket %s: writer failed during close", self.session_id)

        reader = self._reader_task
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception:
                logger.debug("Socket %s: error while closing", self.session_id, exc_info=True)
        logger.info("Socket %s closed", self.session_id)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send(self, kind: MessageKind, payload: Any = None) -> None:
        """Queue one frame. Never awaits the network."""
        if not self.is_open:
            raise NotConnectedError(f"cannot send {kind.name}: socket is not open")
        frame = encode_frame(self._mode, kind, payload)
        self._outbox.put_nowait(frame)

    def try_send(self, kind: MessageKind, payload: Any = None) -> bool:
        """Best-effort send; returns False if the frame was dropped."""
        try:
            self.send(kind, payload)
        except NotConnectedError:
            logger.debug("Dropping %s frame: socket not open", kind.name)
            return False
        return True

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to the socket."""
        if self._outbox is not None and self._writer_task is not None and not self._writer_task.done():
            await self._outbox.join()

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                if frame is None:
                    return
                try:
                    await self._ws.send(frame)
                except ConnectionClosed:
                    logger.info("Socket %s closed by peer; dropping outbound frame", self.session_id)
                except Exception:
                    logger.exception("Socket %s: failed to send frame", self.session_id)
            finally:
                self._outbox.task_done()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def on(self, kind: MessageKind, handler: Handler) -> Callable[[], None]:
        """Register an inbound handler. Returns a function that unregisters it."""
        self._handlers[kind].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[kind].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            kind, payload = decode_frame(self._mode, raw)
        except MalformedFrameError as e:
            logger.warning("Socket %s: dropping malformed frame: %s", self.session_id, e)
            return
        if kind is None:
            return
        for handler in list(self._handlers.get(kind, ())):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Socket %s: handler for %s failed", self.session_id, kind.name)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                await self._dispatch(raw)
        except ConnectionClosed as e:
            logger.info("Socket %s disconnected: %s", self.session_id, e)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Socket %s: receive loop failed", self.session_id)
