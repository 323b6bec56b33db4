"""Pseudo-terminal view bound to a TransportSession.

The adapter is a pass-through pty transport: every local keystroke is sent as
it arrives and every ``TERMINAL_OUT`` payload is written verbatim. Views are
supplied by a *container*, which must provide::

    container.create_view(on_input) -> view   # view has write(), fit(), dispose()
    container.observe_resize(callback) -> observer   # observer has disconnect()

``StreamContainer`` is a console implementation of that contract.
"""

import asyncio
import logging
import shutil
import sys
from typing import Callable, TextIO

from .transport import MessageKind, TransportSession

logger = logging.getLogger(__name__)


class TerminalAdapter:
    def __init__(self):
        self.view = None
        self.session: TransportSession | None = None
        self._observer = None
        self._unsubscribe: Callable[[], None] | None = None
        self._fit_pending = False

    @property
    def attached(self) -> bool:
        return self.view is not None

    def attach(self, container, session: TransportSession) -> None:
        if self.view is not None:
            return
        self.session = session
        self.view = container.create_view(self._on_input)
        self._unsubscribe = session.on(MessageKind.TERMINAL_OUT, self._on_output)
        self.view.fit()
        self._observer = container.observe_resize(self._on_resize)

    def _on_input(self, data: str) -> None:
        if self.session is not None:
            self.session.try_send(MessageKind.TERMINAL_IN, data)

    def _on_output(self, payload) -> None:
        if self.view is None:
            return
        if not isinstance(payload, str):
            logger.debug("Ignoring non-text terminal output: %r", type(payload).__name__)
            return
        self.view.write(payload)

    def _on_resize(self) -> None:
        # Coalesce bursts into one fit on the next loop iteration.
        if self._fit_pending or self.view is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.view.fit()
            return
        self._fit_pending = True
        loop.call_soon(self._fit)

    def _fit(self) -> None:
        self._fit_pending = False
        if self.view is not None:
            self.view.fit()

    def dispose(self) -> None:
        if self._observer is not None:
            self._observer.disconnect()
            self._observer = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.view is not None:
            self.view.dispose()
            self.view = None
        self.session = None


class StreamTerminalView:
    """Terminal view that renders to a text stream."""

    def __init__(self, on_input: Callable[[str], None], stream: TextIO | None = None):
        self.on_input = on_input
        self.stream = stream or sys.stdout
        self.columns = 80
        self.rows = 24
        self.disposed = False

    def write(self, data: str) -> None:
        if self.disposed:
            return
        self.stream.write(data)
        self.stream.flush()

    def feed(self, data: str) -> None:
        """Deliver local keystrokes, as a terminal widget's input event would."""
        if not self.disposed:
            self.on_input(data)

    def fit(self) -> None:
        size = shutil.get_terminal_size((self.columns, self.rows))
        self.columns, self.rows = size.columns, size.lines

    def dispose(self) -> None:
        self.disposed = True


class _ResizeObserver:
    def __init__(self, container: "StreamContainer", callback: Callable[[], None]):
        self.container = container
        self.callback = callback

    def disconnect(self) -> None:
        if self in self.container.observers:
            self.container.observers.remove(self)


class StreamContainer:
    """Creates StreamTerminalViews and relays resize notifications to observers."""

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream
        self.views: list[StreamTerminalView] = []
        self.observers: list[_ResizeObserver] = []

    def create_view(self, on_input: Callable[[str], None]) -> StreamTerminalView:
        view = StreamTerminalView(on_input, self.stream)
        self.views.append(view)
        return view

    def observe_resize(self, callback: Callable[[], None]) -> _ResizeObserver:
        observer = _ResizeObserver(self, callback)
        self.observers.append(observer)
        return observer

    def notify_resize(self) -> None:
        for observer in list(self.observers):
            observer.callback()
