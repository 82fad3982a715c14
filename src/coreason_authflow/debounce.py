# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_authflow

"""
Login-Hint Debouncer: coalesces rapid login hint edits into one delayed rebuild.
"""

import threading
from collections.abc import Callable
from typing import Any

from coreason_authflow.utils.logger import logger

DEBOUNCE_DELAY_SECONDS = 0.5

TimerFactory = Callable[[float, Callable[[], None]], Any]


class RebuildTask:
    """
    A scheduled rebuild carrying the login hint it was scheduled with.

    Cancellation is a cooperative flag checked when the task fires; it never interrupts a
    rebuild already running.
    """

    def __init__(self, login_hint: str | None) -> None:
        self.login_hint = login_hint
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()


class LoginHintDebouncer:
    """
    Runs `rebuild` once input has been quiet for `delay` seconds, with the last value typed.
    """

    def __init__(
        self,
        rebuild: Callable[[str | None], None],
        delay: float = DEBOUNCE_DELAY_SECONDS,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        """
        Initialize the LoginHintDebouncer.

        Args:
            rebuild: Called with the login hint when a task fires.
            delay: Quiet period in seconds. Defaults to 0.5.
            timer_factory: Builds a startable, cancellable timer, `threading.Timer` compatible.
        """
        self._rebuild = rebuild
        self.delay = delay
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._task: RebuildTask | None = None
        self._timer: Any = None

    @property
    def pending(self) -> RebuildTask | None:
        with self._lock:
            return self._task

    def on_text_changed(self, text: str | None) -> RebuildTask:
        """
        Cancels the previously scheduled rebuild and schedules a new one.
        """
        task = RebuildTask(text)
        with self._lock:
            self._cancel_locked()
            timer = self._timer_factory(self.delay, lambda: self._fire(task))
            if hasattr(timer, "daemon"):
                timer.daemon = True
            self._task = task
            self._timer = timer
            timer.start()
        return task

    def _fire(self, task: RebuildTask) -> None:
        with self._lock:
            if task.cancelled:
                return
            # Claim the task so a later edit cannot cancel a rebuild that already started
            task.cancel()
            if self._task is task:
                self._task = None
                self._timer = None

        logger.debug("Login hint settled, rebuilding authorization request")
        self._rebuild(task.login_hint)

    def _cancel_locked(self) -> None:
        if self._task is not None:
            self._task.cancel()
        if self._timer is not None:
            self._timer.cancel()
        self._task = None
        self._timer = None

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()
