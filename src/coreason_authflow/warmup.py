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
Browser Warm-up Scheduler: builds launch artifacts in the background behind one-shot gates.

Every warm-up gets a new gate stamped with an increasing generation. Only the gate of the
latest generation is trusted; a superseded warm-up may still finish and open its own gate,
but nothing waits on it any more.
"""

import threading
from collections.abc import Callable
from typing import Any

from coreason_authflow.exceptions import AuthorizationServiceDisposedError, WarmupError
from coreason_authflow.models import AuthorizationRequest, WarmedBrowserArtifact
from coreason_authflow.service import AuthorizationService
from coreason_authflow.utils.logger import logger

Submitter = Callable[[Callable[[], None]], Any]


class WarmupGate:
    """
    One-shot readiness latch for a single warm-up generation.

    Attributes:
        generation (int): The warm-up generation this gate belongs to.
        request (AuthorizationRequest): The request the artifact is built for.
        artifact (WarmedBrowserArtifact | None): Set once the warm-up succeeded.
        error (str | None): Set once the warm-up failed.
        interrupted (bool): Set when the warm-up was dropped before it could run.
    """

    def __init__(self, generation: int, request: AuthorizationRequest) -> None:
        self.generation = generation
        self.request = request
        self.artifact: WarmedBrowserArtifact | None = None
        self.error: str | None = None
        self.interrupted = False
        self._event = threading.Event()

    @property
    def is_open(self) -> bool:
        return self._event.is_set()

    def _open(self) -> None:
        self._event.set()


class BrowserWarmupScheduler:
    """
    Schedules warm-ups on the background worker and lets issuance wait for the latest one.

    All gate bookkeeping happens under one condition variable; waiters block on it rather
    than polling.
    """

    def __init__(self, submit: Submitter) -> None:
        """
        Initialize the BrowserWarmupScheduler.

        Args:
            submit: Hands a job to the background worker. May raise RuntimeError once the
                worker is shut down.
        """
        self._submit = submit
        self._cond = threading.Condition()
        self._generation = 0
        self._gate: WarmupGate | None = None

    @property
    def generation(self) -> int:
        with self._cond:
            return self._generation

    @property
    def current_gate(self) -> WarmupGate | None:
        with self._cond:
            return self._gate

    def is_current(self, gate: WarmupGate) -> bool:
        with self._cond:
            return gate is self._gate

    def current_artifact(self) -> WarmedBrowserArtifact | None:
        with self._cond:
            return self._gate.artifact if self._gate is not None else None

    def schedule(self, request: AuthorizationRequest, service: AuthorizationService) -> WarmupGate:
        """
        Starts a warm-up for the request, superseding any previous one.

        Returns:
            WarmupGate: The new gate, which issuance will wait on.
        """
        with self._cond:
            self._generation += 1
            gate = WarmupGate(self._generation, request)
            self._gate = gate
            self._cond.notify_all()

        try:
            self._submit(lambda: self._run(gate, service))
        except RuntimeError as e:
            logger.warning(f"Background worker unavailable, warm-up {gate.generation} deferred: {e}")
            self._interrupt(gate)
        return gate

    def _run(self, gate: WarmupGate, service: AuthorizationService) -> None:
        if not self.is_current(gate):
            logger.debug(f"Skipping superseded warm-up {gate.generation}")
            self._complete(gate, error="superseded")
            return

        logger.info("Warming up browser instance for auth request")
        try:
            artifact = service.create_launch_artifact(gate.request, gate.generation)
        except (WarmupError, AuthorizationServiceDisposedError) as e:
            logger.warning(f"Browser warm-up {gate.generation} failed: {e}")
            self._complete(gate, error=str(e))
            return
        self._complete(gate, artifact=artifact)

    def _complete(
        self,
        gate: WarmupGate,
        artifact: WarmedBrowserArtifact | None = None,
        error: str | None = None,
    ) -> None:
        with self._cond:
            gate.artifact = artifact
            gate.error = error
            gate._open()
            self._cond.notify_all()

    def _interrupt(self, gate: WarmupGate) -> None:
        with self._cond:
            if gate.is_open:
                return
            gate.interrupted = True
            gate._open()
            self._cond.notify_all()

    def interrupt(self) -> None:
        """Marks the current warm-up as dropped, e.g. because the worker was shut down."""
        gate = self.current_gate
        if gate is not None:
            self._interrupt(gate)

    def invalidate(self) -> None:
        """Drops the current gate and artifact; the request they were built for is stale."""
        with self._cond:
            self._generation += 1
            self._gate = None
            self._cond.notify_all()

    def needs_reschedule(self) -> AuthorizationRequest | None:
        """Returns the current request if its warm-up was interrupted before producing an artifact."""
        with self._cond:
            gate = self._gate
            if gate is not None and gate.interrupted and gate.artifact is None:
                return gate.request
            return None

    def wait_for_artifact(self) -> WarmupGate:
        """
        Blocks until the latest warm-up produced an artifact, following supersession.

        No timeout: if the current warm-up was interrupted, this keeps waiting for the next
        one (the flow reschedules on resume).

        Returns:
            WarmupGate: The latest gate, holding its artifact and request.

        Raises:
            WarmupError: If the latest warm-up failed.
        """
        with self._cond:
            while True:
                # A superseded gate may never open; only the current one is waited on
                self._cond.wait_for(lambda: self._gate is not None and self._gate.is_open)
                gate = self._gate
                if gate is None:
                    continue
                if gate.artifact is not None:
                    if gate.interrupted:
                        logger.warning("Interrupted while waiting for warm-up, proceeding with the available artifact")
                    return gate
                if gate.error is not None:
                    raise WarmupError(gate.error)

                logger.warning("Interrupted while waiting for warm-up, waiting for a new one")
                self._cond.wait_for(
                    lambda: self._gate is not gate or gate.artifact is not None or gate.error is not None
                )
                if self._gate is not gate:
                    logger.debug(f"Warm-up {gate.generation} superseded while waiting")
