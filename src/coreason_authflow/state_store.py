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
Holder of the current AuthState.
"""

import threading
from typing import Protocol

from coreason_authflow.models import AuthState, RegistrationResponse


class AuthStateStore(Protocol):
    """Protocol for the durable holder of the session's AuthState."""

    def current(self) -> AuthState:
        """Returns the active AuthState."""
        ...

    def replace(self, state: AuthState) -> AuthState:
        """Atomically replaces the active AuthState and returns it."""
        ...

    def update_after_registration(
        self, response: RegistrationResponse | None, error: str | None = None
    ) -> AuthState:
        """Records a registration outcome (success or failure) and returns the new AuthState."""
        ...


class MemoryAuthStateStore:
    """
    In-memory implementation of AuthStateStore.
    Not persistent: a new process starts unauthorized.
    """

    def __init__(self, initial: AuthState | None = None) -> None:
        self._state = initial or AuthState()
        self._lock = threading.Lock()

    def current(self) -> AuthState:
        with self._lock:
            return self._state

    def replace(self, state: AuthState) -> AuthState:
        with self._lock:
            self._state = state
            return state

    def update_after_registration(
        self, response: RegistrationResponse | None, error: str | None = None
    ) -> AuthState:
        with self._lock:
            self._state = self._state.with_registration(response, error)
            return self._state
