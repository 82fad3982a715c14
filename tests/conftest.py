# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_authflow

import os
import threading
import time
from collections.abc import Callable, Generator
from typing import Any

import pytest

from coreason_authflow.config import Configuration
from coreason_authflow.models import (
    AuthOptions,
    BrowserDescriptor,
    BrowserMatcher,
    ProviderConfig,
    WarmedBrowserArtifact,
)
from coreason_authflow.orchestrator import AuthFlowOrchestrator
from coreason_authflow.state_store import AuthStateStore, MemoryAuthStateStore

REDIRECT_URI = "com.coreason.app:/oauth2redirect"


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Polls `predicate` until it holds or the timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class StubView:
    """FlowView recording every display call."""

    def __init__(self) -> None:
        self.loading: list[str] = []
        self.errors: list[tuple[str, bool]] = []
        self.options: list[AuthOptions] = []
        self.cancelled = 0
        self.browsers: list[list[BrowserDescriptor]] = []

    def display_loading(self, message: str) -> None:
        self.loading.append(message)

    def display_error(self, message: str, recoverable: bool) -> None:
        self.errors.append((message, recoverable))

    def display_auth_options(self, options: AuthOptions) -> None:
        self.options.append(options)

    def display_auth_cancelled(self) -> None:
        self.cancelled += 1

    def display_browsers(self, browsers: list[BrowserDescriptor]) -> None:
        self.browsers.append(browsers)


class RecordingHandOff:
    """FlowHandOff recording terminal outcomes."""

    def __init__(self) -> None:
        self.already_authorized = 0
        self.completed: list[dict[str, Any]] = []

    def on_already_authorized(self) -> None:
        self.already_authorized += 1

    def on_authorization_completed(self, payload: dict[str, Any]) -> None:
        self.completed.append(payload)


class RecordingLauncher:
    """
    BrowserLauncher that never opens anything.

    `prepare` blocks until `release` is set, so tests can hold a warm-up in flight.
    """

    def __init__(self, browsers: list[BrowserDescriptor] | None = None, launch_result: bool = True) -> None:
        self.browsers = browsers if browsers is not None else [BrowserDescriptor(name="firefox")]
        self.launch_result = launch_result
        self.release = threading.Event()
        self.release.set()
        self.prepared: list[tuple[str, BrowserMatcher]] = []
        self.launched: list[WarmedBrowserArtifact] = []

    def available_browsers(self) -> list[BrowserDescriptor]:
        return list(self.browsers)

    def prepare(self, uri: str, matcher: BrowserMatcher) -> tuple[str | None, Any]:
        self.prepared.append((uri, matcher))
        self.release.wait(10)
        name = None if matcher.descriptor is None else matcher.descriptor.name
        return name, object()

    def launch(self, artifact: WarmedBrowserArtifact) -> bool:
        self.launched.append(artifact)
        return self.launch_result


class ManualTimer:
    """threading.Timer stand-in that only fires when told to."""

    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        self.daemon = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function()


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer


def static_values(**overrides: Any) -> dict[str, Any]:
    values: dict[str, Any] = {
        "client_id": "static-client",
        "redirect_uri": REDIRECT_URI,
        "authorization_scope": "openid email profile",
        "authorization_endpoint_uri": "https://idp.example.com/authorize",
        "token_endpoint_uri": "https://idp.example.com/token",
    }
    values.update(overrides)
    return {k: v for k, v in values.items() if v is not None}


def discovery_values(**overrides: Any) -> dict[str, Any]:
    values: dict[str, Any] = {
        "redirect_uri": REDIRECT_URI,
        "authorization_scope": "openid email profile",
        "discovery_uri": "https://idp.example.com/.well-known/openid-configuration",
    }
    values.update(overrides)
    return {k: v for k, v in values.items() if v is not None}


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keeps COREASON_AUTHFLOW_* variables of the host out of the tests."""
    for key in list(os.environ):
        if key.upper().startswith("COREASON_AUTHFLOW_"):
            monkeypatch.delenv(key)


@pytest.fixture
def view() -> StubView:
    return StubView()


@pytest.fixture
def hand_off() -> RecordingHandOff:
    return RecordingHandOff()


@pytest.fixture
def launcher() -> RecordingLauncher:
    return RecordingLauncher()


@pytest.fixture
def timer_factory() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def static_configuration() -> Configuration:
    return Configuration(static_values())


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        authorization_endpoint="https://idp.example.com/authorize",
        token_endpoint="https://idp.example.com/token",
        registration_endpoint="https://idp.example.com/register",
    )


@pytest.fixture
def discovery_document() -> dict[str, Any]:
    return {
        "issuer": "https://idp.example.com",
        "authorization_endpoint": "https://idp.example.com/authorize",
        "token_endpoint": "https://idp.example.com/token",
        "registration_endpoint": "https://idp.example.com/register",
        "end_session_endpoint": "https://idp.example.com/logout",
        "jwks_uri": "https://idp.example.com/jwks",
        "response_types_supported": ["code"],
    }


OrchestratorFactory = Callable[..., AuthFlowOrchestrator]


@pytest.fixture
def make_orchestrator(
    view: StubView,
    hand_off: RecordingHandOff,
    launcher: RecordingLauncher,
    timer_factory: ManualTimerFactory,
) -> Generator[OrchestratorFactory, None, None]:
    """Builds orchestrators wired to the recording fixtures and disposes them afterwards."""
    created: list[AuthFlowOrchestrator] = []

    def factory(
        configuration: Configuration, store: AuthStateStore | None = None, **kwargs: Any
    ) -> AuthFlowOrchestrator:
        kwargs.setdefault("launcher", launcher)
        kwargs.setdefault("timer_factory", timer_factory)
        orchestrator = AuthFlowOrchestrator(
            configuration, store or MemoryAuthStateStore(), view, hand_off, **kwargs
        )
        created.append(orchestrator)
        return orchestrator

    yield factory

    launcher.release.set()
    for orchestrator in created:
        orchestrator.dispose()
