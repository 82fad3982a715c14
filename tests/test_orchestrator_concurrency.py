# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_authflow

import threading
from typing import Any
from unittest.mock import AsyncMock, Mock

from conftest import (
    ManualTimerFactory,
    OrchestratorFactory,
    RecordingLauncher,
    StubView,
    discovery_values,
    static_values,
    wait_for,
)

from coreason_authflow.config import Configuration
from coreason_authflow.models import BrowserDescriptor, BrowserMatcher, FlowState, ProviderConfig
from coreason_authflow.models_internal import DiscoveryDocument
from coreason_authflow.orchestrator import AuthFlowOrchestrator


def issue_in_background(orchestrator: AuthFlowOrchestrator) -> threading.Thread:
    thread = threading.Thread(target=orchestrator.start_authorization, daemon=True)
    thread.start()
    return thread


def test_issuance_waits_for_running_warmup(
    make_orchestrator: OrchestratorFactory, launcher: RecordingLauncher, view: StubView
) -> None:
    launcher.release.clear()
    orchestrator = make_orchestrator(Configuration(static_values()))
    orchestrator.create()
    assert wait_for(lambda: orchestrator.state == FlowState.READY)
    assert wait_for(lambda: len(launcher.prepared) == 1)

    thread = issue_in_background(orchestrator)
    thread.join(0.2)

    assert thread.is_alive()
    assert launcher.launched == []
    assert orchestrator.state == FlowState.ISSUING
    assert "Making authorization request" in view.loading

    launcher.release.set()
    thread.join(5)

    assert not thread.is_alive()
    request = orchestrator.current_request
    assert request is not None
    assert len(launcher.launched) == 1
    assert launcher.launched[0].is_for(request)


def test_issuance_uses_latest_browser_selection(
    make_orchestrator: OrchestratorFactory, launcher: RecordingLauncher
) -> None:
    launcher.release.clear()
    orchestrator = make_orchestrator(Configuration(static_values()))
    orchestrator.create()
    assert wait_for(lambda: orchestrator.state == FlowState.READY)

    thread = issue_in_background(orchestrator)
    thread.join(0.1)
    assert thread.is_alive()

    # Selection changes while issuance waits on the first warm-up
    for name in ("chrome", "firefox", "chrome", "firefox"):
        orchestrator.on_browser_selected(BrowserDescriptor(name=name))
    latest_gate = orchestrator.warmup.current_gate
    assert latest_gate is not None

    launcher.release.set()
    thread.join(5)

    assert not thread.is_alive()
    assert len(launcher.launched) == 1
    artifact = launcher.launched[0]
    assert artifact.browser == "firefox"
    assert artifact.generation == latest_gate.generation
    assert artifact.is_for(latest_gate.request)
    assert orchestrator.warmup.current_gate is latest_gate


def test_issuance_uses_latest_login_hint(
    make_orchestrator: OrchestratorFactory, launcher: RecordingLauncher, timer_factory: ManualTimerFactory
) -> None:
    launcher.release.clear()
    orchestrator = make_orchestrator(Configuration(static_values()))
    orchestrator.create()
    assert wait_for(lambda: orchestrator.state == FlowState.READY)

    orchestrator.on_login_hint_changed("a")
    orchestrator.on_login_hint_changed("ab")
    timer_factory.timers[-1].fire()

    thread = issue_in_background(orchestrator)
    launcher.release.set()
    thread.join(5)

    assert not thread.is_alive()
    request = orchestrator.current_request
    assert request is not None
    assert request.login_hint == "ab"
    assert len(launcher.launched) == 1
    assert launcher.launched[0].is_for(request)


def test_suspended_warmup_resumes(
    make_orchestrator: OrchestratorFactory, launcher: RecordingLauncher, timer_factory: ManualTimerFactory
) -> None:
    orchestrator = make_orchestrator(Configuration(static_values()))
    orchestrator.create()
    assert orchestrator.wait_until_idle(5)

    orchestrator.suspend()
    orchestrator.on_login_hint_changed("b")
    timer_factory.timers[-1].fire()

    gate = orchestrator.warmup.current_gate
    assert gate is not None and gate.interrupted
    assert orchestrator.warmup.current_artifact() is None

    # Issuance keeps waiting rather than launching without an artifact
    thread = issue_in_background(orchestrator)
    thread.join(0.2)
    assert thread.is_alive()
    assert launcher.launched == []

    orchestrator.resume()
    thread.join(5)

    assert not thread.is_alive()
    request = orchestrator.current_request
    assert request is not None
    assert request.login_hint == "b"
    assert len(launcher.launched) == 1
    assert launcher.launched[0].is_for(request)


def test_resume_without_suspend_is_noop(make_orchestrator: OrchestratorFactory) -> None:
    orchestrator = make_orchestrator(Configuration(static_values()))
    orchestrator.create()
    assert orchestrator.wait_until_idle(5)
    gate = orchestrator.warmup.current_gate

    orchestrator.resume()

    assert orchestrator.warmup.current_gate is gate
    assert orchestrator.wait_until_idle(5)


def test_wait_until_idle_times_out_while_warmup_blocked(
    make_orchestrator: OrchestratorFactory, launcher: RecordingLauncher
) -> None:
    launcher.release.clear()
    orchestrator = make_orchestrator(Configuration(static_values()))
    orchestrator.create()

    assert orchestrator.wait_until_idle(0.2) is False

    launcher.release.set()
    assert orchestrator.wait_until_idle(5) is True


def test_browser_selected_during_discovery_reaches_session(
    make_orchestrator: OrchestratorFactory, launcher: RecordingLauncher, discovery_document: dict[str, Any]
) -> None:
    fetch_started = threading.Event()
    release_fetch = threading.Event()

    def blocking_fetch(uri: str) -> ProviderConfig:
        fetch_started.set()
        release_fetch.wait(5)
        return ProviderConfig.from_discovery(DiscoveryDocument(**discovery_document))

    resolver = Mock()
    resolver.fetch = AsyncMock(side_effect=blocking_fetch)
    orchestrator = make_orchestrator(
        Configuration(discovery_values(client_id="static-client")), discovery_resolver=resolver
    )
    orchestrator.create()
    assert fetch_started.wait(5)
    assert orchestrator.state == FlowState.RESOLVING_CONFIG

    chrome = BrowserMatcher.exact(BrowserDescriptor(name="chrome"))
    orchestrator.on_browser_selected(BrowserDescriptor(name="chrome"))
    release_fetch.set()
    assert orchestrator.wait_until_idle(5)

    assert orchestrator.state == FlowState.READY
    service = orchestrator.authorization_service
    assert service is not None
    assert service.browser_matcher == chrome
    assert [matcher for _, matcher in launcher.prepared] == [chrome]

    thread = issue_in_background(orchestrator)
    thread.join(5)
    assert not thread.is_alive()
    assert launcher.launched[0].browser == "chrome"
