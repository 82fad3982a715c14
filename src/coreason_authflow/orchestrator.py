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
AuthFlowOrchestrator component sequencing configuration, client resolution, request building,
browser warm-up and issuance of an OAuth2 / OpenID Connect authorization request.

Threading model:
    * One single-threaded background worker runs discovery, registration and warm-ups in
      submission order. Async network calls run in a fresh event loop per job via `anyio.run`.
    * The foreground (the caller's thread) handles user input and only blocks while waiting
      for the latest warm-up gate at issuance time.
    * The client identity, the active request, the browser matcher and the session are guarded
      by one re-entrant lock; the AuthState lives in the store, which has its own lock. Warm-up
      gates are guarded by the scheduler's condition variable.
"""

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Protocol

import anyio

from coreason_authflow.browser import BrowserLauncher, WebBrowserLauncher
from coreason_authflow.config import Configuration
from coreason_authflow.debounce import DEBOUNCE_DELAY_SECONDS, LoginHintDebouncer, TimerFactory
from coreason_authflow.discovery import DiscoveryResolver
from coreason_authflow.exceptions import (
    AuthorizationServiceDisposedError,
    CoreasonAuthFlowError,
    DiscoveryError,
    RegistrationError,
    WarmupError,
)
from coreason_authflow.models import (
    AuthOptions,
    AuthorizationCancelled,
    AuthorizationCompleted,
    AuthorizationFailed,
    AuthorizationRequest,
    AuthorizationResult,
    AuthState,
    BrowserDescriptor,
    BrowserMatcher,
    ClientIdentity,
    FlowState,
    ProviderConfig,
)
from coreason_authflow.registration import ClientRegistrar
from coreason_authflow.request_builder import build_authorization_request, normalize_login_hint
from coreason_authflow.service import AuthorizationService
from coreason_authflow.state_store import AuthStateStore
from coreason_authflow.utils.logger import logger
from coreason_authflow.warmup import BrowserWarmupScheduler

UiDispatcher = Callable[[Callable[[], None]], None]


class FlowView(Protocol):
    """Protocol for the UI layer the flow reports to."""

    def display_loading(self, message: str) -> None: ...

    def display_error(self, message: str, recoverable: bool) -> None: ...

    def display_auth_options(self, options: AuthOptions) -> None: ...

    def display_auth_cancelled(self) -> None: ...

    def display_browsers(self, browsers: list[BrowserDescriptor]) -> None: ...


class FlowHandOff(Protocol):
    """Protocol for the collaborators the flow hands over to when it ends."""

    def on_already_authorized(self) -> None:
        """The user is already authorized for the current configuration."""
        ...

    def on_authorization_completed(self, payload: dict[str, Any]) -> None:
        """Authorization succeeded; the payload is forwarded verbatim to the token exchange."""
        ...


def _run_inline(fn: Callable[[], None]) -> None:
    fn()


class AuthFlowOrchestrator:
    """
    The authorization flow state machine.

    Attributes:
        configuration (Configuration): The configuration provider.
        store (AuthStateStore): Holder of the current AuthState.
        view (FlowView): Where progress, errors and options are displayed.
        hand_off (FlowHandOff): Receives the flow's terminal outcomes.
    """

    def __init__(
        self,
        configuration: Configuration,
        store: AuthStateStore,
        view: FlowView,
        hand_off: FlowHandOff,
        launcher: BrowserLauncher | None = None,
        discovery_resolver: DiscoveryResolver | None = None,
        ui_dispatcher: UiDispatcher = _run_inline,
        debounce_delay: float = DEBOUNCE_DELAY_SECONDS,
        timer_factory: TimerFactory = threading.Timer,
        use_callback_targets: bool = False,
    ) -> None:
        """
        Initialize the AuthFlowOrchestrator. Nothing happens until `create()`.

        Args:
            configuration: The configuration provider.
            store: Holder of the current AuthState.
            view: Where progress, errors and options are displayed.
            hand_off: Receives the flow's terminal outcomes.
            launcher: Browser launching mechanism. Defaults to `WebBrowserLauncher`.
            discovery_resolver: Discovery Resolver. Defaults to one using the configuration's connection builder.
            ui_dispatcher: Runs display updates coming from the worker on the UI thread. Defaults to inline.
            debounce_delay: Login hint quiet period in seconds. Defaults to 0.5.
            timer_factory: Timer used by the login hint debouncer. Defaults to `threading.Timer`.
            use_callback_targets: Issue with completion/cancellation targets instead of direct launch.
        """
        self.configuration = configuration
        self.store = store
        self.view = view
        self.hand_off = hand_off
        self.launcher = launcher or WebBrowserLauncher()
        self._discovery = discovery_resolver
        self._ui = ui_dispatcher
        self.use_callback_targets = use_callback_targets

        self._lock = threading.RLock()
        self._state = FlowState.INIT
        self._browser_matcher = BrowserMatcher.any()
        self._service: AuthorizationService | None = None
        self._client: ClientIdentity | None = None
        self._request: AuthorizationRequest | None = None
        self._issued_request: AuthorizationRequest | None = None
        self._login_hint: str | None = None
        self._registrar: ClientRegistrar | None = None
        self._initialize_on_resume = False

        self._executor = self._new_executor()
        self._worker_running = True
        self._jobs: set[Future[None]] = set()
        self._idle = threading.Condition()
        self._warmup = BrowserWarmupScheduler(self._submit)
        self._debouncer = LoginHintDebouncer(self._rebuild_request, delay=debounce_delay, timer_factory=timer_factory)

    @property
    def state(self) -> FlowState:
        with self._lock:
            return self._state

    def _set_state(self, state: FlowState) -> None:
        with self._lock:
            if self._state != state:
                logger.debug(f"Flow state {self._state} -> {state}")
            self._state = state

    @property
    def client_identity(self) -> ClientIdentity | None:
        with self._lock:
            return self._client

    @property
    def current_request(self) -> AuthorizationRequest | None:
        with self._lock:
            return self._request

    @property
    def browser_matcher(self) -> BrowserMatcher:
        with self._lock:
            return self._browser_matcher

    @property
    def authorization_service(self) -> AuthorizationService | None:
        with self._lock:
            return self._service

    @property
    def warmup(self) -> BrowserWarmupScheduler:
        return self._warmup

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="authflow-worker")

    def _submit(self, fn: Callable[[], None]) -> Future[None]:
        """
        Runs `fn` on the background worker.

        Raises:
            RuntimeError: If the worker is shut down (the flow is suspended or disposed).
        """
        with self._idle:
            future = self._executor.submit(self._run_job, fn)
            self._jobs.add(future)
        future.add_done_callback(self._job_done)
        return future

    def _run_job(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as e:
            logger.exception(f"Unexpected failure in background job: {e}")
            self._display_error(f"Unexpected error: {e}", recoverable=True)

    def _job_done(self, future: Future[None]) -> None:
        with self._idle:
            self._jobs.discard(future)
            self._idle.notify_all()

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """
        Blocks until the background worker has no queued or running jobs.

        Returns:
            bool: False if the timeout elapsed first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: not self._jobs, timeout)

    def create(self, previously_failed: bool = False) -> None:
        """
        Starts the flow: short-circuits when already authorized, validates the configuration,
        then initializes in the background.

        Args:
            previously_failed: Show the cancellation notice, as when returning from a cancelled attempt.
        """
        if self.store.current().is_authorized and not self.configuration.has_configuration_changed():
            logger.info("User is already authenticated, proceeding to hand-off")
            self._set_state(FlowState.ALREADY_AUTHORIZED)
            self.hand_off.on_already_authorized()
            return

        if not self.configuration.is_valid():
            self._set_state(FlowState.ERROR)
            self.view.display_error(self.configuration.configuration_error or "Invalid configuration", False)
            return

        config = self.configuration.config
        self._registrar = ClientRegistrar(self.store, config.client_id, config.redirect_uri)
        if self._discovery is None:
            self._discovery = DiscoveryResolver(
                self.configuration.connection_builder, https_required=config.https_required
            )

        self._configure_browser_selector()
        if self.configuration.has_configuration_changed():
            logger.info("Configuration change detected, discarding old state")
            self._replace_auth_state(AuthState())
            self.configuration.accept_configuration()

        if previously_failed:
            self.view.display_auth_cancelled()

        self.view.display_loading("Initializing")
        self._submit_initialize()

    def retry(self) -> None:
        """Restarts initialization from the beginning after a recoverable error."""
        logger.info("Retrying authorization flow initialization")
        self._set_state(FlowState.INIT)
        self.view.display_loading("Initializing")
        self._submit_initialize()

    def _submit_initialize(self) -> None:
        try:
            self._submit(self._initialize)
        except RuntimeError as e:
            logger.warning(f"Background worker unavailable, initialization deferred until resume: {e}")
            with self._lock:
                self._initialize_on_resume = True

    def resume(self) -> None:
        """Recreates the background worker after `suspend()` and restarts a dropped warm-up."""
        with self._idle:
            if self._worker_running:
                return
            self._executor = self._new_executor()
            self._worker_running = True
        logger.debug("Background worker recreated")

        with self._lock:
            if self._initialize_on_resume:
                self._initialize_on_resume = False
                self._submit(self._initialize)
                return
            request = self._warmup.needs_reschedule()
            if request is not None and request is self._request and self._service is not None:
                self._warmup.schedule(request, self._service)

    def suspend(self) -> None:
        """Stops background work. Queued jobs are dropped; a pending warm-up is marked interrupted."""
        with self._idle:
            self._worker_running = False
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._warmup.interrupt()
        logger.debug("Background worker shut down")

    def dispose(self) -> None:
        """Ends the flow's lifecycle, disposing the authorization-service session."""
        self.suspend()
        self._debouncer.cancel()
        with self._lock:
            if self._service is not None:
                self._service.dispose()
                self._service = None

    def _initialize(self) -> None:
        """Worker: resolves the provider configuration, then the client."""
        logger.info("Initializing authorization flow")
        self._set_state(FlowState.INIT)
        self._recreate_authorization_service()

        self._set_state(FlowState.RESOLVING_CONFIG)
        if self.store.current().provider_config is not None:
            logger.info("Provider configuration already established")
            self._initialize_client()
            return

        config = self.configuration.config
        if config.discovery_uri is None:
            logger.info("Creating provider configuration from static values")
            provider_config = ProviderConfig(
                authorization_endpoint=config.authorization_endpoint_uri,  # type: ignore[arg-type]
                token_endpoint=config.token_endpoint_uri,  # type: ignore[arg-type]
                registration_endpoint=config.registration_endpoint_uri,
                end_session_endpoint=config.end_session_endpoint,
            )
            self._replace_auth_state(AuthState(provider_config=provider_config))
            self._initialize_client()
            return

        self._ui(lambda: self.view.display_loading("Retrieving discovery document"))
        logger.info("Retrieving OpenID discovery document")
        if self._discovery is None:
            raise CoreasonAuthFlowError("Discovery resolver is not configured; call create() first")
        try:
            provider_config = anyio.run(self._discovery.fetch, config.discovery_uri)
        except DiscoveryError as e:
            logger.warning(f"Failed to retrieve discovery document: {e}")
            self._display_error(f"Failed to retrieve discovery document: {e}", recoverable=True)
            return

        self._replace_auth_state(AuthState(provider_config=provider_config))
        self._initialize_client()

    def _initialize_client(self) -> None:
        """Worker: resolves the client id, registering dynamically only when needed."""
        self._set_state(FlowState.RESOLVING_CLIENT)
        if self._registrar is None:
            raise CoreasonAuthFlowError("Client registrar is not configured; call create() first")
        identity = self._registrar.existing_identity()
        if identity is not None:
            logger.info(f"Using {identity.source} client ID: {identity.client_id}")
        else:
            self._ui(lambda: self.view.display_loading("Dynamically registering client"))
            with self._lock:
                service = self._service
            if service is None:
                self._display_error("Authorization service is not available", recoverable=True)
                return
            try:
                identity = anyio.run(self._registrar.resolve, service)
            except (RegistrationError, AuthorizationServiceDisposedError) as e:
                self._display_error(f"Failed to register client: {e}", recoverable=True)
                return

        with self._lock:
            if self._service is not None and self._service.browser_matcher != self._browser_matcher:
                logger.info("Browser selection changed during initialization")
                self._recreate_authorization_service()
            self._client = identity
        self._ui(self._initialize_auth_request)

    def _initialize_auth_request(self) -> None:
        with self._lock:
            login_hint = self._login_hint
        if self._rebuild_request(login_hint):
            self._display_auth_options()

    def _recreate_authorization_service(self) -> None:
        with self._lock:
            if self._service is not None:
                logger.info("Discarding existing authorization service")
                self._service.dispose()
            logger.info("Creating authorization service")
            self._service = AuthorizationService(
                self._browser_matcher,
                self.configuration.connection_builder,
                self.launcher,
            )
            self._request = None
            self._warmup.invalidate()

    def _replace_auth_state(self, state: AuthState) -> None:
        """Replaces the AuthState; the client id, request and artifact built on the old one go with it."""
        with self._lock:
            self.store.replace(state)
            self._client = None
            self._request = None
            self._warmup.invalidate()

    def _rebuild_request(self, login_hint: str | None) -> bool:
        """
        Builds a new request and schedules its warm-up, as one step under the lock.

        Returns:
            bool: False when the flow is not far enough along to build a request.
        """
        with self._lock:
            provider_config = self.store.current().provider_config
            if provider_config is None or self._client is None or self._service is None:
                logger.debug("Flow not initialized yet, skipping request creation")
                return False

            issuing = self._state == FlowState.ISSUING
            if not issuing:
                self._set_state(FlowState.BUILDING_REQUEST)
            hint = normalize_login_hint(login_hint)
            logger.info(f"Creating auth request {'with' if hint else 'without'} login hint")
            request = build_authorization_request(
                provider_config,
                self._client.client_id,
                self.configuration.scope,
                self.configuration.redirect_uri,
                hint,
            )
            self._request = request

            if not issuing:
                self._set_state(FlowState.WARMING_UP)
            self._warmup.schedule(request, self._service)
            if not issuing:
                self._set_state(FlowState.READY)
        return True

    def _configure_browser_selector(self) -> None:
        self.view.display_browsers(self.launcher.available_browsers())

    def on_browser_selected(self, descriptor: BrowserDescriptor | None) -> None:
        """
        Switches the browser used for authorization. Recreates the session and rebuilds the
        request and warm-up; never re-runs client registration.
        """
        matcher = BrowserMatcher.any() if descriptor is None else BrowserMatcher.exact(descriptor)
        with self._lock:
            self._browser_matcher = matcher
            if self._client is None:
                # The session is recreated with this matcher once the client is resolved
                return
            self._recreate_authorization_service()
            self._rebuild_request(self._login_hint)

    def on_login_hint_changed(self, text: str | None) -> None:
        with self._lock:
            self._login_hint = text
        self._debouncer.on_text_changed(text)

    def start_authorization(self, use_callback_targets: bool | None = None) -> None:
        """
        Issues the authorization request. Blocks the caller until the latest warm-up is ready.

        Args:
            use_callback_targets: Overrides the issuance mode for this attempt.
        """
        with self._lock:
            if self._state != FlowState.READY:
                logger.warning(f"Ignoring authorization request in state {self._state}")
                return
            self._set_state(FlowState.ISSUING)
        if use_callback_targets is not None:
            self.use_callback_targets = use_callback_targets
        self.view.display_loading("Making authorization request")
        self._do_auth()

    def _do_auth(self) -> None:
        while True:
            try:
                gate = self._warmup.wait_for_artifact()
            except WarmupError as e:
                self._set_state(FlowState.FAILED)
                self.view.display_error(f"Failed to prepare the browser: {e}", True)
                return
            with self._lock:
                # A browser change between the wait and here recreated the session; wait again
                if not self._warmup.is_current(gate):
                    continue
                service = self._service
                request = gate.request
                self._issued_request = request
            break

        artifact = gate.artifact
        try:
            if service is None or artifact is None:
                raise AuthorizationServiceDisposedError("Authorization service is not available")
            if self.use_callback_targets:
                service.perform_authorization_request(
                    request, artifact, self._on_completion_target, self._on_cancellation_target
                )
            else:
                service.launch_authorization_request(request, artifact)
        except (WarmupError, AuthorizationServiceDisposedError) as e:
            logger.warning(f"Failed to issue authorization request: {e}")
            self._set_state(FlowState.FAILED)
            self.view.display_error(f"Failed to start authorization: {e}", True)
            return
        logger.info("Authorization request issued")

    def _on_completion_target(self, result: AuthorizationResult) -> None:
        self.handle_authorization_result(result)

    def _on_cancellation_target(self) -> None:
        self.handle_authorization_result(AuthorizationCancelled())

    def on_redirect(self, redirect_uri: str) -> None:
        """Delivers the provider's redirect for the issued request, whichever issuance mode was used."""
        with self._lock:
            service = self._service
            request = self._issued_request
        if self.use_callback_targets and service is not None:
            service.dispatch_redirect(redirect_uri)
            return
        if request is None:
            logger.warning("Received a redirect but no authorization request was issued")
            return
        self.handle_authorization_result(AuthorizationService.parse_authorization_response(redirect_uri, request))

    def on_browser_closed(self) -> None:
        """The user left the browser without completing authorization."""
        with self._lock:
            service = self._service
        if self.use_callback_targets and service is not None:
            service.dispatch_cancel()
            return
        self.handle_authorization_result(AuthorizationCancelled())

    def handle_authorization_result(self, result: AuthorizationResult) -> None:
        """
        Applies the outcome of an issued authorization request.

        Completed hands the payload to the token exchange and ends the flow; Cancelled shows
        the notice and re-runs initialization; Failed shows a recoverable error.
        """
        with self._lock:
            self._issued_request = None

        if isinstance(result, AuthorizationCompleted):
            logger.info("Authorization completed, handing off to token exchange")
            self._set_state(FlowState.COMPLETED)
            self.hand_off.on_authorization_completed(result.payload)
            self.dispose()
        elif isinstance(result, AuthorizationCancelled):
            logger.info("Authorization cancelled by the user")
            self._set_state(FlowState.CANCELLED)
            self.view.display_auth_cancelled()
            self._submit_initialize()
        elif isinstance(result, AuthorizationFailed):
            logger.warning(f"Authorization failed: {result.error}")
            self._set_state(FlowState.FAILED)
            message = f"Authorization failed: {result.error}"
            if result.error_description:
                message = f"{message} ({result.error_description})"
            self.view.display_error(message, True)

    def _display_error(self, message: str, recoverable: bool) -> None:
        self._set_state(FlowState.ERROR)
        self._ui(lambda: self.view.display_error(message, recoverable))

    def _display_auth_options(self) -> None:
        state = self.store.current()
        with self._lock:
            identity = self._client
        if state.provider_config is None or identity is None:
            return
        options = AuthOptions(
            authorization_endpoint=state.provider_config.authorization_endpoint,
            endpoint_source=state.provider_config.source,
            client_id=identity.client_id,
            client_id_source=identity.source,
        )
        self.view.display_auth_options(options)
