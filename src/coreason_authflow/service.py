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
AuthorizationService: one authorization-service session bound to a browser matcher.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

import httpx
from authlib.oauth2.rfc6749.errors import MismatchingStateException, MissingCodeException
from authlib.oauth2.rfc6749.parameters import parse_authorization_code_response
from pydantic import ValidationError

from coreason_authflow.browser import BrowserLauncher
from coreason_authflow.config import ConnectionBuilder
from coreason_authflow.exceptions import (
    AuthorizationServiceDisposedError,
    OversizedResponseError,
    RegistrationError,
    SecurityError,
    WarmupError,
)
from coreason_authflow.models import (
    AuthorizationCancelled,
    AuthorizationCompleted,
    AuthorizationFailed,
    AuthorizationRequest,
    AuthorizationResult,
    BrowserMatcher,
    RegistrationRequest,
    RegistrationResponse,
    WarmedBrowserArtifact,
)
from coreason_authflow.transport import safe_json_fetch
from coreason_authflow.utils.logger import logger

CompletionTarget = Callable[[AuthorizationResult], None]
CancellationTarget = Callable[[], None]

# Provider errors that mean the user backed out rather than something going wrong
CANCELLATION_ERRORS = frozenset({"access_denied"})


@dataclass(frozen=True)
class _PendingAuthorization:
    request: AuthorizationRequest
    completion_target: CompletionTarget
    cancellation_target: CancellationTarget


class AuthorizationService:
    """
    A live authorization-service session.

    Sends registration requests over the configured connection builder, builds warmed browser
    artifacts for the selected browser, and issues authorization requests. Exactly one session
    is expected to be live per flow; `dispose()` ends it.

    Attributes:
        browser_matcher (BrowserMatcher): The browser selection this session launches with.
    """

    def __init__(
        self,
        browser_matcher: BrowserMatcher,
        connection_builder: ConnectionBuilder,
        launcher: BrowserLauncher,
    ) -> None:
        self.browser_matcher = browser_matcher
        self.connection_builder = connection_builder
        self.launcher = launcher
        self._disposed = False
        self._pending: dict[str, _PendingAuthorization] = {}
        self._lock = threading.Lock()

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _check_disposed(self) -> None:
        if self._disposed:
            raise AuthorizationServiceDisposedError("Authorization service has been disposed")

    async def perform_registration_request(self, request: RegistrationRequest) -> RegistrationResponse:
        """
        Sends a dynamic client registration request (RFC 7591).

        Args:
            request: The registration request; its provider config names the endpoint.

        Returns:
            RegistrationResponse: The issued client credentials.

        Raises:
            RegistrationError: If the request fails or the response is invalid.
        """
        self._check_disposed()
        endpoint = request.provider_config.registration_endpoint
        if endpoint is None:
            raise RegistrationError("Provider configuration has no registration endpoint")

        async with self.connection_builder() as client:
            try:
                data = await safe_json_fetch(
                    client,
                    endpoint,
                    method="POST",
                    json=request.to_json_body(),
                    headers={"Accept": "application/json"},
                )
            except (httpx.HTTPError, SecurityError, OversizedResponseError) as e:
                raise RegistrationError(f"Registration request failed: {e}") from e
            except ValueError as e:
                raise RegistrationError(f"Invalid registration response: {e}") from e

        if not isinstance(data, dict):
            raise RegistrationError("Invalid registration response: not a JSON object")
        try:
            return RegistrationResponse(**data)
        except ValidationError as e:
            raise RegistrationError(f"Invalid registration response: {e}") from e

    def create_launch_artifact(self, request: AuthorizationRequest, generation: int) -> WarmedBrowserArtifact:
        """
        Builds the browser launch artifact for the request. May block while the browser resolves.

        Raises:
            WarmupError: If no browser matches this session's matcher.
        """
        self._check_disposed()
        uri = request.to_uri()
        browser, handle = self.launcher.prepare(uri, self.browser_matcher)
        return WarmedBrowserArtifact(request_uri=uri, browser=browser, generation=generation, handle=handle)

    def _launch(self, request: AuthorizationRequest, artifact: WarmedBrowserArtifact) -> None:
        if not artifact.is_for(request):
            raise WarmupError("Warmed browser artifact was built for a different authorization request")
        if not self.launcher.launch(artifact):
            raise WarmupError("No browser could be opened for the authorization request")

    def launch_authorization_request(self, request: AuthorizationRequest, artifact: WarmedBrowserArtifact) -> str:
        """
        Opens the browser on the request; the caller awaits the result out of band and parses
        the redirect with `parse_authorization_response`.

        Returns:
            str: The launched authorization URI.
        """
        self._check_disposed()
        self._launch(request, artifact)
        return artifact.request_uri

    def perform_authorization_request(
        self,
        request: AuthorizationRequest,
        artifact: WarmedBrowserArtifact,
        completion_target: CompletionTarget,
        cancellation_target: CancellationTarget,
    ) -> None:
        """
        Opens the browser on the request and routes the eventual redirect (see `dispatch_redirect`)
        or cancellation (see `dispatch_cancel`) to the given targets.
        """
        self._check_disposed()
        with self._lock:
            self._pending[request.state] = _PendingAuthorization(request, completion_target, cancellation_target)
        try:
            self._launch(request, artifact)
        except WarmupError:
            with self._lock:
                self._pending.pop(request.state, None)
            raise

    def dispatch_redirect(self, redirect_uri: str) -> bool:
        """
        Delivers a redirect to the targets registered for its state.

        Returns:
            bool: False when no pending authorization matches the redirect.
        """
        states = parse_qs(urlparse(redirect_uri).query).get("state")
        if not states:
            logger.warning("Received a redirect without state, ignoring it")
            return False
        with self._lock:
            pending = self._pending.pop(states[0], None)
        if pending is None:
            logger.warning("Received a redirect for an unknown authorization request")
            return False

        result = self.parse_authorization_response(redirect_uri, pending.request)
        if isinstance(result, AuthorizationCancelled):
            pending.cancellation_target()
        else:
            pending.completion_target(result)
        return True

    def dispatch_cancel(self) -> None:
        """Signals that the user closed the browser before completing any pending authorization."""
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for item in pending:
            item.cancellation_target()

    @staticmethod
    def parse_authorization_response(redirect_uri: str, request: AuthorizationRequest) -> AuthorizationResult:
        """
        Turns the provider's redirect into an AuthorizationResult for the given request.

        The completed payload carries what the token exchange needs: the code, the PKCE
        verifier, the redirect URI, the client id and the token endpoint.
        """
        params = {k: v[0] for k, v in parse_qs(urlparse(redirect_uri).query).items()}

        error = params.get("error")
        if error is not None:
            if error in CANCELLATION_ERRORS:
                return AuthorizationCancelled()
            return AuthorizationFailed(error=error, error_description=params.get("error_description"))

        try:
            parsed = parse_authorization_code_response(redirect_uri, state=request.state)
        except MismatchingStateException:
            return AuthorizationFailed(error="state_mismatch", error_description="Response state does not match")
        except MissingCodeException:
            return AuthorizationFailed(error="missing_code", error_description="Response has no authorization code")

        payload = dict(params)
        payload.update(
            code=parsed["code"],
            state=request.state,
            redirect_uri=request.redirect_uri,
            client_id=request.client_id,
            code_verifier=request.code_verifier.get_secret_value(),
            token_endpoint=request.provider_config.token_endpoint,
        )
        if request.nonce is not None:
            payload["nonce"] = request.nonce
        return AuthorizationCompleted(payload=payload)

    def dispose(self) -> None:
        with self._lock:
            self._disposed = True
            self._pending.clear()
        logger.debug("Authorization service disposed")
