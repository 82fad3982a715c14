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
Client Registrar component resolving the client id, registering dynamically when needed.
"""

from typing import Protocol

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_authflow.exceptions import RegistrationError
from coreason_authflow.models import (
    ClientIdentity,
    ClientIdSource,
    ProviderConfig,
    RegistrationRequest,
    RegistrationResponse,
)
from coreason_authflow.state_store import AuthStateStore
from coreason_authflow.utils.logger import logger

tracer = trace.get_tracer(__name__)


class RegistrationTransport(Protocol):
    """Anything able to send a registration request, normally the AuthorizationService session."""

    async def perform_registration_request(self, request: RegistrationRequest) -> RegistrationResponse:
        ...


class ClientRegistrar:
    """
    Resolves the client id in a fixed order: static configuration, then a previously stored
    dynamic registration, then a fresh dynamic registration.

    Attributes:
        store (AuthStateStore): Where registration outcomes are recorded.
        static_client_id (str | None): The statically configured client id.
        redirect_uri (str): The redirect URI to register.
    """

    def __init__(self, store: AuthStateStore, static_client_id: str | None, redirect_uri: str) -> None:
        self.store = store
        self.static_client_id = static_client_id
        self.redirect_uri = redirect_uri

    def existing_identity(self) -> ClientIdentity | None:
        """
        Returns the client identity available without a network call, if any.

        A static client id takes precedence over any prior dynamic registration.
        """
        if self.static_client_id is not None:
            return ClientIdentity(client_id=self.static_client_id, source=ClientIdSource.STATIC)

        last_response = self.store.current().last_registration_response
        if last_response is not None:
            return ClientIdentity(client_id=last_response.client_id, source=ClientIdSource.DYNAMIC)
        return None

    def build_request(self, provider_config: ProviderConfig) -> RegistrationRequest:
        return RegistrationRequest(
            provider_config=provider_config,
            redirect_uris=[self.redirect_uri],
            token_endpoint_auth_method="client_secret_basic",
        )

    async def resolve(self, transport: RegistrationTransport) -> ClientIdentity:
        """
        Resolves the client identity, registering a new client only when none is available.

        Args:
            transport: Sends the registration request when one is needed.

        Returns:
            ClientIdentity: The resolved client id and where it came from.

        Raises:
            RegistrationError: If registration is needed but impossible or fails. Failures
                are recorded in the AuthState before raising.
        """
        identity = self.existing_identity()
        if identity is not None:
            logger.info(f"Using {identity.source} client ID: {identity.client_id}")
            return identity

        provider_config = self.store.current().provider_config
        if provider_config is None:
            raise RegistrationError("Cannot register a client before the provider configuration is known")
        if provider_config.registration_endpoint is None:
            error = "No client ID is configured and the provider does not support dynamic registration"
            self.store.update_after_registration(None, error)
            raise RegistrationError(error)

        logger.info("Dynamically registering client")
        request = self.build_request(provider_config)

        with tracer.start_as_current_span("authflow.registration") as span:
            span.set_attribute("authflow.registration_endpoint", provider_config.registration_endpoint)
            try:
                response = await transport.perform_registration_request(request)
            except RegistrationError as e:
                self.store.update_after_registration(None, str(e))
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.warning(f"Failed to dynamically register client: {e}")
                raise

        self.store.update_after_registration(response, None)
        logger.info(f"Dynamically registered client: {response.client_id}")
        return ClientIdentity(client_id=response.client_id, source=ClientIdSource.DYNAMIC)
