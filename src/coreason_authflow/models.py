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
Data models for the coreason-authflow package.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from authlib.oauth2.rfc6749.parameters import prepare_grant_uri
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from coreason_authflow.models_internal import DiscoveryDocument


class FlowState(StrEnum):
    INIT = "init"
    RESOLVING_CONFIG = "resolving_config"
    RESOLVING_CLIENT = "resolving_client"
    BUILDING_REQUEST = "building_request"
    WARMING_UP = "warming_up"
    READY = "ready"
    ISSUING = "issuing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    ERROR = "error"
    ALREADY_AUTHORIZED = "already_authorized"


class ClientIdSource(StrEnum):
    STATIC = "static"
    DYNAMIC = "dynamic"


class EndpointSource(StrEnum):
    STATIC = "static"
    DISCOVERED = "discovered"


class ProviderConfig(BaseModel):
    """
    Endpoints of the authorization server.

    Produced either from static configuration values or from a discovery document, and
    immutable once constructed.

    Attributes:
        authorization_endpoint (str): The authorization endpoint URI.
        token_endpoint (str): The token endpoint URI.
        registration_endpoint (str | None): The dynamic client registration endpoint URI.
        end_session_endpoint (str | None): The end-session endpoint URI.
        discovery_doc (dict[str, Any] | None): The raw discovery document, if discovered.
    """

    model_config = ConfigDict(frozen=True)

    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str | None = None
    end_session_endpoint: str | None = None
    discovery_doc: dict[str, Any] | None = None

    @classmethod
    def from_discovery(cls, document: DiscoveryDocument) -> "ProviderConfig":
        return cls(
            authorization_endpoint=document.authorization_endpoint,
            token_endpoint=document.token_endpoint,
            registration_endpoint=document.registration_endpoint,
            end_session_endpoint=document.end_session_endpoint,
            discovery_doc=document.model_dump(exclude_none=True),
        )

    @property
    def source(self) -> EndpointSource:
        return EndpointSource.DISCOVERED if self.discovery_doc is not None else EndpointSource.STATIC


class RegistrationRequest(BaseModel):
    """
    Dynamic client registration request (RFC 7591).

    The provider configuration is carried along so the registration transport knows where to
    send the request; it is not part of the JSON body.
    """

    model_config = ConfigDict(frozen=True)

    provider_config: ProviderConfig = Field(exclude=True)
    redirect_uris: list[str]
    application_type: str = "native"
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code"])
    token_endpoint_auth_method: str = "client_secret_basic"

    def to_json_body(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class RegistrationResponse(BaseModel):
    """
    Response from the dynamic client registration endpoint.

    Attributes:
        client_id (str): The issued client identifier.
        client_secret (SecretStr | None): The issued client secret. Protected from logging.
        client_id_issued_at (int | None): Issue time of the client id, in epoch seconds.
        client_secret_expires_at (int | None): Expiry of the secret, 0 meaning never.
        registration_access_token (SecretStr | None): Token for the client configuration endpoint.
        registration_client_uri (str | None): The client configuration endpoint.
        token_endpoint_auth_method (str | None): The auth method the server settled on.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    client_id: str = Field(..., min_length=1)
    client_secret: SecretStr | None = None
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None
    registration_access_token: SecretStr | None = None
    registration_client_uri: str | None = None
    token_endpoint_auth_method: str | None = None


class AuthState(BaseModel):
    """
    The current authorization state of the session.

    Frozen: the store replaces it wholesale. The only derived update the flow performs is
    recording a registration outcome via `with_registration`.

    Attributes:
        provider_config (ProviderConfig | None): The resolved provider endpoints.
        last_registration_response (RegistrationResponse | None): The last successful registration.
        last_registration_error (str | None): The last registration failure.
        access_token (SecretStr | None): The current access token, if any.
        refresh_token (SecretStr | None): The current refresh token, if any.
        authorization_error (str | None): The last authorization failure, if any.
    """

    model_config = ConfigDict(frozen=True)

    provider_config: ProviderConfig | None = None
    last_registration_response: RegistrationResponse | None = None
    last_registration_error: str | None = None
    access_token: SecretStr | None = None
    refresh_token: SecretStr | None = None
    authorization_error: str | None = None

    @property
    def is_authorized(self) -> bool:
        if self.authorization_error is not None:
            return False
        return self.access_token is not None or self.refresh_token is not None

    def with_registration(
        self, response: RegistrationResponse | None, error: str | None = None
    ) -> "AuthState":
        """
        Returns a copy of this state updated with a registration outcome.

        A new registration invalidates any tokens issued to the previous client. A failure is
        recorded next to the previous response rather than replacing it.
        """
        if response is None:
            return self.model_copy(update={"last_registration_error": error or "Registration failed"})
        return AuthState(
            provider_config=self.provider_config,
            last_registration_response=response,
            last_registration_error=None,
        )


class ClientIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: str
    source: ClientIdSource


class AuthorizationRequest(BaseModel):
    """
    An OAuth2 authorization request (response type "code" with PKCE).

    Immutable: any input change requires building a new instance.

    Attributes:
        provider_config (ProviderConfig): Endpoints to send the request to.
        client_id (str): The resolved client id.
        response_type (str): Always "code".
        redirect_uri (str): Where the provider sends the user back.
        scope (str): Space separated scopes.
        login_hint (str | None): Pre-fill value for the provider's login UI.
        state (str): Opaque CSRF value echoed back by the provider.
        nonce (str | None): ID token replay protection, set for "openid" scopes.
        code_verifier (SecretStr): PKCE verifier, kept for the token exchange.
        code_challenge (str): PKCE S256 challenge derived from the verifier.
    """

    model_config = ConfigDict(frozen=True)

    provider_config: ProviderConfig
    client_id: str
    response_type: Literal["code"] = "code"
    redirect_uri: str
    scope: str
    login_hint: str | None = None
    state: str
    nonce: str | None = None
    code_verifier: SecretStr
    code_challenge: str
    code_challenge_method: Literal["S256"] = "S256"

    def to_uri(self) -> str:
        return prepare_grant_uri(  # type: ignore[no-any-return]
            self.provider_config.authorization_endpoint,
            self.client_id,
            self.response_type,
            redirect_uri=self.redirect_uri,
            scope=self.scope,
            state=self.state,
            nonce=self.nonce,
            login_hint=self.login_hint,
            code_challenge=self.code_challenge,
            code_challenge_method=self.code_challenge_method,
        )


class BrowserDescriptor(BaseModel):
    """Identifies one installed browser, by its launcher registry name."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    display_name: str | None = None


class BrowserMatcher(BaseModel):
    """
    Browser selection criterion: match any browser (no descriptor) or exactly one.
    """

    model_config = ConfigDict(frozen=True)

    descriptor: BrowserDescriptor | None = None

    @classmethod
    def any(cls) -> "BrowserMatcher":
        return cls()

    @classmethod
    def exact(cls, descriptor: BrowserDescriptor) -> "BrowserMatcher":
        return cls(descriptor=descriptor)

    @property
    def matches_any(self) -> bool:
        return self.descriptor is None

    def matches(self, browser_name: str) -> bool:
        return self.descriptor is None or self.descriptor.name == browser_name


class WarmedBrowserArtifact(BaseModel):
    """
    Pre-built browser launch payload, bound to exactly one authorization request URI.

    Attributes:
        request_uri (str): The authorization URI the artifact launches.
        browser (str | None): The resolved browser name, None for the system default.
        generation (int): The warm-up generation that produced it.
        handle (Any): Launcher specific, opaque payload.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    request_uri: str
    browser: str | None = None
    generation: int
    handle: Any = Field(default=None, exclude=True, repr=False)

    def is_for(self, request: AuthorizationRequest) -> bool:
        return self.request_uri == request.to_uri()


class AuthOptions(BaseModel):
    """What the view shows once the flow is ready for the user to start authorization."""

    model_config = ConfigDict(frozen=True)

    authorization_endpoint: str
    endpoint_source: EndpointSource
    client_id: str
    client_id_source: ClientIdSource


class AuthorizationCompleted(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Literal["completed"] = "completed"
    payload: dict[str, Any] = Field(default_factory=dict)


class AuthorizationCancelled(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Literal["cancelled"] = "cancelled"


class AuthorizationFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Literal["failed"] = "failed"
    error: str
    error_description: str | None = None


AuthorizationResult = Annotated[
    AuthorizationCompleted | AuthorizationCancelled | AuthorizationFailed,
    Field(discriminator="outcome"),
]
