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
Configuration for the coreason-authflow package.
"""

import hashlib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_authflow.exceptions import ConfigurationInvalidError
from coreason_authflow.transport import HttpsOnlyTransport
from coreason_authflow.utils.logger import logger

ConnectionBuilder = Callable[[], httpx.AsyncClient]

_ENDPOINT_FIELDS = (
    "discovery_uri",
    "authorization_endpoint_uri",
    "token_endpoint_uri",
    "registration_endpoint_uri",
    "end_session_endpoint",
)


class AuthFlowConfig(BaseSettings):
    """
    Static configuration of the authorization flow.

    Attributes:
        client_id (str | None): A statically registered client id. Dynamic registration is used when absent.
        redirect_uri (str): The redirect URI registered with the provider.
        end_session_redirect_uri (str | None): Where the provider returns after logout.
        authorization_scope (str): Space separated scopes to request.
        discovery_uri (str | None): The OIDC discovery document URL.
        authorization_endpoint_uri (str | None): Static authorization endpoint, used without discovery.
        token_endpoint_uri (str | None): Static token endpoint, used without discovery.
        registration_endpoint_uri (str | None): Static registration endpoint, used without discovery.
        end_session_endpoint (str | None): Static end-session endpoint, used without discovery.
        https_required (bool): Reject plain-http endpoints and connections.
        http_timeout (float): Timeout in seconds for discovery and registration calls.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_AUTHFLOW_",
        case_sensitive=False,
        frozen=True,
    )

    client_id: str | None = None
    redirect_uri: str
    end_session_redirect_uri: str | None = None
    authorization_scope: str
    discovery_uri: str | None = None
    authorization_endpoint_uri: str | None = None
    token_endpoint_uri: str | None = None
    registration_endpoint_uri: str | None = None
    end_session_endpoint: str | None = None
    https_required: bool = True
    http_timeout: float = Field(default=10.0, gt=0, description="Timeout in seconds for all IdP network operations.")

    @field_validator("client_id", "discovery_uri", *_ENDPOINT_FIELDS[1:], mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """
        Treats blank optional values as absent, the way an empty JSON string is meant.
        """
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("redirect_uri", "authorization_scope")
    @classmethod
    def require_non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, v: str) -> str:
        parsed = urlparse(v)
        if not parsed.scheme:
            raise ValueError(f"redirect_uri must be an absolute URI: {v}")
        return v

    @model_validator(mode="after")
    def validate_endpoints(self) -> "AuthFlowConfig":
        """
        Without discovery the authorization and token endpoints must be given statically,
        and every endpoint must use https unless explicitly opted out.
        """
        if self.discovery_uri is None:
            if self.authorization_endpoint_uri is None:
                raise ValueError("authorization_endpoint_uri must be specified when discovery_uri is not set")
            if self.token_endpoint_uri is None:
                raise ValueError("token_endpoint_uri must be specified when discovery_uri is not set")

        if self.https_required:
            for name in _ENDPOINT_FIELDS:
                value = getattr(self, name)
                if value is not None and urlparse(value).scheme != "https":
                    raise ValueError(
                        f"{name} must use https. Set 'https_required=False' only for local testing."
                    )
        return self

    @classmethod
    def from_json_file(cls, path: str | Path) -> "AuthFlowConfig":
        """
        Loads the configuration from a JSON document, ignoring the environment.
        """
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    def config_hash(self) -> str:
        return hashlib.sha256(self.model_dump_json().encode("utf-8")).hexdigest()


class Configuration:
    """
    Configuration provider for the authorization flow.

    Wraps the raw configuration values. Invalid values never raise out of the provider:
    `is_valid()` reports them and `configuration_error` explains why.
    """

    def __init__(
        self,
        values: AuthFlowConfig | Mapping[str, Any] | Path | None = None,
        accepted_hash: str | None = None,
    ) -> None:
        """
        Initialize the Configuration.

        Args:
            values: A validated config, a raw mapping, a JSON file path, or None to read from the environment.
            accepted_hash: The hash of the last configuration the user's state was built against.
        """
        self._config: AuthFlowConfig | None = None
        self._error: str | None = None
        self._accepted_hash = accepted_hash

        try:
            if isinstance(values, AuthFlowConfig):
                self._config = values
            elif isinstance(values, Path):
                self._config = AuthFlowConfig.from_json_file(values)
            elif values is None:
                self._config = AuthFlowConfig()  # type: ignore[call-arg]
            else:
                self._config = AuthFlowConfig(**values)
        except ValidationError as e:
            self._error = _format_validation_error(e)
        except OSError as e:
            self._error = f"Failed to read configuration: {e}"

        if self._error is not None:
            logger.warning(f"Invalid authorization flow configuration: {self._error}")

    @classmethod
    def from_file(cls, path: str | Path, accepted_hash: str | None = None) -> "Configuration":
        return cls(Path(path), accepted_hash=accepted_hash)

    def is_valid(self) -> bool:
        return self._config is not None

    @property
    def configuration_error(self) -> str | None:
        return self._error

    @property
    def config(self) -> AuthFlowConfig:
        if self._config is None:
            raise ConfigurationInvalidError(f"Configuration is invalid: {self._error}")
        return self._config

    @property
    def accepted_hash(self) -> str | None:
        return self._accepted_hash

    def has_configuration_changed(self) -> bool:
        if self._config is None:
            return False
        return self._config.config_hash() != self._accepted_hash

    def accept_configuration(self) -> None:
        self._accepted_hash = self.config.config_hash()

    @property
    def client_id(self) -> str | None:
        return self.config.client_id

    @property
    def scope(self) -> str:
        return self.config.authorization_scope

    @property
    def redirect_uri(self) -> str:
        return self.config.redirect_uri

    @property
    def discovery_uri(self) -> str | None:
        return self.config.discovery_uri

    @property
    def connection_builder(self) -> ConnectionBuilder:
        """
        Returns a factory for fresh async HTTP clients.

        Clients are created per operation because each worker job runs its own event loop.
        """
        timeout = self.config.http_timeout
        https_required = self.config.https_required

        def build() -> httpx.AsyncClient:
            transport = HttpsOnlyTransport() if https_required else httpx.AsyncHTTPTransport()
            client = httpx.AsyncClient(transport=transport, timeout=timeout)
            # Instrument the client for distributed tracing
            HTTPXClientInstrumentor().instrument_client(client)
            return client

        return build


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        message = item["msg"]
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)
