# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_authflow

import json
from pathlib import Path

import httpx
import pytest
from conftest import discovery_values, static_values
from pydantic import ValidationError

from coreason_authflow.config import AuthFlowConfig, Configuration
from coreason_authflow.exceptions import ConfigurationInvalidError, SecurityError


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COREASON_AUTHFLOW_REDIRECT_URI", "com.example:/cb")
    monkeypatch.setenv("COREASON_AUTHFLOW_AUTHORIZATION_SCOPE", "openid")
    monkeypatch.setenv("COREASON_AUTHFLOW_DISCOVERY_URI", "https://idp/.well-known/openid-configuration")
    monkeypatch.setenv("COREASON_AUTHFLOW_HTTP_TIMEOUT", "3.5")

    config = AuthFlowConfig()  # type: ignore[call-arg]
    assert config.redirect_uri == "com.example:/cb"
    assert config.discovery_uri == "https://idp/.well-known/openid-configuration"
    assert config.client_id is None
    assert config.http_timeout == 3.5
    assert config.https_required is True


def test_static_endpoints_required_without_discovery() -> None:
    with pytest.raises(ValidationError, match="authorization_endpoint_uri must be specified"):
        AuthFlowConfig(**static_values(authorization_endpoint_uri=None))

    with pytest.raises(ValidationError, match="token_endpoint_uri must be specified"):
        AuthFlowConfig(**static_values(token_endpoint_uri=None))


def test_blank_optional_values_are_absent() -> None:
    config = AuthFlowConfig(**static_values(client_id="  ", registration_endpoint_uri=""))
    assert config.client_id is None
    assert config.registration_endpoint_uri is None


def test_blank_required_values_rejected() -> None:
    with pytest.raises(ValidationError, match="must not be blank"):
        AuthFlowConfig(**static_values(authorization_scope="   "))


def test_relative_redirect_uri_rejected() -> None:
    with pytest.raises(ValidationError, match="absolute URI"):
        AuthFlowConfig(**static_values(redirect_uri="/callback"))


def test_http_endpoints_rejected_by_default() -> None:
    with pytest.raises(ValidationError, match="token_endpoint_uri must use https"):
        AuthFlowConfig(**static_values(token_endpoint_uri="http://idp.example.com/token"))


def test_http_endpoints_allowed_when_opted_out() -> None:
    config = AuthFlowConfig(
        **discovery_values(discovery_uri="http://localhost:8080/.well-known/openid-configuration"),
        https_required=False,
    )
    assert config.discovery_uri.startswith("http://")  # type: ignore[union-attr]


def test_timeout_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        AuthFlowConfig(**static_values(http_timeout=0))


def test_config_is_frozen() -> None:
    config = AuthFlowConfig(**static_values())
    with pytest.raises(ValidationError):
        config.client_id = "other"  # type: ignore[misc]


def test_from_json_file(tmp_path: Path) -> None:
    path = tmp_path / "auth_config.json"
    path.write_text(json.dumps(discovery_values(client_id="")), encoding="utf-8")

    config = AuthFlowConfig.from_json_file(path)
    assert config.client_id is None
    assert config.authorization_scope == "openid email profile"


def test_config_hash_tracks_values() -> None:
    a = AuthFlowConfig(**static_values())
    b = AuthFlowConfig(**static_values())
    c = AuthFlowConfig(**static_values(authorization_scope="openid"))
    assert a.config_hash() == b.config_hash()
    assert a.config_hash() != c.config_hash()


def test_configuration_invalid_does_not_raise() -> None:
    configuration = Configuration({"authorization_scope": "openid"})

    assert configuration.is_valid() is False
    assert configuration.configuration_error is not None
    assert "redirect_uri" in configuration.configuration_error
    assert configuration.has_configuration_changed() is False
    with pytest.raises(ConfigurationInvalidError):
        _ = configuration.config


def test_configuration_missing_file(tmp_path: Path) -> None:
    configuration = Configuration.from_file(tmp_path / "missing.json")
    assert configuration.is_valid() is False
    assert configuration.configuration_error is not None
    assert configuration.configuration_error.startswith("Failed to read configuration")


def test_configuration_from_file(tmp_path: Path) -> None:
    path = tmp_path / "auth_config.json"
    path.write_text(json.dumps(static_values()), encoding="utf-8")

    configuration = Configuration.from_file(path)
    assert configuration.is_valid()
    assert configuration.client_id == "static-client"
    assert configuration.discovery_uri is None


def test_configuration_change_detection() -> None:
    configuration = Configuration(static_values())
    assert configuration.accepted_hash is None
    assert configuration.has_configuration_changed() is True

    configuration.accept_configuration()
    assert configuration.has_configuration_changed() is False

    # Same values, accepted by an earlier session
    reloaded = Configuration(static_values(), accepted_hash=configuration.accepted_hash)
    assert reloaded.has_configuration_changed() is False

    edited = Configuration(static_values(client_id="other"), accepted_hash=configuration.accepted_hash)
    assert edited.has_configuration_changed() is True


def test_configuration_accepts_settings_instance() -> None:
    config = AuthFlowConfig(**static_values())
    configuration = Configuration(config)
    assert configuration.config is config
    assert configuration.scope == "openid email profile"
    assert configuration.redirect_uri == static_values()["redirect_uri"]


@pytest.mark.asyncio
async def test_connection_builder_refuses_http() -> None:
    configuration = Configuration(static_values())
    async with configuration.connection_builder() as client:
        with pytest.raises(SecurityError):
            await client.get("http://idp.example.com/.well-known/openid-configuration")


@pytest.mark.asyncio
async def test_connection_builder_applies_timeout() -> None:
    configuration = Configuration(static_values(http_timeout=4.0, https_required=False))
    client = configuration.connection_builder()
    try:
        assert isinstance(client, httpx.AsyncClient)
        assert client.timeout.connect == 4.0
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_connection_builder_returns_fresh_clients() -> None:
    configuration = Configuration(static_values())
    builder = configuration.connection_builder
    first, second = builder(), builder()
    try:
        assert first is not second
    finally:
        await first.aclose()
        await second.aclose()
