# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_authflow

from urllib.parse import parse_qs, urlparse

import pytest
from authlib.oauth2.rfc7636 import create_s256_code_challenge
from conftest import REDIRECT_URI
from pydantic import ValidationError

from coreason_authflow.models import ProviderConfig
from coreason_authflow.request_builder import build_authorization_request, normalize_login_hint


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, None),
        ("", None),
        ("   ", None),
        ("\t\n", None),
        ("  user@example.com ", "user@example.com"),
        ("user", "user"),
    ],
)
def test_normalize_login_hint(raw: str | None, expected: str | None) -> None:
    assert normalize_login_hint(raw) == expected


def test_build_request(provider_config: ProviderConfig) -> None:
    request = build_authorization_request(
        provider_config, "client-1", "openid email", REDIRECT_URI, "  user@example.com  "
    )

    assert request.provider_config == provider_config
    assert request.client_id == "client-1"
    assert request.response_type == "code"
    assert request.redirect_uri == REDIRECT_URI
    assert request.scope == "openid email"
    assert request.login_hint == "user@example.com"
    assert request.nonce is not None
    assert request.code_challenge_method == "S256"
    assert request.code_challenge == create_s256_code_challenge(request.code_verifier.get_secret_value())
    assert 43 <= len(request.code_verifier.get_secret_value()) <= 128


def test_nonce_only_for_openid_scope(provider_config: ProviderConfig) -> None:
    request = build_authorization_request(provider_config, "client-1", "api.read", REDIRECT_URI)
    assert request.nonce is None


def test_each_build_is_a_new_value(provider_config: ProviderConfig) -> None:
    first = build_authorization_request(provider_config, "client-1", "openid", REDIRECT_URI, "a")
    second = build_authorization_request(provider_config, "client-1", "openid", REDIRECT_URI, "ab")

    assert first is not second
    assert first.login_hint == "a"
    assert second.login_hint == "ab"
    assert first.state != second.state
    assert first.code_verifier.get_secret_value() != second.code_verifier.get_secret_value()


def test_request_is_immutable(provider_config: ProviderConfig) -> None:
    request = build_authorization_request(provider_config, "client-1", "openid", REDIRECT_URI)
    with pytest.raises(ValidationError):
        request.login_hint = "someone"  # type: ignore[misc]


def test_to_uri(provider_config: ProviderConfig) -> None:
    request = build_authorization_request(provider_config, "client-1", "openid email", REDIRECT_URI, "user")
    parsed = urlparse(request.to_uri())
    params = {k: v[0] for k, v in parse_qs(parsed.query).items()}

    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == provider_config.authorization_endpoint
    assert params["response_type"] == "code"
    assert params["client_id"] == "client-1"
    assert params["redirect_uri"] == REDIRECT_URI
    assert params["scope"] == "openid email"
    assert params["state"] == request.state
    assert params["nonce"] == request.nonce
    assert params["login_hint"] == "user"
    assert params["code_challenge"] == request.code_challenge
    assert params["code_challenge_method"] == "S256"
    assert "code_verifier" not in params


def test_to_uri_without_login_hint(provider_config: ProviderConfig) -> None:
    request = build_authorization_request(provider_config, "client-1", "api.read", REDIRECT_URI, "   ")
    params = parse_qs(urlparse(request.to_uri()).query)

    assert "login_hint" not in params
    assert "nonce" not in params
