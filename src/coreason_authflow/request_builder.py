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
Request Builder: constructs a fresh AuthorizationRequest from the current inputs.
"""

from authlib.common.security import generate_token
from authlib.oauth2.rfc7636 import create_s256_code_challenge
from pydantic import SecretStr

from coreason_authflow.models import AuthorizationRequest, ProviderConfig


def normalize_login_hint(raw: str | None) -> str | None:
    """
    Trims the raw login hint; empty or whitespace-only input means no hint.
    """
    if raw is None:
        return None
    hint = raw.strip()
    return hint or None


def build_authorization_request(
    provider_config: ProviderConfig,
    client_id: str,
    scope: str,
    redirect_uri: str,
    login_hint: str | None = None,
) -> AuthorizationRequest:
    """
    Builds a new authorization request. Never mutates a previous one.

    A new state, nonce and PKCE verifier are generated for every call.

    Args:
        provider_config: The provider endpoints.
        client_id: The resolved client id.
        scope: Space separated scopes.
        redirect_uri: The registered redirect URI.
        login_hint: Raw login hint input, normalized with `normalize_login_hint`.

    Returns:
        AuthorizationRequest: The new request value.
    """
    # RFC 7636: 43-128 characters from the unreserved set
    code_verifier = generate_token(64)
    nonce = generate_token(32) if "openid" in scope.split() else None

    return AuthorizationRequest(
        provider_config=provider_config,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        login_hint=normalize_login_hint(login_hint),
        state=generate_token(32),
        nonce=nonce,
        code_verifier=SecretStr(code_verifier),
        code_challenge=create_s256_code_challenge(code_verifier),
    )
