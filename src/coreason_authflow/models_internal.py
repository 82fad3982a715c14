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
Internal data models for the coreason-authflow package.
These are not exposed in the public API.
"""

from pydantic import BaseModel, ConfigDict, Field


class DiscoveryDocument(BaseModel):
    """
    OIDC provider metadata from .well-known/openid-configuration.

    Only the fields the authorization flow relies on are typed; everything else is kept
    verbatim so the raw document can be exposed on the resulting ProviderConfig.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    issuer: str = Field(..., description="The OIDC issuer URL.")
    authorization_endpoint: str = Field(..., description="The authorization endpoint URL.")
    token_endpoint: str = Field(..., description="The token endpoint URL.")
    registration_endpoint: str | None = Field(default=None, description="The dynamic registration endpoint URL.")
    end_session_endpoint: str | None = Field(default=None, description="The RP-initiated logout endpoint URL.")
    jwks_uri: str | None = Field(default=None, description="The URL to the JWKS.")
    response_types_supported: list[str] = Field(default_factory=list)
    scopes_supported: list[str] | None = None
