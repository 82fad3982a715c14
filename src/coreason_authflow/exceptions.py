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
Custom exceptions for the coreason-authflow package.
"""


class CoreasonAuthFlowError(Exception):
    """Base exception for all coreason-authflow errors."""


class ConfigurationInvalidError(CoreasonAuthFlowError):
    """Raised when the static configuration cannot be used. Not recoverable within a session."""


class DiscoveryError(CoreasonAuthFlowError):
    """
    Raised when the provider metadata could not be resolved from the discovery URL.
    Recoverable: the user may retry initialization.
    """


class DiscoveryNetworkError(DiscoveryError):
    """Raised when the discovery document could not be fetched."""


class MalformedDiscoveryDocumentError(DiscoveryError):
    """Raised when the discovery document is not valid JSON or misses required fields."""


class UnsupportedIssuerError(DiscoveryError):
    """Raised when the discovery document advertises an issuer we refuse to talk to."""


class RegistrationError(CoreasonAuthFlowError):
    """Raised when dynamic client registration fails."""


class AuthorizationServiceDisposedError(CoreasonAuthFlowError):
    """Raised when an authorization service session is used after dispose()."""


class SecurityError(CoreasonAuthFlowError):
    """Raised when a request violates the connection builder policy (e.g. plain http)."""


class OversizedResponseError(CoreasonAuthFlowError):
    """Raised when an HTTP response is too large."""


class WarmupError(CoreasonAuthFlowError):
    """Raised when the browser launch artifact could not be constructed."""
