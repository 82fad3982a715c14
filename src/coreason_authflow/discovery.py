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
Discovery Resolver component for turning an OIDC discovery URL into a ProviderConfig.
"""

from urllib.parse import urlparse

import anyio
import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_authflow.config import ConnectionBuilder
from coreason_authflow.exceptions import (
    DiscoveryError,
    DiscoveryNetworkError,
    MalformedDiscoveryDocumentError,
    OversizedResponseError,
    SecurityError,
    UnsupportedIssuerError,
)
from coreason_authflow.models import ProviderConfig
from coreason_authflow.models_internal import DiscoveryDocument
from coreason_authflow.transport import safe_json_fetch
from coreason_authflow.utils.logger import logger

tracer = trace.get_tracer(__name__)


class DiscoveryResolver:
    """
    Fetches provider metadata from a discovery URL.

    Attributes:
        connection_builder (ConnectionBuilder): Factory for the HTTP client used per fetch.
        https_required (bool): Reject discovery documents whose issuer is not https.
        attempts (int): Fetch attempts for transient network failures.
    """

    def __init__(
        self,
        connection_builder: ConnectionBuilder,
        https_required: bool = True,
        attempts: int = 3,
        wait_initial: float = 0.1,
        wait_max: float = 1.0,
    ) -> None:
        """
        Initialize the DiscoveryResolver.

        Args:
            connection_builder: Factory for the HTTP client used per fetch.
            https_required: Reject discovery documents whose issuer is not https. Defaults to True.
            attempts: Fetch attempts for transient network failures. Defaults to 3.
            wait_initial: First backoff delay in seconds. Defaults to 0.1.
            wait_max: Maximum backoff delay in seconds. Defaults to 1.0.
        """
        self.connection_builder = connection_builder
        self.https_required = https_required
        self.attempts = attempts
        self.wait_initial = wait_initial
        self.wait_max = wait_max

    async def _fetch_document(self, discovery_uri: str) -> DiscoveryDocument:
        """
        Fetches and validates the discovery document.

        Retries on `httpx.HTTPError` with exponential backoff. Malformed documents, oversized
        responses and connection policy violations are not retried.

        Raises:
            DiscoveryNetworkError: If the document could not be fetched.
            MalformedDiscoveryDocumentError: If the document is not a valid discovery document.
        """
        async with self.connection_builder() as client:
            for attempt in range(self.attempts):
                try:
                    data = await safe_json_fetch(client, discovery_uri)
                except (OversizedResponseError, ValueError) as e:
                    raise MalformedDiscoveryDocumentError(
                        f"Invalid discovery document from {discovery_uri}: {e}"
                    ) from e
                except SecurityError as e:
                    raise DiscoveryNetworkError(f"Refused to fetch {discovery_uri}: {e}") from e
                except httpx.HTTPError as e:
                    if attempt == self.attempts - 1:
                        raise DiscoveryNetworkError(
                            f"Failed to fetch discovery document from {discovery_uri}: {e}"
                        ) from e
                    sleep_time = min(self.wait_initial * (2**attempt), self.wait_max)
                    logger.debug(f"Discovery attempt {attempt + 1} failed, retrying in {sleep_time}s: {e}")
                    await anyio.sleep(sleep_time)
                    continue

                if not isinstance(data, dict):
                    raise MalformedDiscoveryDocumentError(f"Discovery document from {discovery_uri} is not an object")
                try:
                    return DiscoveryDocument(**data)
                except ValidationError as e:
                    raise MalformedDiscoveryDocumentError(
                        f"Invalid discovery document from {discovery_uri}: {e}"
                    ) from e

        raise DiscoveryNetworkError(f"Failed to fetch discovery document from {discovery_uri}")  # pragma: no cover

    def _check_issuer(self, document: DiscoveryDocument) -> None:
        parsed = urlparse(document.issuer)
        if not parsed.scheme or not parsed.netloc:
            raise UnsupportedIssuerError(f"Issuer is not an absolute URL: {document.issuer}")
        if parsed.query or parsed.fragment:
            raise UnsupportedIssuerError(f"Issuer must not contain a query or fragment: {document.issuer}")
        if self.https_required and parsed.scheme != "https":
            raise UnsupportedIssuerError(f"Issuer must use https: {document.issuer}")

    async def fetch(self, discovery_uri: str) -> ProviderConfig:
        """
        Resolves the provider configuration from the discovery URL.

        Args:
            discovery_uri: The discovery URL (e.g. https://idp/.well-known/openid-configuration).

        Returns:
            ProviderConfig: The discovered endpoints, carrying the raw document.

        Raises:
            DiscoveryError: One of its subclasses, describing why discovery failed.
        """
        with tracer.start_as_current_span("authflow.discovery") as span:
            span.set_attribute("authflow.discovery_uri", discovery_uri)
            try:
                document = await self._fetch_document(discovery_uri)
                self._check_issuer(document)
            except DiscoveryError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            logger.info(f"Discovery document retrieved for issuer {document.issuer}")
            return ProviderConfig.from_discovery(document)
