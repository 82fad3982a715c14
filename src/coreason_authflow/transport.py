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
HTTP transport policy and bounded JSON fetching for discovery and registration calls.
"""

import json
from typing import Any

import httpx
from loguru import logger

from coreason_authflow.exceptions import OversizedResponseError, SecurityError

MAX_RESPONSE_BYTES = 1_000_000


class HttpsOnlyTransport(httpx.AsyncHTTPTransport):
    """
    An HTTP transport that refuses to send anything over plain http.

    Used by the default connection builder. Local testing against an http provider needs
    `https_required=False` in the configuration, which swaps in the plain transport.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.url.scheme != "https":
            # We log this as a security event
            logger.warning(f"Security violation: Blocked non-https request to {request.url.host}")
            raise SecurityError(f"Only https connections are allowed, got {request.url.scheme}://{request.url.host}")
        return await super().handle_async_request(request)


async def safe_json_fetch(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    max_bytes: int = MAX_RESPONSE_BYTES,
    **kwargs: Any,
) -> Any:
    """
    Fetches and decodes a JSON document, refusing bodies larger than `max_bytes`.

    Error statuses raise `httpx.HTTPStatusError`; when the body is an OAuth error object the
    `error` and `error_description` fields are folded into the message.

    Args:
        client: The async HTTP client to use.
        url: The URL to fetch.
        method: The HTTP method.
        max_bytes: The maximum accepted body size.
        **kwargs: Passed through to `client.stream` (e.g. `json=`, `headers=`).

    Returns:
        The decoded JSON value.

    Raises:
        OversizedResponseError: If the body exceeds `max_bytes`.
        httpx.HTTPStatusError: If the response status is 4xx/5xx.
        httpx.HTTPError: On transport failures.
        ValueError: If the body is not valid JSON.
    """
    async with client.stream(method, url, follow_redirects=True, **kwargs) as response:
        # DoS check
        content_length = response.headers.get("Content-Length")
        if content_length:
            try:
                if int(content_length) > max_bytes:
                    raise OversizedResponseError(f"Response from {url} too large")
            except ValueError:
                pass

        content = bytearray()
        async for chunk in response.aiter_bytes():
            content.extend(chunk)
            if len(content) > max_bytes:
                raise OversizedResponseError(f"Response from {url} too large")

        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                _describe_error(response.status_code, bytes(content)),
                request=response.request,
                response=response,
            )

    return json.loads(content)


def _describe_error(status_code: int, content: bytes) -> str:
    message = f"HTTP {status_code}"
    try:
        body = json.loads(content)
    except ValueError:
        return message
    if isinstance(body, dict) and "error" in body:
        message = f"{message}: {body['error']}"
        if body.get("error_description"):
            message = f"{message} ({body['error_description']})"
    return message
