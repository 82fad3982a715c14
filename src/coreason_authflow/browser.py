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
Browser launching seam used by the authorization service.
"""

import webbrowser
from typing import Any, Protocol

from coreason_authflow.exceptions import WarmupError
from coreason_authflow.models import BrowserDescriptor, BrowserMatcher, WarmedBrowserArtifact
from coreason_authflow.utils.logger import logger

# Registry names probed by WebBrowserLauncher.available_browsers()
KNOWN_BROWSERS = (
    "firefox",
    "google-chrome",
    "chrome",
    "chromium",
    "chromium-browser",
    "safari",
    "microsoft-edge",
    "opera",
    "brave",
)


class BrowserLauncher(Protocol):
    """Protocol for the concrete browser-tab launching mechanism."""

    def available_browsers(self) -> list[BrowserDescriptor]:
        """Lists the browsers the user can choose from."""
        ...

    def prepare(self, uri: str, matcher: BrowserMatcher) -> tuple[str | None, Any]:
        """
        Resolves a browser for the matcher ahead of launch.

        Returns the browser name (None for the system default) and an opaque launch handle.
        """
        ...

    def launch(self, artifact: WarmedBrowserArtifact) -> bool:
        """Opens the artifact's request URI. Returns False if no browser could be opened."""
        ...


class WebBrowserLauncher:
    """
    BrowserLauncher backed by the standard `webbrowser` registry.
    """

    def __init__(self, candidates: tuple[str, ...] = KNOWN_BROWSERS) -> None:
        self.candidates = candidates

    def available_browsers(self) -> list[BrowserDescriptor]:
        browsers = []
        for name in self.candidates:
            try:
                webbrowser.get(name)
            except webbrowser.Error:
                continue
            browsers.append(BrowserDescriptor(name=name))
        return browsers

    def prepare(self, uri: str, matcher: BrowserMatcher) -> tuple[str | None, Any]:
        name = None if matcher.descriptor is None else matcher.descriptor.name
        try:
            controller = webbrowser.get(name)
        except webbrowser.Error as e:
            raise WarmupError(f"No browser available for {name or 'default'}: {e}") from e
        return name, controller

    def launch(self, artifact: WarmedBrowserArtifact) -> bool:
        controller = artifact.handle if artifact.handle is not None else webbrowser.get(artifact.browser)
        opened = bool(controller.open(artifact.request_uri, new=2))
        if not opened:
            logger.warning(f"Browser {artifact.browser or 'default'} refused to open the authorization request")
        return opened
