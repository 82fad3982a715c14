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
OAuth2 / OpenID Connect authorization flow orchestration: discovery, dynamic client registration,
request building and browser warm-up ahead of user action.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .browser import BrowserLauncher, WebBrowserLauncher
from .config import AuthFlowConfig, Configuration
from .exceptions import CoreasonAuthFlowError
from .models import (
    AuthorizationCancelled,
    AuthorizationCompleted,
    AuthorizationFailed,
    AuthorizationRequest,
    AuthorizationResult,
    AuthState,
    BrowserDescriptor,
    BrowserMatcher,
    FlowState,
    ProviderConfig,
)
from .orchestrator import AuthFlowOrchestrator, FlowHandOff, FlowView
from .state_store import AuthStateStore, MemoryAuthStateStore

__all__ = [
    "AuthFlowConfig",
    "AuthFlowOrchestrator",
    "AuthState",
    "AuthStateStore",
    "AuthorizationCancelled",
    "AuthorizationCompleted",
    "AuthorizationFailed",
    "AuthorizationRequest",
    "AuthorizationResult",
    "BrowserDescriptor",
    "BrowserLauncher",
    "BrowserMatcher",
    "Configuration",
    "CoreasonAuthFlowError",
    "FlowHandOff",
    "FlowState",
    "FlowView",
    "MemoryAuthStateStore",
    "ProviderConfig",
    "WebBrowserLauncher",
]
