import contextlib
import os
import sys
from typing import Any

# Add src to path for running directly
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from coreason_authflow.config import Configuration
from coreason_authflow.models import AuthOptions, BrowserDescriptor, FlowState
from coreason_authflow.orchestrator import AuthFlowOrchestrator
from coreason_authflow.state_store import MemoryAuthStateStore


class ConsoleView:
    def display_loading(self, message: str) -> None:
        print(f">>> {message}...")

    def display_error(self, message: str, recoverable: bool) -> None:
        print(f">>> Error: {message}" + (" (type 'retry' to try again)" if recoverable else ""))

    def display_auth_options(self, options: AuthOptions) -> None:
        print(f">>> Authorization endpoint ({options.endpoint_source}): {options.authorization_endpoint}")
        print(f">>> Client ID ({options.client_id_source}): {options.client_id}")

    def display_auth_cancelled(self) -> None:
        print(">>> Authorization cancelled")

    def display_browsers(self, browsers: list[BrowserDescriptor]) -> None:
        names = ", ".join(b.name for b in browsers) or "system default only"
        print(f">>> Browsers: {names}")


class ConsoleHandOff:
    def on_already_authorized(self) -> None:
        print(">>> Already authorized")

    def on_authorization_completed(self, payload: dict[str, Any]) -> None:
        print(f">>> Authorization code received, ready for token exchange at {payload['token_endpoint']}")


def main() -> None:
    """
    Runs the authorization flow from a terminal.

    Configuration comes from COREASON_AUTHFLOW_* environment variables, e.g.:
        COREASON_AUTHFLOW_DISCOVERY_URI=https://accounts.google.com/.well-known/openid-configuration
        COREASON_AUTHFLOW_CLIENT_ID=...
        COREASON_AUTHFLOW_REDIRECT_URI=http://127.0.0.1:8765/callback
        COREASON_AUTHFLOW_AUTHORIZATION_SCOPE="openid email"

    Commands: 'hint <email>', 'browser <name>', 'go', 'retry', or paste the redirect URL.
    """
    flow = AuthFlowOrchestrator(Configuration(), MemoryAuthStateStore(), ConsoleView(), ConsoleHandOff())
    flow.create()

    try:
        while flow.state not in (FlowState.COMPLETED, FlowState.ALREADY_AUTHORIZED):
            line = input("authflow> ").strip()
            if line == "go":
                flow.start_authorization()
            elif line == "retry":
                flow.retry()
            elif line.startswith("hint"):
                flow.on_login_hint_changed(line[len("hint") :])
            elif line.startswith("browser "):
                flow.on_browser_selected(BrowserDescriptor(name=line.split(maxsplit=1)[1]))
            elif line == "closed":
                flow.on_browser_closed()
            elif "://" in line or line.startswith("/"):
                flow.on_redirect(line)
            elif line in ("quit", "exit"):
                break
    finally:
        flow.dispose()


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt, EOFError):
        main()
