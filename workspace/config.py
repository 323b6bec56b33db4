"""Client configuration read from ``ASCENT_*`` environment variables."""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_API_URL = "http://localhost:5000"
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds
DEFAULT_REDIRECT_DELAY = 2.5    # seconds between "correct" and navigating away
DEFAULT_TOKEN_FILE = Path.home() / ".ascent" / "session.json"

LOGIN_ROUTE = "/login"


def derive_ws_url(api_url: str) -> str:
    """Map an http(s) API origin onto the matching ws(s) origin."""
    if api_url.startswith("https://"):
        return "wss://" + api_url[len("https://"):]
    if api_url.startswith("http://"):
        return "ws://" + api_url[len("http://"):]
    return api_url


def _get_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class WorkspaceConfig:
    api_url: str = DEFAULT_API_URL
    ws_url: str = ""
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    redirect_delay: float = DEFAULT_REDIRECT_DELAY
    token_file: Path = DEFAULT_TOKEN_FILE
    user_id: str | None = None

    @property
    def socket_url(self) -> str:
        return self.ws_url or derive_ws_url(self.api_url)


def load_config() -> WorkspaceConfig:
    """Build a WorkspaceConfig from the environment, falling back to defaults."""
    api_url = os.environ.get("ASCENT_API_URL", "").strip().rstrip("/") or DEFAULT_API_URL
    token_file = os.environ.get("ASCENT_TOKEN_FILE", "").strip()
    return WorkspaceConfig(
        api_url=api_url,
        ws_url=os.environ.get("ASCENT_WS_URL", "").strip(),
        request_timeout=_get_float("ASCENT_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        redirect_delay=_get_float("ASCENT_REDIRECT_DELAY", DEFAULT_REDIRECT_DELAY),
        token_file=Path(token_file).expanduser() if token_file else DEFAULT_TOKEN_FILE,
        user_id=os.environ.get("ASCENT_USER_ID") or None,
    )
