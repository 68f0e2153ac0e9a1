"""Client configuration: transport options and environment defaults."""
import os
from dataclasses import dataclass
from typing import Optional

import aiohttp

DEFAULT_SERVER_ADDRESS = "127.0.0.1:8188"

_SECURE_SCHEMES = ("https", "wss")
_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ClientOptions:
    """Transport options for a client session.

    ``secure`` selects https/wss; when left as None it is derived from the
    scheme of the server address (plain http/ws if there is none).
    ``timeout`` bounds each HTTP request in seconds. It never applies to the
    wait for a job's completion notification.
    """
    secure: Optional[bool] = None
    basic_auth: Optional[aiohttp.BasicAuth] = None
    timeout: Optional[float] = None

    @classmethod
    def from_env(cls) -> "ClientOptions":
        """Build options from COMFY_SECURE, COMFY_USER, COMFY_PASSWORD and COMFY_TIMEOUT."""
        secure = os.getenv("COMFY_SECURE")
        user = os.getenv("COMFY_USER")
        timeout = os.getenv("COMFY_TIMEOUT")
        return cls(
            secure=secure.strip().lower() in _TRUE_VALUES if secure else None,
            basic_auth=aiohttp.BasicAuth(user, os.getenv("COMFY_PASSWORD", "")) if user else None,
            timeout=float(timeout) if timeout else None,
        )

    @property
    def authorization(self) -> Optional[str]:
        """Value of the Authorization header, if credentials are configured."""
        if self.basic_auth is None:
            return None
        return self.basic_auth.encode()


def get_server_address(address: Optional[str] = None) -> str:
    """Get the server address with fallback to env var and default."""
    if address:
        return address
    return os.getenv("COMFY_ADDRESS", DEFAULT_SERVER_ADDRESS)


def split_server_address(address: str) -> tuple[str, Optional[bool]]:
    """Strip an optional scheme from ``address``.

    Returns the bare ``host[:port][/prefix][?query]`` part and whether the
    scheme asked for TLS (None when no scheme was given).
    """
    scheme, sep, rest = address.partition("://")
    if not sep:
        return address.rstrip("/"), None
    return rest.rstrip("/"), scheme.lower() in _SECURE_SCHEMES
