"""Runtime helpers for the local development identity.

``DEV_MODE=true`` makes every request act as a fixed local user, so it is
only honoured when the app is served from an allowed host.
"""

import os
from typing import FrozenSet, NamedTuple, Optional
from urllib.parse import urlparse

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

DEFAULT_DEV_EMAIL = "dev@localhost"
DEFAULT_DEV_NAME = "Development User"
DEFAULT_DEV_ROLES = "admin"


class DevIdentity(NamedTuple):
    email: str
    display_name: str
    roles: FrozenSet[str]


def _env_true(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() == "true"


def _hostname(value: str) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return None
    if "://" not in value:
        value = f"http://{value}"
    return urlparse(value).hostname


def allowed_dev_hosts() -> FrozenSet[str]:
    extra = os.getenv("DEV_MODE_ALLOWED_HOSTS", "")
    return _LOCAL_HOSTS | {h.strip().lower() for h in extra.split(",") if h.strip()}


def dev_mode_requested() -> bool:
    return _env_true("DEV_MODE")


def dev_mode_active() -> bool:
    """True when DEV_MODE is on and permitted here.

    Raises:
        RuntimeError: DEV_MODE is on but APP_BASE_URL is not an allowed host,
            or no APP_BASE_URL is set and ALLOW_DEV_MODE is not true.
    """
    if not dev_mode_requested():
        return False

    host = _hostname(os.getenv("APP_BASE_URL", ""))
    if host is None:
        if not (_env_true("ALLOW_DEV_MODE") or os.getenv("PYTEST_CURRENT_TEST")):
            raise RuntimeError("DEV_MODE=true needs a localhost APP_BASE_URL or ALLOW_DEV_MODE=true")
        return True

    allowed = allowed_dev_hosts()
    if host.lower() not in allowed:
        raise RuntimeError(f"DEV_MODE=true is not permitted for host '{host}'. Allowed hosts: {sorted(allowed)}")
    return True


def dev_identity() -> DevIdentity:
    """The user every request runs as in dev mode (DEV_LOCAL_EMAIL/NAME/ROLES)."""
    email = os.getenv("DEV_LOCAL_EMAIL", DEFAULT_DEV_EMAIL).strip().lower()
    name = os.getenv("DEV_LOCAL_NAME", DEFAULT_DEV_NAME).strip()
    raw_roles = os.getenv("DEV_LOCAL_ROLES", DEFAULT_DEV_ROLES)
    roles = frozenset(r.strip().lower() for r in raw_roles.split(",") if r.strip())
    return DevIdentity(email=email, display_name=name, roles=roles)
