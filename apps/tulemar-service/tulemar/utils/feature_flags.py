"""Runtime switches for the shop, read from ``FEATURE_*`` environment variables.

Notification delivery can be switched off globally or per channel. In-app
notifications have no switch of their own: they are rows in
``order_notifications`` and follow the global toggle only.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, Literal, Optional, Tuple


FeatureFlagKey = Literal[
    "notifications_enabled",
    "email_notifications_enabled",
    "sms_notifications_enabled",
    "push_notifications_enabled",
    "payments_enabled",
    "workflow_automation_enabled",
]

# flag -> (environment variable, default)
SHOP_FLAGS: Dict[str, Tuple[str, bool]] = {
    "notifications_enabled": ("FEATURE_NOTIFICATIONS_ENABLED", True),
    "email_notifications_enabled": ("FEATURE_EMAIL_NOTIFICATIONS_ENABLED", True),
    "sms_notifications_enabled": ("FEATURE_SMS_NOTIFICATIONS_ENABLED", True),
    "push_notifications_enabled": ("FEATURE_PUSH_NOTIFICATIONS_ENABLED", True),
    "payments_enabled": ("FEATURE_PAYMENTS_ENABLED", True),
    "workflow_automation_enabled": ("FEATURE_WORKFLOW_AUTOMATION_ENABLED", True),
}

_CHANNEL_FLAGS: Dict[str, Optional[str]] = {
    "in_app": None,
    "email": "email_notifications_enabled",
    "sms": "sms_notifications_enabled",
    "push": "push_notifications_enabled",
}

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"", "0", "false", "no", "off"})


def _parse_switch(raw: Optional[str], default: bool) -> bool:
    """Unrecognised values keep the default rather than guessing."""
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _FALSY:
        return False
    if value in _TRUTHY:
        return True
    return default


@lru_cache(maxsize=None)
def get_feature_flags() -> Dict[str, bool]:
    """Snapshot of every shop flag, cached until ``refresh_feature_flag_cache``."""
    return {name: _parse_switch(os.getenv(env_var), default) for name, (env_var, default) in SHOP_FLAGS.items()}


def is_feature_enabled(flag: FeatureFlagKey) -> bool:
    return get_feature_flags()[flag]


def notifications_enabled() -> bool:
    """Master switch for order notification fan-out."""
    return is_feature_enabled("notifications_enabled")


def channel_enabled(channel: str) -> bool:
    """Whether outbound delivery on ``channel`` is switched on.

    Unknown channels are reported as disabled.
    """
    if channel not in _CHANNEL_FLAGS:
        return False
    flag = _CHANNEL_FLAGS[channel]
    return flag is None or is_feature_enabled(flag)


def payments_enabled() -> bool:
    """Online checkout through the payment provider."""
    return is_feature_enabled("payments_enabled")


def workflow_automation_enabled() -> bool:
    """Automation rules run on payment, delivery start and delivery."""
    return is_feature_enabled("workflow_automation_enabled")


def refresh_feature_flag_cache() -> None:
    get_feature_flags.cache_clear()
