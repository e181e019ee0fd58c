# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Best-effort device metadata from a User-Agent header.

Used only for display and audit; never for any security decision.
"""

from __future__ import annotations

MOBILE = "Mobile"
PC = "PC"
UNKNOWN = "Unknown"

_MOBILE_MARKERS = ("android", "iphone", "ipad", "ipod", "mobile", "windows phone", "blackberry")
_PC_MARKERS = ("windows nt", "macintosh", "mac os x", "x11", "linux", "cros")

# (marker, friendly name), first match wins
_DEVICE_NAMES = (
    ("iphone", "iPhone"),
    ("ipad", "iPad"),
    ("android", "Android Device"),
    ("windows phone", "Windows Phone"),
    ("windows nt", "Windows PC"),
    ("cros", "Chromebook"),
    ("macintosh", "Mac"),
    ("mac os x", "Mac"),
    ("linux", "Linux PC"),
)


def detect_device_type(user_agent: str | None) -> str:
    """Classify a user agent as Mobile, PC or Unknown."""
    if not user_agent:
        return UNKNOWN
    ua = user_agent.lower()
    if any(marker in ua for marker in _MOBILE_MARKERS):
        return MOBILE
    if any(marker in ua for marker in _PC_MARKERS):
        return PC
    return UNKNOWN


def device_name(user_agent: str | None) -> str:
    """Friendly device name, e.g. "iPhone" or "Windows PC"."""
    if not user_agent:
        return "Unknown Device"
    ua = user_agent.lower()
    for marker, name in _DEVICE_NAMES:
        if marker in ua:
            return name
    return "Unknown Device"
