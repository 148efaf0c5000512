"""
Privacy helpers: identifier anonymization and free-text scrubbing.

Raw session identifiers never leave the collector; events carry a
deterministic one-way hash so related events can still be grouped.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional

EMAIL_PLACEHOLDER = "[email]"
PHONE_PLACEHOLDER = "[phone]"
TOKEN_PLACEHOLDER = "[token]"
PATH_PLACEHOLDER = "/[path]/"
NO_MESSAGE = "No message"

MAX_STACK_FRAMES = 5
ANONYMIZED_ID_LENGTH = 16

_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONE_RE = re.compile(r"\b\d{10,}\b")
_TOKEN_RE = re.compile(r"\b[A-Za-z0-9]{20,}\b")
_PATH_RE = re.compile(r"/.*?/")


def generate_session_id() -> str:
    """Random 128-bit session id as hex."""
    return secrets.token_hex(16)


def anonymize_session_id(session_id: Optional[str], salt: str = "") -> Optional[str]:
    """Stable, non-reversible short hash of a session id."""
    if not session_id:
        return None
    digest = hashlib.sha256(f"{salt}{session_id}".encode("utf-8")).hexdigest()
    return digest[:ANONYMIZED_ID_LENGTH]


def scrub_text(text: str) -> str:
    """Replace emails, phone-like digit runs and token-like strings."""
    text = _EMAIL_RE.sub(EMAIL_PLACEHOLDER, text)
    text = _PHONE_RE.sub(PHONE_PLACEHOLDER, text)
    return _TOKEN_RE.sub(TOKEN_PLACEHOLDER, text)


def sanitize_error_message(message: Any) -> str:
    if message is None or message == "":
        return NO_MESSAGE
    return scrub_text(str(message))


def sanitize_stack_trace(stack: Any) -> Optional[str]:
    """Keep the leading frames only, with filesystem paths masked."""
    if not stack:
        return None
    lines = str(stack).split("\n")[:MAX_STACK_FRAMES]
    return "\n".join(scrub_text(_PATH_RE.sub(PATH_PLACEHOLDER, line)) for line in lines)


def categorize_device(device_info: Optional[Mapping[str, Any]]) -> str:
    if not device_info:
        return "unknown"
    if device_info.get("is_tablet") or device_info.get("isTablet"):
        return "tablet"
    platform = str(device_info.get("platform", "")).lower()
    if platform == "ios":
        return "iphone"
    if platform == "android":
        return "android"
    return "unknown"


@dataclass(frozen=True)
class PlatformInfo:
    """Non-identifying description of the client a session runs on."""
    platform: Optional[str] = None
    app_version: Optional[str] = None
    device_type: str = "unknown"
    network_type: Optional[str] = None
    mesh_theme: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "PlatformInfo":
        """
        Keep only the coarse fields; anything else the host passes
        (names, device identifiers, locations) is dropped.
        """
        if isinstance(raw, PlatformInfo):
            return raw
        if not isinstance(raw, Mapping):
            return cls()

        def text(key: str, alt: str) -> Optional[str]:
            value = raw.get(key, raw.get(alt))
            return None if value is None else str(value)

        return cls(
            platform=text("platform", "platform"),
            app_version=text("app_version", "appVersion"),
            device_type=categorize_device(raw.get("device_info", raw.get("deviceInfo"))),
            network_type=text("network_type", "networkType"),
            mesh_theme=text("mesh_theme", "meshTheme"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
