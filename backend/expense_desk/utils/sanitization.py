"""
Input sanitization utilities for API payloads.
Provides functions to clean free-text inputs and receipt vendor names.
"""

import re
from typing import Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B-\x1F\x7F]")
_EVENT_HANDLERS = re.compile(r"on\w+=", re.IGNORECASE)
_JS_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_VENDOR_DISALLOWED = re.compile(r"[^\w\s\-.]")

VENDOR_MAX_LENGTH = 100
UNKNOWN_VENDOR = "Comercio no identificado"


def sanitize_string(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    # Remove control characters and anything that could become markup
    value = _CONTROL_CHARS.sub("", value)
    value = value.replace("<", "").replace(">", "")
    value = _JS_PROTOCOL.sub("", value)
    value = _EVENT_HANDLERS.sub("", value)
    return value.strip()


def clean_vendor_name(value: Optional[str]) -> str:
    """Normalise a vendor name extracted from a receipt.

    Blank names become ``UNKNOWN_VENDOR``; otherwise the name is trimmed,
    stripped of characters other than word characters, whitespace, ``-``
    and ``.``, and truncated to ``VENDOR_MAX_LENGTH`` characters.
    """
    if not value or not value.strip():
        value = UNKNOWN_VENDOR
    cleaned = _VENDOR_DISALLOWED.sub("", value.strip())[:VENDOR_MAX_LENGTH].strip()
    return cleaned or UNKNOWN_VENDOR
