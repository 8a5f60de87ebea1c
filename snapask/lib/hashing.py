"""Hashing helpers.

Screenshot hashes are SHA-256 over the raw data-URL string. They are
stored for future deduplication; nothing reads them back yet.
"""

from __future__ import annotations

import hashlib


def hash_text(text: str) -> str:
    """Hash UTF-8 text to full SHA-256 hex digest (64 chars)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_screenshot(data_url: str | None) -> str | None:
    """Return the screenshot hash, or None when there is no screenshot.

    Unlike message text, the payload is hashed byte-for-byte with no
    Unicode normalization: it is base64 inside a data URL.
    """
    if not data_url:
        return None
    return hash_text(data_url)


__all__ = ["hash_text", "hash_screenshot"]
