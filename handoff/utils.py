from __future__ import annotations

import re
from typing import Optional

_MAGIC_PREFIXES = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"%PDF-", "application/pdf"),
)


def sanitize_path_segment(raw: str, *, max_len: int = 63) -> str:
    """Normalize user-controlled identifiers into safe lowercase path segments."""
    value = str(raw).strip().lower()
    if not value:
        return ""

    value = value.replace("_", "-").replace(" ", "-")
    value = re.sub(r"[^a-z0-9-]", "-", value)
    value = re.sub(r"-{2,}", "-", value)
    value = value.strip("-")
    if max_len <= 0:
        return value
    return value[:max_len]


def mask_secret(value: str, *, visible: int = 6) -> str:
    # Token hashes are bearer capabilities; only a prefix goes into logs.
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}..."


def sniff_content_type(data: bytes) -> Optional[str]:
    for prefix, content_type in _MAGIC_PREFIXES:
        if data.startswith(prefix):
            return content_type
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None
