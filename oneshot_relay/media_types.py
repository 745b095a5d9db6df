from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Sequence

import magic

log = logging.getLogger(__name__)

SNIFF_LEN = 512
OCTET_STREAM = "application/octet-stream"
PLAIN_TEXT = "text/plain; charset=utf-8"

# libmagic names that differ from the ones the allow-list uses.
_CANONICAL_TYPES = {
    "text/plain": PLAIN_TEXT,
    "application/x-empty": PLAIN_TEXT,
    "inode/x-empty": PLAIN_TEXT,
    "audio/x-wav": "audio/wav",
    "audio/vnd.wave": "audio/wav",
    "application/ogg": "audio/ogg",
    "audio/x-hx-aac-adts": "audio/aac",
    "image/x-ms-bmp": "image/bmp",
}


def is_allowed(content_type: Optional[str], allowed_types: Iterable[str]) -> bool:
    """Case-insensitive allow-list check.

    Exact entries are tried first, then ``category/*`` wildcards, which match
    any type starting with ``category/``.
    """
    if not content_type:
        return False
    candidate = content_type.strip().lower()
    allowed = [entry.strip().lower() for entry in allowed_types]

    if candidate in allowed:
        log.debug("Content type %s allowed (exact)", content_type)
        return True

    for entry in allowed:
        if entry.endswith("/*") and entry.count("*") == 1:
            if candidate.startswith(entry[:-1]):
                log.debug("Content type %s allowed via wildcard %s", content_type, entry)
                return True

    log.debug("Content type %s is not allowed", content_type)
    return False


def sniff(data: bytes) -> str:
    """Guess a media type from the leading bytes of ``data`` using libmagic."""
    head = data[:SNIFF_LEN]
    if not head:
        return PLAIN_TEXT
    try:
        detected = magic.from_buffer(head, mime=True)
    except magic.MagicException as exc:
        log.warning("Content sniffing failed: %s", exc)
        return OCTET_STREAM
    detected = (detected or "").strip().lower()
    if not detected:
        return OCTET_STREAM
    return _CANONICAL_TYPES.get(detected, detected)


def resolve_content_type(resolvers: Sequence[Callable[[], Optional[str]]]) -> str:
    """Return the first non-empty answer from ``resolvers`` ("" if none)."""
    for resolver in resolvers:
        value = resolver()
        if value and value.strip():
            return value.strip()
    return ""
