from __future__ import annotations

import posixpath
import re
from os import urandom

from .errors import EntropyUnavailable

IDENTIFIER_BYTES = 16

# Extensions end up in URLs and in Content-Disposition; anything else is dropped.
_SAFE_EXTENSION = re.compile(r"\.[A-Za-z0-9_-]+")


def file_extension(filename: str) -> str:
    """Extension of the last path component, leading dot included ("" if none or unsafe)."""
    name = posixpath.basename((filename or "").replace("\\", "/"))
    dot = name.rfind(".")
    if dot == -1:
        return ""
    extension = name[dot:]
    if not _SAFE_EXTENSION.fullmatch(extension):
        return ""
    return extension


def generate_identifier(original_filename: str) -> str:
    try:
        raw = urandom(IDENTIFIER_BYTES)
    except (NotImplementedError, OSError) as exc:
        raise EntropyUnavailable() from exc
    return raw.hex() + file_extension(original_filename)


def is_valid_identifier(identifier: str) -> bool:
    if not identifier or identifier.startswith("."):
        return False
    return not any(sep in identifier for sep in ("/", "\\", "\x00"))
