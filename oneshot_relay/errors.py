from __future__ import annotations


class RelayError(Exception):
    """Base error; ``message`` is what callers get to see."""

    default_message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigError(RelayError):
    default_message = "Invalid configuration"


class Unauthorized(RelayError):
    default_message = "Unauthorized"


class UnsupportedContentType(RelayError):
    default_message = "Unsupported content type"


class PayloadTooLarge(RelayError):
    default_message = "File too large"


class FileTypeNotAllowed(RelayError):
    default_message = "File type not allowed"


class MalformedInput(RelayError):
    default_message = "Malformed upload"


class EntropyUnavailable(RelayError):
    default_message = "Error generating filename"


class StorageWriteFailed(RelayError):
    default_message = "Error saving file"


class StorageReadFailed(RelayError):
    default_message = "Error reading file"


class NotFound(RelayError):
    default_message = "File not found"
