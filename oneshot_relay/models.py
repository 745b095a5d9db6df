from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel


class UploadResult(BaseModel):
    success: bool
    message: str
    url: Optional[str] = None
    max_file_size: Optional[int] = None

    @classmethod
    def failure(cls, message: str) -> "UploadResult":
        return cls(success=False, message=message)


@dataclass
class IncomingFile:
    """An upload normalised from either transport shape."""

    content: bytes
    filename: str
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)
