"""Receipt files attached to a claim before it goes to validation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from .errors import DraftValidationError
from .models import UploadResult

SUPPORTED_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/jpg",
        "image/png",
    }
)
MAX_RECEIPT_BYTES = 10 * 1024 * 1024


class ReceiptUploader(Protocol):
    async def upload_files(self, files: Sequence[tuple[str, bytes, str]]) -> UploadResult:
        ...


@dataclass(frozen=True)
class ReceiptUpload:
    filename: str
    content_type: str
    content: bytes

    def validate(self, max_bytes: int = MAX_RECEIPT_BYTES) -> None:
        problems: list[str] = []
        if self.content_type.lower() not in SUPPORTED_CONTENT_TYPES:
            problems.append(
                f"Unsupported content type '{self.content_type}'. "
                f"Supported values: {sorted(SUPPORTED_CONTENT_TYPES)}"
            )
        if len(self.content) > max_bytes:
            problems.append(f"File size must be less than {max_bytes // (1024 * 1024)}MB")
        if not self.content:
            problems.append("Receipt file is empty")
        if problems:
            raise DraftValidationError(problems)

    def as_multipart(self) -> tuple[str, bytes, str]:
        return self.filename, self.content, self.content_type


def receipt_reference(upload: Optional[ReceiptUpload], asset_ids: Sequence[str]) -> Optional[str]:
    if upload is None or not asset_ids:
        return None
    return f"asset://{asset_ids[0]}/{upload.filename}"
