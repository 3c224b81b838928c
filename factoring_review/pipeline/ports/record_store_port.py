"""RecordStorePort protocol for the system of record."""

from __future__ import annotations

from typing import Optional, Protocol

from factoring_review.pipeline.models.dto import CaseRecord


class RecordStorePort(Protocol):
    """Read-only access to one case and its attachments."""

    async def fetch_case(self, case_id: str) -> Optional[CaseRecord]:
        """Return the case, or None when no record has that id."""
        ...

    async def fetch_attachment(self, content_key: str) -> bytes:
        """Return attachment bytes; raises AttachmentFetchError."""
        ...
