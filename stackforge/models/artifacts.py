"""Template artifact models (immutable once published under a revision)."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class TemplateArtifact(BaseModel):
    """Metadata for a published template — the body lives in the blob store.

    ``revision_key`` is never rewritten with different content. ``latest_key``
    is an alias that every publish repoints to the newest revision.
    """

    model_config = ConfigDict(frozen=True)

    template_name: str
    revision: str
    revision_key: str
    latest_key: str
    sha256: str
    size_bytes: int
    url: str = ""
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
