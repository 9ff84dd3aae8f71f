"""Pydantic models for API request/response."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ============ Request Models ============


class MagicLinkRequest(BaseModel):
    """Request a sign-in link by email."""

    email: str | None = Field(None, max_length=320)


class EntryWriteRequest(BaseModel):
    """Create or update a single entry.

    ``entry`` is optional at the schema level so an empty or missing body
    is answered with 400 rather than a validation error.
    """

    model_config = ConfigDict(populate_by_name=True)

    timestamp: int | None = Field(None, description="Creating device's id (ms epoch)")
    duration: int | None = Field(None, description="Writing duration in minutes")
    entry: str | None = Field(None, max_length=1_000_000)
    prompt_id: str | None = Field(None, alias="promptId")


class SyncItem(BaseModel):
    """One element of a batch sync request: an entry or a tombstone."""

    model_config = ConfigDict(populate_by_name=True)

    id: int | None = None
    client_id: str | None = Field(None, alias="clientId")
    timestamp: int | None = None
    entry: str | None = None
    duration: int | None = None
    prompt_id: str | None = Field(None, alias="promptId")
    created_at: int | None = Field(None, alias="createdAt")
    last_modified: int | None = Field(None, alias="lastModified")
    deleted: bool = False

    def to_record(self) -> dict[str, Any]:
        """Wire-named fields for the database layer."""
        return {
            "clientId": self.client_id,
            "timestamp": self.timestamp,
            "entry": (self.entry or "").strip(),
            "duration": self.duration if self.duration and self.duration > 0 else None,
            "promptId": self.prompt_id,
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
        }


class SyncRequest(BaseModel):
    """Batch push. Items are validated one by one so a bad item cannot fail the batch."""

    entries: list[Any] | None = Field(None, max_length=1000)


# ============ Response Models ============


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None


class VerifyResponse(BaseModel):
    """Session issued for a verified magic link."""

    success: bool = True
    token: str
    email: str


class EntryResponse(BaseModel):
    """An entry as stored by the service."""

    id: int
    timestamp: int
    duration: int | None = None
    entry: str
    prompt_id: str | None = None
    word_count: int = 0
    created_at: int
    last_modified: int


class EntryListResponse(BaseModel):
    entries: list[EntryResponse]
    count: int
    offset: int


class CreateEntryResponse(BaseModel):
    success: bool = True
    id: int


class SyncResultModel(BaseModel):
    """Per-item outcome of a batch push."""

    model_config = ConfigDict(populate_by_name=True)

    action: str
    id: int | str | None = None
    client_id: str | None = Field(None, alias="clientId")
    error: str | None = None


class SyncResponse(BaseModel):
    success: bool = True
    results: list[SyncResultModel]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
