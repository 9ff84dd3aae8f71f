"""Entry API routes. Every route is scoped to the authenticated user."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from stillmind.server.database import ServerDatabase
from stillmind.server.dependencies import get_current_user, get_database
from stillmind.server.models import (
    CreateEntryResponse,
    EntryListResponse,
    EntryResponse,
    EntryWriteRequest,
    ErrorResponse,
    SuccessResponse,
    SyncItem,
    SyncRequest,
    SyncResponse,
    SyncResultModel,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entries", tags=["entries"])

User = Annotated[dict[str, Any], Depends(get_current_user)]
Database = Annotated[ServerDatabase, Depends(get_database)]


def _require_content(request: EntryWriteRequest) -> str:
    content = (request.entry or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Entry content is required")
    return content


def _write_record(request: EntryWriteRequest, content: str) -> dict[str, Any]:
    return {
        "timestamp": request.timestamp,
        "duration": request.duration if request.duration and request.duration > 0 else None,
        "entry": content,
        "promptId": request.prompt_id,
    }


@router.get("", response_model=EntryListResponse, summary="List entries, newest first")
async def list_entries(
    user: User,
    db: Database,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> EntryListResponse:
    rows = await db.list_entries(user["id"], limit=limit, offset=offset)
    return EntryListResponse(
        entries=[EntryResponse(**row) for row in rows],
        count=len(rows),
        offset=offset,
    )


@router.post(
    "/sync",
    response_model=SyncResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
    summary="Push a batch of entries and tombstones",
)
async def sync_entries(request: SyncRequest, user: User, db: Database) -> SyncResponse:
    """Apply each pushed element independently.

    Elements with ``deleted`` remove the server record (by id, or by
    clientId when the client never learned the id), elements with an
    id update it, the rest are created. A failing element is reported as
    ``action: error`` and does not affect the others. Creating an element
    whose clientId is already known returns the existing record instead
    of a duplicate.
    """
    if request.entries is None:
        raise HTTPException(status_code=400, detail="Entries array required")
    results = [await _apply_sync_item(db, user["id"], raw) for raw in request.entries]
    logger.info("Batch sync for user %s: %d elements", user["id"], len(results))
    return SyncResponse(results=results)


async def _apply_sync_item(db: ServerDatabase, user_id: int, raw: Any) -> SyncResultModel:
    client_id = raw.get("clientId") if isinstance(raw, dict) else None
    try:
        item = SyncItem.model_validate(raw)
    except ValidationError:
        return SyncResultModel(action="error", clientId=client_id, error="Malformed entry")

    try:
        if item.deleted:
            target = item.id
            if target is None and item.client_id:
                # Create reply was lost: the client only knows its own id
                target = await db.find_entry_by_client_id(user_id, item.client_id)
            if target is not None:
                await db.delete_entry(user_id, target)
            return SyncResultModel(action="deleted", id=target, clientId=item.client_id)

        record = item.to_record()
        if not record["entry"]:
            raise ValueError("Entry content is required")

        if item.id is not None:
            if not await db.update_entry(user_id, item.id, record):
                raise LookupError(f"Entry {item.id} not found")
            return SyncResultModel(action="updated", id=item.id, clientId=item.client_id)

        existing = None
        if item.client_id:
            existing = await db.find_entry_by_client_id(user_id, item.client_id)
        if existing is not None:
            await db.update_entry(user_id, existing, record)
            return SyncResultModel(action="created", id=existing, clientId=item.client_id)

        new_id = await db.create_entry(user_id, record)
        return SyncResultModel(action="created", id=new_id, clientId=item.client_id)
    except (ValueError, LookupError) as e:
        return SyncResultModel(
            action="error", id=item.id, clientId=item.client_id, error=str(e)
        )


@router.get(
    "/{entry_id}",
    response_model=EntryResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get one entry",
)
async def get_entry(entry_id: int, user: User, db: Database) -> EntryResponse:
    row = await db.get_entry(user["id"], entry_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return EntryResponse(**row)


@router.post(
    "",
    response_model=CreateEntryResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
    summary="Create one entry",
)
async def create_entry(request: EntryWriteRequest, user: User, db: Database) -> CreateEntryResponse:
    content = _require_content(request)
    new_id = await db.create_entry(user["id"], _write_record(request, content))
    return CreateEntryResponse(id=new_id)


@router.put(
    "/{entry_id}",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Update one entry",
)
async def update_entry(
    entry_id: int, request: EntryWriteRequest, user: User, db: Database
) -> SuccessResponse:
    content = _require_content(request)
    if not await db.update_entry(user["id"], entry_id, _write_record(request, content)):
        raise HTTPException(status_code=404, detail="Entry not found")
    return SuccessResponse()


@router.delete(
    "/{entry_id}",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
    summary="Delete one entry",
)
async def delete_entry(entry_id: int, user: User, db: Database) -> SuccessResponse:
    if not await db.delete_entry(user["id"], entry_id):
        raise HTTPException(status_code=404, detail="Entry not found")
    return SuccessResponse()
