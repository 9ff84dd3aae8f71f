"""Magic-link authentication routes."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from stillmind.auth.session import is_valid_email, is_valid_magic_token
from stillmind.server.config import ServerConfig
from stillmind.server.database import ServerDatabase
from stillmind.server.dependencies import (
    MAGIC_TOKEN,
    SESSION_TOKEN,
    bearer_token,
    get_database,
    get_magic_link_sender,
    get_server_config,
    rate_limit,
)
from stillmind.server.email import MagicLinkSender
from stillmind.server.models import (
    ErrorResponse,
    MagicLinkRequest,
    SuccessResponse,
    VerifyResponse,
)
from stillmind.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_MINUTE_MS = 60 * 1000
_DAY_MS = 24 * 60 * _MINUTE_MS


@router.post(
    "/request",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(rate_limit)],
    summary="Request a magic sign-in link",
)
async def request_magic_link(
    body: MagicLinkRequest,
    request: Request,
    db: Annotated[ServerDatabase, Depends(get_database)],
    config: Annotated[ServerConfig, Depends(get_server_config)],
    sender: Annotated[MagicLinkSender, Depends(get_magic_link_sender)],
) -> SuccessResponse:
    """Create the user if needed and send a single-use sign-in link."""
    email = (body.email or "").strip()
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Valid email required")

    await db.create_user(email)

    token = secrets.token_hex(32)
    expires_at = now_ms() + config.magic_link_ttl_minutes * _MINUTE_MS
    client_ip = request.client.host if request.client else None
    await db.save_token(token, email, MAGIC_TOKEN, expires_at, client_ip)

    link = f"{config.frontend_url}/api/auth/verify?token={token}"
    try:
        await sender.send(email.lower(), link)
    except Exception:
        logger.error("Failed to send magic link to %s", email, exc_info=True)
        raise HTTPException(
            status_code=500, detail="Failed to send magic link. Please try again."
        ) from None

    return SuccessResponse(message="Magic link sent to your email address")


@router.get(
    "/verify",
    response_model=VerifyResponse,
    responses={302: {"description": "Browser redirect"}, 400: {"model": ErrorResponse}},
    summary="Exchange a magic link for a session",
)
async def verify_magic_link(
    request: Request,
    db: Annotated[ServerDatabase, Depends(get_database)],
    config: Annotated[ServerConfig, Depends(get_server_config)],
    token: Annotated[str | None, Query()] = None,
) -> VerifyResponse | RedirectResponse:
    """Consume a magic token; browsers are redirected back into the app."""
    if token is None or not is_valid_magic_token(token):
        raise HTTPException(status_code=400, detail="Invalid token format")

    record = await db.get_token(token, MAGIC_TOKEN)
    if record is None:
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    if record["expires_at"] < now_ms():
        raise HTTPException(status_code=400, detail="Token has expired")
    if record["used"]:
        raise HTTPException(status_code=400, detail="Token has already been used")

    await db.mark_token_used(token)
    user = await db.get_user_by_email(record["email"])
    if user is None:
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    await db.update_last_login(user["id"])

    session_token = secrets.token_hex(32)
    await db.save_token(
        session_token,
        user["email"],
        SESSION_TOKEN,
        now_ms() + config.session_ttl_days * _DAY_MS,
    )
    logger.info("Session issued for user %s", user["id"])

    if "text/html" in request.headers.get("accept", ""):
        return RedirectResponse(
            f"{config.frontend_url}/#auth-success?token={session_token}", status_code=302
        )
    return VerifyResponse(token=session_token, email=user["email"])


@router.post("/logout", response_model=SuccessResponse, summary="Revoke the session")
async def logout(
    request: Request,
    db: Annotated[ServerDatabase, Depends(get_database)],
) -> SuccessResponse:
    token = bearer_token(request.headers.get("authorization"))
    if token is not None:
        await db.delete_token(token)
    return SuccessResponse(message="Logged out")
