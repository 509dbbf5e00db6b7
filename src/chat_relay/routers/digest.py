"""API routes for daily digest settings, history and manual delivery."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from ..schemas.digest import DigestSettingsPayload, ManualDigestPayload
from ..services.digest_scheduler import DigestScheduler
from ..services.digest_store import DigestStore

router = APIRouter(prefix="/api", tags=["digest"])
logger = logging.getLogger(__name__)


def get_digest_store(request: Request) -> DigestStore:
    store = getattr(request.app.state, "digest_store", None)
    if store is None:  # pragma: no cover - defensive
        raise RuntimeError("Digest store is not configured")
    return store


def get_digest_scheduler(request: Request) -> DigestScheduler:
    scheduler = getattr(request.app.state, "digest_scheduler", None)
    if scheduler is None:  # pragma: no cover - defensive
        raise RuntimeError("Digest scheduler is not configured")
    return scheduler


@router.post("/digest/settings")
async def save_digest_settings(
    payload: DigestSettingsPayload,
    store: DigestStore = Depends(get_digest_store),
) -> dict[str, Any]:
    settings = await store.save_user_settings(payload.user_id, payload.to_changes())
    return {
        "success": True,
        "settings": settings.model_dump(mode="json", by_alias=True, exclude_none=True),
    }


@router.get("/digest/history/{user_id}")
async def read_digest_history(
    user_id: str,
    limit: int = Query(default=30, ge=1, le=100),
    store: DigestStore = Depends(get_digest_store),
) -> dict[str, Any]:
    digests = await store.get_user_digests(user_id, limit=limit)
    return {"success": True, "digests": [digest.to_client() for digest in digests]}


@router.delete("/digest/history/{user_id}")
async def clear_digest_history(
    user_id: str,
    store: DigestStore = Depends(get_digest_store),
) -> dict[str, Any]:
    deleted = await store.clear_user_digests(user_id)
    return {"success": True, "deleted": deleted}


@router.get("/digest/{digest_id}")
async def read_digest(
    digest_id: str,
    store: DigestStore = Depends(get_digest_store),
) -> dict[str, Any]:
    digest = await store.get_digest(digest_id)
    if digest is None:
        raise HTTPException(status_code=404, detail="Digest not found")
    return {"success": True, "digest": digest.to_client()}


@router.delete("/digest/{digest_id}")
async def delete_digest(
    digest_id: str,
    store: DigestStore = Depends(get_digest_store),
) -> dict[str, Any]:
    deleted = await store.delete_digest(digest_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Digest not found")
    return {"success": True}


@router.post("/send-digest/{user_id}", response_model=None)
async def send_digest_now(
    user_id: str,
    payload: ManualDigestPayload | None = Body(default=None),
    scheduler: DigestScheduler = Depends(get_digest_scheduler),
) -> JSONResponse:
    payload = payload or ManualDigestPayload()
    kwargs: dict[str, Any] = {"topic": payload.resolved_topic()}
    if payload.custom_prompt_provided:
        kwargs["custom_prompt"] = payload.custom_prompt

    try:
        digest = await scheduler.send_manual_digest(user_id, **kwargs)
    except Exception as exc:
        logger.error("Manual digest for %s failed: %s", user_id, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(exc)},
        )

    return JSONResponse(
        content={
            "success": True,
            "message": "Manual digest sent successfully",
            "digestId": digest.id,
        }
    )


__all__ = ["get_digest_scheduler", "get_digest_store", "router"]
