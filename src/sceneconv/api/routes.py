"""HTTP routes: conversion status and the internal artifact receiver."""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from ..config import AppConfig
from ..infrastructure.queue import PostgresJobQueue
from ..media.storage import ArtifactStore
from ..services.status import ConversionStatus, describe_conversion

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sketchup", tags=["SketchUp"])


class StoredArtifactResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    glb_url: str = Field(alias="glbUrl")


def get_app_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_queue(request: Request) -> PostgresJobQueue:
    return request.app.state.queue


def get_artifact_store(request: Request) -> ArtifactStore:
    return request.app.state.artifacts


@router.get(
    "/conversion/{conversion_id}",
    response_model=ConversionStatus,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
def get_conversion_status(
    conversion_id: str,
    queue: Annotated[PostgresJobQueue, Depends(get_queue)],
) -> ConversionStatus:
    described = describe_conversion(queue, conversion_id)
    if described is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="conversion not found")
    return described


@router.put(
    "/internal/models/{file_id}",
    response_model=StoredArtifactResponse,
    response_model_by_alias=True,
)
async def store_internal_model(
    file_id: str,
    request: Request,
    config: Annotated[AppConfig, Depends(get_app_config)],
    artifacts: Annotated[ArtifactStore, Depends(get_artifact_store)],
    internal_key: Annotated[str | None, Header(alias="x-sketchup-internal-key")] = None,
) -> StoredArtifactResponse:
    """Accept a GLB pushed by a worker running in remote-store mode."""

    expected = config.storage.internal_key
    if not expected or not internal_key or not hmac.compare_digest(internal_key, expected):
        logger.warning("internal_store.forbidden", extra={"file_id": file_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")

    body = await request.body()
    if not body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="empty body")

    try:
        location = artifacts.save_bytes(file_id, body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info("internal_store.saved", extra={"file_id": file_id, "size_bytes": len(body)})
    return StoredArtifactResponse(glb_url=location.glb_url)


__all__ = ["router", "get_app_config", "get_queue", "get_artifact_store"]
