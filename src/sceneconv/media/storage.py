"""Artifact placement and the local/remote storage resolver."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from ..exceptions import RemoteStoreConfigError, RemoteStoreError
from .scratch import safe_segment

ARTIFACT_NAME = "model.glb"
INTERNAL_KEY_HEADER = "x-sketchup-internal-key"


@dataclass(slots=True, frozen=True)
class ArtifactLocation:
    """Where a file's container lives on disk and under which URL it is served.

    Every file gets its own directory so texture URIs embedded relative to the
    container (``model/<texture>``) resolve next to it.
    """

    file_id: str
    output_dir: Path
    output_path: Path
    glb_url: str


@dataclass(slots=True, frozen=True)
class StorageOutcome:
    glb_url: str
    remote: bool


@dataclass(slots=True)
class ArtifactStore:
    """Manage the per-file output namespace under ``output_root``."""

    output_root: Path
    public_prefix: str = "/models"

    def location_for(self, file_id: str) -> ArtifactLocation:
        segment = safe_segment(file_id, name="file_id")
        output_dir = self.output_root / segment
        prefix = self.public_prefix.rstrip("/")
        return ArtifactLocation(
            file_id=file_id,
            output_dir=output_dir,
            output_path=output_dir / ARTIFACT_NAME,
            glb_url=f"{prefix}/{segment}/{ARTIFACT_NAME}",
        )

    def ensure_structure(self, file_id: str) -> ArtifactLocation:
        location = self.location_for(file_id)
        location.output_dir.mkdir(parents=True, exist_ok=True)
        return location

    def save_bytes(self, file_id: str, data: bytes) -> ArtifactLocation:
        location = self.ensure_structure(file_id)
        location.output_path.write_bytes(data)
        return location

    def remove(self, file_id: str) -> None:
        directory = self.location_for(file_id).output_dir
        if directory.exists():
            shutil.rmtree(directory, ignore_errors=True)


@dataclass(slots=True)
class StorageResolver:
    """Decide per job whether an artifact is served locally or pushed upstream."""

    artifacts: ArtifactStore
    store_url: str | None = None
    internal_key: str | None = None
    timeout_seconds: float = 120.0
    transport: httpx.AsyncBaseTransport | None = None
    log: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    @property
    def remote_enabled(self) -> bool:
        return bool(self.store_url)

    def check_configuration(self) -> None:
        if self.remote_enabled and not self.internal_key:
            raise RemoteStoreConfigError(
                "SKETCHUP_STORE_URL is set but SKETCHUP_INTERNAL_KEY is missing; "
                "the internal upload key is required for remote storage"
            )

    async def store(self, location: ArtifactLocation) -> StorageOutcome:
        if not self.remote_enabled:
            return StorageOutcome(glb_url=location.glb_url, remote=False)

        self.check_configuration()
        base = (self.store_url or "").rstrip("/")
        put_url = f"{base}/internal/models/{location.file_id}"
        data = await asyncio.to_thread(location.output_path.read_bytes)
        headers = {
            "content-type": "application/octet-stream",
            INTERNAL_KEY_HEADER: self.internal_key or "",
        }

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            try:
                response = await client.put(put_url, content=data, headers=headers)
            except httpx.HTTPError as exc:
                raise RemoteStoreError(f"remote GLB upload to {put_url} failed: {exc}") from exc

        if not response.is_success:
            body = response.text
            raise RemoteStoreError(
                f"remote GLB store failed: {response.status_code} {response.reason_phrase} {body}".rstrip(),
                status_code=response.status_code,
                body=body,
            )

        glb_url = self._returned_url(response, fallback=location.glb_url)
        self.log.info(
            "storage.remote.uploaded",
            extra={"file_id": location.file_id, "size_bytes": len(data), "glb_url": glb_url},
        )
        return StorageOutcome(glb_url=glb_url, remote=True)

    def _returned_url(self, response: httpx.Response, *, fallback: str) -> str:
        try:
            body: Any = response.json()
        except ValueError:
            self.log.warning("storage.remote.non_json_response", extra={"status": response.status_code})
            return fallback
        if isinstance(body, dict) and isinstance(body.get("glbUrl"), str) and body["glbUrl"]:
            return body["glbUrl"]
        return fallback


__all__ = [
    "ARTIFACT_NAME",
    "INTERNAL_KEY_HEADER",
    "ArtifactLocation",
    "ArtifactStore",
    "StorageOutcome",
    "StorageResolver",
]
