"""Advisory structural checks for produced GLB containers.

GLB layout: a 12-byte header (magic ``glTF``, version, total length) followed
by chunks, each with a 4-byte length, a 4-byte type and the chunk data. The
``JSON`` chunk holds the glTF document; ``BIN\\0`` holds buffers.
"""

from __future__ import annotations

import json
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..exceptions import ValidationWarning

logger = logging.getLogger(__name__)

GLB_MAGIC = b"glTF"
HEADER_SIZE = 12
CHUNK_HEADER_SIZE = 8
CHUNK_TYPE_JSON = 0x4E4F534A
CHUNK_TYPE_BIN = 0x004E4942


@dataclass(slots=True, frozen=True)
class GlbReport:
    version: int
    images: int
    materials: int
    materials_with_texture: int


def read_json_chunk(data: bytes) -> dict[str, Any]:
    """Locate and decode the JSON chunk by walking the chunk headers."""
    if len(data) < HEADER_SIZE or data[:4] != GLB_MAGIC:
        raise ValidationWarning("not a GLB container (missing glTF magic)")

    offset = HEADER_SIZE
    while offset + CHUNK_HEADER_SIZE <= len(data):
        chunk_length, chunk_type = struct.unpack_from("<II", data, offset)
        start = offset + CHUNK_HEADER_SIZE
        end = start + chunk_length
        if end > len(data):
            raise ValidationWarning(f"chunk at offset {offset} overruns the file")
        if chunk_type == CHUNK_TYPE_JSON:
            raw = data[start:end].rstrip(b"\x00").rstrip(b" ")
            try:
                document = json.loads(raw.decode("utf-8"))
            except ValueError as exc:
                raise ValidationWarning(f"JSON chunk is not valid JSON: {exc}") from exc
            if not isinstance(document, dict):
                raise ValidationWarning("JSON chunk is not an object")
            return document
        offset = end
    raise ValidationWarning("GLB has no JSON chunk")


def _array_property(document: dict[str, Any], name: str) -> list[Any]:
    value = document.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationWarning(f"glTF property {name!r} is not an array")
    return value


def summarize(document: dict[str, Any], *, version: int) -> GlbReport:
    materials = _array_property(document, "materials")
    images = _array_property(document, "images")
    textured = 0
    for material in materials:
        if not isinstance(material, dict):
            continue
        pbr = material.get("pbrMetallicRoughness") or {}
        if isinstance(pbr, dict) and pbr.get("baseColorTexture"):
            textured += 1
    return GlbReport(
        version=version,
        images=len(images),
        materials=len(materials),
        materials_with_texture=textured,
    )


def inspect_glb(path: Path) -> GlbReport:
    data = path.read_bytes()
    document = read_json_chunk(data)
    version = struct.unpack_from("<I", data, 4)[0]
    return summarize(document, version=version)


def validate_output(path: Path, log: logging.Logger | None = None) -> GlbReport | None:
    """Inspect ``path`` and log the counts; problems are logged, never raised."""
    log = log or logger
    try:
        report = inspect_glb(path)
    except (ValidationWarning, OSError) as exc:
        log.warning("validate.glb.failed", extra={"path": str(path), "error": str(exc)})
        return None
    except Exception:
        log.exception("validate.glb.crashed", extra={"path": str(path)})
        return None
    log.info(
        "validate.glb.summary",
        extra={
            "path": str(path),
            "images": report.images,
            "materials": report.materials,
            "materials_with_texture": report.materials_with_texture,
        },
    )
    return report


__all__ = ["GlbReport", "inspect_glb", "read_json_chunk", "summarize", "validate_output"]
