"""Filesystem layout for scratch contexts and served artifacts."""

from .glb_inspect import GlbReport, inspect_glb, validate_output
from .scratch import ScratchContext, ScratchStore
from .storage import ArtifactLocation, ArtifactStore, StorageOutcome, StorageResolver

__all__ = [
    "ArtifactLocation",
    "ArtifactStore",
    "GlbReport",
    "ScratchContext",
    "ScratchStore",
    "StorageOutcome",
    "StorageResolver",
    "inspect_glb",
    "validate_output",
]
