from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from src.sceneconv.exceptions import RemoteStoreConfigError, RemoteStoreError
from src.sceneconv.media.storage import ArtifactStore, StorageResolver


def _artifact(tmp_path: Path) -> tuple[ArtifactStore, object]:
    store = ArtifactStore(tmp_path / "out")
    location = store.save_bytes("file-1", b"glb-payload")
    return store, location


def test_local_mode_returns_public_url_without_network(tmp_path: Path) -> None:
    store, location = _artifact(tmp_path)

    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("no request expected")

    resolver = StorageResolver(artifacts=store, transport=httpx.MockTransport(handler))
    outcome = asyncio.run(resolver.store(location))  # type: ignore[arg-type]

    assert outcome.remote is False
    assert outcome.glb_url == "/models/file-1/model.glb"


def test_remote_mode_puts_bytes_with_internal_key(tmp_path: Path) -> None:
    store, location = _artifact(tmp_path)
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["key"] = request.headers.get("x-sketchup-internal-key")
        seen["body"] = request.content
        return httpx.Response(200, json={"ok": True, "glbUrl": "https://cdn.example/x"})

    resolver = StorageResolver(
        artifacts=store,
        store_url="http://main:5002/api/sketchup/",
        internal_key="secret",
        transport=httpx.MockTransport(handler),
    )
    outcome = asyncio.run(resolver.store(location))  # type: ignore[arg-type]

    assert outcome.remote is True
    assert outcome.glb_url == "https://cdn.example/x"
    assert seen == {
        "method": "PUT",
        "url": "http://main:5002/api/sketchup/internal/models/file-1",
        "key": "secret",
        "body": b"glb-payload",
    }


def test_remote_mode_falls_back_to_local_url_when_body_lacks_url(tmp_path: Path) -> None:
    store, location = _artifact(tmp_path)
    resolver = StorageResolver(
        artifacts=store,
        store_url="http://main",
        internal_key="secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="stored")),
    )

    outcome = asyncio.run(resolver.store(location))  # type: ignore[arg-type]

    assert outcome.glb_url == "/models/file-1/model.glb"


def test_missing_internal_key_fails_before_any_request(tmp_path: Path) -> None:
    store, location = _artifact(tmp_path)
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    resolver = StorageResolver(
        artifacts=store,
        store_url="http://main",
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(RemoteStoreConfigError):
        asyncio.run(resolver.store(location))  # type: ignore[arg-type]
    assert requests == []


def test_non_success_status_raises_with_status_and_body(tmp_path: Path) -> None:
    store, location = _artifact(tmp_path)
    resolver = StorageResolver(
        artifacts=store,
        store_url="http://main",
        internal_key="wrong",
        transport=httpx.MockTransport(lambda request: httpx.Response(403, text="Forbidden")),
    )

    with pytest.raises(RemoteStoreError) as excinfo:
        asyncio.run(resolver.store(location))  # type: ignore[arg-type]

    assert excinfo.value.status_code == 403
    assert excinfo.value.body == "Forbidden"
    assert "403" in str(excinfo.value)
    assert excinfo.value.retryable is True
