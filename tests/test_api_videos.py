from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

import api.main as api_main
from clips.errors import InvalidRequest
from clips.lifecycle import ClipLifecycleManager

SHA = "c" * 64
NOW = datetime(2025, 3, 1, 10, 0, tzinfo=UTC)


@pytest.fixture()
def manager(session_factory, store) -> ClipLifecycleManager:
    return ClipLifecycleManager(session_factory, store, clock=lambda: NOW)


@pytest.fixture()
def client(manager):
    api_main.app.dependency_overrides[api_main.get_lifecycle] = lambda: manager
    try:
        yield TestClient(api_main.app, raise_server_exceptions=False)
    finally:
        api_main.app.dependency_overrides.clear()


def test_create_video_metadata_direct(manager, make_venue) -> None:
    client_id, venue_id = make_venue("monthly_subscription")
    req = api_main.CreateClipRequest(venue_id=venue_id, captured_at=NOW, sha256=SHA, duration_sec=30)

    body = api_main.create_video_metadata(client_id, venue_id, req, manager)

    assert body["contract_type"] == "monthly_subscription"
    assert body["storage_path"].startswith(f"main/clients/{client_id}/venues/{venue_id}/3/1/")
    assert body["expires_hint_hours"] == 12


def test_create_video_metadata_rejects_venue_mismatch(manager, make_venue) -> None:
    client_id, venue_id = make_venue()
    req = api_main.CreateClipRequest(venue_id=uuid4(), captured_at=NOW, sha256=SHA)

    with pytest.raises(InvalidRequest) as exc:
        api_main.create_video_metadata(client_id, venue_id, req, manager)
    assert exc.value.code == "venue_mismatch"


def test_create_and_finalize_over_http(client, store, make_venue) -> None:
    client_id, venue_id = make_venue("per_video")

    created = client.post(
        f"/videos/metadata/client/{client_id}/venue/{venue_id}",
        json={"venue_id": str(venue_id), "captured_at": "2025-03-01T10:00:00Z", "sha256": SHA},
    )
    assert created.status_code == 201
    body = created.json()
    assert body["storage_path"] == f"temp/{client_id}/{venue_id}/{body['clip_id']}.mp4"

    store.put(body["storage_path"], 1000, etag="e1")
    finalized = client.post(
        f"/videos/{body['clip_id']}/uploaded",
        json={"size_bytes": 1000, "sha256": SHA, "etag": '"e1"'},
    )
    assert finalized.status_code == 200
    assert finalized.json()["status"] == "uploaded_temp"


def test_finalize_size_mismatch_envelope(client, store, make_venue) -> None:
    client_id, venue_id = make_venue()
    created = client.post(
        f"/videos/metadata/client/{client_id}/venue/{venue_id}",
        json={"venue_id": str(venue_id), "captured_at": "2025-03-01T10:00:00Z", "sha256": SHA},
    ).json()
    store.put(created["storage_path"], 999)

    resp = client.post(f"/videos/{created['clip_id']}/uploaded", json={"size_bytes": 1000, "sha256": SHA})

    assert resp.status_code == 422
    assert resp.json() == {
        "success": False,
        "error": {"code": "size_mismatch", "message": "Uploaded object size mismatch"},
    }


def test_unknown_client_is_404(client, make_venue) -> None:
    _, venue_id = make_venue()
    resp = client.post(
        f"/videos/metadata/client/{uuid4()}/venue/{venue_id}",
        json={"venue_id": str(venue_id), "captured_at": "2025-03-01T10:00:00Z", "sha256": SHA},
    )
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "client_not_found"


def test_create_rejects_bad_checksum(client, make_venue) -> None:
    client_id, venue_id = make_venue()
    resp = client.post(
        f"/videos/metadata/client/{client_id}/venue/{venue_id}",
        json={"venue_id": str(venue_id), "captured_at": "2025-03-01T10:00:00Z", "sha256": "xyz"},
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["details"][0]["loc"] == ["body", "sha256"]


def test_list_videos_sets_cache_header(client, store, make_venue) -> None:
    client_id, venue_id = make_venue()
    client.post(
        f"/videos/metadata/client/{client_id}/venue/{venue_id}",
        json={"venue_id": str(venue_id), "captured_at": "2025-03-01T10:00:00Z", "sha256": SHA},
    )

    resp = client.get("/videos/list", params={"venueId": str(venue_id), "includeSignedUrl": "true"})

    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "private, max-age=15"
    body = resp.json()
    assert body["count"] == 1
    assert body["items"][0]["missing"] is True


def test_list_videos_invalid_token(client, make_venue) -> None:
    _, venue_id = make_venue()
    resp = client.get("/videos/list", params={"venueId": str(venue_id), "token": "%%%"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_token"


def test_sign_endpoint(client) -> None:
    resp = client.get("/videos/sign", params={"path": "temp/a/b/c.mp4", "kind": "download"})
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "private, max-age=5"
    assert resp.json()["url"].startswith("https://bucket.test/temp/a/b/c.mp4")


def test_sign_endpoint_rejects_traversal(client) -> None:
    resp = client.get("/videos/sign", params={"path": "../etc/passwd"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_path"


def test_sign_endpoint_upstream_failure(client, store) -> None:
    store.fail_sign.add("temp/x.mp4")
    resp = client.get("/videos/sign", params={"path": "temp/x.mp4"})
    assert resp.status_code == 502
    assert resp.json()["success"] is False


def test_clips_by_venue_and_reconcile(client, store, make_venue) -> None:
    client_id, venue_id = make_venue()
    created = client.post(
        f"/videos/metadata/client/{client_id}/venue/{venue_id}",
        json={"venue_id": str(venue_id), "captured_at": "2025-03-01T10:00:00Z", "sha256": SHA},
    ).json()

    clips = client.get("/videos-clips", params={"venueId": str(venue_id)}).json()
    assert clips["items"][0]["clip_id"] == created["clip_id"]

    report = client.get("/videos/reconcile", params={"venueId": str(venue_id)}).json()
    assert report["missing_objects"] == [created["clip_id"]]


def test_unexpected_error_envelope(client, manager, monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(manager, "sign_url", boom)
    resp = client.get("/videos/sign", params={"path": "temp/x.mp4"})

    assert resp.status_code == 500
    assert resp.json() == {
        "success": False,
        "error": {"code": "internal_error", "message": "Internal server error"},
    }


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_malformed_finalize_is_distinct_from_integrity_failure(client, store, make_venue) -> None:
    client_id, venue_id = make_venue()
    created = client.post(
        f"/videos/metadata/client/{client_id}/venue/{venue_id}",
        json={"venue_id": str(venue_id), "captured_at": "2025-03-01T10:00:00Z", "sha256": SHA},
    ).json()
    store.put(created["storage_path"], 999)

    bad = client.post(f"/videos/{created['clip_id']}/uploaded", json={"size_bytes": -1, "sha256": SHA})
    mismatch = client.post(f"/videos/{created['clip_id']}/uploaded", json={"size_bytes": 1000, "sha256": SHA})

    assert bad.status_code == 400
    assert bad.json()["error"]["code"] == "validation_error"
    assert mismatch.status_code == 422
    assert mismatch.json()["error"]["code"] == "size_mismatch"


def test_query_validation_uses_error_envelope(client, make_venue) -> None:
    _, venue_id = make_venue()
    resp = client.get("/videos/list", params={"venueId": str(venue_id), "limit": 0})

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["details"]


def test_request_path_publisher_does_not_back_off(monkeypatch) -> None:
    monkeypatch.setenv("CLIP_EVENTS_ENABLED", "1")
    api_main._event_publisher.cache_clear()
    try:
        publisher = api_main._event_publisher()
        assert publisher is not None
        assert publisher.policy.max_attempts == 1
    finally:
        api_main._event_publisher.cache_clear()
