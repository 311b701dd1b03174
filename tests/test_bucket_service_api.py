import gzip

import pytest
from fastapi.testclient import TestClient

from services.bucket_service.app.main import app
from conftest import add_bucket, add_file, add_stats, stats_of

HEADERS = {"X-User-Id": "alice"}


@pytest.fixture
def client(manager):
    original_manager = getattr(app.state, 'manager', None)
    app.state.manager = manager
    with TestClient(app) as c:
        yield c
    app.state.manager = original_manager


@pytest.fixture
def alice(stats_col):
    add_stats(stats_col, "alice", memory_allocated=100_000, api_calls_allocated=1000)


# --- Meta ---
def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "success"
    assert "Manager: initialized" in response.json()["message"]

def test_missing_user_header_is_unauthorized(client):
    response = client.get("/buckets")
    assert response.status_code == 401


# --- Buckets ---
def test_create_and_list_buckets(client, alice):
    response = client.post("/buckets", json={"name": "photos"}, headers=HEADERS)
    assert response.status_code == 201
    assert response.json()["data"]["name"] == "photos"

    response = client.get("/buckets", headers=HEADERS)
    assert response.status_code == 200
    assert [b["name"] for b in response.json()["data"]] == ["photos"]

def test_duplicate_bucket_is_conflict(client, alice):
    client.post("/buckets", json={"name": "photos"}, headers=HEADERS)
    response = client.post("/buckets", json={"name": "photos"}, headers=HEADERS)
    assert response.status_code == 409
    body = response.json()
    assert body["status"] == "error"
    assert "already been registered" in body["message"]

def test_remove_buckets_by_name(client, alice, buckets_col, remote):
    bucket_id = add_bucket(buckets_col, remote, "alice", "old")
    response = client.request("DELETE", "/buckets", json={"names": ["old"]}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["data"] == [bucket_id]
    assert buckets_col.docs == []

def test_list_files_of_unknown_bucket(client, alice):
    response = client.get("/buckets/nope/files", headers=HEADERS)
    assert response.status_code == 404


# --- Upload & download ---
def test_upload_then_download_round_trip(client, alice, stats_col, buckets_col, remote):
    add_bucket(buckets_col, remote, "alice", "docs")
    content = b"plain text body " * 64
    response = client.post(
        "/buckets/docs/upload?make_public=false",
        files={"file": ("notes.txt", content, "text/plain")},
        headers=HEADERS,
    )
    assert response.status_code == 201, response.text
    entry = response.json()["data"]
    assert entry["encoded"] is True
    assert entry["size"] == len(content)
    assert stats_of(stats_col, "alice")["memory_used"] == len(content)

    listing = client.get("/buckets/docs/files", headers=HEADERS).json()["data"]
    assert listing["count"] == 1

    # Stored gzip goes straight through to a gzip-capable client
    raw = client.get(f"/files/{entry['identifier']}/download", headers={"Accept-Encoding": "gzip"})
    assert raw.headers["content-encoding"] == "gzip"
    assert raw.content == content # the test client decodes gzip bodies

    stored = remote.containers[entry["bucket_id"]][entry["identifier"]]["data"]
    assert gzip.decompress(stored) == content

    plain = client.get(f"/files/{entry['identifier']}/download", headers={"Accept-Encoding": "identity"})
    assert "content-encoding" not in plain.headers
    assert plain.content == content

def test_upload_over_quota_is_forbidden(client, stats_col, buckets_col, remote):
    add_stats(stats_col, "alice", memory_used=95, memory_allocated=100)
    add_bucket(buckets_col, remote, "alice", "docs")
    response = client.post(
        "/buckets/docs/upload",
        files={"file": ("big.bin", b"x" * 10, "application/octet-stream")},
        headers=HEADERS,
    )
    assert response.status_code == 403
    assert "enough memory" in response.json()["message"]
    assert remote.calls["open_write_stream"] == 0


# --- Files ---
def test_rename_publish_and_delete_file(client, alice, stats_col, files_col, buckets_col, remote):
    bucket_id = add_bucket(buckets_col, remote, "alice", "docs", memory_used=4)
    add_file(files_col, remote, "alice", bucket_id, "docs", "f1", 4)
    stats_of(stats_col, "alice")["memory_used"] = 4

    response = client.put("/files/f1/name", json={"name": "renamed.txt"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["data"]["name"] == "renamed.txt"

    response = client.put("/files/f1/public", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["data"]["is_public"] is True

    response = client.request("DELETE", "/files", json={"ids": ["f1"]}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["data"] == ["f1"]
    assert stats_of(stats_col, "alice")["memory_used"] == 0

def test_other_users_file_is_not_found(client, alice, files_col, buckets_col, remote):
    bucket_id = add_bucket(buckets_col, remote, "bob", "docs")
    add_file(files_col, remote, "bob", bucket_id, "docs", "bobs", 1)
    assert client.get("/files/bobs", headers=HEADERS).status_code == 404

def test_remove_files_with_empty_list(client, files_col):
    response = client.request("DELETE", "/files", json={"ids": []}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["data"] == []
    assert files_col.total_calls == 0


# --- Stats ---
def test_stats_lifecycle(client, stats_col):
    assert client.get("/stats", headers=HEADERS).status_code == 404
    assert client.post("/stats", headers=HEADERS).status_code == 201

    response = client.put("/stats", json={"memory_allocated": 42}, headers=HEADERS)
    assert response.status_code == 200
    assert client.get("/stats", headers=HEADERS).json()["data"]["memory_allocated"] == 42

    assert client.put("/stats", json={}, headers=HEADERS).status_code == 400

    response = client.delete("/users/me", headers=HEADERS)
    assert response.status_code == 200
    assert stats_col.docs == []
