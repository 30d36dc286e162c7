"""Tests for the phone upload (QR) flow."""

import pytest

from bustworks.routes.phone_upload import ext_from_mime, ext_from_name

TOKEN = "0b7c1c1e-4a4f-4a53-8f77-0f3f0d1d2c3b"


async def test_token_is_issued_without_multipart(client):
    response = await client.post("/api/phone-upload", json={})

    assert response.status_code == 201
    token = response.json()["token"]
    assert len(token) == 36


async def test_upload_stores_photo(client, storage):
    response = await client.post(
        "/api/phone-upload",
        params={"token": TOKEN},
        files={"photo": ("IMG_0001.JPEG", b"jpeg bytes", "image/jpeg")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["path"] == f"phone/{TOKEN}/photo.jpg"
    assert body["bucket"] == "uploads"
    assert body["previewUrl"].startswith("https://storage.test/uploads/")
    assert storage.objects[("uploads", f"phone/{TOKEN}/photo.jpg")] == b"jpeg bytes"


async def test_upload_with_token_form_field_and_file_key(client, storage):
    response = await client.post(
        "/api/phone-upload",
        data={"token": TOKEN},
        files={"file": ("blob", b"heic bytes", "image/heic")},
    )

    assert response.status_code == 200
    assert response.json()["path"] == f"phone/{TOKEN}/photo.heic"


async def test_upload_without_token(client):
    response = await client.post(
        "/api/phone-upload",
        files={"photo": ("me.png", b"png", "image/png")},
    )

    assert response.status_code == 400


async def test_upload_rejects_path_like_token(client):
    response = await client.post(
        "/api/phone-upload",
        params={"token": "../../orders"},
        files={"photo": ("me.png", b"png", "image/png")},
    )

    assert response.status_code == 400


async def test_upload_without_photo(client):
    response = await client.post(
        "/api/phone-upload",
        params={"token": TOKEN},
        files={"other": ("me.png", b"png", "image/png")},
    )

    assert response.status_code == 400


async def test_upload_too_large(client, monkeypatch):
    from conftest import settings

    monkeypatch.setattr(settings, "max_phone_upload_size_mb", 0)

    response = await client.post(
        "/api/phone-upload",
        params={"token": TOKEN},
        files={"photo": ("me.png", b"png", "image/png")},
    )

    assert response.status_code == 400


async def test_status_waiting_then_uploaded(client, storage):
    response = await client.get("/api/phone-upload/status", params={"token": TOKEN})
    assert response.json() == {"status": "waiting", "token": TOKEN}

    storage.upload_bytes(storage.uploads_bucket, f"phone/{TOKEN}/photo.webp", b"webp")

    response = await client.get("/api/phone-upload/status", params={"token": TOKEN})
    body = response.json()
    assert body["status"] == "uploaded"
    assert body["path"] == f"phone/{TOKEN}/photo.webp"
    assert body["previewUrl"]


async def test_status_requires_token(client):
    response = await client.get("/api/phone-upload/status")

    assert response.status_code == 400


@pytest.mark.parametrize(
    "name, expected",
    [("a.JPG", "jpg"), ("a.jpeg", "jpg"), ("a.png", "png"), ("a.heif", "heif"), ("a.gif", None), (None, None)],
)
def test_ext_from_name(name, expected):
    assert ext_from_name(name) == expected


@pytest.mark.parametrize(
    "mime, expected",
    [("image/png", "png"), ("image/webp", "webp"), ("image/heic", "heic"), ("image/jpeg", "jpg"), (None, "jpg")],
)
def test_ext_from_mime(mime, expected):
    assert ext_from_mime(mime) == expected
