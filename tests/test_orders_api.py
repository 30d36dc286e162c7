"""Tests for the order endpoints."""

import uuid

import pytest

from conftest import checkout_completed_event, sign_webhook

JPEG = ("portrait.jpg", b"\xff\xd8\xff" + b"\x00" * 1024, "image/jpeg")


def order_form(**overrides):
    form = {
        "email": "customer@example.com",
        "bustSize": "200",
        "style": "classical",
        "styleHint": "",
        "notes": "",
    }
    form.update(overrides)
    return form


async def create_order(client, files=None, **form):
    return await client.post(
        "/api/orders",
        data=order_form(**form),
        files={"images": JPEG} if files is None else files,
    )


# ============================================================================
# Creation
# ============================================================================

@pytest.mark.parametrize("size, price", [("100", 3900), ("200", 6900), ("300", 9900)])
async def test_price_follows_bust_size(client, repo, size, price):
    response = await create_order(client, bustSize=size)

    assert response.status_code == 201
    order = await repo.get(uuid.UUID(response.json()["orderId"]))
    assert order.price_cents == price
    assert order.bust_height_mm == int(size)


async def test_create_order_starts_preview(client, repo, storage, meshy):
    response = await create_order(client, styleHint="laurel wreath", notes="gift")

    assert response.status_code == 201
    body = response.json()
    assert body["meshyImageTaskId"] == "img-1"
    assert "warning" not in body

    order = await repo.get(uuid.UUID(body["orderId"]))
    assert order.status == "processing"
    assert order.meshy_image_task_id == "img-1"
    assert order.preview_attempts == 1
    assert order.style_hint == "laurel wreath"
    assert order.notes == "gift"

    upload = await repo.latest_upload(order.id)
    assert upload.storage_path.startswith(f"{order.id}/")
    assert upload.storage_path.endswith("-portrait.jpg")
    assert (storage.uploads_bucket, upload.storage_path) in storage.objects
    assert "laurel wreath" in meshy.preview_submissions[0][0]


@pytest.mark.parametrize(
    "form",
    [
        {"email": ""},
        {"bustSize": ""},
        {"style": ""},
        {"bustSize": "150"},
        {"bustSize": "large"},
        {"style": "baroque"},
    ],
)
async def test_create_order_validation(client, meshy, form):
    response = await create_order(client, **form)

    assert response.status_code == 400
    assert "error" in response.json()
    assert meshy.preview_submissions == []


async def test_create_order_requires_a_photo(client):
    response = await client.post("/api/orders", data=order_form())

    assert response.status_code == 400


async def test_create_order_rejects_two_photos(client):
    response = await create_order(client, files=[("images", JPEG), ("images", JPEG)])

    assert response.status_code == 400


async def test_provider_failure_still_returns_order(client, repo, meshy):
    from bustworks.services.meshy import TaskSubmissionError

    meshy.submit_error = TaskSubmissionError("Insufficient credits")

    response = await create_order(client)

    assert response.status_code == 201
    body = response.json()
    assert body["warning"]
    order = await repo.get(uuid.UUID(body["orderId"]))
    assert order.status == "failed"
    assert order.meshy_image_task_id is None


async def test_oversize_image_fails_order(client, repo, storage, monkeypatch):
    from conftest import settings

    monkeypatch.setattr(settings, "max_upload_size_mb", 0)

    response = await create_order(client)

    assert response.status_code == 201
    body = response.json()
    assert "less than 0MB" in body["warning"]
    order = await repo.get(uuid.UUID(body["orderId"]))
    assert order.status == "failed"
    assert not storage.objects


class DeclaredSizeUpload:
    def __init__(self, size, content=b""):
        self.size = size
        self.content = content
        self.reads = 0

    async def read(self):
        self.reads += 1
        return self.content


async def test_read_image_checks_declared_size_before_reading():
    from bustworks.routes.orders import read_image

    upload = DeclaredSizeUpload(size=11 * 1024 * 1024)

    assert await read_image(upload, 10 * 1024 * 1024) is None
    assert upload.reads == 0


async def test_read_image_without_declared_size():
    from bustworks.routes.orders import read_image

    assert await read_image(DeclaredSizeUpload(size=None, content=b"abcd"), 4) == b"abcd"
    assert await read_image(DeclaredSizeUpload(size=None, content=b"abcde"), 4) is None


async def test_storage_failure_still_returns_order(client, repo, storage):
    storage.fail_uploads = True

    response = await create_order(client)

    assert response.status_code == 201
    order = await repo.get(uuid.UUID(response.json()["orderId"]))
    assert order.status == "failed"


async def test_create_order_from_phone_upload(client, repo, storage):
    token = "5f0c7a52-2a8e-4c55-9a43-0d5d1f3e6b11"
    storage.upload_bytes(storage.uploads_bucket, f"phone/{token}/photo.png", b"png bytes", "image/png")

    response = await client.post("/api/orders", data=order_form(phoneUploadToken=token))

    assert response.status_code == 201
    order = await repo.get(uuid.UUID(response.json()["orderId"]))
    assert order.status == "processing"
    assert order.phone_upload_token == token
    upload = await repo.latest_upload(order.id)
    assert upload.storage_path.endswith("-phone-photo.png")
    assert storage.objects[(storage.uploads_bucket, upload.storage_path)] == b"png bytes"
    assert storage.content_types[(storage.uploads_bucket, upload.storage_path)] == "image/png"


async def test_phone_upload_not_arrived_yet(client, repo):
    response = await client.post(
        "/api/orders",
        data=order_form(phoneUploadToken="5f0c7a52-2a8e-4c55-9a43-0d5d1f3e6b11"),
    )

    assert response.status_code == 201
    body = response.json()
    assert "phone" in body["warning"].lower()
    order = await repo.get(uuid.UUID(body["orderId"]))
    assert order.status == "failed"


# ============================================================================
# Status and retry
# ============================================================================

async def test_status_requires_order_id(client):
    response = await client.get("/api/orders/status")

    assert response.status_code == 400
    assert response.json() == {"error": "Missing orderId"}


async def test_status_unknown_order(client):
    response = await client.get("/api/orders/status", params={"orderId": str(uuid.uuid4())})

    assert response.status_code == 404


async def test_status_reports_free_attempts(client, make_order):
    order = await make_order(status="preview_ready", retry_credits=1, preview_attempts=2)

    response = await client.get("/api/orders/status", params={"orderId": str(order.id)})

    assert response.status_code == 200
    body = response.json()
    assert body["stage"] == "clay_preview"
    assert body["paymentLocked"] is False
    assert body["order"]["free_attempts_remaining"] == 1


async def test_retry_endpoint(client, repo, make_order):
    order = await make_order(status="failed")

    response = await client.post("/api/orders/retry", json={"orderId": str(order.id)})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "meshyImageTaskId": "img-1"}
    order = await repo.get(order.id)
    assert order.preview_attempts == 2
    assert order.status == "processing"


async def test_retry_while_processing_is_rejected(client, make_order):
    order = await make_order(status="processing")

    response = await client.post("/api/orders/retry", json={"orderId": str(order.id)})

    assert response.status_code == 400


async def test_retry_provider_failure_is_bad_gateway(client, meshy, make_order):
    from bustworks.services.meshy import TaskSubmissionError

    order = await make_order(status="preview_ready")
    meshy.submit_error = TaskSubmissionError("Server is busy")

    response = await client.post("/api/orders/retry", json={"orderId": str(order.id)})

    assert response.status_code == 502


async def test_list_styles(client):
    response = await client.get("/api/orders/styles")

    assert response.status_code == 200
    assert [s["id"] for s in response.json()["styles"]] == ["classical", "modern", "custom"]


# ============================================================================
# Full journey
# ============================================================================

async def test_order_journey(client, repo, meshy):
    # Create
    response = await create_order(client, bustSize="200")
    assert response.status_code == 201
    order_id = response.json()["orderId"]
    order = await repo.get(uuid.UUID(order_id))
    assert order.status == "processing"
    assert order.price_cents == 6900
    assert order.meshy_image_task_id

    # Preview finishes
    meshy.finish_preview(order.meshy_image_task_id)
    response = await client.get("/api/orders/status", params={"orderId": order_id})
    body = response.json()
    assert body["order"]["status"] == "preview_ready"
    assert body["progress"] == 100
    assert body["order"]["clayPreviewUrl"].startswith("https://storage.test/outputs/")
    assert order.clay_preview_path == f"{order_id}/clay_preview.png"

    # Payment confirmed
    payload = checkout_completed_event(order_id, mode="order")
    response = await client.post(
        "/api/stripe/webhook",
        content=payload,
        headers={"stripe-signature": sign_webhook(payload), "content-type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert order.status == "paid"
    assert order.ship_city == "Amsterdam"
    assert order.ship_country == "NL"

    # 3D task submitted on the next poll
    response = await client.get("/api/orders/status", params={"orderId": order_id})
    body = response.json()
    assert body["stage"] == "model"
    assert body["progress"] == 5
    assert body["paymentLocked"] is True
    assert body["order"]["status"] == "paid"
    assert order.meshy_model_task_id

    # 3D task finishes
    meshy.finish_model(order.meshy_model_task_id)
    response = await client.get("/api/orders/status", params={"orderId": order_id})
    body = response.json()
    assert body["progress"] == 100
    assert body["order"]["modelGlbUrl"]
    assert body["order"]["modelObjUrl"]
    assert order.model_glb_path == f"{order_id}/model.glb"
    assert order.model_obj_path == f"{order_id}/model.obj"
