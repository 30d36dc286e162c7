"""
Shared fixtures: an in-memory SQLite database, in-memory fakes for object
storage and the generation provider, and an HTTP client wired to the app.
"""

import hashlib
import hmac
import json
import os
import time

# Settings are cached on first import, so the environment goes first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ADMIN_PASSWORD", "letmein")
os.environ.setdefault("ADMIN_COOKIE_SECURE", "false")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_bustworks")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_bustworks")
os.environ.setdefault("MESHY_API_KEY", "msy_test")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from bustworks.config import get_settings  # noqa: E402
from bustworks.database import Base, get_db  # noqa: E402
from bustworks.main import app  # noqa: E402
from bustworks.services.lifecycle import OrderLifecycle  # noqa: E402
from bustworks.services.meshy import (  # noqa: E402
    DownloadError,
    TaskResult,
    TaskStatus,
    get_meshy_client,
)
from bustworks.services.orders import OrderRepository  # noqa: E402
from bustworks.services.payments import PaymentGateway, get_payment_gateway  # noqa: E402
from bustworks.services.storage import StorageError, get_storage_service  # noqa: E402

settings = get_settings()

# Comfortably above min_preview_bytes
PREVIEW_BYTES = b"\x89PNG" + b"\x00" * 60_000


# ============================================================================
# Fakes
# ============================================================================

class FakeStorage:
    """Dict-backed stand-in for StorageService."""

    def __init__(self):
        self.uploads_bucket = "uploads"
        self.outputs_bucket = "outputs"
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: dict[tuple[str, str], str] = {}
        self.fail_uploads = False
        self.fail_signing = False

    def ensure_buckets(self):
        pass

    def upload_bytes(self, bucket, key, data, content_type="application/octet-stream"):
        if self.fail_uploads:
            raise StorageError("storage unavailable")
        self.objects[(bucket, key)] = data
        self.content_types[(bucket, key)] = content_type
        return key

    def download_bytes(self, bucket, key):
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise StorageError(f"NoSuchKey: {key}")

    def get_presigned_url(self, bucket, key, expires_in=None):
        if self.fail_signing:
            raise StorageError("signing failed")
        return f"https://storage.test/{bucket}/{key}?signature=abc"

    def signed_url_or_none(self, bucket, key):
        if not key:
            return None
        try:
            return self.get_presigned_url(bucket, key)
        except StorageError:
            return None

    def list_files(self, bucket, prefix=""):
        return sorted(k for b, k in self.objects if b == bucket and k.startswith(prefix))

    def health_check(self):
        return True


class FakeMeshy:
    """
    Scriptable stand-in for MeshyClient.

    Submitted tasks start pending; tests move them along by replacing the
    TaskResult in preview_tasks / model_tasks.
    """

    def __init__(self):
        self.preview_tasks: dict[str, TaskResult] = {}
        self.model_tasks: dict[str, TaskResult] = {}
        self.downloads: dict[str, bytes] = {}
        self.preview_submissions: list[tuple[str, str]] = []
        self.model_submissions: list[str] = []
        self.submit_error: Exception | None = None
        self.poll_error: Exception | None = None
        self._counter = 0

    def _next_id(self, prefix):
        self._counter += 1
        return f"{prefix}-{self._counter}"

    async def submit_preview(self, prompt, image_url):
        if self.submit_error:
            raise self.submit_error
        task_id = self._next_id("img")
        self.preview_submissions.append((prompt, image_url))
        self.preview_tasks[task_id] = TaskResult(status=TaskStatus.PENDING)
        return task_id

    async def poll_preview(self, task_id):
        if self.poll_error:
            raise self.poll_error
        return self.preview_tasks[task_id]

    async def submit_model(self, image_url):
        if self.submit_error:
            raise self.submit_error
        task_id = self._next_id("3d")
        self.model_submissions.append(image_url)
        self.model_tasks[task_id] = TaskResult(status=TaskStatus.PENDING)
        return task_id

    async def poll_model(self, task_id):
        if self.poll_error:
            raise self.poll_error
        return self.model_tasks[task_id]

    async def download(self, url):
        if url not in self.downloads:
            raise DownloadError(f"Failed to download {url}")
        return self.downloads[url]

    def finish_preview(self, task_id, data=PREVIEW_BYTES):
        url = f"https://assets.meshy.test/{task_id}/preview.png"
        self.downloads[url] = data
        self.preview_tasks[task_id] = TaskResult(
            status=TaskStatus.SUCCEEDED, progress=100, image_urls=[url]
        )

    def finish_model(self, task_id, formats=("glb", "obj")):
        urls = {}
        for fmt in formats:
            url = f"https://assets.meshy.test/{task_id}/model.{fmt}"
            self.downloads[url] = f"{fmt} bytes".encode()
            urls[fmt] = url
        self.model_tasks[task_id] = TaskResult(
            status=TaskStatus.SUCCEEDED, progress=100, model_urls=urls
        )


class FakePaymentGateway(PaymentGateway):
    """Real webhook verification; checkout sessions are recorded, not created."""

    def __init__(self):
        super().__init__(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
        self.sessions: list[dict] = []

    def create_checkout_session(self, order, mode, origin):
        params = self.build_checkout_params(order, mode, origin)
        self.sessions.append(params)
        return f"https://checkout.stripe.test/c/pay/cs_test_{len(self.sessions)}"


def sign_webhook(payload: str, secret: str | None = None, timestamp: int | None = None) -> str:
    """Build a stripe-signature header the way Stripe signs webhooks."""
    secret = secret or settings.stripe_webhook_secret
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_completed_event(order_id, mode="order", **session_overrides) -> str:
    """JSON body of a checkout.session.completed event."""
    session = {
        "id": "cs_test_123",
        "object": "checkout.session",
        "metadata": {"orderId": str(order_id), "mode": mode},
        "customer_details": {
            "email": "buyer@example.com",
            "name": "Ada Lovelace",
            "phone": "+31600000000",
            "address": None,
        },
        "shipping_details": {
            "name": "Ada Lovelace",
            "address": {
                "line1": "Keizersgracht 1",
                "line2": None,
                "city": "Amsterdam",
                "state": "NH",
                "postal_code": "1015AA",
                "country": "NL",
            },
        },
    }
    session.update(session_overrides)
    return json.dumps({
        "id": "evt_test_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": session},
    })


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as session:
        yield session


@pytest.fixture
def repo(session):
    return OrderRepository(session)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def meshy():
    return FakeMeshy()


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def lifecycle(repo, storage, meshy):
    return OrderLifecycle(repo, storage, meshy, settings=settings)


@pytest.fixture
async def client(session, storage, meshy, gateway):
    async def override_db():
        yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_storage_service] = lambda: storage
    app.dependency_overrides[get_meshy_client] = lambda: meshy
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_order(repo, storage):
    """Create an order with one stored upload, the way order creation leaves it."""

    async def _make(**overrides):
        fields = {
            "email": "customer@example.com",
            "bust_height_mm": 200,
            "bust_style": "classical",
            "price_cents": 6900,
            "status": "created",
            "preview_attempts": 1,
        }
        fields.update(overrides)
        order = await repo.create(**fields)
        path = f"{order.id}/1700000000000-portrait.jpg"
        storage.upload_bytes(storage.uploads_bucket, path, b"jpeg bytes", "image/jpeg")
        await repo.add_upload(order.id, path)
        return order

    return _make
