"""
Pytest configuration and fixtures for FoxPay service tests.
"""

import itertools
import json
import os
import sys

import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

# Make the package importable without installing it
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.append(ROOT_DIR)

from foxpay_service.adapters.foxpay import FoxPayAdapter, FoxPayOptions  # noqa: E402
from foxpay_service.adapters.foxpay.webhooks import compute_signature  # noqa: E402
from foxpay_service.models import Base  # noqa: E402

API_URL = "https://api.foxpay.test"
AUTH_URL = "https://auth.foxpay.test"
WEBHOOK_SECRET = "whsec_test"


class FakeFoxPay:
    """In-memory stand-in for the FoxPay API served through ``httpx.MockTransport``."""

    def __init__(self):
        self.payments = {}
        self.requests = []
        self.overrides = {}
        self.auth_calls = 0
        self.token_ttl = 3600
        self._ids = itertools.count(1)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    def last_json(self, path: str) -> dict:
        matching = [r for r in self.requests if r.url.path == path]
        return json.loads(matching[-1].content)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        override = self.overrides.get(path)
        if isinstance(override, Exception):
            raise override
        if override is not None:
            return override

        if request.url.host == "auth.foxpay.test":
            self.auth_calls += 1
            return httpx.Response(
                200,
                json={
                    "accessToken": f"tok_{self.auth_calls}",
                    "expiresIn": self.token_ttl,
                },
            )

        if request.headers.get("Authorization") != f"Bearer tok_{self.auth_calls}":
            return httpx.Response(401, text="invalid token")

        body = json.loads(request.content) if request.content else {}

        if path == "/payment/initiate":
            payment_id = f"fp_{next(self._ids)}"
            self.payments[payment_id] = {
                "id": payment_id,
                "amount": body["amount"],
                "currency": body["currency"],
                "memo": body["memo"],
                "status": "pending",
            }
            return httpx.Response(
                200, json={"id": payment_id, "qrCodeUrl": f"https://qr.test/{payment_id}"}
            )

        if path.startswith("/payment/status/") or path.startswith("/payment/retrieve/"):
            payment = self.payments.get(path.rsplit("/", 1)[-1])
            if payment is None:
                return httpx.Response(404, text="unknown payment")
            if path.startswith("/payment/status/"):
                return httpx.Response(200, json={"status": payment["status"]})
            return httpx.Response(200, json=dict(payment))

        payment = self.payments.get(body.get("id"))
        if payment is None:
            return httpx.Response(404, text="unknown payment")

        if path == "/payment/capture":
            payment["status"] = "captured"
            return httpx.Response(200, json={"status": "captured", "captured_at": "2026-10-19T10:00:00Z"})
        if path == "/payment/cancel":
            payment["status"] = "canceled"
            return httpx.Response(200, json={"status": "canceled"})
        if path == "/payment/refund":
            return httpx.Response(200, json={"status": "SUCCEEDED", "refund_id": "rf_1"})
        if path == "/payment/update":
            payment.update(amount=body["amount"], currency=body["currency"], memo=body["memo"])
            return httpx.Response(200, json={"id": payment["id"]})

        return httpx.Response(404, text="not found")


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(body, secret)


@pytest.fixture
def mock_redis():
    """Mock Redis client for testing."""
    redis_mock = AsyncMock()
    redis_mock.ping.return_value = True
    redis_mock.get.return_value = None
    redis_mock.setex.return_value = True
    redis_mock.close.return_value = None
    return redis_mock


@pytest.fixture
def foxpay_options():
    return FoxPayOptions(
        api_url=API_URL,
        auth_url=AUTH_URL,
        access_key="ak_test",
        secret_key="sk_test",
        webhook_secret=WEBHOOK_SECRET,
        notification_base_url="https://shop.test",
    )


@pytest.fixture
def fake_foxpay():
    return FakeFoxPay()


@pytest.fixture
def http_client(fake_foxpay):
    return httpx.AsyncClient(transport=fake_foxpay.transport())


@pytest.fixture
def adapter(foxpay_options, http_client):
    return FoxPayAdapter(foxpay_options, http_client=http_client)


@pytest_asyncio.fixture
async def sessionmaker():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


# Configure pytest-asyncio
def pytest_configure(config):
    """Configure pytest with asyncio support."""
    config.addinivalue_line("markers", "asyncio: mark test as async")
