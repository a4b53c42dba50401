import json

import httpx
import pytest
from unittest.mock import AsyncMock

from foxpay_service.adapters.base import (
    GatewayError,
    GatewayErrorCode,
    PaymentSession,
    PaymentSessionStatus,
    WebhookAction,
    WebhookActionResult,
)
from foxpay_service.adapters.exceptions import PaymentNotFoundError
from foxpay_service.models import PaymentSessionRecord
from foxpay_service.payment_handler import PaymentSessionService


@pytest.fixture
def service(sessionmaker, adapter, mock_redis):
    return PaymentSessionService(sessionmaker, adapter, mock_redis)


async def _stored(sessionmaker, external_id: str) -> PaymentSessionRecord:
    async with sessionmaker() as db:
        return await db.get(PaymentSessionRecord, external_id)


@pytest.mark.asyncio
async def test_create_session_persists_and_caches(service, sessionmaker, mock_redis):
    session = await service.create_session(1000, "EUR", "cart_1")

    assert session.external_id == "fp_1"
    record = await _stored(sessionmaker, "fp_1")
    assert record.status == "pending"
    assert record.amount == 1000
    assert record.currency_code == "EUR"
    assert record.cart_id == "cart_1"
    assert record.provider_data["memo"] == "Order #cart_1"

    mock_redis.setex.assert_awaited_once()
    key, ttl, payload = mock_redis.setex.await_args.args
    assert key == "payment_session:fp_1"
    assert ttl == PaymentSessionService._CACHE_TTL
    assert json.loads(payload)["status"] == "pending"


@pytest.mark.asyncio
async def test_failed_initiation_stores_nothing(service, sessionmaker, fake_foxpay, mock_redis):
    fake_foxpay.overrides["/payment/initiate"] = httpx.Response(400, text="bad memo")

    result = await service.create_session(1000, "EUR", "cart_1")

    assert isinstance(result, GatewayError)
    assert result.code == GatewayErrorCode.INIT_FAILED
    mock_redis.setex.assert_not_awaited()
    async with sessionmaker() as db:
        assert await db.get(PaymentSessionRecord, "fp_1") is None


@pytest.mark.asyncio
async def test_get_session_prefers_cache(sessionmaker, mock_redis):
    cached = PaymentSession("fp_9", 700, "USD", PaymentSessionStatus.AUTHORIZED, {"id": "fp_9"})
    mock_redis.get.return_value = json.dumps(cached.to_dict())
    service = PaymentSessionService(sessionmaker, AsyncMock(), mock_redis)

    session = await service.get_session("fp_9")

    mock_redis.get.assert_awaited_once_with("payment_session:fp_9")
    assert session == cached


@pytest.mark.asyncio
async def test_get_unknown_session_raises(service):
    with pytest.raises(PaymentNotFoundError):
        await service.get_session("fp_missing")


@pytest.mark.asyncio
async def test_authorize_and_capture_are_persisted(service, sessionmaker, fake_foxpay):
    await service.create_session(1000, "EUR", "cart_1")

    pending = await service.authorize_session("fp_1")
    assert pending.code == GatewayErrorCode.NOT_AUTHORIZED
    assert (await _stored(sessionmaker, "fp_1")).status == "pending"

    fake_foxpay.payments["fp_1"]["status"] = "authorized"
    await service.authorize_session("fp_1")
    assert (await _stored(sessionmaker, "fp_1")).status == "authorized"

    captured = await service.capture_session("fp_1")
    record = await _stored(sessionmaker, "fp_1")
    assert captured.status == PaymentSessionStatus.CAPTURED
    assert record.status == "captured"
    assert record.updated_at is not None
    assert record.provider_data["captured_at"] == "2026-10-19T10:00:00Z"


@pytest.mark.asyncio
async def test_cancel_twice_calls_processor_once(service, sessionmaker, fake_foxpay):
    await service.create_session(1000, "EUR")

    first = await service.cancel_session("fp_1")
    second = await service.cancel_session("fp_1")

    assert first.status == second.status == PaymentSessionStatus.CANCELED
    assert fake_foxpay.calls("/payment/cancel") == 1
    assert (await _stored(sessionmaker, "fp_1")).status == "canceled"


@pytest.mark.asyncio
async def test_refund_leaves_session_status(service, sessionmaker, fake_foxpay):
    await service.create_session(1000, "EUR")
    fake_foxpay.payments["fp_1"]["status"] = "authorized"
    await service.authorize_session("fp_1")
    await service.capture_session("fp_1")

    result = await service.refund_session("fp_1", 1000)

    assert result.status == "succeeded"
    assert (await _stored(sessionmaker, "fp_1")).status == "captured"


@pytest.mark.asyncio
async def test_update_session_changes_amount(service, sessionmaker):
    await service.create_session(1000, "EUR", "cart_1")

    await service.update_session("fp_1", 1500, "EUR", "cart_1")

    record = await _stored(sessionmaker, "fp_1")
    assert record.amount == 1500
    assert record.provider_data["memo"] == "Order Update #cart_1"


@pytest.mark.asyncio
async def test_refresh_status_records_confirmed_change(service, sessionmaker, fake_foxpay):
    await service.create_session(1000, "EUR")
    fake_foxpay.payments["fp_1"]["status"] = "captured"

    status = await service.refresh_status("fp_1")

    assert status == PaymentSessionStatus.CAPTURED
    assert (await _stored(sessionmaker, "fp_1")).status == "captured"


@pytest.mark.asyncio
async def test_refresh_status_error_keeps_stored_status(service, sessionmaker, fake_foxpay):
    await service.create_session(1000, "EUR")
    fake_foxpay.overrides["/payment/status/fp_1"] = httpx.Response(500, text="down")

    status = await service.refresh_status("fp_1")

    assert status == PaymentSessionStatus.ERROR
    assert (await _stored(sessionmaker, "fp_1")).status == "pending"


@pytest.mark.asyncio
async def test_retrieve_session_returns_provider_record(service):
    await service.create_session(1000, "EUR")

    record = await service.retrieve_session("fp_1")

    assert record["amount"] == 1000
    assert record["currency"] == "EUR"


class TestApplyWebhookAction:

    @pytest.mark.asyncio
    async def test_captured_webhook_completes_pending_session(self, service, sessionmaker):
        await service.create_session(1000, "EUR")

        session = await service.apply_webhook_action(
            WebhookActionResult(WebhookAction.CAPTURED, {"session_id": "fp_1", "amount": 1000})
        )

        assert session.status == PaymentSessionStatus.CAPTURED
        assert (await _stored(sessionmaker, "fp_1")).status == "captured"

    @pytest.mark.asyncio
    async def test_captured_webhook_recovers_errored_session(self, service, sessionmaker):
        await service.create_session(1000, "EUR")
        async with sessionmaker() as db:
            record = await db.get(PaymentSessionRecord, "fp_1")
            record.status = PaymentSessionStatus.ERROR.value
            await db.commit()

        session = await service.apply_webhook_action(
            WebhookActionResult(WebhookAction.CAPTURED, {"session_id": "fp_1", "amount": 1000})
        )

        assert session.status == PaymentSessionStatus.CAPTURED
        assert (await _stored(sessionmaker, "fp_1")).status == "captured"

    @pytest.mark.asyncio
    async def test_authorized_webhook_after_capture_is_ignored(self, service, sessionmaker):
        await service.create_session(1000, "EUR")
        await service.apply_webhook_action(
            WebhookActionResult(WebhookAction.CAPTURED, {"session_id": "fp_1", "amount": 1000})
        )

        session = await service.apply_webhook_action(
            WebhookActionResult(WebhookAction.AUTHORIZED, {"session_id": "fp_1", "amount": 1000})
        )

        assert session.status == PaymentSessionStatus.CAPTURED
        assert (await _stored(sessionmaker, "fp_1")).status == "captured"

    @pytest.mark.asyncio
    async def test_amount_mismatch_is_not_applied(self, service, sessionmaker):
        await service.create_session(1000, "EUR")

        await service.apply_webhook_action(
            WebhookActionResult(WebhookAction.AUTHORIZED, {"session_id": "fp_1", "amount": 1})
        )

        assert (await _stored(sessionmaker, "fp_1")).status == "pending"

    @pytest.mark.asyncio
    async def test_unknown_session_is_ignored(self, service):
        result = await service.apply_webhook_action(
            WebhookActionResult(WebhookAction.CAPTURED, {"session_id": "fp_404", "amount": 1})
        )

        assert result is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "result",
        [
            WebhookActionResult(WebhookAction.NOT_SUPPORTED),
            WebhookActionResult(WebhookAction.FAILED, {"session_id": "fp_1", "amount": None}),
        ],
    )
    async def test_non_transition_actions_change_nothing(self, service, sessionmaker, result):
        await service.create_session(1000, "EUR")

        assert await service.apply_webhook_action(result) is None
        assert (await _stored(sessionmaker, "fp_1")).status == "pending"
