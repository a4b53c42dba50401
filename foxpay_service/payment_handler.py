import json
import logging
from typing import Optional, Union

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .adapters.base import (
    GatewayError,
    GatewayResult,
    PaymentProvider,
    PaymentSession,
    PaymentSessionStatus,
    RefundResult,
    SessionResult,
    WebhookAction,
    WebhookActionResult,
)
from .adapters.exceptions import PaymentNotFoundError
from .models import PaymentSessionRecord

logger = logging.getLogger(__name__)

_WEBHOOK_TARGETS = {
    WebhookAction.AUTHORIZED: PaymentSessionStatus.AUTHORIZED,
    WebhookAction.CAPTURED: PaymentSessionStatus.CAPTURED,
}


class PaymentSessionService:
    """Persists payment sessions and applies provider results to them.

    Sessions live in the database; Redis, when available, holds a short-lived
    copy for reads.
    """

    _CACHE_TTL = 300

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        provider: PaymentProvider,
        redis: Optional[Redis] = None,
    ):
        self._sessionmaker = sessionmaker
        self._provider = provider
        self._redis = redis
        logger.info(f"PaymentSessionService initialized with {provider.__class__.__name__}")

    @staticmethod
    def _cache_key(external_id: str) -> str:
        return f"payment_session:{external_id}"

    async def _cache(self, session: PaymentSession) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.setex(
                self._cache_key(session.external_id),
                self._CACHE_TTL,
                json.dumps(session.to_dict()),
            )
        except Exception as exc:  # pragma: no cover - cache failure
            logger.warning(
                "Failed to cache payment session %s: %s", session.external_id, exc
            )

    async def _load(self, external_id: str) -> PaymentSession:
        async with self._sessionmaker() as db:
            record = await db.get(PaymentSessionRecord, external_id)
        if record is None:
            raise PaymentNotFoundError(f"Payment session not found: {external_id}")
        return record.to_session()

    async def _save(self, session: PaymentSession) -> PaymentSession:
        async with self._sessionmaker() as db:
            record = await db.get(PaymentSessionRecord, session.external_id)
            if record is None:
                raise PaymentNotFoundError(
                    f"Payment session not found: {session.external_id}"
                )
            record.apply(session)
            await db.commit()
        await self._cache(session)
        return session

    async def create_session(
        self, amount: int, currency_code: str, cart_id: Optional[str] = None
    ) -> SessionResult:
        """Initiate a payment with the provider and store the pending session."""
        result = await self._provider.initiate_payment(
            amount, currency_code, {"cart_id": cart_id}
        )
        if isinstance(result, GatewayError):
            return result

        async with self._sessionmaker() as db:
            db.add(
                PaymentSessionRecord(
                    external_id=result.external_id,
                    amount=result.amount,
                    currency_code=result.currency_code,
                    status=result.status.value,
                    provider_data=dict(result.provider_data),
                    cart_id=cart_id,
                )
            )
            await db.commit()

        await self._cache(result)
        logger.info("Created payment session %s", result.external_id)
        return result

    async def get_session(self, external_id: str) -> PaymentSession:
        if self._redis is not None:
            try:
                cached = await self._redis.get(self._cache_key(external_id))
                if cached:
                    return PaymentSession.from_dict(json.loads(cached))
            except Exception as exc:  # pragma: no cover - cache failure
                logger.warning("Redis lookup failed for %s: %s", external_id, exc)

        session = await self._load(external_id)
        await self._cache(session)
        return session

    async def _run(self, external_id: str, operation) -> SessionResult:
        session = await self._load(external_id)
        previous = session.status
        result = await operation(session)
        if isinstance(result, GatewayError):
            logger.warning(
                "Payment session %s: %s (%s)",
                external_id,
                result.code.value,
                result.detail,
            )
            return result
        await self._save(result)
        if result.status != previous:
            logger.info(
                "Payment session %s: %s -> %s",
                external_id,
                previous.value,
                result.status.value,
            )
        return result

    async def authorize_session(self, external_id: str) -> SessionResult:
        return await self._run(external_id, self._provider.authorize_payment)

    async def capture_session(self, external_id: str) -> SessionResult:
        return await self._run(external_id, self._provider.capture_payment)

    async def cancel_session(self, external_id: str) -> SessionResult:
        return await self._run(external_id, self._provider.cancel_payment)

    async def update_session(
        self,
        external_id: str,
        amount: int,
        currency_code: str,
        cart_id: Optional[str] = None,
    ) -> SessionResult:
        async def update(session: PaymentSession) -> SessionResult:
            return await self._provider.update_payment(
                session, amount, currency_code, {"cart_id": cart_id}
            )

        return await self._run(external_id, update)

    async def refund_session(
        self, external_id: str, amount: int
    ) -> Union[RefundResult, GatewayError]:
        session = await self._load(external_id)
        result = await self._provider.refund_payment(session, amount)
        if isinstance(result, GatewayError):
            logger.warning("Refund for %s failed: %s", external_id, result.detail)
        else:
            logger.info("Refund for %s reported %s", external_id, result.status)
        return result

    async def retrieve_session(self, external_id: str) -> GatewayResult:
        session = await self._load(external_id)
        return await self._provider.retrieve_payment(session)

    async def refresh_status(self, external_id: str) -> PaymentSessionStatus:
        """Ask the provider for the current status and record confirmed changes.

        A failed query reports ``error`` without touching the stored session.
        """
        session = await self._load(external_id)
        status = await self._provider.get_payment_status(session)
        if status == PaymentSessionStatus.ERROR or status == session.status:
            return status
        if session.can_transition(status):
            session.status = status
            await self._save(session)
            logger.info("Payment session %s refreshed to %s", external_id, status.value)
        return status

    async def apply_webhook_action(
        self, result: WebhookActionResult
    ) -> Optional[PaymentSession]:
        """Apply a verified webhook action to the stored session."""
        target = _WEBHOOK_TARGETS.get(result.action)
        if target is None or not result.session_id:
            logger.info("Webhook action %s requires no update", result.action.value)
            return None

        try:
            session = await self._load(result.session_id)
        except PaymentNotFoundError:
            logger.warning("Webhook for unknown payment session %s", result.session_id)
            return None

        amount = (result.data or {}).get("amount")
        if amount is not None and amount != session.amount:
            logger.warning(
                "Webhook amount %s does not match session %s amount %s",
                amount,
                session.external_id,
                session.amount,
            )
            return session

        if session.status == target:
            return session
        if not session.can_transition(target):
            logger.warning(
                "Ignoring webhook %s for session %s in status %s",
                result.action.value,
                session.external_id,
                session.status.value,
            )
            return session

        previous = session.status
        session.status = target
        await self._save(session)
        logger.info(
            "Payment session %s: %s -> %s (webhook)",
            session.external_id,
            previous.value,
            target.value,
        )
        return session
