"""FoxPay QR / bank-transfer payment processor adapter."""

import logging
from typing import Any, Mapping, Optional, Union

import httpx

from ..base import (
    GatewayError,
    GatewayErrorCode,
    GatewayResult,
    PaymentProvider,
    PaymentSession,
    PaymentSessionStatus,
    RefundResult,
    SessionResult,
    WebhookActionResult,
    normalize_currency_code,
    normalize_payment_status,
    validate_amount,
)
from ..exceptions import ValidationError
from .auth import TokenManager
from .client import FoxPayClient
from .options import FoxPayOptions
from .webhooks import WebhookHandler

logger = logging.getLogger(__name__)


def build_memo(context: Optional[Mapping[str, Any]], prefix: str = "Order") -> str:
    """Payment reference (Verwendungszweck) shown on the customer's transfer."""
    cart_id = (context or {}).get("cart_id") or "unknown"
    return f"{prefix} #{cart_id}"


class FoxPayAdapter(PaymentProvider):
    """Maps FoxPay API results and callbacks onto payment session states.

    Authorization is always confirmed by the processor, either by polling
    ``authorize_payment`` or through a signed ``payment_authorized`` webhook.
    """

    identifier = "foxpay"

    def __init__(
        self,
        options: FoxPayOptions,
        http_client: Optional[httpx.AsyncClient] = None,
        token_manager: Optional[TokenManager] = None,
        client: Optional[FoxPayClient] = None,
        webhook_handler: Optional[WebhookHandler] = None,
    ) -> None:
        options.validate()
        self.options = options
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=options.timeout)
        self.token_manager = token_manager or TokenManager(
            self._http, options.auth_url, options.access_key, options.secret_key
        )
        self.client = client or FoxPayClient(
            self._http, options.api_url, self.token_manager
        )
        self.webhooks = webhook_handler or WebhookHandler(options.webhook_secret)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @staticmethod
    def _invalid_state(
        code: GatewayErrorCode, operation: str, session: PaymentSession
    ) -> GatewayError:
        detail = f"Cannot {operation} payment {session.external_id} in status {session.status.value}"
        logger.warning(detail)
        return GatewayError(code, detail)

    async def initiate_payment(
        self,
        amount: int,
        currency_code: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> SessionResult:
        if not validate_amount(amount):
            raise ValidationError(f"Invalid amount: {amount}")
        currency = normalize_currency_code(currency_code)
        memo = build_memo(context)

        result = await self.client.initiate(
            amount, currency, memo, self.options.notification_url
        )
        if isinstance(result, GatewayError):
            logger.error(f"FoxPay initiation failed: {result.detail}")
            return result

        external_id = result.get("id")
        if not external_id:
            return GatewayError(
                GatewayErrorCode.INIT_FAILED, "FoxPay response carried no payment id"
            )

        logger.info(f"FoxPay payment {external_id} initiated for {amount} {currency}")
        return PaymentSession(
            external_id=str(external_id),
            amount=amount,
            currency_code=currency,
            status=PaymentSessionStatus.PENDING,
            provider_data={
                "id": str(external_id),
                "qr_code_url": result.get("qrCodeUrl", result.get("qr_code_url")),
                "memo": memo,
            },
        )

    async def authorize_payment(self, session: PaymentSession) -> SessionResult:
        if session.status == PaymentSessionStatus.AUTHORIZED:
            return session
        if session.status != PaymentSessionStatus.PENDING:
            return self._invalid_state(
                GatewayErrorCode.NOT_AUTHORIZED, "authorize", session
            )

        result = await self.client.query_status(session.external_id)
        if isinstance(result, GatewayError):
            return result

        if result.get("status") == "authorized":
            session.status = PaymentSessionStatus.AUTHORIZED
            logger.info(f"FoxPay payment {session.external_id} authorized")
            return session

        return GatewayError(GatewayErrorCode.NOT_AUTHORIZED, "Still pending user action")

    async def capture_payment(self, session: PaymentSession) -> SessionResult:
        if session.status != PaymentSessionStatus.AUTHORIZED:
            return self._invalid_state(
                GatewayErrorCode.CAPTURE_FAILED, "capture", session
            )

        result = await self.client.capture(session.external_id)
        if isinstance(result, GatewayError):
            return result

        session.provider_data = {**session.provider_data, **result, "id": session.external_id}
        session.status = PaymentSessionStatus.CAPTURED
        logger.info(f"FoxPay payment {session.external_id} captured")
        return session

    async def cancel_payment(self, session: PaymentSession) -> SessionResult:
        if session.status == PaymentSessionStatus.CANCELED:
            return session
        if session.status not in (
            PaymentSessionStatus.PENDING,
            PaymentSessionStatus.AUTHORIZED,
        ):
            return self._invalid_state(GatewayErrorCode.CANCEL_FAILED, "cancel", session)

        result = await self.client.cancel(session.external_id)
        if isinstance(result, GatewayError):
            return result

        session.provider_data = {**session.provider_data, **result, "id": session.external_id}
        session.status = PaymentSessionStatus.CANCELED
        logger.info(f"FoxPay payment {session.external_id} canceled")
        return session

    async def refund_payment(
        self, session: PaymentSession, amount: int
    ) -> Union[RefundResult, GatewayError]:
        if not validate_amount(amount):
            raise ValidationError(f"Invalid refund amount: {amount}")
        if session.status != PaymentSessionStatus.CAPTURED:
            return self._invalid_state(GatewayErrorCode.REFUND_FAILED, "refund", session)

        result = await self.client.refund(session.external_id, amount)
        if isinstance(result, GatewayError):
            return result

        status = str(result.get("status", "")).lower()
        logger.info(f"FoxPay refund of {amount} for {session.external_id}: {status}")
        return RefundResult(status=status, data=dict(session.provider_data))

    async def get_payment_status(
        self, session: PaymentSession
    ) -> PaymentSessionStatus:
        result = await self.client.query_status(session.external_id)
        if isinstance(result, GatewayError):
            return PaymentSessionStatus.ERROR
        return normalize_payment_status(result.get("status"))

    async def retrieve_payment(self, session: PaymentSession) -> GatewayResult:
        return await self.client.retrieve(session.external_id)

    async def update_payment(
        self,
        session: PaymentSession,
        amount: int,
        currency_code: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> SessionResult:
        if not validate_amount(amount):
            raise ValidationError(f"Invalid amount: {amount}")
        currency = normalize_currency_code(currency_code)
        if session.status != PaymentSessionStatus.PENDING:
            return self._invalid_state(GatewayErrorCode.UPDATE_FAILED, "update", session)

        memo = build_memo(context, prefix="Order Update")
        result = await self.client.update(session.external_id, amount, currency, memo)
        if isinstance(result, GatewayError):
            return result

        returned_id = result.get("id")
        if returned_id and str(returned_id) != session.external_id:
            return GatewayError(
                GatewayErrorCode.UPDATE_FAILED,
                f"FoxPay returned id {returned_id} for payment {session.external_id}",
            )

        session.amount = amount
        session.currency_code = currency
        session.provider_data = {**session.provider_data, "memo": memo}
        return session

    async def get_webhook_action_and_data(
        self,
        raw_body: bytes,
        signature: Optional[str],
        headers: Optional[Mapping[str, str]] = None,
    ) -> WebhookActionResult:
        return self.webhooks.handle(raw_body, signature, headers)


__all__ = ["FoxPayAdapter", "FoxPayOptions", "build_memo"]
