"""HTTP binding to the FoxPay payment API."""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, PositiveInt

from ..base import GatewayError, GatewayErrorCode, GatewayResult
from .auth import TokenManager

logger = logging.getLogger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class InitiateRequest(_Payload):
    amount: PositiveInt
    currency: str = Field(pattern=r"^[A-Z]{3}$")
    memo: str
    notification_url: str = Field(alias="notificationUrl")


class PaymentReference(_Payload):
    id: str = Field(min_length=1)


class RefundRequest(PaymentReference):
    amount: PositiveInt


class UpdateRequest(PaymentReference):
    amount: PositiveInt
    currency: str = Field(pattern=r"^[A-Z]{3}$")
    memo: str


class FoxPayClient:
    """Issues bearer-authenticated calls and classifies every response.

    Methods return the decoded JSON body on success and a ``GatewayError``
    otherwise. Transport failures, timeouts and undecodable bodies become
    ``GatewayError(code=unknown)``. ``AuthenticationError`` from the token
    manager is not caught here.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_url: str,
        token_manager: TokenManager,
    ) -> None:
        self._http = http_client
        self._api_url = api_url.rstrip("/")
        self._tokens = token_manager

    async def initiate(
        self, amount: int, currency_code: str, memo: str, notification_url: str
    ) -> GatewayResult:
        payload = InitiateRequest(
            amount=amount,
            currency=currency_code,
            memo=memo,
            notification_url=notification_url,
        )
        return await self._request(
            "POST", "/payment/initiate", GatewayErrorCode.INIT_FAILED, payload
        )

    async def query_status(self, external_id: str) -> GatewayResult:
        return await self._request(
            "GET", f"/payment/status/{external_id}", GatewayErrorCode.STATUS_FAILED
        )

    async def capture(self, external_id: str) -> GatewayResult:
        return await self._request(
            "POST",
            "/payment/capture",
            GatewayErrorCode.CAPTURE_FAILED,
            PaymentReference(id=external_id),
        )

    async def cancel(self, external_id: str) -> GatewayResult:
        return await self._request(
            "POST",
            "/payment/cancel",
            GatewayErrorCode.CANCEL_FAILED,
            PaymentReference(id=external_id),
        )

    async def refund(self, external_id: str, amount: int) -> GatewayResult:
        return await self._request(
            "POST",
            "/payment/refund",
            GatewayErrorCode.REFUND_FAILED,
            RefundRequest(id=external_id, amount=amount),
        )

    async def retrieve(self, external_id: str) -> GatewayResult:
        return await self._request(
            "GET",
            f"/payment/retrieve/{external_id}",
            GatewayErrorCode.RETRIEVE_FAILED,
        )

    async def update(
        self, external_id: str, amount: int, currency_code: str, memo: str
    ) -> GatewayResult:
        payload = UpdateRequest(
            id=external_id, amount=amount, currency=currency_code, memo=memo
        )
        return await self._request(
            "POST", "/payment/update", GatewayErrorCode.UPDATE_FAILED, payload
        )

    async def _request(
        self,
        method: str,
        path: str,
        error_code: GatewayErrorCode,
        payload: Optional[_Payload] = None,
    ) -> GatewayResult:
        credential = await self._tokens.ensure_valid_token()
        headers = {"Authorization": f"Bearer {credential.access_token}"}
        url = f"{self._api_url}{path}"

        try:
            response = await self._http.request(
                method,
                url,
                json=payload.dump() if payload is not None else None,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.error("FoxPay %s %s failed: %r", method, path, exc)
            return GatewayError(GatewayErrorCode.UNKNOWN, str(exc) or repr(exc), exc)

        if not response.is_success:
            detail = response.text
            if response.status_code == 401:
                self._tokens.invalidate()
            logger.warning(
                "FoxPay %s %s returned HTTP %s: %s",
                method,
                path,
                response.status_code,
                detail,
            )
            return GatewayError(error_code, detail)

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("FoxPay %s %s returned invalid JSON", method, path)
            return GatewayError(GatewayErrorCode.UNKNOWN, str(exc), exc)

        if not isinstance(data, dict):
            return GatewayError(
                GatewayErrorCode.UNKNOWN,
                f"Unexpected response body: {type(data).__name__}",
            )
        return data
