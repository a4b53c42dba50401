"""Signed webhook verification and translation for FoxPay callbacks."""

import hashlib
import hmac
import json
import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from ..base import WebhookAction, WebhookActionResult
from ..exceptions import UnsupportedEventError, VerificationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hmac-sha384"


class WebhookEventType(str, Enum):
    PAYMENT_AUTHORIZED = "payment_authorized"
    PAYMENT_CAPTURED = "payment_captured"
    OTHER = "other"


_EVENT_ACTIONS = {
    WebhookEventType.PAYMENT_AUTHORIZED: WebhookAction.AUTHORIZED,
    WebhookEventType.PAYMENT_CAPTURED: WebhookAction.CAPTURED,
}


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_type: str
    session_id: Optional[str] = None
    amount: Optional[int] = None

    @property
    def kind(self) -> WebhookEventType:
        try:
            return WebhookEventType(self.event_type)
        except ValueError:
            return WebhookEventType.OTHER

    def action(self) -> WebhookAction:
        """Raises ``UnsupportedEventError`` for event types we do not act on."""
        try:
            return _EVENT_ACTIONS[self.kind]
        except KeyError:
            raise UnsupportedEventError(self.event_type) from None


def compute_signature(raw_body: bytes, shared_secret: str) -> str:
    return hmac.new(
        shared_secret.encode("utf-8"), raw_body, hashlib.sha384
    ).hexdigest()


def verify_signature(
    raw_body: Union[bytes, str],
    provided_signature: Optional[str],
    shared_secret: Optional[str],
) -> bool:
    """True iff ``provided_signature`` is the hex HMAC-SHA384 of ``raw_body``."""
    if not isinstance(shared_secret, str) or not shared_secret:
        return False
    if not isinstance(provided_signature, str) or not provided_signature:
        return False
    try:
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        expected = compute_signature(raw_body, shared_secret)
        return hmac.compare_digest(
            expected.encode("ascii"), provided_signature.encode("utf-8")
        )
    except (TypeError, ValueError, UnicodeError):
        return False


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    return next(
        (value for key, value in headers.items() if key.lower() == name), None
    )


def _salvage(raw_body: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(raw_body)
    except ValueError:
        return {"session_id": None, "amount": None}
    if not isinstance(data, dict):
        return {"session_id": None, "amount": None}
    return {"session_id": data.get("session_id"), "amount": data.get("amount")}


class WebhookHandler:
    def __init__(self, shared_secret: Optional[str]) -> None:
        self._secret = shared_secret

    def verify(self, raw_body: bytes, signature: Optional[str]) -> bool:
        return verify_signature(raw_body, signature, self._secret)

    def handle(
        self,
        raw_body: bytes,
        signature: Optional[str],
        headers: Optional[Mapping[str, str]] = None,
    ) -> WebhookActionResult:
        if signature is None and headers is not None:
            signature = _header(headers, SIGNATURE_HEADER)
        if not self.verify(raw_body, signature):
            logger.warning("Rejected FoxPay webhook with invalid signature")
            raise VerificationError("Invalid signature")

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except PydanticValidationError as exc:
            logger.error("Could not parse verified FoxPay webhook: %s", exc)
            return WebhookActionResult(WebhookAction.FAILED, _salvage(raw_body))

        try:
            action = event.action()
        except UnsupportedEventError:
            logger.info("Ignoring unsupported FoxPay event %s", event.event_type)
            return WebhookActionResult(WebhookAction.NOT_SUPPORTED)

        if not event.session_id:
            logger.error("FoxPay webhook %s carried no session id", event.event_type)
            return WebhookActionResult(WebhookAction.FAILED, _salvage(raw_body))

        logger.info(
            "FoxPay webhook %s for session %s", event.event_type, event.session_id
        )
        return WebhookActionResult(
            action, {"session_id": event.session_id, "amount": event.amount}
        )
