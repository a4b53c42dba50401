"""Base contract, session model and result types for payment processing."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from .exceptions import ValidationError


# ==================== Statuses and codes ====================

class PaymentSessionStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    CANCELED = "canceled"
    ERROR = "error"


class GatewayErrorCode(str, Enum):
    INIT_FAILED = "init_failed"
    STATUS_FAILED = "status_failed"
    CAPTURE_FAILED = "capture_failed"
    CANCEL_FAILED = "cancel_failed"
    REFUND_FAILED = "refund_failed"
    RETRIEVE_FAILED = "retrieve_failed"
    UPDATE_FAILED = "update_failed"
    NOT_AUTHORIZED = "not_authorized"
    UNKNOWN = "unknown"


class WebhookAction(str, Enum):
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    NOT_SUPPORTED = "not_supported"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {PaymentSessionStatus.CAPTURED, PaymentSessionStatus.CANCELED}
)

# Transitions confirmed by the processor itself (webhooks, status queries).
# A session recorded as error recovers once the processor reports a state.
# Adapter operations are stricter and check their own source states.
CONFIRMED_TRANSITIONS = {
    PaymentSessionStatus.PENDING: frozenset(
        {
            PaymentSessionStatus.AUTHORIZED,
            PaymentSessionStatus.CAPTURED,
            PaymentSessionStatus.CANCELED,
            PaymentSessionStatus.ERROR,
        }
    ),
    PaymentSessionStatus.AUTHORIZED: frozenset(
        {
            PaymentSessionStatus.CAPTURED,
            PaymentSessionStatus.CANCELED,
            PaymentSessionStatus.ERROR,
        }
    ),
    PaymentSessionStatus.ERROR: frozenset(
        {
            PaymentSessionStatus.AUTHORIZED,
            PaymentSessionStatus.CAPTURED,
            PaymentSessionStatus.CANCELED,
        }
    ),
    PaymentSessionStatus.CAPTURED: frozenset(),
    PaymentSessionStatus.CANCELED: frozenset(),
}


# ==================== Result types ====================

@dataclass(frozen=True)
class GatewayError:
    """Normalized failure record returned (never raised) by gateway calls."""

    code: GatewayErrorCode
    detail: str
    cause: Optional[BaseException] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "detail": self.detail}


@dataclass
class PaymentSession:
    """One checkout payment attempt, keyed by the processor-assigned id."""

    external_id: str
    amount: int
    currency_code: str
    status: PaymentSessionStatus = PaymentSessionStatus.PENDING
    provider_data: Dict[str, Any] = field(default_factory=dict)

    def can_transition(self, target: PaymentSessionStatus) -> bool:
        return target in CONFIRMED_TRANSITIONS[self.status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "amount": self.amount,
            "currency_code": self.currency_code,
            "status": self.status.value,
            "provider_data": dict(self.provider_data),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaymentSession":
        return cls(
            external_id=data["external_id"],
            amount=int(data["amount"]),
            currency_code=data["currency_code"],
            status=PaymentSessionStatus(data["status"]),
            provider_data=dict(data.get("provider_data") or {}),
        )


@dataclass(frozen=True)
class RefundResult:
    status: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class WebhookActionResult:
    action: WebhookAction
    data: Optional[Dict[str, Any]] = None

    @property
    def session_id(self) -> Optional[str]:
        return (self.data or {}).get("session_id")


GatewayResult = Union[Dict[str, Any], GatewayError]
SessionResult = Union[PaymentSession, GatewayError]


# ==================== Validation helpers ====================

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def validate_currency_code(currency: Any) -> bool:
    """Return True for an uppercase three-letter ISO 4217 code."""
    return isinstance(currency, str) and bool(_CURRENCY_RE.match(currency))


def validate_amount(amount: Any) -> bool:
    """Return True for a positive integer amount in the smallest currency unit."""
    return isinstance(amount, int) and not isinstance(amount, bool) and amount > 0


def normalize_currency_code(currency: Any) -> str:
    """Uppercase ``currency`` and validate it, raising ``ValidationError``."""
    normalized = currency.upper() if isinstance(currency, str) else currency
    if not validate_currency_code(normalized):
        raise ValidationError(f"Invalid currency code: {currency}")
    return normalized


def normalize_payment_status(status: Optional[str]) -> PaymentSessionStatus:
    """Map a processor status string onto the canonical session status."""
    mapping = {
        "authorized": PaymentSessionStatus.AUTHORIZED,
        "captured": PaymentSessionStatus.CAPTURED,
        "canceled": PaymentSessionStatus.CANCELED,
    }
    return mapping.get(status or "", PaymentSessionStatus.PENDING)


# ==================== Base Provider ====================

class PaymentProvider(ABC):
    """Contract every payment processor adapter implements.

    Gateway failures come back as ``GatewayError`` values rather than
    exceptions. Only input validation (``ValidationError``) and credential
    failures (``AuthenticationError``) are raised.
    """

    identifier: str = ""

    @abstractmethod
    async def initiate_payment(
        self,
        amount: int,
        currency_code: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> SessionResult:
        """Create a payment with the processor.

        Args:
            amount: Payment amount in smallest currency unit
            currency_code: Three-letter ISO currency code
            context: Cart/customer details used to build the payment memo

        Returns:
            A ``pending`` session, or the gateway error
        """

    @abstractmethod
    async def authorize_payment(self, session: PaymentSession) -> SessionResult:
        """Confirm with the processor that the customer completed the payment."""

    @abstractmethod
    async def capture_payment(self, session: PaymentSession) -> SessionResult:
        """Capture an authorized payment."""

    @abstractmethod
    async def cancel_payment(self, session: PaymentSession) -> SessionResult:
        """Cancel a pending or authorized payment."""

    @abstractmethod
    async def refund_payment(
        self, session: PaymentSession, amount: int
    ) -> Union[RefundResult, GatewayError]:
        """Refund a captured payment (full or partial).

        Args:
            session: The captured session
            amount: Amount to refund in smallest currency unit

        Returns:
            The processor's refund status, or the gateway error
        """

    @abstractmethod
    async def get_payment_status(
        self, session: PaymentSession
    ) -> PaymentSessionStatus:
        """Query the processor and return the canonical status."""

    @abstractmethod
    async def retrieve_payment(self, session: PaymentSession) -> GatewayResult:
        """Return the full provider record for the session."""

    @abstractmethod
    async def update_payment(
        self,
        session: PaymentSession,
        amount: int,
        currency_code: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> SessionResult:
        """Change the amount or currency of a pending payment."""

    @abstractmethod
    async def get_webhook_action_and_data(
        self,
        raw_body: bytes,
        signature: Optional[str],
        headers: Optional[Mapping[str, str]] = None,
    ) -> WebhookActionResult:
        """Verify and translate a processor callback.

        Raises:
            VerificationError: If the signature does not match
        """

    async def delete_payment(self, session: PaymentSession) -> SessionResult:
        """Discard a session that has not been captured."""
        return await self.cancel_payment(session)
