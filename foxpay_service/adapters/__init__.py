"""Adapters for integrating external payment processors."""

from .base import (
    GatewayError,
    GatewayErrorCode,
    PaymentProvider,
    PaymentSession,
    PaymentSessionStatus,
    RefundResult,
    WebhookAction,
    WebhookActionResult,
)
from .exceptions import PaymentError, ValidationError, PaymentNotFoundError, AuthenticationError, ConfigurationError, WebhookError, VerificationError, UnsupportedEventError

__all__ = ["PaymentProvider", "PaymentSession", "PaymentSessionStatus", "GatewayError", "GatewayErrorCode", "RefundResult", "WebhookAction", "WebhookActionResult", "PaymentError", "ValidationError", "PaymentNotFoundError", "AuthenticationError", "ConfigurationError", "WebhookError", "VerificationError", "UnsupportedEventError"]
