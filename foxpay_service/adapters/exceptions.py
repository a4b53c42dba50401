"""Exceptions raised by payment adapters."""


class PaymentError(Exception):
    """Base exception for payment-related errors."""
    pass


class ValidationError(PaymentError):
    """Raised when input validation fails."""
    pass


class PaymentNotFoundError(PaymentError):
    """Raised when a payment session cannot be found."""
    pass


class AuthenticationError(PaymentError):
    """Raised when the processor rejects or cannot issue an access token."""
    pass


class ConfigurationError(PaymentError):
    """Raised when required provider options are missing."""
    pass


class WebhookError(PaymentError):
    """Raised when webhook processing fails."""
    pass


class VerificationError(WebhookError):
    """Raised when a webhook signature does not match the shared secret."""
    pass


class UnsupportedEventError(WebhookError):
    """Informational: the webhook event type is not acted upon."""
    pass
