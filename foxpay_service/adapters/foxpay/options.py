"""Explicit configuration passed to the FoxPay adapter."""

from dataclasses import dataclass
from typing import Optional

from ..exceptions import ConfigurationError


@dataclass(frozen=True)
class FoxPayOptions:
    api_url: str
    auth_url: str
    access_key: Optional[str]
    secret_key: Optional[str]
    webhook_secret: Optional[str]
    notification_base_url: str = "http://localhost:8000"
    timeout: float = 10.0

    _REQUIRED = ("api_url", "auth_url", "access_key", "secret_key", "webhook_secret")

    @classmethod
    def from_settings(cls, settings) -> "FoxPayOptions":
        return cls(
            api_url=settings.FOXPAY_API_URL,
            auth_url=settings.FOXPAY_AUTH_URL,
            access_key=settings.FOXPAY_ACCESS_KEY,
            secret_key=settings.FOXPAY_SECRET_KEY,
            webhook_secret=settings.FOXPAY_WEBHOOK_SECRET,
            notification_base_url=settings.BACKEND_URL,
            timeout=settings.FOXPAY_HTTP_TIMEOUT,
        )

    def validate(self) -> None:
        """Raise ``ConfigurationError`` naming every missing required option."""
        missing = [name for name in self._REQUIRED if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                f"FoxPay: missing required options: {', '.join(missing)}"
            )
        if self.timeout <= 0:
            raise ConfigurationError("FoxPay: timeout must be positive")

    @property
    def notification_url(self) -> str:
        return f"{self.notification_base_url.rstrip('/')}/payment/webhook"
