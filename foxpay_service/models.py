from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .adapters.base import PaymentSession, PaymentSessionStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class PaymentSessionRecord(Base):
    __tablename__ = "payment_sessions"

    external_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    cart_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def to_session(self) -> PaymentSession:
        return PaymentSession(
            external_id=self.external_id,
            amount=self.amount,
            currency_code=self.currency_code,
            status=PaymentSessionStatus(self.status),
            provider_data=dict(self.provider_data or {}),
        )

    def apply(self, session: PaymentSession) -> None:
        """Copy the mutable parts of ``session`` onto this row."""
        self.amount = session.amount
        self.currency_code = session.currency_code
        self.status = session.status.value
        self.provider_data = dict(session.provider_data)
        self.updated_at = _utcnow()
