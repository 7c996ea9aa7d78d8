from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, Boolean, Numeric, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class Bill(Base):
    """One billed line item extracted from a case's medical bills."""

    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("cases.id", ondelete="CASCADE"), index=True)
    document_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    provider_name: Mapped[str] = mapped_column(String(200), default="")
    service_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    service_description: Mapped[str] = mapped_column(String(500), default="")
    cpt_code: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    modifier: Mapped[str | None] = mapped_column(String(2), nullable=True)
    icd_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    encounter_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    charge_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    service_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Analysis flags written back by POST /api/billing/flags
    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False)
    duplicate_of_id: Mapped[int | None] = mapped_column(ForeignKey("bills.id", ondelete="SET NULL"), nullable=True)
    duplicate_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reasonableness: Mapped[str | None] = mapped_column(String(20), nullable=True)
    benchmark_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    case: Mapped["Case"] = relationship(back_populates="bills")

    def to_record(self) -> dict:
        """Raw record in the shape accepted by billing intake."""
        return {
            "item_id": str(self.id),
            "provider_name": self.provider_name,
            "service_date": self.service_date,
            "service_description": self.service_description,
            "procedure_code": self.cpt_code,
            "modifier": self.modifier,
            "encounter_type": self.encounter_type,
            "billed_amount": self.charge_amount,
            "paid_amount": self.paid_amount,
            "outstanding_balance": self.balance,
            "status": self.status,
            "service_type": self.service_type,
        }
