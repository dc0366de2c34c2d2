"""Meal-slot order ORM model."""

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canteen.db.base import Base


class Order(Base):
    """Reserved meal slot for one user, one shift and one calendar date."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    shift_id: Mapped[int] = mapped_column(ForeignKey("shifts.id"), nullable=False)
    order_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ORDERED")
    meal_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    check_in_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_in_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cancelled_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    user: Mapped["User"] = relationship(back_populates="orders", foreign_keys=[user_id])
    shift: Mapped["Shift"] = relationship(back_populates="orders")

    __table_args__ = (
        Index(
            "uq_orders_user_date_live",
            "user_id",
            "order_date",
            unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
        Index("ix_orders_shift_date_status", "shift_id", "order_date", "status"),
    )

    def snapshot(self) -> dict[str, str | int | None]:
        """Return a JSON-friendly view used for audit before/after records."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "shift_id": self.shift_id,
            "order_date": self.order_date.isoformat() if self.order_date else None,
            "status": self.status,
            "meal_price": str(self.meal_price) if self.meal_price is not None else None,
        }
