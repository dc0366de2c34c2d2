"""Work shift ORM model."""

from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canteen.db.base import Base


class Shift(Base):
    """Work shift with local HH:MM wall-clock bounds and no date.

    ``end_time`` earlier than (or equal to) ``start_time`` denotes an overnight
    shift ending on the following calendar day.
    """

    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    break_start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    break_end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    meal_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    orders: Mapped[list["Order"]] = relationship(back_populates="shift")
