"""Ordering policy settings model."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from canteen.db.base import Base


class OrderingSetting(Base):
    """Singleton settings row (id=1).

    Only the fields of the active ``cutoff_mode`` are read when evaluating
    cutoffs; the other mode's columns keep their last saved values.
    """

    __tablename__ = "ordering_settings"

    id: Mapped[int] = mapped_column(primary_key=True, default=1)
    cutoff_mode: Mapped[str] = mapped_column(String(16), nullable=False, default="per-shift")
    cutoff_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cutoff_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    max_order_days_ahead: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
    weekly_cutoff_weekday: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    weekly_cutoff_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=17)
    weekly_cutoff_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    orderable_weekdays: Mapped[str] = mapped_column(String(20), nullable=False, default="1,2,3,4,5,6")
    max_weeks_ahead: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    blacklist_strikes: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    blacklist_duration_days: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
