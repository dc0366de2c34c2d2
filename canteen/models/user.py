"""Employee account ORM model."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canteen.db.base import Base

USER_ROLES = ("ADMIN", "CANTEEN", "USER")
ELEVATED_ROLES = frozenset({"ADMIN", "CANTEEN"})


class User(Base):
    """Employee who reserves meal slots; also canteen operators and admins."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(Enum(*USER_ROLES, name="user_role"), nullable=False, default="USER")
    no_show_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    orders: Mapped[list["Order"]] = relationship(back_populates="user", foreign_keys="Order.user_id")
    blacklist_entries: Mapped[list["BlacklistEntry"]] = relationship(back_populates="user")

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES
