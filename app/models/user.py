import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base, TimestampMixin


class ProfileJob(str, enum.Enum):
    player = "player"
    coach = "coach"


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(40))
    # Contacts access flag, denormalised from the contacts_access entitlement
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)

    profiles = relationship("Profile", back_populates="user")


class Profile(TimestampMixin, Base):
    """A player or coach card in the marketplace listing."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    job: Mapped[str] = mapped_column(String(40), default=ProfileJob.player.value)

    is_listed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    listing_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    promotion_status: Mapped[bool] = mapped_column(Boolean, default=False)
    promotion_type: Mapped[str | None] = mapped_column(String(40))
    promotion_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    promotion_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user = relationship("User", back_populates="profiles")

    @property
    def target_type(self) -> ProfileJob:
        if (self.job or "").strip().lower() == ProfileJob.coach.value:
            return ProfileJob.coach
        return ProfileJob.player
