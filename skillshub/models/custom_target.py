"""CustomTarget ORM model — a user-chosen destination directory."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from skillshub.database import Base, utcnow


class CustomTarget(Base):
    __tablename__ = "custom_targets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    label: Mapped[str] = mapped_column(String(128))
    path: Mapped[str] = mapped_column(String(1024))
    # None = local directory
    remote_host_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("remote_hosts.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def target_key(self) -> str:
        return f"custom:{self.id}"
