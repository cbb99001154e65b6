"""ManagedSkill ORM model — one row per skill owned by the central repository."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from skillshub.database import Base, utcnow


class ManagedSkill(Base):
    __tablename__ = "managed_skills"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    source_type: Mapped[str] = mapped_column(String(16))  # local | git | registry
    source_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_subpath: Mapped[str | None] = mapped_column(String(512), nullable=True)
    source_revision: Mapped[str | None] = mapped_column(String(128), nullable=True)
    central_path: Mapped[str] = mapped_column(String(1024), unique=True)
    content_hash: Mapped[str | None] = mapped_column(String(80), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="ok")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
