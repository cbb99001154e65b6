"""SyncTarget ORM model — one (skill, destination) pairing on disk."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from skillshub.database import Base


class SkillTarget(Base):
    __tablename__ = "skill_targets"

    skill_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("managed_skills.id", ondelete="CASCADE"), primary_key=True
    )
    # tool key, or custom:<custom_target_id>
    tool: Mapped[str] = mapped_column(String(128), primary_key=True)
    target_path: Mapped[str] = mapped_column(String(1024))
    mode: Mapped[str] = mapped_column(String(16))  # auto | symlink | junction | copy
    status: Mapped[str] = mapped_column(String(16), default="ok")  # ok | error
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
