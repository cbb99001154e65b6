"""Key/value settings row used by collaborators (cache TTL, first-run flags)."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from skillshub.database import Base


class Setting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
