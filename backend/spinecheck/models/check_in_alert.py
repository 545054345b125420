from datetime import datetime
from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from spinecheck.db.base import Base, utcnow


class CheckInAlert(Base):
    __tablename__ = "check_in_alerts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    assessment_id: Mapped[str] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="red_flag")
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    webhook_status: Mapped[str | None] = mapped_column(String(16), nullable=True)  # sent | failed | timeout | disabled
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
