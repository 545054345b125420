from datetime import datetime
from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from spinecheck.db.base import Base, utcnow


class SmsOptOut(Base):
    __tablename__ = "sms_opt_outs"

    phone_number: Mapped[str] = mapped_column(String(32), primary_key=True)  # normalized E.164
    opted_out_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    opt_out_source: Mapped[str] = mapped_column(String(64), nullable=False)
