from sqlalchemy import Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from spinecheck.db.base import Base


class DiagnosisInsert(Base):
    __tablename__ = "diagnosis_inserts"
    __table_args__ = (
        UniqueConstraint("diagnosis_code", "day", "branch", name="uq_diagnosis_insert_code_day_branch"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    diagnosis_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    branch: Mapped[str] = mapped_column(String(8), nullable=False)  # better | same | worse
    insert_text: Mapped[str] = mapped_column(Text, nullable=False)
