from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class HostingJob(TimestampMixin, Base):
    __tablename__ = "hosting_jobs"

    # Deterministic id, e.g. "provision-static-12"; reused if the same
    # operation is requested again after the previous run finished.
    job_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    hosting_service_id: Mapped[int] = mapped_column(ForeignKey("hosting_services.id"), nullable=False, index=True)
    operation: Mapped[str] = mapped_column(String(20), nullable=False)  # provision | terminate
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending | running | retrying | success | failed
    progress: Mapped[int] = mapped_column(Integer, default=0)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    result: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    hosting_service: Mapped["HostingService"] = relationship(back_populates="jobs")
