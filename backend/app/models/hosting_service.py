from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class HostingService(TimestampMixin, Base):
    __tablename__ = "hosting_services"
    __table_args__ = (
        # At most one non-terminated hosting service per domain
        Index(
            "uq_hosting_services_live_domain",
            "domain_id",
            unique=True,
            postgresql_where=text("status <> 'terminated'"),
            sqlite_where=text("status <> 'terminated'"),
        ),
        Index("ix_hosting_services_user_status", "user_id", "status"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    domain_id: Mapped[int] = mapped_column(ForeignKey("domains.id"), nullable=False)
    domain_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # static | dynamic
    status: Mapped[str] = mapped_column(String(20), default="provisioning", index=True)

    plan: Mapped[dict] = mapped_column(JSON, nullable=False)
    static_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    dynamic_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Provisioning progress
    provisioning_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    provisioning_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    steps: Mapped[list] = mapped_column(JSON, default=list)
    logs: Mapped[list] = mapped_column(JSON, default=list)
    progress: Mapped[int] = mapped_column(Integer, default=0)

    # Secrets surfaced once to the customer, Fernet encrypted at rest
    key_material_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    db_password_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Billing
    next_billing_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    last_billing_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True)

    # Suspension
    suspended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    suspension_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auto_unsuspend_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    usage: Mapped[dict] = mapped_column(JSON, default=dict)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship(back_populates="hosting_services")
    domain: Mapped["Domain"] = relationship(back_populates="hosting_services")
    jobs: Mapped[list["HostingJob"]] = relationship(back_populates="hosting_service")
