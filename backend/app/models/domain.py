from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class Domain(TimestampMixin, Base):
    __tablename__ = "domains"

    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    domain_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    registrar: Mapped[str] = mapped_column(String(20), default="other")
    # Route53 zone managed by the DNS service; None means DNS is external
    hosted_zone_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    owner: Mapped["User"] = relationship(back_populates="domains")
    hosting_services: Mapped[list["HostingService"]] = relationship(back_populates="domain")
