from app.models.base import Base, TimestampMixin
from app.models.user import User
from app.models.domain import Domain
from app.models.hosting_service import HostingService
from app.models.hosting_job import HostingJob

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "Domain",
    "HostingService",
    "HostingJob",
]
