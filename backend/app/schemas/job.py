from datetime import datetime

from pydantic import BaseModel


class JobRead(BaseModel):
    id: int
    job_id: str
    hosting_service_id: int
    operation: str
    status: str
    progress: int
    attempts: int
    result: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
