"""Dead-letter record for background jobs that raised."""

from datetime import datetime
from typing import Any

from pydantic import Field

from cardflow.models.base import Entity, new_id


class FailedJob(Entity):
    failed_job_id: str = Field(default_factory=new_id)
    job_name: str
    job_id: str
    kwargs: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)
