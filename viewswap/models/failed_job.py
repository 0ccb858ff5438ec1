"""Dead-letter for background sweeps that raised."""

from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class FailedJob(Document):
    job_name: str  # arq function name, e.g. "expire_holds"
    job_id: str
    job_try: int = 1
    payload: dict[str, Any] = Field(default_factory=dict)
    error_type: str
    error: str = ""
    failed_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "failed_jobs"
        indexes = [[("job_name", 1), ("failed_at", -1)]]
