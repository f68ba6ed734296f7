"""Gap record Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class GapRecordResponse(BaseModel):
    """Read-only view of a recorded data gap."""

    id: int
    gap_type: str
    gap_count: int
    total_count: int
    gap_percentage: float
    affected_ids: list[int]
    error_details: str | None = None
    processed: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
