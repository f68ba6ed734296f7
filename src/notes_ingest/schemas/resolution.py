"""Country resolution Pydantic schemas."""

from pydantic import BaseModel, Field


class ResolveResponse(BaseModel):
    """Result of resolving one coordinate."""

    longitude: float
    latitude: float
    country_id: int = Field(..., description="Country id, -1 for known waters, -2 if unresolved")
    zone: str
    epoch: int
