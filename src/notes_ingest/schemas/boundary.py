"""Boundary-related Pydantic schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DiffStatus(str, Enum):
    """Classification of one country between two boundary sets."""

    NEW = "new"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    INCREASED = "increased"
    DECREASED = "decreased"
    MODIFIED = "modified"


class CountryDiff(BaseModel):
    """Change report for one country."""

    country_id: int
    name: str
    status: DiffStatus
    area_change_percent: float | None = Field(None, description="Geodesic area change in percent")
    perimeter_change_percent: float | None = Field(
        None, description="Geodesic perimeter change in percent"
    )
    vertices_change: int | None = Field(None, description="New vertex count minus old")
    geometry_changed: bool = False


class GenerationResponse(BaseModel):
    """Boundary generation as returned by the API."""

    id: int
    role: str
    epoch: int
    country_count: int
    created_at: datetime
    activated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
