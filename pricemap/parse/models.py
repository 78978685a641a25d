"""Data models for scraped listings."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.utcnow()


class PropertyRecord(BaseModel):
    """Canonical listing produced by every source."""

    id: Optional[int] = Field(default=None, description="Store identity, set on upsert")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    source: str = Field(..., description="Name of the origin source")
    external_id: str = Field(default="", description="Source-local identity")
    url: str = ""

    country: str = ""
    city: str = ""
    district: str = ""
    address: str = ""
    latitude: float = 0.0
    longitude: float = 0.0

    type: str = "apartment"
    price: float = 0.0
    currency: str = "USD"
    area: float = Field(default=0.0, description="Area in square meters")
    rooms: int = 0
    bedrooms: int = 0
    bathrooms: int = 0
    floor: int = 0
    total_floors: int = 0
    year_built: int = 0

    description: str = ""
    images: list[str] = Field(default_factory=list)

    scraped_at: datetime = Field(default_factory=utcnow)
    is_active: bool = True

    @property
    def key(self) -> tuple[str, str]:
        """Natural key used for dedup."""
        return self.source, self.external_id

    @property
    def has_coordinates(self) -> bool:
        return not (self.latitude == 0 and self.longitude == 0)


class FactorSet(BaseModel):
    """Location factors for a stored property (scores are 0-100)."""

    property_id: int
    crime_score: float = 0.0
    transport_score: float = 0.0
    education_score: float = 0.0
    infrastructure_score: float = 0.0
    overall_score: float = 0.0


class HeatmapPoint(BaseModel):
    """One aggregated grid cell of the price heatmap."""

    lat: float
    lng: float
    price: float
    score: float = 0.0
    count: int = 0
