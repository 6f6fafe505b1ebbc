"""
Event schemas for request/response validation.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, model_validator


class EventBase(BaseModel):
    """Base event schema with common fields."""

    title: str = Field(..., min_length=1, max_length=255, description="Event title")
    description: str = Field(default="", description="Event description")
    location: str = Field(default="", max_length=255, description="Where the event takes place")
    event_date: datetime = Field(..., description="Event date and time")
    capacity: int = Field(..., ge=0, description="Number of confirmed spots")
    waitlist_capacity: int = Field(..., ge=0, description="Maximum number of queued entrants")
    sampling_count: int = Field(default=0, ge=0, description="Default number of winners per draw")
    acceptance_deadline_hours: Optional[int] = Field(
        None, gt=0, description="Hours an invitation stays open; defaults from settings"
    )
    requires_geolocation: bool = Field(default=False, description="Whether joining requires a location")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class EventCreate(EventBase):
    """Schema for creating a new event."""

    organizer_id: str = Field(..., min_length=1, max_length=128)

    @model_validator(mode="after")
    def location_pair(self):
        """Latitude and longitude are given together or not at all."""
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class EventResponse(EventBase):
    """Schema for event response."""

    id: UUID
    organizer_id: str
    acceptance_deadline_hours: int
    enrolled: int
    waitlist_count: int
    draw_wave: int
    remaining_spots: int
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
