"""Explicit schemas for the data exchanged with the backup store.

Wire format is the camelCase JSON the web client stores
(`startDate`, `userProfile`, `customEvents`, ...). Unknown keys are kept on
every record so an aggregate chosen during merge keeps all of its fields.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

CURRENT_SCHEMA_VERSION = 1


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ItineraryItem(_Record):
    id: str = ""
    title: str = ""
    type: str = ""
    date: str = ""
    time: str = ""
    location: str = ""
    estimated_expense: float = 0.0
    actual_expense: float = 0.0
    currency: str = ""
    expense_parts: list[dict[str, Any]] = Field(default_factory=list)


class Photo(_Record):
    id: str = ""
    url: str = ""
    caption: str = ""
    is_favorite: bool = False


class Expense(_Record):
    id: str = ""
    label: str = ""
    amount: float = 0.0
    currency: str = ""
    category: str = ""
    date: str = ""


class Flight(_Record):
    id: str = ""
    airline: str = ""
    flight_number: str = ""
    departure_airport: str = ""
    arrival_airport: str = ""
    departure_time: str = ""
    arrival_time: str = ""


class Trip(_Record):
    id: str = Field(min_length=1)
    title: str = ""
    location: str = ""
    start_date: str = ""
    end_date: str = ""
    description: str = ""
    budget: float = 0.0
    currency: str = ""
    # date (YYYY-MM-DD) -> items planned that day
    itinerary: dict[str, list[ItineraryItem]] = Field(default_factory=dict)
    photos: list[Photo] = Field(default_factory=list)
    cover_image: str = ""
    expenses: list[Expense] = Field(default_factory=list)
    flights: list[Flight] = Field(default_factory=list)
    is_pinned: bool = False
    status: str = ""


class Profile(_Record):
    name: str = ""
    nationality: str = ""
    currency: str = ""
    pfp: str = ""


class CalendarEvent(_Record):
    id: str = Field(min_length=1)
    name: str = ""
    date: str = ""
    time: str = ""
    notes: str = ""


class Dataset(_Record):
    schema_version: int = CURRENT_SCHEMA_VERSION
    trips: list[Trip] = Field(default_factory=list)
    profile: Profile = Field(default_factory=Profile, alias="userProfile")
    events: list[CalendarEvent] = Field(default_factory=list, alias="customEvents")

    @model_validator(mode="after")
    def _unique_trip_ids(self) -> "Dataset":
        seen: set[str] = set()
        for trip in self.trips:
            if trip.id in seen:
                raise ValueError(f"duplicate_trip_id: {trip.id}")
            seen.add(trip.id)
        return self

    def trips_by_id(self) -> dict[str, Trip]:
        return {t.id: t for t in self.trips}

    def trip_ids(self) -> list[str]:
        return [t.id for t in self.trips]

    def get_trip(self, trip_id: str) -> Trip | None:
        return self.trips_by_id().get(trip_id)


class Resolution(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


ResolutionMap = dict[str, Resolution]


class ConflictItem(_Record):
    """One differing field between the local and remote copy of a trip.

    Informational only: the resolution applies to the whole trip.
    """

    trip_id: str
    trip_title: str = ""
    field: str
    local_value: str
    remote_value: str


class TripVersion(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(min_length=1)
    trip_id: str = Field(min_length=1)
    trip_title: str = ""
    timestamp: datetime
    note: str = ""
    data: Trip

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
