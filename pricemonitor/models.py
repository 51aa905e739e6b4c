"""Core data models shared by the price ingestion pipeline."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class StationIdentity:
    """Natural key of a physical station across repeated scrapes."""

    address: str
    geo_location: str
    brand: str


@dataclass(slots=True)
class Sample:
    """One scrape result for one station, possibly covering several fuels."""

    address: str
    geo_location: str
    brand: str
    prices: Dict[str, float] = field(default_factory=dict)
    time: datetime = field(default_factory=_utcnow)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def identity(self) -> StationIdentity:
        return StationIdentity(self.address, self.geo_location, self.brand)


@dataclass(frozen=True, slots=True)
class Row:
    """A single (fuel, price) pair attributed to a resolved station."""

    sample_id: uuid.UUID
    fuel_name: str
    price: float
    time: datetime
    station_id: uuid.UUID
