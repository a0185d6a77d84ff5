"""Weather domain model - pure data structures independent of any API."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

ICON_URL_TEMPLATE = "https://openweathermap.org/img/wn/{icon}@4x.png"


class SnapshotOrigin(Enum):
    """Where a snapshot came from."""
    LIVE = "live"
    CACHED = "cached"


@dataclass(frozen=True)
class Coordinates:
    """A WGS84 position."""
    lat: float
    lon: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitude out of range: {self.lat}")
        if not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"Longitude out of range: {self.lon}")


@dataclass(frozen=True)
class WeatherSnapshot:
    """
    One point-in-time weather observation for a place.

    The origin is a provenance tag: it does not take part in equality, so a
    snapshot read back from the cache compares equal to the live one that
    was stored.
    """
    city_name: str
    temperature_c: float
    feels_like_c: float
    humidity_pct: int
    wind_speed_ms: float
    description: str
    condition_main: str  # e.g., "Clouds", "Rain", "Clear"
    icon_code: str  # e.g., "04d"
    captured_at: datetime  # timezone-aware, UTC
    origin: SnapshotOrigin = field(default=SnapshotOrigin.LIVE, compare=False)

    def __post_init__(self):
        if not 0 <= self.humidity_pct <= 100:
            raise ValueError(f"Humidity out of range: {self.humidity_pct}")
        if self.wind_speed_ms < 0:
            raise ValueError(f"Wind speed cannot be negative: {self.wind_speed_ms}")

    @property
    def is_live(self) -> bool:
        return self.origin is SnapshotOrigin.LIVE

    @property
    def icon_url(self) -> str:
        return ICON_URL_TEMPLATE.format(icon=self.icon_code)

    def as_cached(self) -> "WeatherSnapshot":
        """Return a copy tagged as served from cache; captured_at is kept."""
        if self.origin is SnapshotOrigin.CACHED:
            return self
        return replace(self, origin=SnapshotOrigin.CACHED)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the observed fields. The origin tag is not persisted."""
        return {
            "name": self.city_name,
            "temp": self.temperature_c,
            "feels_like": self.feels_like_c,
            "humidity": self.humidity_pct,
            "wind_speed": self.wind_speed_ms,
            "description": self.description,
            "main": self.condition_main,
            "icon": self.icon_code,
            "captured_at": self.captured_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], origin: SnapshotOrigin = SnapshotOrigin.CACHED) -> "WeatherSnapshot":
        """
        Rebuild a snapshot from to_dict() output.

        Raises:
            KeyError, TypeError, ValueError: If the record is malformed
        """
        captured_at = datetime.fromisoformat(data["captured_at"])
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)
        return cls(
            city_name=str(data["name"]),
            temperature_c=float(data["temp"]),
            feels_like_c=float(data["feels_like"]),
            humidity_pct=int(data["humidity"]),
            wind_speed_ms=float(data["wind_speed"]),
            description=str(data["description"]),
            condition_main=str(data["main"]),
            icon_code=str(data["icon"]),
            captured_at=captured_at,
            origin=origin,
        )
