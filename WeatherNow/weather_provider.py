"""Weather provider abstraction - allows swapping different weather APIs."""
from abc import ABC, abstractmethod
from typing import Optional

from error_kind import ErrorKind
from weather_data import WeatherSnapshot


class WeatherProviderError(Exception):
    """Exception raised when a weather provider fails."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None, status_code: Optional[int] = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(message or kind.message)


class WeatherProviderBase(ABC):
    """Abstract base class for live weather sources."""

    @abstractmethod
    def fetch_by_city(self, name: str) -> WeatherSnapshot:
        """
        Fetch current weather for a city.

        Args:
            name: City name as typed by the user

        Returns:
            WeatherSnapshot: A live snapshot (origin=LIVE, captured_at=now)

        Raises:
            WeatherProviderError: INVALID_INPUT for a blank name, otherwise
                NOT_FOUND, UNAUTHORIZED, SERVER_ERROR, TIMEOUT or UNREACHABLE
        """
        pass

    @abstractmethod
    def fetch_by_coordinates(self, lat: float, lon: float) -> WeatherSnapshot:
        """
        Fetch current weather for a position.

        Raises:
            WeatherProviderError: NOT_FOUND, UNAUTHORIZED, SERVER_ERROR,
                TIMEOUT or UNREACHABLE
        """
        pass
