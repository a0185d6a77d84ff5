"""OpenWeather Current Weather API provider implementation."""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import requests

from error_kind import ErrorKind
from weather_data import SnapshotOrigin, WeatherSnapshot
from weather_provider import WeatherProviderBase, WeatherProviderError


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OpenWeatherProvider(WeatherProviderBase):
    """
    Weather provider using OpenWeather Current Weather API.

    Uses the free Current Weather API: https://openweathermap.org/current
    Cities are looked up with the ``q`` parameter, positions with ``lat``/``lon``.
    """

    BASE_URL = "https://api.openweathermap.org/data/2.5/weather"

    def __init__(
        self,
        api_key: str,
        units: str = "metric",
        lang: str = "en",
        timeout: float = 10.0,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize OpenWeather provider.

        Args:
            api_key: OpenWeather API key
            units: Temperature units ("metric", "imperial", or "standard")
            lang: Language code for descriptions (e.g., "en", "ru")
            timeout: HTTP request timeout in seconds
            clock: Returns the capture time stamped on each snapshot
        """
        self.api_key = api_key
        self.units = units
        self.lang = lang
        self.timeout = timeout
        self.clock = clock

    def fetch_by_city(self, name: str) -> WeatherSnapshot:
        city = (name or "").strip()
        if not city:
            raise WeatherProviderError(ErrorKind.INVALID_INPUT)
        return self._fetch({"q": city}, f"city '{city}'")

    def fetch_by_coordinates(self, lat: float, lon: float) -> WeatherSnapshot:
        return self._fetch({"lat": lat, "lon": lon}, f"lat={lat}, lon={lon}")

    def _fetch(self, query: Dict[str, Any], label: str) -> WeatherSnapshot:
        params = dict(query)
        params.update({
            "appid": self.api_key,
            "units": self.units,
            "lang": self.lang,
        })

        try:
            logging.info(f"Making OpenWeather API request for {label}")
            logging.debug(f"Request parameters: units={self.units}, lang={self.lang}, timeout={self.timeout}s")

            response = requests.get(self.BASE_URL, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logging.error(f"OpenWeather request timed out after {self.timeout}s: {e}")
            raise WeatherProviderError(ErrorKind.TIMEOUT, f"Request timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            logging.error(f"Network error during API request: {e}")
            raise WeatherProviderError(ErrorKind.UNREACHABLE, f"Network error: {e}") from e

        logging.info(f"API response status: {response.status_code}")

        if not response.ok:
            self._handle_error_response(response, label)

        try:
            data = response.json()
            logging.debug(f"API response (truncated): {str(data)[:500]}...")
            snapshot = self._parse(data)
        except (KeyError, IndexError, ValueError, TypeError) as e:
            logging.error(f"Failed to parse API response: {e}", exc_info=True)
            raise WeatherProviderError(
                ErrorKind.SERVER_ERROR,
                f"Failed to parse response: {e}",
                status_code=response.status_code,
            ) from e

        logging.info(
            f"Successfully parsed weather data: {snapshot.city_name} "
            f"{snapshot.temperature_c}°C, {snapshot.condition_main}"
        )
        return snapshot

    def _parse(self, data: Dict[str, Any]) -> WeatherSnapshot:
        weather_array = data.get("weather") or []
        if not weather_array:
            raise ValueError("Response missing 'weather' array")
        weather = weather_array[0]

        main_data = data.get("main") or {}
        if not main_data:
            raise ValueError("Response missing 'main' block")

        wind_data = data.get("wind") or {}

        return WeatherSnapshot(
            city_name=data.get("name") or "Unknown",
            temperature_c=float(main_data["temp"]),
            feels_like_c=float(main_data["feels_like"]),
            humidity_pct=int(main_data["humidity"]),
            wind_speed_ms=float(wind_data["speed"]),
            description=weather.get("description") or "",
            condition_main=weather.get("main") or "",
            icon_code=weather.get("icon") or "01d",
            captured_at=self.clock(),
            origin=SnapshotOrigin.LIVE,
        )

    def _handle_error_response(self, response: requests.Response, label: str) -> None:
        """Map an OpenWeather error response to a WeatherProviderError."""
        try:
            error_data = response.json()
            message = error_data.get("message", "Unknown error")
            logging.error(f"OpenWeather API error response: {error_data}")
        except ValueError:
            # Not JSON, use HTTP status
            logging.error(f"Non-JSON error response: HTTP {response.status_code}, body: {response.text[:500]}")
            message = response.text[:200]

        status = response.status_code
        if status == 404:
            raise WeatherProviderError(ErrorKind.NOT_FOUND, f"No weather found for {label}", status_code=status)
        if status == 401:
            raise WeatherProviderError(ErrorKind.UNAUTHORIZED, f"OpenWeather API error 401: {message}", status_code=status)
        raise WeatherProviderError(
            ErrorKind.SERVER_ERROR,
            f"OpenWeather API error {status}: {message}",
            status_code=status,
        )
