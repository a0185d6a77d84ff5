"""Approximate device position from an IP geolocation service."""
import logging
from typing import Callable, Optional

import requests

from error_kind import ErrorKind
from location_provider import LocationError, LocationProviderBase, PermissionStatus
from weather_data import Coordinates


class IpGeolocationProvider(LocationProviderBase):
    """
    Location provider for hosts without a GPS receiver.

    The public IP address is sent to a third-party lookup service, so reading
    the position needs the user's consent just like a device location prompt.
    """

    BASE_URL = "http://ip-api.com/json/"

    def __init__(
        self,
        enabled: bool = True,
        permission: PermissionStatus = PermissionStatus.NOT_DETERMINED,
        prompt: Optional[Callable[[], PermissionStatus]] = None,
        timeout: float = 15.0,
    ):
        """
        Args:
            enabled: Whether location lookups are switched on at all
            permission: Consent already recorded for this host
            prompt: Asks the user for consent; without one, an undecided
                permission resolves to DENIED
            timeout: HTTP request timeout in seconds
        """
        super().__init__(timeout=timeout)
        self.enabled = enabled
        self.permission = permission
        self.prompt = prompt

    def is_service_enabled(self) -> bool:
        return self.enabled

    def check_permission(self) -> PermissionStatus:
        return self.permission

    def request_permission(self) -> PermissionStatus:
        if self.prompt is None:
            logging.info("No consent prompt available, treating location permission as denied")
            self.permission = PermissionStatus.DENIED
        else:
            self.permission = self.prompt()
        logging.info(f"Location permission after request: {self.permission.value}")
        return self.permission

    def read_position(self, timeout: float) -> Coordinates:
        try:
            logging.info(f"Making IP geolocation request: {self.BASE_URL}")
            response = requests.get(
                self.BASE_URL,
                params={"fields": "status,message,lat,lon"},
                timeout=timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout as e:
            logging.error(f"IP geolocation timed out after {timeout}s: {e}")
            raise LocationError(ErrorKind.TIMEOUT, f"Location lookup timed out after {timeout}s") from e
        except requests.exceptions.RequestException as e:
            logging.error(f"IP geolocation request failed: {e}")
            raise LocationError(ErrorKind.UNKNOWN, f"Location lookup failed: {e}") from e

        if data.get("status") != "success":
            message = data.get("message", "lookup failed")
            logging.error(f"IP geolocation error response: {data}")
            raise LocationError(ErrorKind.UNKNOWN, f"Location lookup failed: {message}")

        return Coordinates(float(data["lat"]), float(data["lon"]))
