"""Location provider abstraction - permission flow and coordinate resolution."""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from error_kind import ErrorKind
from weather_data import Coordinates


class PermissionStatus(Enum):
    """Current grant for reading the device position."""
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    DENIED_FOREVER = "denied_forever"
    GRANTED = "granted"


class LocationError(Exception):
    """Exception raised when the device position cannot be resolved."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        super().__init__(message or kind.message)


class LocationProviderBase(ABC):
    """
    Base class for device location sources.

    Subclasses supply the platform hooks; the permission flow lives here so
    every provider follows the same rules: the service must be enabled, an
    undecided permission is requested exactly once, and a permanent denial is
    terminal without prompting again.
    """

    def __init__(self, timeout: float = 15.0):
        """
        Args:
            timeout: Upper bound in seconds on resolving the position
        """
        self.timeout = timeout

    @abstractmethod
    def is_service_enabled(self) -> bool:
        pass

    @abstractmethod
    def check_permission(self) -> PermissionStatus:
        pass

    @abstractmethod
    def request_permission(self) -> PermissionStatus:
        """Ask the user once and return the resulting status."""
        pass

    @abstractmethod
    def read_position(self, timeout: float) -> Coordinates:
        """
        Read the current position, giving up after ``timeout`` seconds.

        Raises:
            LocationError: TIMEOUT or UNKNOWN
        """
        pass

    def ensure_permission(self) -> None:
        """
        Make sure the position may be read.

        Raises:
            LocationError: SERVICE_DISABLED, PERMISSION_DENIED or
                PERMISSION_DENIED_PERMANENTLY
        """
        if not self.is_service_enabled():
            logging.warning("Location service is disabled")
            raise LocationError(ErrorKind.SERVICE_DISABLED)

        permission = self.check_permission()
        if permission is PermissionStatus.NOT_DETERMINED:
            logging.info("Location permission not yet decided, requesting it")
            permission = self.request_permission()

        if permission is PermissionStatus.DENIED_FOREVER:
            logging.warning("Location permission denied permanently")
            raise LocationError(ErrorKind.PERMISSION_DENIED_PERMANENTLY)
        if permission is not PermissionStatus.GRANTED:
            logging.warning(f"Location permission not granted: {permission.value}")
            raise LocationError(ErrorKind.PERMISSION_DENIED)

    def has_permission(self) -> bool:
        """Run the permission flow and report whether the position may be read."""
        try:
            self.ensure_permission()
        except LocationError as e:
            logging.debug(f"Location unavailable: {e}")
            return False
        return True

    def resolve_current_coordinates(self) -> Coordinates:
        """
        Resolve the device position.

        Returns:
            Coordinates: Current position

        Raises:
            LocationError: SERVICE_DISABLED, PERMISSION_DENIED,
                PERMISSION_DENIED_PERMANENTLY, TIMEOUT or UNKNOWN
        """
        self.ensure_permission()
        try:
            coordinates = self.read_position(self.timeout)
        except (OSError, KeyError, TypeError, ValueError) as e:
            logging.error(f"Failed to read device position: {e}")
            raise LocationError(ErrorKind.UNKNOWN, f"Could not determine your location: {e}") from e
        logging.info(f"Resolved position: lat={coordinates.lat}, lon={coordinates.lon}")
        return coordinates


class StaticLocationProvider(LocationProviderBase):
    """Device with a fixed, configured position. Permission is always granted."""

    def __init__(self, lat: float, lon: float, timeout: float = 15.0):
        super().__init__(timeout=timeout)
        self.coordinates = Coordinates(lat, lon)

    def is_service_enabled(self) -> bool:
        return True

    def check_permission(self) -> PermissionStatus:
        return PermissionStatus.GRANTED

    def request_permission(self) -> PermissionStatus:
        return PermissionStatus.GRANTED

    def read_position(self, timeout: float) -> Coordinates:
        return self.coordinates
