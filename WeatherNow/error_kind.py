"""Failure taxonomy shared by every weather acquisition layer."""
from enum import Enum


class ErrorKind(Enum):
    """Why an acquisition step failed."""
    INVALID_INPUT = "invalid_input"

    # Location layer: surfaced directly, never masked by the cache
    SERVICE_DISABLED = "service_disabled"
    PERMISSION_DENIED = "permission_denied"
    PERMISSION_DENIED_PERMANENTLY = "permission_denied_permanently"
    UNKNOWN = "unknown"

    # Weather-source layer: always eligible for cache fallback
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"

    CACHE_CORRUPT = "cache_corrupt"

    @property
    def is_permission_denial(self) -> bool:
        return self in (ErrorKind.PERMISSION_DENIED, ErrorKind.PERMISSION_DENIED_PERMANENTLY)

    @property
    def message(self) -> str:
        """Human-readable explanation shown next to a retry affordance."""
        return _MESSAGES[self]


_MESSAGES = {
    ErrorKind.INVALID_INPUT: "City name cannot be empty.",
    ErrorKind.SERVICE_DISABLED: "Location services are disabled. Enable them in your device settings.",
    ErrorKind.PERMISSION_DENIED: "Location permission was denied.",
    ErrorKind.PERMISSION_DENIED_PERMANENTLY: (
        "Location permission was permanently denied. Enable it in the application settings."
    ),
    ErrorKind.UNKNOWN: "Could not determine your location.",
    ErrorKind.NOT_FOUND: "City not found.",
    ErrorKind.UNAUTHORIZED: "Weather API authorization failed.",
    ErrorKind.SERVER_ERROR: "The weather server returned an error.",
    ErrorKind.TIMEOUT: "The request timed out.",
    ErrorKind.UNREACHABLE: "Could not connect to the weather server. Check your internet connection.",
    ErrorKind.CACHE_CORRUPT: "Cached weather data could not be read.",
}
