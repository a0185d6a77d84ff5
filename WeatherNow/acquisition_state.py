"""Acquisition states exposed to the presentation layer, and step outcomes."""
from dataclasses import dataclass
from typing import Any, Optional, Union

from error_kind import ErrorKind
from weather_data import WeatherSnapshot


@dataclass(frozen=True)
class Idle:
    """No request has been issued yet."""


@dataclass(frozen=True)
class Loading:
    """A request is outstanding."""


@dataclass(frozen=True)
class Ready:
    """
    A snapshot is available.

    ``stale`` is True only when the snapshot came from the cache because the
    live attempt of the current request failed.
    """
    snapshot: WeatherSnapshot
    stale: bool = False


@dataclass(frozen=True)
class Failed:
    """The live attempt failed and no cached snapshot could stand in for it."""
    reason: ErrorKind
    last_known: Optional[WeatherSnapshot] = None
    message: str = ""
    status_code: Optional[int] = None

    def __post_init__(self):
        if not self.message:
            object.__setattr__(self, "message", self.reason.message)


AcquisitionState = Union[Idle, Loading, Ready, Failed]


@dataclass(frozen=True)
class StepFailure:
    """Why one acquisition step failed, and which layer it failed in."""
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    from_location: bool = False


@dataclass(frozen=True)
class Succeeded:
    value: Any


@dataclass(frozen=True)
class StepFailed:
    failure: StepFailure


Outcome = Union[Succeeded, StepFailed]
