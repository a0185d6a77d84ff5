"""Weather acquisition with source priority and stale-cache fallback."""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from acquisition_state import (
    AcquisitionState,
    Failed,
    Idle,
    Loading,
    Outcome,
    Ready,
    StepFailed,
    StepFailure,
    Succeeded,
)
from error_kind import ErrorKind
from location_provider import LocationError, LocationProviderBase
from snapshot_cache import SnapshotCacheBase
from weather_data import WeatherSnapshot
from weather_provider import WeatherProviderBase, WeatherProviderError

StateListener = Callable[[AcquisitionState], None]
FetchStep = Callable[[int], Outcome]


@dataclass(frozen=True)
class AcquisitionConfig:
    """Settings that shape acquisition; the timeouts bound each collaborator call."""
    default_city_name: str = "Moscow"
    fetch_timeout_ms: int = 10000
    location_timeout_ms: int = 15000

    def __post_init__(self):
        if not self.default_city_name.strip():
            raise ValueError("default_city_name cannot be blank")
        if self.fetch_timeout_ms <= 0 or self.location_timeout_ms <= 0:
            raise ValueError("Timeouts must be positive")

    @property
    def fetch_timeout_seconds(self) -> float:
        return self.fetch_timeout_ms / 1000.0

    @property
    def location_timeout_seconds(self) -> float:
        return self.location_timeout_ms / 1000.0


class AcquisitionOrchestrator:
    """
    Decides which source to consult for each user intent and what to show.

    Every successful live fetch is written through to the cache before the
    state becomes Ready. When the weather source fails, the last cached
    snapshot is served as stale data; only when the cache is empty does the
    request end in Failed. Location failures on an explicit "use my location"
    request are reported directly and never masked by the cache.

    Each intent takes a sequence number. If a newer intent starts while an
    older one is still running, the older result is returned to its caller
    but neither published nor cached (last intent wins).
    """

    def __init__(
        self,
        weather_source: WeatherProviderBase,
        location_provider: LocationProviderBase,
        cache: SnapshotCacheBase,
        config: Optional[AcquisitionConfig] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            weather_source: Live weather source
            location_provider: Device location and permission source
            cache: Store for the last successful live snapshot
            config: Default city and timeouts
        """
        self.weather_source = weather_source
        self.location_provider = location_provider
        self.cache = cache
        self.config = config or AcquisitionConfig()

        self._state: AcquisitionState = Idle()
        self._displayed: Optional[WeatherSnapshot] = None
        self._listeners: List[StateListener] = []
        self._generation = 0
        self._lock = threading.Lock()
        self._write_lock = threading.RLock()
        self._written_generation = 0
        self._latest_write: Optional[WeatherSnapshot] = None

    @property
    def state(self) -> AcquisitionState:
        with self._lock:
            return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Call ``listener`` with every published state.

        Returns:
            A callable that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def reset_cache(self) -> None:
        """Forget the cached snapshot and last city."""
        logging.info("Resetting weather cache")
        with self._write_lock:
            self.cache.clear()
            self._written_generation = 0
            self._latest_write = None

    # Intents -------------------------------------------------------------

    def handle_launch_default(self) -> AcquisitionState:
        """
        Load weather on start-up.

        The first applicable source wins: current location if permission can
        be obtained, else the last searched city, else the default city. A
        failure of the chosen source falls back to the cache; the next source
        in line is not tried.
        """
        ticket = self._begin("launch")
        plans = (
            self._plan_current_location,
            self._plan_last_city,
            self._plan_default_city,
        )
        for plan in plans:
            step = plan()
            if step is not None:
                break

        outcome = step(ticket)
        if isinstance(outcome, Succeeded):
            state = Ready(outcome.value, stale=False)
        else:
            state = self._fall_back(outcome.failure)
        return self._finish(ticket, state)

    def handle_search_city(self, name: str) -> AcquisitionState:
        """
        Load weather for a city typed by the user.

        A blank name fails with INVALID_INPUT without contacting any source.
        """
        ticket = self._begin("search")
        city = (name or "").strip()
        if not city:
            logging.info("Ignoring search for a blank city name")
            return self._finish(ticket, Failed(ErrorKind.INVALID_INPUT, last_known=self._displayed))

        outcome = self._fetch_city(ticket, city)
        if isinstance(outcome, Succeeded):
            state = Ready(outcome.value, stale=False)
        else:
            state = self._fall_back(outcome.failure)
        return self._finish(ticket, state)

    def handle_use_current_location(self) -> AcquisitionState:
        """
        Load weather for the device position.

        Location failures (service disabled, permission denied, timeout) are
        reported directly with the currently displayed snapshot; the cache is
        neither read nor written. Only a weather-source failure falls back to
        the cache.
        """
        ticket = self._begin("current location")
        last_known = self._displayed

        outcome = self._fetch_current_location(ticket)
        if isinstance(outcome, Succeeded):
            state = Ready(outcome.value, stale=False)
        elif outcome.failure.from_location:
            failure = outcome.failure
            logging.warning(f"Location unavailable: {failure.kind.value}: {failure.message}")
            reason = ErrorKind.PERMISSION_DENIED if failure.kind.is_permission_denial else failure.kind
            state = Failed(reason, last_known=last_known, message=failure.message)
        else:
            state = self._fall_back(outcome.failure)
        return self._finish(ticket, state)

    def handle_refresh(self, city_name: Optional[str] = None) -> AcquisitionState:
        """
        Re-fetch the displayed city.

        Args:
            city_name: City to refresh; defaults to the displayed snapshot's
                city, and with nothing displayed the launch policy is used
        """
        if city_name is None:
            displayed = self._displayed
            if displayed is None:
                logging.info("Nothing displayed yet, refreshing with the launch policy")
                return self.handle_launch_default()
            city_name = displayed.city_name
        return self.handle_search_city(city_name)

    # Launch plans --------------------------------------------------------

    def _plan_current_location(self) -> Optional[FetchStep]:
        if not self.location_provider.has_permission():
            logging.info("Location permission unavailable, skipping current location")
            return None
        logging.info("Launch source: current location")
        return self._fetch_current_location

    def _plan_last_city(self) -> Optional[FetchStep]:
        last_city = self.cache.get_last_city_name()
        if not last_city:
            return None
        logging.info(f"Launch source: last city '{last_city}'")
        return lambda ticket: self._fetch_city(ticket, last_city)

    def _plan_default_city(self) -> Optional[FetchStep]:
        default_city = self.config.default_city_name
        logging.info(f"Launch source: default city '{default_city}'")
        return lambda ticket: self._fetch_city(ticket, default_city)

    # Steps ---------------------------------------------------------------

    def _fetch_city(self, ticket: int, city: str) -> Outcome:
        return self._fetch_live(ticket, self.weather_source.fetch_by_city, city)

    def _fetch_current_location(self, ticket: int) -> Outcome:
        located = self._attempt(self.location_provider.resolve_current_coordinates)
        if isinstance(located, StepFailed):
            return located
        coordinates = located.value
        return self._fetch_live(ticket, self.weather_source.fetch_by_coordinates, coordinates.lat, coordinates.lon)

    def _fetch_live(self, ticket: int, fetch: Callable[..., WeatherSnapshot], *args) -> Outcome:
        outcome = self._attempt(fetch, *args)
        if isinstance(outcome, Succeeded):
            self._write_through(ticket, outcome.value)
        return outcome

    @staticmethod
    def _attempt(call: Callable, *args) -> Outcome:
        """Run one collaborator call and turn its failure into a StepFailed."""
        try:
            return Succeeded(call(*args))
        except WeatherProviderError as e:
            return StepFailed(StepFailure(e.kind, str(e), status_code=e.status_code))
        except LocationError as e:
            return StepFailed(StepFailure(e.kind, str(e), from_location=True))

    def _write_through(self, ticket: int, snapshot: WeatherSnapshot) -> None:
        if not snapshot.is_live:
            raise ValueError(f"Refusing to cache a {snapshot.origin.value} snapshot as a live observation")
        with self._write_lock:
            if not self._is_current(ticket):
                logging.info(f"Request #{ticket} was superseded, not caching {snapshot.city_name}")
                return
            self.cache.put(snapshot)
            if self._written_generation > ticket and self._latest_write is not None:
                # A newer request wrote while this put was in progress
                logging.info(f"Request #{ticket} was overtaken during its write, restoring the newer snapshot")
                self.cache.put(self._latest_write)
                return
            self._written_generation = ticket
            self._latest_write = snapshot

    def _fall_back(self, failure: StepFailure) -> AcquisitionState:
        cached = self.cache.get()
        if cached is not None:
            logging.warning(
                f"Live weather failed ({failure.kind.value}: {failure.message}), "
                f"serving cached snapshot for {cached.city_name} captured at {cached.captured_at.isoformat()}"
            )
            return Ready(cached.as_cached(), stale=True)

        logging.error(f"Live weather failed ({failure.kind.value}: {failure.message}) and no cache is available")
        return Failed(failure.kind, last_known=None, message=failure.message, status_code=failure.status_code)

    # State ---------------------------------------------------------------

    def _begin(self, intent: str) -> int:
        with self._lock:
            self._generation += 1
            ticket = self._generation
            self._state = Loading()
        logging.info(f"Request #{ticket} started: {intent}")
        self._notify(Loading())
        return ticket

    def _finish(self, ticket: int, state: AcquisitionState) -> AcquisitionState:
        with self._lock:
            current = ticket == self._generation
            if current:
                self._state = state
                if isinstance(state, Ready):
                    self._displayed = state.snapshot
                elif isinstance(state, Failed):
                    self._displayed = state.last_known

        if not current:
            logging.info(f"Request #{ticket} was superseded, discarding {type(state).__name__}")
            return state

        logging.info(f"Request #{ticket} finished: {_describe(state)}")
        self._notify(state)
        return state

    def _is_current(self, ticket: int) -> bool:
        with self._lock:
            return ticket == self._generation

    def _notify(self, state: AcquisitionState) -> None:
        # Listeners run outside the lock so they may issue intents; with
        # several threads, delivery order across requests is not guaranteed.
        # The state property always holds the latest published state.
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(state)


def _describe(state: AcquisitionState) -> str:
    if isinstance(state, Ready):
        suffix = " (stale)" if state.stale else ""
        return f"Ready {state.snapshot.city_name} {state.snapshot.temperature_c}°C{suffix}"
    if isinstance(state, Failed):
        return f"Failed {state.reason.value}: {state.message}"
    return type(state).__name__
