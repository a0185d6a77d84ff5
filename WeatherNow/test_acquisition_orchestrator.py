"""Tests for the acquisition orchestrator."""
import logging
import pytest
from datetime import datetime, timezone
from acquisition_orchestrator import AcquisitionConfig, AcquisitionOrchestrator
from acquisition_state import Failed, Idle, Loading, Ready
from error_kind import ErrorKind
from location_provider import LocationError, LocationProviderBase, PermissionStatus
from snapshot_cache import SnapshotCacheBase
from weather_data import Coordinates, SnapshotOrigin, WeatherSnapshot
from weather_provider import WeatherProviderBase, WeatherProviderError

CAPTURED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def snapshot_for(city, temp=15.0):
    return WeatherSnapshot(
        city_name=city,
        temperature_c=temp,
        feels_like_c=temp - 1,
        humidity_pct=60,
        wind_speed_ms=3.0,
        description="clear sky",
        condition_main="Clear",
        icon_code="01d",
        captured_at=CAPTURED,
    )


class MockSource(WeatherProviderBase):
    """Weather source that returns a snapshot per city, or raises a scripted error."""

    def __init__(self, error=None, here_city="Here"):
        self.error = error
        self.here_city = here_city
        self.calls = []
        self.on_fetch = None

    def fetch_by_city(self, name):
        self.calls.append(("city", name))
        return self._respond(name)

    def fetch_by_coordinates(self, lat, lon):
        self.calls.append(("coords", lat, lon))
        return self._respond(self.here_city)

    def _respond(self, city):
        if self.on_fetch:
            hook, self.on_fetch = self.on_fetch, None
            hook()
        if self.error:
            raise self.error
        return snapshot_for(city)


class MockLocation(LocationProviderBase):
    """Device whose permission and position are scripted."""

    def __init__(self, permission=PermissionStatus.GRANTED, enabled=True, read_error=None):
        super().__init__(timeout=15.0)
        self.permission = permission
        self.enabled = enabled
        self.read_error = read_error
        self.calls = []

    def is_service_enabled(self):
        self.calls.append("enabled")
        return self.enabled

    def check_permission(self):
        self.calls.append("check")
        return self.permission

    def request_permission(self):
        self.calls.append("request")
        return self.permission

    def read_position(self, timeout):
        self.calls.append("read")
        if self.read_error:
            raise self.read_error
        return Coordinates(48.85, 2.35)


class SpyCache(SnapshotCacheBase):
    """In-memory cache recording every call."""

    def __init__(self, snapshot=None, last_city=None):
        self._snapshot = snapshot
        self._last_city = last_city if last_city is not None else (snapshot.city_name if snapshot else None)
        self.calls = []

    def put(self, snapshot):
        self.calls.append("put")
        self._snapshot = snapshot
        self._last_city = snapshot.city_name

    def get(self):
        self.calls.append("get")
        return self._snapshot.as_cached() if self._snapshot else None

    def get_last_city_name(self):
        self.calls.append("get_last_city_name")
        return self._last_city

    def clear(self):
        self.calls.append("clear")
        self._snapshot = None
        self._last_city = None

    def exists(self):
        self.calls.append("exists")
        return self._snapshot is not None


class InterruptingCache(SpyCache):
    """SpyCache that runs ``on_put`` once, before the first write lands."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.on_put = None

    def put(self, snapshot):
        hook, self.on_put = self.on_put, None
        if hook:
            hook()
        super().put(snapshot)


def build(source=None, location=None, cache=None, default_city="Moscow"):
    source = source or MockSource()
    location = location or MockLocation(permission=PermissionStatus.DENIED)
    cache = cache if cache is not None else SpyCache()
    orchestrator = AcquisitionOrchestrator(
        weather_source=source,
        location_provider=location,
        cache=cache,
        config=AcquisitionConfig(default_city_name=default_city),
    )
    return orchestrator, source, location, cache


def test_initial_state_is_idle():
    orchestrator, _, _, _ = build()
    assert orchestrator.state == Idle()


class TestLaunchDefault:
    """Launch picks the first applicable source and falls back to cache on failure."""

    def test_default_city_without_permission_or_cache(self):
        """Scenario A."""
        orchestrator, source, _, cache = build()

        state = orchestrator.handle_launch_default()

        assert state == Ready(snapshot_for("Moscow"), stale=False)
        assert state.snapshot.origin is SnapshotOrigin.LIVE
        assert orchestrator.state == state
        assert source.calls == [("city", "Moscow")]
        assert cache.get() == snapshot_for("Moscow")
        assert cache.get_last_city_name() == "Moscow"

    def test_current_location_wins_when_permitted(self):
        orchestrator, source, _, cache = build(
            location=MockLocation(permission=PermissionStatus.GRANTED),
            cache=SpyCache(snapshot_for("Paris")),
        )

        state = orchestrator.handle_launch_default()

        assert state == Ready(snapshot_for("Here"), stale=False)
        assert source.calls == [("coords", 48.85, 2.35)]
        assert cache.get_last_city_name() == "Here"

    def test_last_city_used_without_permission(self):
        orchestrator, source, _, _ = build(cache=SpyCache(snapshot_for("Paris")))

        state = orchestrator.handle_launch_default()

        assert state == Ready(snapshot_for("Paris"), stale=False)
        assert state.stale is False
        assert source.calls == [("city", "Paris")]

    def test_coordinate_fetch_timeout_serves_cache(self):
        """Scenario B."""
        paris = snapshot_for("Paris")
        orchestrator, source, _, cache = build(
            source=MockSource(error=WeatherProviderError(ErrorKind.TIMEOUT)),
            location=MockLocation(permission=PermissionStatus.GRANTED),
            cache=SpyCache(paris),
        )

        state = orchestrator.handle_launch_default()

        assert state == Ready(paris, stale=True)
        assert state.snapshot.origin is SnapshotOrigin.CACHED
        assert state.snapshot.captured_at == paris.captured_at
        assert "put" not in cache.calls

    def test_step_failure_does_not_try_next_source(self):
        orchestrator, source, _, _ = build(
            source=MockSource(error=WeatherProviderError(ErrorKind.UNREACHABLE)),
            location=MockLocation(permission=PermissionStatus.GRANTED),
        )

        state = orchestrator.handle_launch_default()

        assert state == Failed(ErrorKind.UNREACHABLE, last_known=None)
        assert source.calls == [("coords", 48.85, 2.35)]

    def test_location_timeout_falls_back_to_cache(self):
        paris = snapshot_for("Paris")
        orchestrator, source, _, _ = build(
            location=MockLocation(read_error=LocationError(ErrorKind.TIMEOUT)),
            cache=SpyCache(paris),
        )

        state = orchestrator.handle_launch_default()

        assert state == Ready(paris, stale=True)
        assert source.calls == []

    def test_location_timeout_without_cache_fails(self):
        orchestrator, _, _, _ = build(location=MockLocation(read_error=LocationError(ErrorKind.TIMEOUT)))

        state = orchestrator.handle_launch_default()

        assert isinstance(state, Failed)
        assert state.reason is ErrorKind.TIMEOUT
        assert state.last_known is None

    def test_launch_is_idempotent(self):
        orchestrator, _, _, _ = build(
            location=MockLocation(permission=PermissionStatus.GRANTED),
            cache=SpyCache(snapshot_for("Here")),
        )

        assert orchestrator.handle_launch_default() == orchestrator.handle_launch_default()

    def test_failed_launch_is_idempotent(self):
        orchestrator, _, _, _ = build(source=MockSource(error=WeatherProviderError(ErrorKind.UNREACHABLE)))

        assert orchestrator.handle_launch_default() == orchestrator.handle_launch_default()


class TestSearchCity:
    @pytest.mark.parametrize("name", ["", "   "])
    def test_blank_name_contacts_nothing(self, name):
        orchestrator, source, location, cache = build()

        state = orchestrator.handle_search_city(name)

        assert isinstance(state, Failed)
        assert state.reason is ErrorKind.INVALID_INPUT
        assert source.calls == []
        assert location.calls == []
        assert cache.calls == []

    def test_success_writes_through_before_ready(self):
        orchestrator, _, _, cache = build()
        seen = []
        orchestrator.subscribe(lambda state: seen.append((state, list(cache.calls))))

        state = orchestrator.handle_search_city("  London ")

        assert state == Ready(snapshot_for("London"), stale=False)
        assert seen[0] == (Loading(), [])
        assert seen[-1] == (state, ["put"])

    def test_not_found_with_empty_cache(self):
        """Scenario D."""
        orchestrator, _, _, _ = build(source=MockSource(error=WeatherProviderError(ErrorKind.NOT_FOUND)))

        state = orchestrator.handle_search_city("Atlantis")

        assert state == Failed(ErrorKind.NOT_FOUND, last_known=None)
        assert state.message == ErrorKind.NOT_FOUND.message

    @pytest.mark.parametrize("kind", [
        ErrorKind.NOT_FOUND,
        ErrorKind.UNAUTHORIZED,
        ErrorKind.SERVER_ERROR,
        ErrorKind.TIMEOUT,
        ErrorKind.UNREACHABLE,
    ])
    def test_failure_after_success_serves_last_cached(self, kind):
        source = MockSource()
        orchestrator, _, _, cache = build(source=source)
        orchestrator.handle_search_city("Paris")

        source.error = WeatherProviderError(kind)
        cache.calls.clear()
        state = orchestrator.handle_search_city("Atlantis")

        assert state == Ready(snapshot_for("Paris"), stale=True)
        assert cache.calls == ["get"]

    def test_server_error_keeps_status_code(self):
        orchestrator, _, _, _ = build(
            source=MockSource(error=WeatherProviderError(ErrorKind.SERVER_ERROR, "HTTP 503", status_code=503)),
        )

        state = orchestrator.handle_search_city("Paris")

        assert state.reason is ErrorKind.SERVER_ERROR
        assert state.status_code == 503
        assert state.message == "HTTP 503"

    def test_fallback_logs_live_failure(self, caplog):
        orchestrator, _, _, _ = build(
            source=MockSource(error=WeatherProviderError(ErrorKind.UNREACHABLE, "connection refused")),
            cache=SpyCache(snapshot_for("Paris")),
        )

        with caplog.at_level(logging.WARNING):
            state = orchestrator.handle_search_city("Oslo")

        assert state.stale is True
        assert "connection refused" in caplog.text

    def test_refuses_to_cache_non_live_snapshot(self):
        class ReplayingSource(MockSource):
            def fetch_by_city(self, name):
                return snapshot_for(name).as_cached()

        orchestrator, _, _, cache = build(source=ReplayingSource())

        with pytest.raises(ValueError):
            orchestrator.handle_search_city("Paris")
        assert "put" not in cache.calls


class TestUseCurrentLocation:
    @pytest.mark.parametrize("permission, detail", [
        (PermissionStatus.DENIED_FOREVER, ErrorKind.PERMISSION_DENIED_PERMANENTLY),
        (PermissionStatus.DENIED, ErrorKind.PERMISSION_DENIED),
    ])
    def test_permission_failure_never_touches_cache(self, permission, detail):
        orchestrator, source, _, cache = build(
            location=MockLocation(permission=permission),
            cache=SpyCache(snapshot_for("Paris")),
        )

        state = orchestrator.handle_use_current_location()

        assert state == Failed(ErrorKind.PERMISSION_DENIED, last_known=None, message=detail.message)
        assert state.reason is ErrorKind.PERMISSION_DENIED
        assert cache.calls == []
        assert source.calls == []

    def test_denied_forever_with_empty_cache(self):
        """Scenario C."""
        location = MockLocation(permission=PermissionStatus.DENIED_FOREVER)
        orchestrator, _, _, _ = build(location=location)

        state = orchestrator.handle_use_current_location()

        assert isinstance(state, Failed)
        assert state.reason is ErrorKind.PERMISSION_DENIED
        assert state.message == ErrorKind.PERMISSION_DENIED_PERMANENTLY.message
        assert state.last_known is None
        assert "request" not in location.calls

    def test_service_disabled_reports_displayed_snapshot(self):
        orchestrator, _, location, cache = build(location=MockLocation(enabled=False))
        london = orchestrator.handle_search_city("London").snapshot
        cache.calls.clear()

        state = orchestrator.handle_use_current_location()

        assert state == Failed(ErrorKind.SERVICE_DISABLED, last_known=london)
        assert cache.calls == []

    def test_location_timeout_is_not_masked(self):
        orchestrator, _, _, cache = build(
            location=MockLocation(read_error=LocationError(ErrorKind.TIMEOUT)),
            cache=SpyCache(snapshot_for("Paris")),
        )

        state = orchestrator.handle_use_current_location()

        assert isinstance(state, Failed)
        assert state.reason is ErrorKind.TIMEOUT
        assert cache.calls == []

    def test_undecided_permission_requested(self):
        location = MockLocation(permission=PermissionStatus.NOT_DETERMINED)
        location.request_permission = lambda: PermissionStatus.GRANTED
        orchestrator, source, _, _ = build(location=location)

        state = orchestrator.handle_use_current_location()

        assert state == Ready(snapshot_for("Here"), stale=False)

    def test_weather_failure_falls_back(self):
        orchestrator, _, _, _ = build(
            source=MockSource(error=WeatherProviderError(ErrorKind.SERVER_ERROR, status_code=500)),
            location=MockLocation(permission=PermissionStatus.GRANTED),
            cache=SpyCache(snapshot_for("Paris")),
        )

        assert orchestrator.handle_use_current_location() == Ready(snapshot_for("Paris"), stale=True)


class TestRefresh:
    def test_refresh_is_search(self):
        orchestrator, source, _, _ = build()

        assert orchestrator.handle_refresh("Berlin") == Ready(snapshot_for("Berlin"), stale=False)
        assert source.calls == [("city", "Berlin")]

    def test_refresh_defaults_to_displayed_city(self):
        orchestrator, source, _, _ = build()
        orchestrator.handle_search_city("Berlin")

        orchestrator.handle_refresh()

        assert source.calls == [("city", "Berlin"), ("city", "Berlin")]

    def test_refresh_with_nothing_displayed_launches(self):
        orchestrator, source, _, _ = build()

        orchestrator.handle_refresh()

        assert source.calls == [("city", "Moscow")]


class TestStatePublication:
    def test_listener_sees_loading_then_result(self):
        orchestrator, _, _, _ = build()
        seen = []
        unsubscribe = orchestrator.subscribe(seen.append)

        result = orchestrator.handle_search_city("Rome")
        unsubscribe()
        orchestrator.handle_search_city("Milan")

        assert seen == [Loading(), result]

    def test_newer_intent_wins(self):
        """A request overtaken by a newer one is neither published nor cached."""
        source = MockSource()
        orchestrator, _, _, cache = build(source=source)
        newer = []
        source.on_fetch = lambda: newer.append(orchestrator.handle_search_city("Paris"))

        older = orchestrator.handle_search_city("London")

        assert older == Ready(snapshot_for("London"), stale=False)
        assert newer == [Ready(snapshot_for("Paris"), stale=False)]
        assert orchestrator.state == newer[0]
        assert cache.get() == snapshot_for("Paris")

    def test_newer_intent_during_cache_write(self):
        """A newer request that writes while an older write is underway keeps its snapshot."""
        cache = InterruptingCache()
        orchestrator, _, _, _ = build(cache=cache)
        cache.on_put = lambda: orchestrator.handle_search_city("Paris")

        older = orchestrator.handle_search_city("London")

        assert older == Ready(snapshot_for("London"), stale=False)
        assert orchestrator.state == Ready(snapshot_for("Paris"), stale=False)
        assert cache.get() == orchestrator.state.snapshot
        assert cache.get_last_city_name() == "Paris"

    def test_listener_may_unsubscribe_and_read_state(self):
        orchestrator, _, _, _ = build()
        seen = []

        def listener(state):
            seen.append(orchestrator.state)
            if isinstance(state, Ready):
                unsubscribe()

        unsubscribe = orchestrator.subscribe(listener)
        orchestrator.handle_search_city("Rome")
        orchestrator.handle_search_city("Milan")

        assert seen == [Loading(), Ready(snapshot_for("Rome"), stale=False)]

    def test_reset_cache(self):
        cache = SpyCache(snapshot_for("Paris"))
        orchestrator, _, _, _ = build(cache=cache)

        orchestrator.reset_cache()

        assert cache.get() is None
        assert cache.get_last_city_name() is None


def test_config_validation():
    with pytest.raises(ValueError):
        AcquisitionConfig(default_city_name="  ")
    with pytest.raises(ValueError):
        AcquisitionConfig(fetch_timeout_ms=0)
    assert AcquisitionConfig(fetch_timeout_ms=2500).fetch_timeout_seconds == 2.5
