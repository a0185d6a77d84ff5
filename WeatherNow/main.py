"""Command-line weather display for the current location or a searched city."""
import argparse
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from acquisition_orchestrator import AcquisitionConfig, AcquisitionOrchestrator
from acquisition_state import AcquisitionState, Failed, Ready
from ip_location_provider import IpGeolocationProvider
from location_provider import LocationProviderBase, PermissionStatus, StaticLocationProvider
from openweather_provider import OpenWeatherProvider
from snapshot_cache import SnapshotCache
from weather_data import WeatherSnapshot

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_LOG_FILE = os.path.join(BASE_DIR, "weathernow.log")
DEFAULT_CACHE_FILE = os.path.join(os.path.expanduser("~"), ".weathernow", "cache.json")

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfig:
    api_key: str
    acquisition: AcquisitionConfig
    lang: str = "en"
    cache_file: str = DEFAULT_CACHE_FILE
    location_enabled: bool = True
    location_permission: PermissionStatus = PermissionStatus.NOT_DETERMINED
    fixed_position: Optional[Tuple[float, float]] = None


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser("Current weather for your location or a city")
    intent = parser.add_mutually_exclusive_group()
    intent.add_argument("--city", help="Search weather for a city")
    intent.add_argument("--here", action="store_true", help="Use the current location")
    intent.add_argument("--refresh", metavar="CITY", help="Re-fetch the weather for a city")
    parser.add_argument("--reset-cache", action="store_true", help="Forget the cached snapshot and last city")
    parser.add_argument("--log-file", default=DEFAULT_LOG_FILE)
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def setup_logging(log_file: str, verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise SystemExit(f"Invalid {name}: {raw!r} is not an integer") from exc


def load_config() -> AppConfig:
    load_dotenv()
    api_key = os.getenv("WEATHER_API_KEY")
    if not api_key:
        raise SystemExit("Missing WEATHER_API_KEY in environment")

    try:
        acquisition = AcquisitionConfig(
            default_city_name=os.getenv("WEATHER_DEFAULT_CITY", "Moscow"),
            fetch_timeout_ms=_int_env("WEATHER_FETCH_TIMEOUT_MS", 10000),
            location_timeout_ms=_int_env("WEATHER_LOCATION_TIMEOUT_MS", 15000),
        )
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    permission_raw = os.getenv("WEATHER_LOCATION_PERMISSION", PermissionStatus.NOT_DETERMINED.value)
    try:
        permission = PermissionStatus(permission_raw.strip().lower())
    except ValueError as exc:
        choices = ", ".join(p.value for p in PermissionStatus)
        raise SystemExit(f"Invalid WEATHER_LOCATION_PERMISSION {permission_raw!r}, expected one of: {choices}") from exc

    lat = os.getenv("WEATHER_LAT")
    lon = os.getenv("WEATHER_LON")
    fixed_position = None
    if lat or lon:
        if not lat or not lon:
            raise SystemExit("Set both WEATHER_LAT and WEATHER_LON, or neither")
        try:
            fixed_position = (float(lat), float(lon))
        except ValueError as exc:
            raise SystemExit(f"Invalid coordinates: {exc}") from exc

    config = AppConfig(
        api_key=api_key,
        acquisition=acquisition,
        lang=os.getenv("WEATHER_LANG", "en"),
        cache_file=os.getenv("WEATHER_CACHE_FILE", DEFAULT_CACHE_FILE),
        location_enabled=os.getenv("WEATHER_LOCATION_ENABLED", "1").strip().lower() in _TRUTHY,
        location_permission=permission,
        fixed_position=fixed_position,
    )
    logging.info(
        "Configuration loaded: default_city=%s lang=%s cache=%s fixed_position=%s",
        acquisition.default_city_name,
        config.lang,
        config.cache_file,
        fixed_position,
    )
    return config


def ask_location_consent() -> PermissionStatus:
    """Ask on the terminal whether the approximate position may be looked up."""
    if not sys.stdin.isatty():
        return PermissionStatus.DENIED
    answer = input("Allow looking up your approximate location from your IP address? [y/N/never] ")
    answer = answer.strip().lower()
    if answer in ("y", "yes"):
        return PermissionStatus.GRANTED
    if answer == "never":
        return PermissionStatus.DENIED_FOREVER
    return PermissionStatus.DENIED


def build_location_provider(config: AppConfig) -> LocationProviderBase:
    timeout = config.acquisition.location_timeout_seconds
    if config.fixed_position is not None:
        lat, lon = config.fixed_position
        return StaticLocationProvider(lat, lon, timeout=timeout)
    return IpGeolocationProvider(
        enabled=config.location_enabled,
        permission=config.location_permission,
        prompt=ask_location_consent,
        timeout=timeout,
    )


def build_orchestrator(config: AppConfig) -> AcquisitionOrchestrator:
    provider = OpenWeatherProvider(
        api_key=config.api_key,
        lang=config.lang,
        timeout=config.acquisition.fetch_timeout_seconds,
    )
    orchestrator = AcquisitionOrchestrator(
        weather_source=provider,
        location_provider=build_location_provider(config),
        cache=SnapshotCache(config.cache_file),
        config=config.acquisition,
    )
    logging.info("Weather orchestrator ready (cache file=%s)", config.cache_file)
    return orchestrator


def format_weather_lines(weather: WeatherSnapshot) -> Tuple[str, str, str]:
    temp = f"{round(weather.temperature_c):+d}°C"
    description = weather.description[:1].upper() + weather.description[1:]
    headline = f"{weather.city_name}: {temp}, {description or weather.condition_main}"
    feels = f"Feels {round(weather.feels_like_c):+d}°C"
    humidity = f"Hum {weather.humidity_pct}%"
    wind = f"Wind {weather.wind_speed_ms:.1f} m/s"
    captured = weather.captured_at.astimezone().strftime("%Y-%m-%d %H:%M")
    return headline, f"{feels}  {humidity}  {wind}", f"Updated {captured}"


def render_state(state: AcquisitionState) -> List[str]:
    if isinstance(state, Ready):
        lines = list(format_weather_lines(state.snapshot))
        if state.stale:
            lines.append("Showing cached data: the live weather service is unavailable.")
        return lines
    if isinstance(state, Failed):
        lines = [f"Error: {state.message}"]
        if state.last_known is not None:
            lines.append(f"Last known: {format_weather_lines(state.last_known)[0]}")
        lines.append("Run again to retry.")
        return lines
    return [type(state).__name__]


def run(orchestrator: AcquisitionOrchestrator, args: argparse.Namespace) -> int:
    if args.reset_cache:
        orchestrator.reset_cache()
        print("Weather cache cleared.")
        if args.city is None and args.refresh is None and not args.here:
            return 0

    if args.city is not None:
        state = orchestrator.handle_search_city(args.city)
    elif args.here:
        state = orchestrator.handle_use_current_location()
    elif args.refresh is not None:
        state = orchestrator.handle_refresh(args.refresh)
    else:
        state = orchestrator.handle_launch_default()

    for line in render_state(state):
        print(line)
    return 0 if isinstance(state, Ready) else 1


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_file, args.verbose)
    config = load_config()
    orchestrator = build_orchestrator(config)
    sys.exit(run(orchestrator, args))


if __name__ == "__main__":
    main()
