"""Persistent store for the single most recent weather snapshot."""
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from error_kind import ErrorKind
from weather_data import SnapshotOrigin, WeatherSnapshot

CACHE_KEY = "cached_weather"
LAST_CITY_KEY = "last_city"


class SnapshotCacheBase(ABC):
    """
    Holds one last-known snapshot plus the last queried city name.

    ``put`` is the only mutator besides ``clear``. Callers are expected to
    store live snapshots only. Anything read back is tagged CACHED.
    """

    @abstractmethod
    def put(self, snapshot: WeatherSnapshot) -> None:
        pass

    @abstractmethod
    def get(self) -> Optional[WeatherSnapshot]:
        pass

    @abstractmethod
    def get_last_city_name(self) -> Optional[str]:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def exists(self) -> bool:
        pass


class SnapshotCache(SnapshotCacheBase):
    """
    Snapshot cache backed by a small JSON key-value file.

    A missing, unreadable or malformed file reads as an empty cache.
    """

    def __init__(self, path: str):
        """
        Args:
            path: Location of the JSON file; parent directories are created on write
        """
        self.path = path

    def put(self, snapshot: WeatherSnapshot) -> None:
        record = self._load()
        record[CACHE_KEY] = snapshot.to_dict()
        record[LAST_CITY_KEY] = snapshot.city_name
        self._save(record)
        logging.debug(f"Cached weather snapshot for {snapshot.city_name}")

    def get(self) -> Optional[WeatherSnapshot]:
        raw = self._load().get(CACHE_KEY)
        if raw is None:
            return None
        try:
            return WeatherSnapshot.from_dict(raw, origin=SnapshotOrigin.CACHED)
        except (KeyError, TypeError, ValueError) as e:
            logging.warning(f"{ErrorKind.CACHE_CORRUPT.value}: cached weather record ignored: {e}")
            return None

    def get_last_city_name(self) -> Optional[str]:
        city = self._load().get(LAST_CITY_KEY)
        if not isinstance(city, str) or not city.strip():
            return None
        return city

    def clear(self) -> None:
        record = self._load()
        record.pop(CACHE_KEY, None)
        record.pop(LAST_CITY_KEY, None)
        if record:
            self._save(record)
        elif os.path.exists(self.path):
            os.remove(self.path)
        logging.info("Weather cache cleared")

    def exists(self) -> bool:
        return self.get() is not None

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                record = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logging.warning(f"{ErrorKind.CACHE_CORRUPT.value}: failed to read weather cache {self.path}: {e}")
            return {}
        if not isinstance(record, dict):
            logging.warning(f"{ErrorKind.CACHE_CORRUPT.value}: weather cache {self.path} does not hold a JSON object")
            return {}
        return record

    def _save(self, record: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".weather-cache-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f)
            os.replace(tmp_path, self.path)
        except Exception:
            os.unlink(tmp_path)
            raise
