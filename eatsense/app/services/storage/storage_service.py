import asyncio
import json
import logging
import os
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Optional, Type

from pydantic import ValidationError

from eatsense.app.config.app_config import GlobalAppConfig
from eatsense.app.services.storage.storage_models import DetectionMetricsData, FoodLogData, StorageData

logger = logging.getLogger(__name__)


class CacheEntry:
    """Cached model instance with its load time."""

    def __init__(self, data: Any, timestamp: float) -> None:
        self.data = data
        self.timestamp = timestamp

    def is_expired(self, ttl: float) -> bool:
        return time.time() - self.timestamp > ttl


class StorageService:
    """Type-safe JSON storage for pydantic storage models.

    Each StorageData subclass maps to one file under the user data root. Reads
    are cached for cache_ttl_seconds and fall back to a default instance when the
    file is missing or invalid; writes go through a temp file and os.replace so a
    crash never leaves a half-written file behind. Disk I/O runs on a small
    thread pool to keep the event loop free.
    """

    def __init__(self, config: GlobalAppConfig) -> None:
        self._config = config
        self._cache_ttl = config.storage.cache_ttl_seconds

        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="Storage")
        self._cache: Dict[str, CacheEntry] = {}

        self._path_map: Dict[Type[StorageData], str] = {
            FoodLogData: os.path.join(config.storage.food_log_dir, config.storage.food_log_filename),
            DetectionMetricsData: os.path.join(config.storage.metrics_dir, config.storage.metrics_filename),
        }

        for filepath in self._path_map.values():
            os.makedirs(os.path.dirname(filepath), exist_ok=True)

        logger.debug(f"StorageService initialized with base directory: {config.storage.user_data_root}")

    def _get_path(self, model_type: Type[StorageData]) -> Path:
        if model_type not in self._path_map:
            raise ValueError(f"Unknown storage model type: {model_type.__name__}")
        return Path(self._path_map[model_type])

    async def read(self, model_type: Type[StorageData]) -> StorageData:
        """Read a storage model, using the cache when fresh.

        Args:
            model_type: StorageData subclass to read.

        Returns:
            The stored instance, or a default instance if the file is missing or unreadable.
        """
        cache_key = model_type.__name__

        with self._lock:
            entry = self._cache.get(cache_key)
            if entry is not None:
                if not entry.is_expired(self._cache_ttl):
                    logger.debug(f"Cache hit for {cache_key}")
                    return entry.data
                del self._cache[cache_key]

        path = self._get_path(model_type)

        if not path.exists():
            logger.debug(f"File does not exist: {path}, creating default instance")
            result = model_type()
            with self._lock:
                self._cache[cache_key] = CacheEntry(data=result, timestamp=time.time())
            return result

        try:
            loop = asyncio.get_running_loop()
            data_dict = await loop.run_in_executor(self._executor, self._read_json, path)
            instance = model_type.model_validate(data_dict)

            with self._lock:
                self._cache[cache_key] = CacheEntry(data=instance, timestamp=time.time())

            logger.debug(f"Read {cache_key} from storage")
            return instance
        except ValidationError as e:
            logger.error(f"Validation error reading {cache_key}: {e}")
            return model_type()
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error reading {cache_key}: {e}")
            return model_type()

    async def write(self, data: StorageData) -> bool:
        """Atomically write a storage model and refresh the cache.

        Returns:
            True if the write succeeded.
        """
        model_type = type(data)
        path = self._get_path(model_type)
        cache_key = model_type.__name__

        loop = asyncio.get_running_loop()
        success = await loop.run_in_executor(self._executor, self._write_json, path, data.model_dump(mode="json"))

        if success:
            with self._lock:
                self._cache[cache_key] = CacheEntry(data=data, timestamp=time.time())
            logger.debug(f"Wrote {cache_key} to storage")
        return success

    def _read_json(self, path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_json(self, path: Path, data: Dict[str, Any]) -> bool:
        temp_path = path.with_suffix(f".tmp.{uuid.uuid4().hex}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, path)
            return True
        except OSError as e:
            logger.error(f"Error writing JSON to {path}: {e}")
            if temp_path.exists():
                os.remove(temp_path)
            return False

    def clear_cache(self, model_type: Optional[Type[StorageData]] = None) -> None:
        with self._lock:
            if model_type:
                self._cache.pop(model_type.__name__, None)
            else:
                self._cache.clear()

    async def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        logger.info("StorageService shutdown complete")
