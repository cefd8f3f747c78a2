# app/local_cache.py
from pathlib import Path
from typing import List, Optional, Union
import json
import logging
import os

from dotenv import load_dotenv

from app.data_model import (
    MAX_CACHED_HISTORY,
    ScanHistoryItem,
    UserProfile,
    dict_to_history_item,
    dict_to_profile,
    history_item_to_dict,
    profile_to_dict,
)

load_dotenv()

logger = logging.getLogger("uvicorn.error")

CACHE_PREFIX = "vitalSense_"


class LocalCache:
    """
    JSON mirror of the remote profile and recent history, one file per key.

    Reads never fail: a missing entry is a miss, and a corrupted entry is
    deleted and reported as a miss. Writes are best-effort.
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        self.directory = Path(directory or os.getenv("VITALSENSE_CACHE_DIR", ".vitalsense_cache"))

    def _path(self, kind: str, user_id: str) -> Path:
        safe_id = "".join(c if c.isalnum() or c in "-_" else "_" for c in user_id)
        return self.directory / f"{CACHE_PREFIX}{kind}_{safe_id}.json"

    def _read(self, path: Path):
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Dropping corrupt cache entry {path.name}: {e}")
            self._remove(path)
            return None

    def _write(self, path: Path, payload) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Could not write cache entry {path.name}: {e}")
            self._remove(path)

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove cache entry {path.name}: {e}")

    # --- Profile ---

    def get_cached_profile(self, user_id: str) -> Optional[UserProfile]:
        path = self._path("profile", user_id)
        data = self._read(path)
        if data is None:
            return None
        if not isinstance(data, dict):
            logger.warning(f"Dropping malformed cached profile for {user_id}")
            self._remove(path)
            return None
        return dict_to_profile(data)

    def set_cached_profile(self, user_id: str, profile: UserProfile) -> None:
        self._write(self._path("profile", user_id), profile_to_dict(profile))

    # --- History ---

    def get_cached_history(self, user_id: str) -> Optional[List[ScanHistoryItem]]:
        path = self._path("history", user_id)
        data = self._read(path)
        if data is None:
            return None
        try:
            return [dict_to_history_item(d) for d in data]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Dropping malformed cached history for {user_id}: {e}")
            self._remove(path)
            return None

    def set_cached_history(self, user_id: str, items: List[ScanHistoryItem]) -> None:
        limited = items[:MAX_CACHED_HISTORY]
        self._write(self._path("history", user_id), [history_item_to_dict(i) for i in limited])

    def clear(self, user_id: str) -> None:
        self._remove(self._path("profile", user_id))
        self._remove(self._path("history", user_id))
