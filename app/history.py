# app/history.py
from typing import Dict, List, Optional
import logging
import threading
import time
import uuid

from app.background import Dispatch, detached, run_in_background
from app.data_model import ScanHistoryItem, ScanResult
from app.data_storage import HISTORY_LIMIT, SupabaseStore
from app.local_cache import LocalCache
from app.supabase_client import PersistenceError

logger = logging.getLogger("uvicorn.error")


def _now_ms() -> int:
    return int(time.time() * 1000)


class HistoryRecorder:
    """
    Keeps each user's scan history: in memory for the live session, mirrored
    to the local cache synchronously and to the remote store as detached
    tasks. Remote failures are logged, never raised to the scan flow.
    """

    def __init__(self, store: SupabaseStore, cache: LocalCache, dispatch: Optional[Dispatch] = None):
        self.store = store
        self.cache = cache
        self.dispatch = dispatch or run_in_background
        self._items: Dict[str, List[ScanHistoryItem]] = {}
        self._lock = threading.Lock()

    def _submit(self, dispatch: Optional[Dispatch], fn, description: str, *args) -> None:
        try:
            (dispatch or self.dispatch)(detached(fn, description), *args)
        except Exception as e:
            logger.error(f"Could not schedule {description}: {e}", exc_info=True)

    def _session_items(self, user_id: str) -> List[ScanHistoryItem]:
        if user_id not in self._items:
            self._items[user_id] = self.cache.get_cached_history(user_id) or []
        return self._items[user_id]

    def record(self, user_id: str, result: ScanResult, dispatch: Optional[Dispatch] = None) -> ScanHistoryItem:
        item = ScanHistoryItem(id=str(uuid.uuid4()), timestamp=_now_ms(), result=result)
        with self._lock:
            items = self._session_items(user_id)
            items.insert(0, item)
            del items[HISTORY_LIMIT:]
            self.cache.set_cached_history(user_id, items)
        self._submit(dispatch, self.store.insert_scan, f"insert scan {item.id}", user_id, item)
        logger.info(f"Recorded scan {item.id} for user {user_id}")
        return item

    def load(self, user_id: str, limit: int = HISTORY_LIMIT) -> List[ScanHistoryItem]:
        """Newest first. Falls back to the cached copy when the store fails."""
        try:
            remote = self.store.list_scans(user_id, limit=limit)
        except PersistenceError as e:
            logger.error(f"History fetch failed, serving cache: {e}")
            with self._lock:
                return list(self._session_items(user_id))[:limit]

        with self._lock:
            # favorites toggled this session win over a stale remote copy
            local = {i.id: i for i in self._items.get(user_id, [])}
            for item in remote:
                if item.id in local:
                    item.is_favorite = local[item.id].is_favorite
            known = {i.id for i in remote}
            pending = [i for i in self._items.get(user_id, []) if i.id not in known]
            merged = sorted(pending + remote, key=lambda i: i.timestamp, reverse=True)[:limit]
            self._items[user_id] = merged
            self.cache.set_cached_history(user_id, merged)
            return list(merged)

    def toggle_favorite(self, user_id: str, item_id: str, dispatch: Optional[Dispatch] = None) -> bool:
        """Flip the favorite flag and return the new state. Raises KeyError for unknown ids."""
        with self._lock:
            items = self._session_items(user_id)
            item = next((i for i in items if i.id == item_id), None)
            if item is None:
                raise KeyError(item_id)
            item.is_favorite = not item.is_favorite
            state = item.is_favorite
            self.cache.set_cached_history(user_id, items)
        self._submit(dispatch, self.store.set_favorite, f"favorite scan {item_id}", user_id, item_id, state)
        return state

    def favorites(self, user_id: str) -> List[ScanHistoryItem]:
        with self._lock:
            return [i for i in self._session_items(user_id) if i.is_favorite]

    def forget(self, user_id: str) -> None:
        with self._lock:
            self._items.pop(user_id, None)
