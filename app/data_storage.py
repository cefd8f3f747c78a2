# app/data_storage.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from app.data_model import (
    AppLanguage,
    Category,
    ScanHistoryItem,
    UserProfile,
    dict_to_profile,
    profile_to_dict,
    result_to_dict,
)
from app.result_normalizer import normalize
from app.supabase_client import PersistenceError, get_supabase

logger = logging.getLogger("uvicorn.error")

PROFILES_TABLE = "profiles"
SCANS_TABLE = "scans"
HISTORY_LIMIT = 20

_COSMETIC_HINTS = ("cream", "wash", "serum", "lotion", "shampoo", "soap")


def infer_category(product_name: str) -> Category:
    """Older rows carry no category; guess from the product name."""
    name = (product_name or "").lower()
    if any(hint in name for hint in _COSMETIC_HINTS):
        return Category.COSMETIC
    return Category.FOOD


# --------------------------
# Row mapping
# --------------------------

def profile_to_row(user_id: str, profile: UserProfile) -> Dict[str, Any]:
    row = profile_to_dict(profile)
    row["id"] = user_id
    row["updated_at"] = datetime.now(timezone.utc).isoformat()
    return row


def row_to_profile(row: Dict[str, Any], fallback_language: Optional[AppLanguage] = None) -> UserProfile:
    if not row.get("language") and fallback_language is not None:
        row = {**row, "language": fallback_language.value}
    return dict_to_profile(row)


def scan_to_row(user_id: str, item: ScanHistoryItem) -> Dict[str, Any]:
    row = result_to_dict(item.result)
    row.pop("failure", None)
    row.update({
        "id": item.id,
        "user_id": user_id,
        "timestamp": item.timestamp,
        "is_favorite": item.is_favorite,
    })
    return row


def row_to_scan(row: Dict[str, Any]) -> ScanHistoryItem:
    data = dict(row)
    if not data.get("category"):
        data["category"] = infer_category(data.get("product_name", "")).value
    return ScanHistoryItem(
        id=str(data["id"]),
        timestamp=int(data.get("timestamp") or 0),
        result=normalize(data),
        is_favorite=bool(data.get("is_favorite")),
    )


# --------------------------
# Store
# --------------------------

class SupabaseStore:
    """Remote profile/history store. Every failure surfaces as PersistenceError."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def get_profile(self, user_id: str, fallback_language: Optional[AppLanguage] = None) -> Optional[UserProfile]:
        try:
            response = (
                self.client.table(PROFILES_TABLE).select("*").eq("id", user_id).limit(1).execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to load profile {user_id}: {e}") from e
        rows = response.data or []
        return row_to_profile(rows[0], fallback_language) if rows else None

    def upsert_profile(self, user_id: str, profile: UserProfile) -> None:
        try:
            self.client.table(PROFILES_TABLE).upsert(profile_to_row(user_id, profile)).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to save profile {user_id}: {e}") from e

    def list_scans(self, user_id: str, limit: int = HISTORY_LIMIT) -> List[ScanHistoryItem]:
        try:
            response = (
                self.client.table(SCANS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .order("timestamp", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to load history for {user_id}: {e}") from e

        items = []
        for row in response.data or []:
            try:
                items.append(row_to_scan(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable scan row {row.get('id')}: {e}")
        return items

    def insert_scan(self, user_id: str, item: ScanHistoryItem) -> None:
        try:
            self.client.table(SCANS_TABLE).insert(scan_to_row(user_id, item)).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to save scan {item.id}: {e}") from e

    def set_favorite(self, user_id: str, scan_id: str, is_favorite: bool) -> None:
        try:
            (
                self.client.table(SCANS_TABLE)
                .update({"is_favorite": is_favorite})
                .eq("id", scan_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to update favorite on scan {scan_id}: {e}") from e
