import pytest

from app.data_model import AppLanguage, Category, CosmeticResult, ScanHistoryItem, ScanStatus
from app.data_storage import infer_category, row_to_scan, scan_to_row
from app.supabase_client import PersistenceError


def test_insert_then_list_round_trip(store, food_result):
    item = ScanHistoryItem(id="scan-1", timestamp=1_700_000_000_000, result=food_result)
    store.insert_scan("u1", item)

    [loaded] = store.list_scans("u1")

    assert loaded.id == "scan-1"
    assert loaded.result.product_name == food_result.product_name
    assert loaded.result.status == food_result.status
    assert loaded.result.score == food_result.score
    assert loaded.result.ingredients == food_result.ingredients
    assert loaded.result.nutri_score == "D"


def test_list_is_newest_first_and_per_user(store, food_result):
    for i, ts in enumerate([100, 300, 200]):
        store.insert_scan("u1", ScanHistoryItem(id=f"s{i}", timestamp=ts, result=food_result))
    store.insert_scan("u2", ScanHistoryItem(id="other", timestamp=999, result=food_result))

    assert [i.timestamp for i in store.list_scans("u1")] == [300, 200, 100]
    assert [i.id for i in store.list_scans("u1", limit=2)] == ["s1", "s2"]


def test_non_food_row_has_no_food_fields(food_result):
    cosmetic = CosmeticResult(product_name="Face Wash", status=ScanStatus.SAFE, score=90, explanation="Mild")
    row = scan_to_row("u1", ScanHistoryItem(id="c1", timestamp=1, result=cosmetic))
    assert "nutri_score" not in row
    assert row["category"] == "Cosmetic"


def test_row_without_category_uses_name_heuristic():
    row = {"id": "old", "timestamp": 5, "product_name": "Night Cream", "status": "SAFE", "score": 80}
    assert row_to_scan(row).result.category is Category.COSMETIC
    assert infer_category("Peanut Butter") is Category.FOOD


def test_profile_upsert_and_get(store, profile):
    assert store.get_profile("u1") is None
    store.upsert_profile("u1", profile)
    store.upsert_profile("u1", profile)
    assert store.get_profile("u1") == profile


def test_profile_language_falls_back_when_row_lacks_it(store, fake_supabase):
    fake_supabase.tables["profiles"] = [{"id": "u1", "name": "Sari", "condition": "Allergies"}]
    loaded = store.get_profile("u1", fallback_language=AppLanguage.ZH)
    assert loaded.language is AppLanguage.ZH


def test_failures_become_persistence_error(store, fake_supabase, food_result):
    fake_supabase.fail = True
    with pytest.raises(PersistenceError):
        store.list_scans("u1")
    with pytest.raises(PersistenceError):
        store.insert_scan("u1", ScanHistoryItem(id="x", timestamp=1, result=food_result))
    with pytest.raises(PersistenceError):
        store.get_profile("u1")


def test_set_favorite(store, fake_supabase, food_result):
    store.insert_scan("u1", ScanHistoryItem(id="s1", timestamp=1, result=food_result))
    store.set_favorite("u1", "s1", True)
    assert store.list_scans("u1")[0].is_favorite is True
