from app.data_model import AppLanguage, ScanHistoryItem
from app.local_cache import CACHE_PREFIX


def _items(result, n):
    return [ScanHistoryItem(id=f"scan-{i}", timestamp=1000 - i, result=result) for i in range(n)]


def test_profile_round_trip(cache, profile):
    assert cache.get_cached_profile("u1") is None
    profile.language = AppLanguage.AR
    cache.set_cached_profile("u1", profile)
    assert cache.get_cached_profile("u1") == profile


def test_history_capped_to_ten(cache, food_result):
    cache.set_cached_history("u1", _items(food_result, 15))
    cached = cache.get_cached_history("u1")
    assert len(cached) == 10
    assert cached[0].id == "scan-0"
    assert cached[0].result.nutri_score == "D"


def test_corrupt_profile_is_cleared(cache, profile):
    cache.set_cached_profile("u1", profile)
    path = cache.directory / f"{CACHE_PREFIX}profile_u1.json"
    path.write_text("{broken", encoding="utf-8")

    assert cache.get_cached_profile("u1") is None
    assert not path.exists()


def test_corrupt_history_is_cleared(cache):
    path = cache.directory / f"{CACHE_PREFIX}history_u1.json"
    cache.directory.mkdir(parents=True)
    path.write_text('[{"id": "x"}]', encoding="utf-8")

    assert cache.get_cached_history("u1") is None
    assert not path.exists()


def test_clear_removes_both_entries(cache, profile, food_result):
    cache.set_cached_profile("u1", profile)
    cache.set_cached_history("u1", _items(food_result, 2))
    cache.clear("u1")
    assert cache.get_cached_profile("u1") is None
    assert cache.get_cached_history("u1") is None
