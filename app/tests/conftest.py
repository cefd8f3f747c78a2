import copy
import pytest

from app.data_model import (
    Alternative,
    FoodResult,
    HealthCondition,
    IngredientAnalysis,
    RiskLevel,
    ScanStatus,
    UserProfile,
)
from app.data_storage import SupabaseStore
from app.local_cache import LocalCache


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Enough of the postgrest query builder for SupabaseStore."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.filters = []
        self.order_by = None
        self.max_rows = None
        self.action = "select"
        self.payload = None

    def select(self, *_):
        self.action = "select"
        return self

    def insert(self, row):
        self.action, self.payload = "insert", row
        return self

    def upsert(self, row):
        self.action, self.payload = "upsert", row
        return self

    def update(self, values):
        self.action, self.payload = "update", values
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.max_rows = n
        return self

    def _matches(self, row):
        return all(row.get(c) == v for c, v in self.filters)

    def execute(self):
        if self.db.fail:
            raise RuntimeError("connection refused")
        rows = self.db.tables.setdefault(self.table, [])
        if self.action == "insert":
            rows.append(copy.deepcopy(self.payload))
            return FakeResponse([self.payload])
        if self.action == "upsert":
            rows[:] = [r for r in rows if r.get("id") != self.payload["id"]]
            rows.append(copy.deepcopy(self.payload))
            return FakeResponse([self.payload])
        if self.action == "update":
            hits = [r for r in rows if self._matches(r)]
            for r in hits:
                r.update(self.payload)
            return FakeResponse(hits)
        hits = [copy.deepcopy(r) for r in rows if self._matches(r)]
        if self.order_by:
            column, desc = self.order_by
            hits.sort(key=lambda r: r.get(column), reverse=desc)
        if self.max_rows is not None:
            hits = hits[: self.max_rows]
        return FakeResponse(hits)


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.fail = False

    def table(self, name):
        return FakeQuery(self, name)


def run_now(fn, *args, **kwargs):
    fn(*args, **kwargs)


@pytest.fixture
def dispatch_now():
    """Runs detached tasks inline so tests can observe them."""
    return run_now


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def store(fake_supabase):
    return SupabaseStore(client=fake_supabase)


@pytest.fixture
def cache(tmp_path):
    return LocalCache(tmp_path / "cache")


@pytest.fixture
def profile():
    return UserProfile(
        name="Sari",
        condition=HealthCondition.PREGNANCY,
        additional_context=["Avoid alcohol"],
        current_symptoms=["Nausea"],
    )


@pytest.fixture
def food_result():
    return FoodResult(
        product_name="Choco Crunch Cereal",
        status=ScanStatus.CAUTION,
        score=35,
        explanation="High in added sugar.",
        icon="🥣",
        full_ingredient_list="Wheat, sugar, cocoa, salt",
        ingredients=[
            IngredientAnalysis("Sugar", RiskLevel.HIGH_RISK, "Added sugar"),
            IngredientAnalysis("Wheat", RiskLevel.SAFE, "Whole grain"),
        ],
        alternatives=[Alternative("Plain oats", "No added sugar")],
        nutri_score="D",
    )
