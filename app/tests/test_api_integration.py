# tests/test_api_integration.py
import io
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app.analysis_client import AnalysisClient
from app.api import Services, app, get_services
from app.history import HistoryRecorder
from app.profiles import ProfileRepository
from app.scan_pipeline import ScanPipeline
from app.session import SessionContext

PAYLOAD = {
    "productName": "Rose Face Serum",
    "category": "Cosmetic",
    "icon": "🧴",
    "status": "CAUTION",
    "score": 55,
    "nutriScore": "A",
    "explanation": "Contains fragrance.",
    "fullIngredientList": "Aqua, glycerin, parfum",
    "ingredients": [{"name": "Parfum", "riskLevel": "Moderate", "description": "Fragrance"}],
    "alternatives": [{"name": "Fragrance-free serum", "reason": "Gentler"}],
}


def _jpeg_bytes(width=2048, height=1536):
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=(10, 120, 10)).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def openai_mock():
    mock = MagicMock()
    mock.chat.completions.create.return_value.choices = [MagicMock()]
    mock.chat.completions.create.return_value.choices[0].message.content = json.dumps(PAYLOAD)
    return mock


@pytest.fixture
def services(store, cache, openai_mock):
    recorder = HistoryRecorder(store, cache)
    return Services(
        profiles=ProfileRepository(store, cache),
        recorder=recorder,
        pipeline=ScanPipeline(AnalysisClient(api_key="sk-test", client=openai_mock), recorder),
        session=SessionContext(cache),
    )


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def _onboard(client, user_id="u1"):
    body = {
        "name": "Sari",
        "condition": "More Diseases",
        "custom_condition_name": "Kidney Disease",
        "additional_context": [],
        "current_symptoms": ["Fatigue"],
        "language": "en",
    }
    resp = client.put(f"/profile/{user_id}", json=body)
    assert resp.status_code == 200
    return resp.json()


def test_root(client):
    assert client.get("/").status_code == 200


def test_profile_round_trip(client, store):
    _onboard(client)
    resp = client.get("/profile/u1")
    assert resp.status_code == 200
    assert resp.json()["custom_condition_name"] == "Kidney Disease"
    # background task ran after the response
    assert store.get_profile("u1").name == "Sari"


def test_unknown_profile_404(client):
    assert client.get("/profile/nobody").status_code == 404


def test_scan_upload_flow(client, openai_mock, store):
    _onboard(client)

    resp = client.post("/scan", data={"user_id": "u1"},
                       files={"file": ("label.jpg", _jpeg_bytes(), "image/jpeg")})

    assert resp.status_code == 200
    body = resp.json()
    assert body["result"]["category"] == "Cosmetic"
    assert "nutri_score" not in body["result"]
    assert body["history_id"]

    messages = openai_mock.chat.completions.create.call_args.kwargs["messages"]
    assert "Specific Condition: Kidney Disease" in messages[0]["content"]
    assert "Context: None" in messages[0]["content"]

    history = client.get("/history/u1").json()
    assert [h["id"] for h in history] == [body["history_id"]]
    assert store.list_scans("u1")[0].result.product_name == "Rose Face Serum"


def test_scan_rejects_bad_image(client):
    _onboard(client)
    resp = client.post("/scan", data={"user_id": "u1"},
                       files={"file": ("label.jpg", b"garbage", "image/jpeg")})
    assert resp.status_code == 400


def test_scan_while_busy_is_409(client, services):
    _onboard(client)
    _onboard(client, "u2")
    services.pipeline.start("u1")

    resp = client.post("/scan", data={"user_id": "u1"},
                       files={"file": ("label.jpg", _jpeg_bytes(), "image/jpeg")})
    assert resp.status_code == 409

    other = client.post("/scan", data={"user_id": "u2"},
                        files={"file": ("label.jpg", _jpeg_bytes(), "image/jpeg")})
    assert other.status_code == 200


def test_dismiss_in_flight_scan(client, services):
    assert client.post("/scan/u1/dismiss").status_code == 404

    ticket = services.pipeline.start("u1")
    resp = client.post("/scan/u1/dismiss")

    assert resp.status_code == 200
    assert resp.json() == {"ticket_id": ticket.id, "dismissed": True}
    assert ticket.cancelled


def test_dismissed_scan_returns_no_result(client, services, openai_mock):
    _onboard(client)
    original = openai_mock.chat.completions.create.return_value

    def create(*_, **__):
        services.pipeline.dismiss("u1")
        return original

    openai_mock.chat.completions.create.side_effect = create
    resp = client.post("/scan", data={"user_id": "u1"},
                       files={"file": ("label.jpg", _jpeg_bytes(), "image/jpeg")})

    assert resp.status_code == 200
    assert resp.json()["dismissed"] is True
    assert client.get("/history/u1").json() == []


def test_profile_store_outage_is_503(client, fake_supabase):
    fake_supabase.fail = True
    assert client.get("/profile/u1").status_code == 503


def test_favorite_toggle(client):
    _onboard(client)
    scan = client.post("/scan", data={"user_id": "u1"},
                       files={"file": ("label.jpg", _jpeg_bytes(), "image/jpeg")}).json()
    scan_id = scan["history_id"]

    assert client.post(f"/history/u1/{scan_id}/favorite").json()["is_favorite"] is True
    favorites = client.get("/history/u1", params={"favorites_only": True}).json()
    assert [f["id"] for f in favorites] == [scan_id]
    assert client.post(f"/history/u1/{scan_id}/favorite").json()["is_favorite"] is False
    assert client.post("/history/u1/missing/favorite").status_code == 404


def test_store_outage_does_not_block_scan(client, fake_supabase):
    _onboard(client)
    fake_supabase.fail = True
    resp = client.post("/scan", data={"user_id": "u1"},
                       files={"file": ("label.jpg", _jpeg_bytes(), "image/jpeg")})
    assert resp.status_code == 200
    assert resp.json()["result"]["product_name"] == "Rose Face Serum"


def test_sign_in_and_out(client, cache):
    _onboard(client)
    assert client.post("/session/sign-in", json={"user_id": "u1"}).json()["has_profile"] is True
    client.post("/session/sign-out")
    assert cache.get_cached_profile("u1") is None
