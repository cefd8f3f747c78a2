from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional
import logging

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from dotenv import load_dotenv

load_dotenv()

from app.analysis_client import AnalysisClient
from app.data_model import (
    AppLanguage,
    HealthCondition,
    UserProfile,
    history_item_to_dict,
    profile_to_dict,
    result_to_dict,
)
from app.data_storage import HISTORY_LIMIT, SupabaseStore
from app.history import HistoryRecorder
from app.image_capture import CaptureSession, InvalidImage, PermissionDenied, from_upload
from app.local_cache import LocalCache
from app.profiles import ProfileRepository
from app.scan_pipeline import ScanInProgress, ScanOutcome, ScanPipeline
from app.session import SessionContext
from app.supabase_client import PersistenceError, get_supabase

logger = logging.getLogger("uvicorn.error")


# -----------------------------
# Wiring
# -----------------------------
@dataclass
class Services:
    profiles: ProfileRepository
    recorder: HistoryRecorder
    pipeline: ScanPipeline
    session: SessionContext


@lru_cache()
def get_services() -> Services:
    store = SupabaseStore()
    cache = LocalCache()
    recorder = HistoryRecorder(store, cache)
    session = SessionContext(cache)

    last_user = {"id": None}

    def _forget_signed_out(ctx: SessionContext):
        if ctx.user_id is None and last_user["id"]:
            recorder.forget(last_user["id"])
        last_user["id"] = ctx.user_id

    session.subscribe(_forget_signed_out)
    return Services(
        profiles=ProfileRepository(store, cache),
        recorder=recorder,
        pipeline=ScanPipeline(AnalysisClient(), recorder),
        session=session,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    session = get_services().session
    try:
        session.bind_auth(get_supabase().auth)
    except PersistenceError as e:
        logger.warning(f"Auth listener not bound: {e}")
    yield
    session.unbind_auth()


app = FastAPI(lifespan=lifespan)

# -----------------------------
# Middleware
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # replace "*" with your frontend URL in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
@app.head("/")
def root():
    return {"message": "VitalSense scan API"}


# -----------------------------
# Request models
# -----------------------------
class ProfileInput(BaseModel):
    name: str
    condition: HealthCondition = HealthCondition.NONE
    custom_condition_name: Optional[str] = None
    additional_context: List[str] = Field(default_factory=list)
    current_symptoms: List[str] = Field(default_factory=list)
    language: AppLanguage = AppLanguage.EN


class SignInInput(BaseModel):
    user_id: str


# -----------------------------
# Helpers
# -----------------------------
def _require_profile(services: Services, user_id: str) -> UserProfile:
    try:
        profile = services.profiles.load(user_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=f"Profile store unavailable: {e}")
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found. Complete onboarding first.")
    return profile


def _scan_response(outcome: Optional[ScanOutcome]) -> dict:
    if outcome is None:
        return {"dismissed": True}
    body = {"result": result_to_dict(outcome.result)}
    if outcome.history_item is not None:
        body["history_id"] = outcome.history_item.id
        body["timestamp"] = outcome.history_item.timestamp
    return body


def _run_scan(services: Services, image, profile: UserProfile, user_id: str,
              background_tasks: BackgroundTasks) -> dict:
    try:
        ticket = services.pipeline.start(user_id)
    except ScanInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    outcome = services.pipeline.run(ticket, image, profile, user_id=user_id,
                                    dispatch=background_tasks.add_task)
    body = _scan_response(outcome)
    body["ticket_id"] = ticket.id
    return body


# -----------------------------
# Scan endpoints
# -----------------------------
@app.post("/scan")
def scan_upload(background_tasks: BackgroundTasks, user_id: str = Form(...),
                file: UploadFile = File(...), services: Services = Depends(get_services)):
    profile = _require_profile(services, user_id)
    try:
        image = from_upload(file.file.read())
    except InvalidImage as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(f"Scan upload from {user_id}: {image.width}x{image.height}")
    return _run_scan(services, image, profile, user_id, background_tasks)


@app.post("/scan/camera")
def scan_camera(background_tasks: BackgroundTasks, user_id: str = Form(...),
                services: Services = Depends(get_services)):
    profile = _require_profile(services, user_id)
    try:
        with CaptureSession() as session:
            image = session.capture()
    except PermissionDenied as e:
        raise HTTPException(
            status_code=403,
            detail=f"{e} Upload a photo of the label with POST /scan instead.",
        )
    except InvalidImage as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _run_scan(services, image, profile, user_id, background_tasks)


@app.post("/scan/{user_id}/dismiss")
def dismiss_scan(user_id: str, services: Services = Depends(get_services)):
    """Closes the result view: the in-flight scan's result will be discarded."""
    ticket = services.pipeline.dismiss(user_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail="No scan in progress")
    return {"ticket_id": ticket.id, "dismissed": True}


# -----------------------------
# Profile endpoints
# -----------------------------
@app.get("/profile/{user_id}")
def get_profile(user_id: str, services: Services = Depends(get_services)):
    return profile_to_dict(_require_profile(services, user_id))


@app.put("/profile/{user_id}")
def put_profile(user_id: str, data: ProfileInput, background_tasks: BackgroundTasks,
                services: Services = Depends(get_services)):
    profile = UserProfile(
        name=data.name,
        condition=data.condition,
        custom_condition_name=data.custom_condition_name,
        additional_context=data.additional_context,
        current_symptoms=data.current_symptoms,
        language=data.language,
    )
    services.profiles.save(user_id, profile, dispatch=background_tasks.add_task)
    if services.session.user_id == user_id:
        services.session.set_profile(profile)
    return profile_to_dict(profile)


# -----------------------------
# History endpoints
# -----------------------------
@app.get("/history/{user_id}")
def get_history(user_id: str, limit: int = HISTORY_LIMIT, favorites_only: bool = False,
                services: Services = Depends(get_services)):
    items = services.recorder.load(user_id, limit=limit)
    if favorites_only:
        items = services.recorder.favorites(user_id)
    return [history_item_to_dict(i) for i in items]


@app.post("/history/{user_id}/{scan_id}/favorite")
def toggle_favorite(user_id: str, scan_id: str, background_tasks: BackgroundTasks,
                    services: Services = Depends(get_services)):
    try:
        state = services.recorder.toggle_favorite(user_id, scan_id, dispatch=background_tasks.add_task)
    except KeyError:
        raise HTTPException(status_code=404, detail="Scan not found")
    return {"id": scan_id, "is_favorite": state}


# -----------------------------
# Session endpoints
# -----------------------------
@app.post("/session/sign-in")
def sign_in(data: SignInInput, services: Services = Depends(get_services)):
    services.session.sign_in(data.user_id)
    return {"user_id": services.session.user_id, "has_profile": services.session.profile is not None}


@app.post("/session/sign-out")
def sign_out(services: Services = Depends(get_services)):
    services.session.sign_out()
    return {"user_id": None}
