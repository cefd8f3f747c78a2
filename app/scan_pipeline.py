# app/scan_pipeline.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional
import logging
import threading
import uuid

from app.analysis_client import AnalysisClient
from app.background import Dispatch
from app.data_model import ScanHistoryItem, ScanResult, UserProfile
from app.history import HistoryRecorder
from app.image_capture import CapturedImage
from app.profile_context import build_profile_context

logger = logging.getLogger("uvicorn.error")

ANONYMOUS = ""


class ScanInProgress(Exception):
    pass


@dataclass
class ScanTicket:
    """Handle for one scan; cancel() discards the result if it arrives later."""
    user_id: str = ANONYMOUS
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ScanOutcome:
    result: ScanResult
    history_item: Optional[ScanHistoryItem] = None


class ScanPipeline:
    """
    capture -> profile context -> analyze -> record, strictly in order.

    Each user has at most one scan outstanding; start() refuses a second one
    instead of queueing it. Different users scan independently.
    """

    def __init__(self, analysis_client: AnalysisClient, recorder: HistoryRecorder):
        self.analysis_client = analysis_client
        self.recorder = recorder
        self._in_flight: Dict[str, ScanTicket] = {}
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        with self._lock:
            return bool(self._in_flight)

    def is_busy(self, user_id: Optional[str] = None) -> bool:
        with self._lock:
            return (user_id or ANONYMOUS) in self._in_flight

    def start(self, user_id: Optional[str] = None) -> ScanTicket:
        key = user_id or ANONYMOUS
        with self._lock:
            if key in self._in_flight:
                raise ScanInProgress("An analysis is already running.")
            ticket = ScanTicket(user_id=key)
            self._in_flight[key] = ticket
        return ticket

    def dismiss(self, user_id: Optional[str] = None) -> Optional[ScanTicket]:
        """Cancel the user's outstanding scan, if any, and return its ticket."""
        with self._lock:
            ticket = self._in_flight.get(user_id or ANONYMOUS)
        if ticket is not None:
            ticket.cancel()
            logger.info(f"Scan {ticket.id} dismissed")
        return ticket

    def _finish(self, ticket: ScanTicket) -> None:
        with self._lock:
            if self._in_flight.get(ticket.user_id) is ticket:
                del self._in_flight[ticket.user_id]

    def run(self, ticket: ScanTicket, image: CapturedImage, profile: UserProfile,
            user_id: Optional[str] = None, dispatch: Optional[Dispatch] = None) -> Optional[ScanOutcome]:
        try:
            ctx = build_profile_context(profile)
            result = self.analysis_client.analyze(image.data_base64, ctx)
        finally:
            self._finish(ticket)

        if ticket.cancelled:
            logger.info(f"Discarding result for dismissed scan: {result.product_name}")
            return None

        item = None
        if user_id and result.failure is None:
            item = self.recorder.record(user_id, result, dispatch=dispatch)
        return ScanOutcome(result=result, history_item=item)

    def scan(self, image: CapturedImage, profile: UserProfile, user_id: Optional[str] = None,
             dispatch: Optional[Dispatch] = None) -> Optional[ScanOutcome]:
        return self.run(self.start(user_id), image, profile, user_id=user_id, dispatch=dispatch)
