from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from app.schemas.analysis import AnalysisFocus, AnalysisResult
from app.schemas.media import MediaKind
from app.schemas.payment import PaymentMethod, PaymentStatus, PixQrCode


class SessionStep(str, Enum):
    LANDING = "LANDING"
    UPLOAD = "UPLOAD"
    PAYMENT = "PAYMENT"
    ANALYZING = "ANALYZING"
    RESULT = "RESULT"


class SessionEvent(str, Enum):
    START = "start"
    SELECT_MEDIA = "select_media"
    CHECKOUT = "checkout"
    BACK = "back"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    VERDICT_READY = "verdict_ready"
    ANALYSIS_FAILED = "analysis_failed"
    RESET = "reset"


class SessionSnapshot(BaseModel):
    """Client-facing view of a session. Never includes media bytes."""

    session_id: str
    step: SessionStep
    media_kind: Optional[MediaKind] = None
    filename: Optional[str] = None
    frame_count: int = 0
    normalizing: bool = False
    focus: AnalysisFocus = AnalysisFocus.GENERAL
    price: float
    currency: str
    payment_status: Optional[PaymentStatus] = None
    payment_pending: bool = False
    has_credit: bool = False
    pix_qr_code: Optional[PixQrCode] = None
    # 3-D Secure (or other) page the payer must visit to finish a card payment
    redirect_url: Optional[str] = None
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_kind: Optional[str] = None


class FocusRequest(BaseModel):
    focus: AnalysisFocus


class PayRequest(BaseModel):
    method: PaymentMethod = PaymentMethod.CARD
    payment_method: Optional[str] = None  # Stripe PaymentMethod id for card payments
