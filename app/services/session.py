"""
Session state machine: LANDING -> UPLOAD -> PAYMENT -> ANALYZING -> RESULT.

`transition()` is the pure step function; SessionController runs the
side effects (normalize, pay, analyze) at the transition boundaries and
records failures on the session instead of raising them, so every error
leaves the user on a recoverable step.

Work that outlives its trigger (video sampling, PIX polling, inference)
is tagged with the session generation it started under. Reset, back and
re-selection bump the generation; late results from an older generation
are dropped.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol, Tuple

from app.core.config import get_settings
from app.core.errors import CheckLanceError, InvalidTransition, MediaLoadError
from app.core.logger import get_logger
from app.schemas.analysis import AnalysisFocus, AnalysisResult
from app.schemas.media import FrameSequencePayload, MediaAsset, NormalizedPayload
from app.schemas.payment import PaymentIntent, PaymentMethod, PaymentRecord, PaymentStatus
from app.schemas.session import SessionEvent, SessionSnapshot, SessionStep
from app.services import media_normalizer
from app.services.payment_gate import PaymentGate, awaiting_card

log = get_logger(__name__)

S = SessionStep
E = SessionEvent

TRANSITIONS: Dict[Tuple[SessionStep, SessionEvent], SessionStep] = {
    (S.LANDING, E.START): S.UPLOAD,
    (S.UPLOAD, E.SELECT_MEDIA): S.UPLOAD,
    (S.UPLOAD, E.CHECKOUT): S.PAYMENT,
    (S.PAYMENT, E.BACK): S.UPLOAD,
    (S.PAYMENT, E.PAYMENT_FAILED): S.UPLOAD,
    (S.PAYMENT, E.PAYMENT_SUCCEEDED): S.ANALYZING,
    (S.ANALYZING, E.VERDICT_READY): S.RESULT,
    (S.ANALYZING, E.ANALYSIS_FAILED): S.UPLOAD,
}


def transition(step: SessionStep, event: SessionEvent) -> SessionStep:
    if event is E.RESET:
        return S.LANDING
    try:
        return TRANSITIONS[(step, event)]
    except KeyError:
        raise InvalidTransition(f"{event.value} is not allowed from {step.value}") from None


class VerdictRequester(Protocol):
    async def request_verdict(self, payload: NormalizedPayload, focus: AnalysisFocus) -> AnalysisResult: ...


@dataclass
class Session:
    session_id: str
    step: SessionStep = S.LANDING
    asset: Optional[MediaAsset] = None
    payload: Optional[NormalizedPayload] = None
    normalizing: bool = False
    focus: AnalysisFocus = AnalysisFocus.GENERAL
    payment_method: Optional[PaymentMethod] = None
    payment_pending: bool = False
    intent: Optional[PaymentIntent] = None
    payment: Optional[PaymentRecord] = None
    # A settled payment whose analysis failed; spent by the next attempt
    credit: Optional[PaymentRecord] = None
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_kind: Optional[str] = None
    generation: int = 0
    touched_at: float = field(default_factory=time.monotonic)


class SessionController:
    def __init__(
        self,
        gate_factory: Callable[[], PaymentGate],
        verdicts: Callable[[], VerdictRequester],
        session_id: Optional[str] = None,
    ) -> None:
        self._gate_factory = gate_factory
        self._verdicts = verdicts
        self.gate = gate_factory()
        self.session = Session(session_id=session_id or uuid.uuid4().hex)

    # -------------------------
    # Helpers
    # -------------------------
    def _apply(self, event: SessionEvent) -> None:
        before = self.session.step
        self.session.step = transition(before, event)
        self.session.touched_at = time.monotonic()
        if before is not self.session.step:
            log.info("Session %s: %s -> %s (%s)", self.session.session_id, before.value, self.session.step.value, event.value)

    def _clear_error(self) -> None:
        self.session.error = None
        self.session.error_code = None
        self.session.error_kind = None

    def _record_error(self, error: CheckLanceError) -> None:
        self.session.error = error.user_message
        self.session.error_code = error.code
        self.session.error_kind = error.kind
        if error.kind == "configuration":
            log.error("Session %s: configuration error %s: %s", self.session.session_id, error.code, error.detail)
        else:
            log.warning("Session %s: %s: %s", self.session.session_id, error.code, error.detail)

    def _bump_generation(self) -> int:
        self.session.generation += 1
        return self.session.generation

    def _stale(self, generation: int) -> bool:
        return generation != self.session.generation

    def _abandon_payment(self) -> None:
        self.gate.cancel()
        self.gate = self._gate_factory()
        self.session.payment_pending = False
        self.session.intent = None

    def _fail_payment(self, error: CheckLanceError) -> None:
        self.session.payment_pending = False
        self.session.intent = None
        self._record_error(error)
        self._apply(E.PAYMENT_FAILED)

    def _track_status(self, generation: int, status: PaymentStatus) -> None:
        intent = self.session.intent
        if self._stale(generation) or intent is None:
            return
        self.session.intent = intent.model_copy(update={"status": status})
        self.session.touched_at = time.monotonic()

    # -------------------------
    # Events
    # -------------------------
    def start(self) -> None:
        self._apply(E.START)

    async def select_media(self, asset: MediaAsset) -> None:
        """Replace the selected media and normalize it."""
        self._apply(E.SELECT_MEDIA)
        self._clear_error()
        generation = self._bump_generation()
        self.session.asset = asset
        self.session.payload = None
        self.session.normalizing = True

        try:
            payload = await media_normalizer.normalize(asset)
        except CheckLanceError as e:
            if not self._stale(generation):
                self._drop_media(e)
            return

        if self._stale(generation):
            log.info("Session %s: discarding frames for a replaced asset", self.session.session_id)
            return
        self.session.payload = payload
        self.session.normalizing = False

    def reject_media(self, error: CheckLanceError) -> None:
        """Refuse an upload that was never buffered (e.g. over the size limit)."""
        self._apply(E.SELECT_MEDIA)
        self._bump_generation()
        self._drop_media(error)

    def _drop_media(self, error: CheckLanceError) -> None:
        self.session.asset = None
        self.session.payload = None
        self.session.normalizing = False
        self._record_error(error)

    def set_focus(self, focus: AnalysisFocus) -> None:
        if self.session.step not in (S.UPLOAD, S.PAYMENT) or self.session.payment_pending:
            raise InvalidTransition("Focus can only change before payment")
        self.session.focus = focus
        self.session.touched_at = time.monotonic()

    def checkout(self) -> None:
        s = self.session
        if s.asset is None or s.payload is None or s.normalizing:
            raise InvalidTransition("Select a file and wait for it to be processed")
        self._apply(E.CHECKOUT)
        self._clear_error()

    def back(self) -> None:
        self._apply(E.BACK)
        self._bump_generation()
        self._abandon_payment()

    def reset(self) -> None:
        self._abandon_payment()
        self.session = Session(
            session_id=self.session.session_id,
            generation=self.session.generation + 1,
        )
        log.info("Session %s reset", self.session.session_id)

    async def open_payment(self, method: PaymentMethod) -> bool:
        """Start a payment attempt. Returns False when the call was a no-op."""
        s = self.session
        if s.step is not S.PAYMENT:
            raise InvalidTransition(f"Payment is not allowed from {s.step.value}")
        if s.payment_pending:
            log.info("Session %s: payment already pending; ignoring", s.session_id)
            return False

        s.payment_pending = True
        s.payment_method = method
        self._clear_error()
        if s.credit is not None:
            return True

        try:
            s.intent = await self.gate.create_intent(method)
        except CheckLanceError as e:
            self._fail_payment(e)
            return False
        return True

    async def authorize(self, payment_method: Optional[str] = None) -> bool:
        """Confirm an open card payment with the payer's PaymentMethod.

        Returns True while the payment can still settle. The confirmed intent
        (new status, 3-D Secure redirect) is kept on the session for the client.
        """
        s = self.session
        if not s.payment_pending or s.payment_method is None:
            return False
        if s.credit is not None:
            return True
        if s.intent is None:
            return False
        if s.payment_method is not PaymentMethod.CARD or not awaiting_card(s.intent):
            return True

        generation = s.generation
        try:
            intent = await self.gate.confirm_card(s.intent, payment_method)
        except CheckLanceError as e:
            if not self._stale(generation):
                self._fail_payment(e)
            return False
        if self._stale(generation):
            return False
        s.intent = intent
        s.touched_at = time.monotonic()
        return True

    @property
    def awaiting_settlement(self) -> bool:
        """True when settling means waiting on the payer (PIX scan, 3-D Secure)."""
        s = self.session
        return (
            s.payment_pending
            and s.credit is None
            and s.intent is not None
            and s.intent.status is not PaymentStatus.SUCCEEDED
        )

    async def settle_payment(self) -> None:
        """Wait for the open payment to settle, then run the analysis."""
        s = self.session
        if not s.payment_pending or s.payment_method is None:
            return
        generation = s.generation

        try:
            if s.credit is not None:
                record = s.credit
                log.info("Session %s: reusing unspent payment %s", s.session_id, record.intent_id)
            elif s.intent is not None:
                record = await self.gate.settle(
                    s.intent,
                    s.payment_method,
                    on_status=lambda status: self._track_status(generation, status),
                )
            else:
                return
        except CheckLanceError as e:
            if not self._stale(generation):
                self._fail_payment(e)
            return

        if self._stale(generation):
            log.warning("Session %s: payment %s settled after the session moved on", s.session_id, record.intent_id)
            return

        s.payment = record
        s.credit = None
        s.intent = None
        s.payment_pending = False
        self._apply(E.PAYMENT_SUCCEEDED)
        await self.analyze()

    async def complete_payment(self, payment_method: Optional[str] = None) -> None:
        """Confirm (cards), settle, then run the analysis on success."""
        if await self.authorize(payment_method):
            await self.settle_payment()

    async def pay(self, method: PaymentMethod, payment_method: Optional[str] = None) -> None:
        if await self.open_payment(method):
            await self.complete_payment(payment_method)

    async def analyze(self) -> None:
        s = self.session
        if s.step is not S.ANALYZING:
            raise InvalidTransition(f"Analysis is not allowed from {s.step.value}")
        if s.payment is None or not s.payment.succeeded:
            raise InvalidTransition("Analysis requires a settled payment")
        generation = s.generation

        try:
            if s.payload is None:
                raise MediaLoadError("No normalized media to analyze")
            result = await self._verdicts().request_verdict(s.payload, s.focus)
        except CheckLanceError as e:
            if self._stale(generation):
                return
            s.credit = s.payment
            s.payment = None
            self._record_error(e)
            self._apply(E.ANALYSIS_FAILED)
            return

        if self._stale(generation):
            return
        s.result = result
        self._apply(E.VERDICT_READY)

    # -------------------------
    # View
    # -------------------------
    def _payment_status(self) -> Optional[PaymentStatus]:
        s = self.session
        record = s.payment or s.credit
        if record is not None:
            return record.status
        return s.intent.status if s.intent else None

    def snapshot(self) -> SessionSnapshot:
        s = self.session
        if isinstance(s.payload, FrameSequencePayload):
            frame_count = len(s.payload.frames)
        else:
            frame_count = 1 if s.payload is not None else 0
        return SessionSnapshot(
            session_id=s.session_id,
            step=s.step,
            media_kind=s.asset.kind if s.asset else None,
            filename=s.asset.filename if s.asset else None,
            frame_count=frame_count,
            normalizing=s.normalizing,
            focus=s.focus,
            price=self.gate.amount,
            currency=get_settings().CURRENCY,
            payment_status=self._payment_status(),
            payment_pending=s.payment_pending,
            has_credit=s.credit is not None,
            pix_qr_code=s.intent.pix_qr_code if s.intent else None,
            redirect_url=s.intent.redirect_url if s.intent else None,
            result=s.result,
            error=s.error,
            error_code=s.error_code,
            error_kind=s.error_kind,
        )
