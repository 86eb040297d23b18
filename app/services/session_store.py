"""
In-memory registry of live sessions.

Sessions (and the media they hold) live only in process memory and are
dropped after SESSION_TTL seconds without activity.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional

from app.core.config import get_settings
from app.core.logger import get_logger
from app.services.genai_client import get_genai_client
from app.services.payment_gate import PaymentGate
from app.services.session import SessionController
from app.services.stripe_client import get_stripe_client
from app.services.verdict_service import VerdictService

log = get_logger(__name__)


def default_controller() -> SessionController:
    return SessionController(
        gate_factory=lambda: PaymentGate(get_stripe_client()),
        verdicts=lambda: VerdictService(get_genai_client()),
    )


class SessionStore:
    def __init__(self, factory: Callable[[], SessionController] = default_controller) -> None:
        self._factory = factory
        self._sessions: Dict[str, SessionController] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> SessionController:
        controller = self._factory()
        self._sessions[controller.session.session_id] = controller
        log.info("Session %s created", controller.session.session_id)
        return controller

    def get(self, session_id: str) -> Optional[SessionController]:
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> bool:
        controller = self._sessions.pop(session_id, None)
        if controller is None:
            return False
        controller.reset()
        return True

    async def expire_idle(self, max_idle_sec: Optional[float] = None) -> int:
        ttl = max_idle_sec if max_idle_sec is not None else get_settings().SESSION_TTL
        now = time.monotonic()
        expired = [
            sid for sid, c in self._sessions.items()
            if now - c.session.touched_at > ttl and not c.session.payment_pending
        ]
        for sid in expired:
            self.discard(sid)
        if expired:
            log.info("Expired %d idle sessions", len(expired))
        return len(expired)


_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        _store = SessionStore()
    return _store
