import io
import json
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional

import cv2
import numpy as np
import pytest
from PIL import Image

from app.core.config import get_settings
from app.schemas.payment import (
    CardConfirmation,
    PaymentIntent,
    PaymentMethod,
    PaymentStatus,
)
from app.services.payment_gate import PaymentGate
from app.services.session import SessionController
from app.services.verdict_service import VerdictService


@pytest.fixture(autouse=True)
def _settings(tmp_path, monkeypatch):
    """Fast, isolated settings for every test."""
    monkeypatch.setenv("CHECKLANCE_TMP", str(tmp_path / "scratch"))
    monkeypatch.setenv("VIDEO_SETTLE_DELAY", "0")
    monkeypatch.setenv("PAYMENT_POLL_INTERVAL", "0")
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_dummy")
    monkeypatch.setenv("STRIPE_PUBLISHABLE_KEY", "pk_test_dummy")
    monkeypatch.setenv("GEMINI_API_KEY", "gm_test_dummy")
    monkeypatch.setenv("ENV", "test")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_jpeg(width: int = 640, height: int = 480, noise: bool = False) -> bytes:
    if noise:
        arr = np.random.default_rng(7).integers(0, 256, (height, width, 3), dtype=np.uint8)
        im = Image.fromarray(arr)
    else:
        im = Image.new("RGB", (width, height), (30, 140, 60))
    buf = io.BytesIO()
    im.save(buf, format="JPEG", quality=95)
    return buf.getvalue()


def make_video(path: Path, seconds: float, fps: int = 10, width: int = 320, height: int = 240) -> bytes:
    """Write an MJPG/AVI clip whose frame i is flat gray with level 2*i."""
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), fps, (width, height))
    assert writer.isOpened()
    try:
        for i in range(int(seconds * fps)):
            frame = np.full((height, width, 3), min(2 * i, 255), dtype=np.uint8)
            writer.write(frame)
    finally:
        writer.release()
    return path.read_bytes()


VERDICT_JSON = {
    "verdict": "PENALTY",
    "confidence": 82,
    "explanation": "Contato do zagueiro no pé do atacante dentro da área.",
    "rule_citation": "Law 12",
    "key_factors": ["Contact inside area"],
}


class FakeModels:
    def __init__(self, text: Optional[str]) -> None:
        self.text = text
        self.calls: List[dict] = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(text=self.text)


class FakeGenAI:
    """Stands in for google.genai.Client; only the async models API is used."""

    def __init__(self, text: Optional[str] = json.dumps(VERDICT_JSON)) -> None:
        self.models = FakeModels(text)
        self.aio = SimpleNamespace(models=self.models)

    @property
    def calls(self) -> List[dict]:
        return self.models.calls


class FakeCollaborator:
    def __init__(
        self,
        intent: Optional[PaymentIntent] = None,
        statuses: Optional[List[str]] = None,
        confirmation: Optional[CardConfirmation] = None,
        create_error: Optional[Exception] = None,
    ) -> None:
        self.intent = intent or PaymentIntent(
            id="pi_test", client_secret="pi_test_secret_abc", status=PaymentStatus.REQUIRES_PAYMENT_METHOD
        )
        self.statuses = list(statuses or ["succeeded"])
        self.confirmation = confirmation or CardConfirmation(status=PaymentStatus.SUCCEEDED)
        self.create_error = create_error
        self.created: List[tuple] = []
        self.confirmed: List[tuple] = []
        self.polled: List[str] = []

    async def create_payment_intent(self, amount, method=PaymentMethod.CARD):
        if self.create_error is not None:
            raise self.create_error
        self.created.append((amount, method))
        return self.intent

    async def confirm_card_payment(self, client_secret, payment_method):
        self.confirmed.append((client_secret, payment_method))
        return self.confirmation

    async def get_payment_status(self, intent_id):
        self.polled.append(intent_id)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return PaymentStatus(status)


def make_controller(collaborator=None, genai=None) -> SessionController:
    collaborator = collaborator or FakeCollaborator()
    genai = genai or FakeGenAI()
    return SessionController(
        gate_factory=lambda: PaymentGate(collaborator),
        verdicts=lambda: VerdictService(genai),
    )


@pytest.fixture
def fake_genai():
    return FakeGenAI()


@pytest.fixture
def collaborator():
    return FakeCollaborator()
