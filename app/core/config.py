import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Stripe
    STRIPE_PUBLISHABLE_KEY: str = ""
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"

    # Gemini
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    INFERENCE_TIMEOUT: float = 120.0

    # Pricing (major currency units)
    ANALYSIS_PRICE: float = 10.00
    CURRENCY: str = "brl"

    # Payment polling (PIX, cards awaiting 3-D Secure)
    PAYMENT_POLL_INTERVAL: float = 3.0
    PAYMENT_POLL_TIMEOUT: float = 1800.0
    # Creates mock_ intents instead of calling Stripe; never honoured in production
    PAYMENT_MOCK_MODE: bool = False
    # Where Stripe sends the payer back after a redirect_to_url next action
    PAYMENT_RETURN_URL: str = ""

    # Media
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024
    VIDEO_FRAME_COUNT: int = 8
    FRAME_MAX_HEIGHT: int = 640
    FRAME_JPEG_QUALITY: int = 80
    VIDEO_SETTLE_DELAY: float = 0.2

    # Sessions
    SESSION_TTL: float = 3600.0
    CHECKLANCE_TMP: str = "./.tmp"

    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # General
    ENV: str = os.getenv("ENV", "development")
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def mock_payments(self) -> bool:
        return self.PAYMENT_MOCK_MODE and self.ENV != "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Ensure .env is loaded once
    load_dotenv(override=False)
    return Settings()
