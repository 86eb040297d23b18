import logging
from typing import Optional

from app.core.config import get_settings

_configured = False

# Third-party loggers that echo request URLs (Stripe, Gemini) at INFO
_NOISY = ("httpx", "httpcore", "google_genai")


def _configure_root_logger() -> None:
    global _configured
    if _configured:
        return
    level = logging.getLevelName(get_settings().LOG_LEVEL.upper())
    logging.basicConfig(
        level=level if isinstance(level, int) else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Module logger; the root logger is configured on first use."""
    _configure_root_logger()
    return logging.getLogger(name or "checklance")
