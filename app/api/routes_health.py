from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.core.config import get_settings

router = APIRouter()


@router.get("/ready")
def readiness_probe():
    """Ready only when both paid collaborators have credentials."""
    settings = get_settings()
    checks = {
        "payments": bool(settings.STRIPE_SECRET_KEY) or settings.mock_payments,
        "inference": bool(settings.GEMINI_API_KEY),
    }
    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "misconfigured", "checks": checks},
    )


@router.get("/live")
def liveness_probe():
    return {"status": "alive"}
