from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import routes_health, routes_payments, routes_session
from app.core.config import get_settings
from app.services.stripe_client import get_stripe_client
from app.workers.background_tasks import get_task_runner
from app.workers.scheduler import get_scheduler, install_housekeeping


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await get_task_runner().start()
    sched = get_scheduler()
    await sched.start()
    install_housekeeping(sched)
    try:
        yield
    finally:
        # Shutdown
        await get_scheduler().stop()
        await get_task_runner().stop()
        await get_stripe_client().aclose()


app = FastAPI(
    title="CheckLance API",
    description="Paid, AI-assisted referee verdicts for football plays",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid {field}: {first.get('msg', 'bad request')}" if field else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


# Routers
app.include_router(routes_session.router, prefix="/session", tags=["Session"])
app.include_router(routes_payments.router, prefix="/api", tags=["Payments"])
app.include_router(routes_health.router, prefix="/health", tags=["Health"])


@app.get("/")
def root():
    return {"status": "CheckLance backend running"}
