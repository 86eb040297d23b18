from typing import Optional

from fastapi import APIRouter, File, HTTPException, UploadFile

from app.core.config import get_settings
from app.core.errors import InvalidTransition, OversizedAsset
from app.core.logger import get_logger
from app.schemas.media import MediaAsset
from app.schemas.session import FocusRequest, PayRequest
from app.services.session import SessionController
from app.services.session_store import get_session_store
from app.workers.background_tasks import enqueue_payment_completion, get_task_runner

router = APIRouter()
log = get_logger(__name__)


def _controller(session_id: str) -> SessionController:
    controller = get_session_store().get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return controller


def _view(controller: SessionController) -> dict:
    return controller.snapshot().model_dump(mode="json")


async def _read_limited(file: UploadFile, limit: int) -> Optional[bytes]:
    """Read the upload in chunks; None as soon as it grows past `limit`."""
    chunks = []
    size = 0
    while True:
        chunk = await file.read(1024 * 1024)  # 1MB chunks
        if not chunk:
            break
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("")
def create_session():
    """Open a new analysis session on the landing step."""
    return _view(get_session_store().create())


@router.get("/{session_id}")
def get_session(session_id: str):
    return _view(_controller(session_id))


@router.delete("/{session_id}")
def delete_session(session_id: str):
    if not get_session_store().discard(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"ok": True}


@router.post("/{session_id}/start")
def start(session_id: str):
    controller = _controller(session_id)
    try:
        controller.start()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.detail)
    return _view(controller)


@router.post("/{session_id}/media")
async def upload_media(session_id: str, file: UploadFile = File(...)):
    """Select (or replace) the photo/video for this session and normalize it."""
    controller = _controller(session_id)
    limit = get_settings().MAX_UPLOAD_BYTES
    data = await _read_limited(file, limit)
    try:
        if data is None:
            # Never buffer more than the limit; record the rejection like any other
            controller.reject_media(OversizedAsset(f"Upload exceeds {limit} bytes"))
        else:
            asset = MediaAsset(
                data=data,
                mime_type=file.content_type or "application/octet-stream",
                filename=file.filename,
            )
            await controller.select_media(asset)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.detail)
    return _view(controller)


@router.post("/{session_id}/focus")
def set_focus(session_id: str, body: FocusRequest):
    controller = _controller(session_id)
    try:
        controller.set_focus(body.focus)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.detail)
    return _view(controller)


@router.post("/{session_id}/checkout")
def checkout(session_id: str):
    controller = _controller(session_id)
    try:
        controller.checkout()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.detail)
    return _view(controller)


@router.post("/{session_id}/back")
def back(session_id: str):
    controller = _controller(session_id)
    try:
        controller.back()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.detail)
    return _view(controller)


@router.post("/{session_id}/pay")
async def pay(session_id: str, body: PayRequest):
    """Pay the analysis fee and, once settled, run the analysis.

    Cards are confirmed within this request. A payment that then waits on
    the payer (PIX QR code, 3-D Secure redirect) returns at once with
    `pix_qr_code` / `redirect_url` set; settlement and analysis continue in
    the background and the client follows progress with GET /session/{id}.
    """
    controller = _controller(session_id)
    try:
        opened = await controller.open_payment(body.method)
        if opened and await controller.authorize(body.payment_method):
            if controller.awaiting_settlement and get_task_runner().running:
                await enqueue_payment_completion(controller)
            else:
                await controller.settle_payment()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.detail)
    return _view(controller)


@router.post("/{session_id}/reset")
def reset(session_id: str):
    controller = _controller(session_id)
    controller.reset()
    return _view(controller)
