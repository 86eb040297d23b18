"""
Media normalization: turn an uploaded still image or video into the
payload the vision model accepts.

- Images pass through untouched as a single base64 string (no resizing,
  no re-encoding).
- Videos are sampled into a fixed number of JPEG frames spread evenly
  across the timeline, each downscaled so height <= FRAME_MAX_HEIGHT.

Cheap checks (size, MIME category) run before any decoding. Video
decoding goes through a scratch file because OpenCV only reads from
paths; the file and the capture handle are released on every exit path.
"""

from __future__ import annotations

import asyncio
import base64
import io
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import cv2  # OpenCV for video frame extraction
import numpy as np
from PIL import Image, UnidentifiedImageError

from app.core.config import get_settings
from app.core.errors import MediaLoadError, OversizedAsset, UnsupportedFormat
from app.core.logger import get_logger
from app.schemas.media import (
    FrameSequencePayload,
    ImagePayload,
    MediaAsset,
    MediaKind,
    NormalizedPayload,
)

log = get_logger(__name__)

# Skips the black/blank frames many clips open with
LEAD_IN_SECONDS = 0.1

_VIDEO_SUFFIXES = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/webm": ".webm",
    "video/x-msvideo": ".avi",
    "video/x-matroska": ".mkv",
}


def validate_asset(asset: MediaAsset, max_bytes: Optional[int] = None) -> MediaKind:
    """Reject assets that are too large or of an unsupported kind."""
    limit = max_bytes if max_bytes is not None else get_settings().MAX_UPLOAD_BYTES
    if asset.size > limit:
        raise OversizedAsset(f"Asset is {asset.size} bytes; limit is {limit}")
    kind = asset.kind
    if kind is None:
        raise UnsupportedFormat(f"Unsupported MIME type: {asset.mime_type!r}")
    return kind


def sample_timestamps(duration: float, count: int) -> List[float]:
    """Evenly spaced sample times, nudged past the lead-in and clamped to duration."""
    return [min((duration / count) * i + LEAD_IN_SECONDS, duration) for i in range(count)]


def scaled_size(width: int, height: int, max_height: int) -> tuple[int, int]:
    if height <= max_height:
        return width, height
    return max(round(width * max_height / height), 1), max_height


async def normalize(asset: MediaAsset) -> NormalizedPayload:
    """Normalize a MediaAsset into an ImagePayload or FrameSequencePayload."""
    kind = validate_asset(asset)
    if kind is MediaKind.IMAGE:
        return _normalize_image(asset)
    return await _normalize_video(asset)


def _normalize_image(asset: MediaAsset) -> ImagePayload:
    # Pillow only sniffs the header here; the original bytes are what we send
    try:
        with Image.open(io.BytesIO(asset.data)) as im:
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        log.warning("Unreadable image %s: %s", asset.filename, e)
        raise MediaLoadError("Image could not be decoded") from e

    return ImagePayload(
        data=base64.b64encode(asset.data).decode(),
        mime_type=asset.mime_type,
    )


@contextmanager
def _decode_surface(asset: MediaAsset) -> Iterator[cv2.VideoCapture]:
    """Open the video for seeking; always releases the capture and scratch file."""
    tmp_dir = Path(get_settings().CHECKLANCE_TMP)
    tmp_dir.mkdir(parents=True, exist_ok=True)
    suffix = _VIDEO_SUFFIXES.get(asset.mime_type.lower(), Path(asset.filename or "").suffix or ".mp4")

    fd, path = tempfile.mkstemp(prefix="clip_", suffix=suffix, dir=tmp_dir)
    cap: Optional[cv2.VideoCapture] = None
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(asset.data)
        cap = cv2.VideoCapture(path)
        if not cap.isOpened():
            raise MediaLoadError("Unable to open video for reading")
        yield cap
    finally:
        if cap is not None:
            cap.release()
        Path(path).unlink(missing_ok=True)


def _read_metadata(cap: cv2.VideoCapture) -> tuple[float, int, float]:
    fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
    frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
    if fps <= 0 or frame_count <= 0:
        raise MediaLoadError("Video metadata unavailable")
    return fps, frame_count, frame_count / fps


def _capture_frame(
    cap: cv2.VideoCapture,
    timestamp: float,
    fps: float,
    frame_count: int,
    max_height: int,
    quality: int,
) -> str:
    """Seek to `timestamp`, rasterize, downscale and JPEG-encode one frame."""
    # A timestamp equal to the duration lands on the last decodable frame
    index = min(int(timestamp * fps), frame_count - 1)
    if not cap.set(cv2.CAP_PROP_POS_FRAMES, index):
        raise MediaLoadError(f"Seek to {timestamp:.2f}s failed")
    ok, frame = cap.read()
    if not ok or frame is None:
        raise MediaLoadError(f"No frame decoded at {timestamp:.2f}s")

    height, width = frame.shape[:2]
    out_w, out_h = scaled_size(width, height, max_height)
    if (out_w, out_h) != (width, height):
        frame = cv2.resize(frame, (out_w, out_h), interpolation=cv2.INTER_AREA)

    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise MediaLoadError(f"JPEG encoding failed at {timestamp:.2f}s")
    return base64.b64encode(np.asarray(buf).tobytes()).decode()


async def _normalize_video(asset: MediaAsset) -> FrameSequencePayload:
    settings = get_settings()
    count = settings.VIDEO_FRAME_COUNT

    try:
        with _decode_surface(asset) as cap:
            fps, frame_count, duration = _read_metadata(cap)
            # Give the decoder a moment before the first seek
            await asyncio.sleep(settings.VIDEO_SETTLE_DELAY)

            timestamps = sample_timestamps(duration, count)
            frames: List[str] = []
            # Strictly sequential: the capture handle is shared across iterations
            for ts in timestamps:
                frame_b64 = await asyncio.to_thread(
                    _capture_frame,
                    cap,
                    ts,
                    fps,
                    frame_count,
                    settings.FRAME_MAX_HEIGHT,
                    settings.FRAME_JPEG_QUALITY,
                )
                frames.append(frame_b64)
    except (cv2.error, OSError) as e:
        log.exception("Decoding failed while sampling %s", asset.filename)
        raise MediaLoadError(str(e)) from e

    log.info(
        "Sampled %d frames from %s (%.2fs @ %.1f fps)", len(frames), asset.filename, duration, fps
    )
    return FrameSequencePayload(frames=frames, timestamps=timestamps)
