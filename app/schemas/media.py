from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class MediaAsset(BaseModel):
    """A user-selected upload, held in memory until normalized.

    `kind` is derived from the declared MIME type; None means the type is
    neither image/* nor video/* and the asset will be rejected.
    """

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    mime_type: str
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def kind(self) -> Optional[MediaKind]:
        major = (self.mime_type or "").split("/", 1)[0].strip().lower()
        if major == "image":
            return MediaKind.IMAGE
        if major == "video":
            return MediaKind.VIDEO
        return None


class ImagePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["image"] = "image"
    data: str = Field(repr=False)  # base64, no data-URL prefix
    mime_type: str = "image/jpeg"


class FrameSequencePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["frames"] = "frames"
    frames: List[str] = Field(repr=False)  # base64 JPEGs in timestamp order
    timestamps: List[float] = Field(default_factory=list)


NormalizedPayload = Union[ImagePayload, FrameSequencePayload]
