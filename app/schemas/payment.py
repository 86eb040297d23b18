from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from app.core.logger import get_logger

log = get_logger(__name__)


class PaymentStatus(str, Enum):
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    REQUIRES_CAPTURE = "requires_capture"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


class PaymentMethod(str, Enum):
    CARD = "card"
    PIX = "pix"


class PixQrCode(BaseModel):
    data: str
    image_url_png: Optional[str] = None
    image_url_svg: Optional[str] = None
    expires_at: Optional[int] = None


class PixDisplayQrCodeAction(BaseModel):
    type: Literal["pix_display_qr_code"]
    pix_display_qr_code: PixQrCode


class RedirectToUrl(BaseModel):
    url: str
    return_url: Optional[str] = None


class RedirectToUrlAction(BaseModel):
    type: Literal["redirect_to_url"]
    redirect_to_url: RedirectToUrl


NextAction = Annotated[
    Union[PixDisplayQrCodeAction, RedirectToUrlAction],
    Field(discriminator="type"),
]

_next_action_adapter: TypeAdapter = TypeAdapter(NextAction)


def parse_next_action(raw: Optional[Dict[str, Any]]) -> Optional[NextAction]:
    """Pick the variant matching `raw["type"]`; unknown types are dropped."""
    if not raw:
        return None
    try:
        return _next_action_adapter.validate_python(raw)
    except ValidationError:
        log.warning("Ignoring unsupported next_action type: %s", raw.get("type"))
        return None


class PaymentIntent(BaseModel):
    id: str
    client_secret: str
    status: PaymentStatus
    amount: Optional[int] = None  # minor units
    currency: Optional[str] = None
    next_action: Optional[NextAction] = None

    @classmethod
    def from_gateway(cls, data: Dict[str, Any]) -> "PaymentIntent":
        return cls(
            id=data["id"],
            client_secret=data.get("client_secret") or "",
            status=data.get("status") or PaymentStatus.REQUIRES_PAYMENT_METHOD,
            amount=data.get("amount"),
            currency=data.get("currency"),
            next_action=parse_next_action(data.get("next_action")),
        )

    @property
    def pix_qr_code(self) -> Optional[PixQrCode]:
        if isinstance(self.next_action, PixDisplayQrCodeAction):
            return self.next_action.pix_display_qr_code
        return None

    @property
    def redirect_url(self) -> Optional[str]:
        """Where the payer must authenticate (3-D Secure, bank app), if anywhere."""
        if isinstance(self.next_action, RedirectToUrlAction):
            return self.next_action.redirect_to_url.url
        return None


class CardConfirmation(BaseModel):
    status: Optional[PaymentStatus] = None
    next_action: Optional[NextAction] = None
    error: Optional[str] = None


class PaymentRecord(BaseModel):
    intent_id: str
    status: PaymentStatus
    method: PaymentMethod
    amount: float  # major units

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.SUCCEEDED
