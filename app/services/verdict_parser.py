"""
Turn the model's raw text into an AnalysisResult, or fail loudly.

No repair is attempted: a response that is empty, not JSON, missing a
field, mistyped, or carrying a verdict outside the closed set is an
error. Showing a guessed verdict would be worse than showing none.
"""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from app.core.errors import InferenceEmptyResponse, InferenceMalformedResponse
from app.core.logger import get_logger
from app.schemas.analysis import AnalysisResult

log = get_logger(__name__)


def parse_verdict(text: Optional[str]) -> AnalysisResult:
    if text is None or not text.strip():
        raise InferenceEmptyResponse("Model returned no text")
    try:
        return AnalysisResult.model_validate_json(text)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "<root>" for err in e.errors()})
        log.warning("Rejected model response; invalid fields: %s", ", ".join(fields))
        raise InferenceMalformedResponse(f"Response does not match schema: {', '.join(fields)}") from e
