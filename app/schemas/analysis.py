from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class AnalysisFocus(str, Enum):
    GENERAL = "GENERAL"
    OFFSIDE = "OFFSIDE"
    PENALTY = "PENALTY"
    HANDBALL = "HANDBALL"
    RED_CARD = "RED_CARD"
    GOAL_CHECK = "GOAL_CHECK"


class Verdict(str, Enum):
    VALID = "VALID"
    FOUL = "FOUL"
    OFFSIDE = "OFFSIDE"
    REVIEW_NEEDED = "REVIEW_NEEDED"
    PENALTY = "PENALTY"
    RED_CARD = "RED_CARD"
    YELLOW_CARD = "YELLOW_CARD"
    NO_INFRACTION = "NO_INFRACTION"


class AnalysisResult(BaseModel):
    """The referee verdict as returned by the model.

    Strict: every field is required and no type coercion is applied, so a
    response such as `{"confidence": "82"}` is rejected instead of fixed up.
    """

    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")

    verdict: Verdict
    confidence: float = Field(ge=0, le=100)
    explanation: str
    rule_citation: str
    key_factors: List[str]
