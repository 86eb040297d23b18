"""
Inference request builder: normalized media + analysis focus -> verdict.

One request per analysis, no retries, no streaming. The request carries
the media parts in temporal order, then a single instruction, plus a
response schema mirroring AnalysisResult so the model answers in JSON.
"""

from __future__ import annotations

import asyncio
import base64
from typing import List, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from app.core.config import get_settings
from app.core.errors import InferenceConfigError, InferenceError, InferenceTimeout
from app.core.logger import get_logger
from app.schemas.analysis import AnalysisFocus, AnalysisResult, Verdict
from app.schemas.media import FrameSequencePayload, ImagePayload, NormalizedPayload
from app.services.verdict_parser import parse_verdict

log = get_logger(__name__)

TEMPERATURE = 0.1

ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "verdict": types.Schema(
            type=types.Type.STRING,
            enum=[v.value for v in Verdict],
            description="The final decision on the play.",
        ),
        "confidence": types.Schema(
            type=types.Type.NUMBER,
            description="Confidence score between 0 and 100.",
        ),
        "explanation": types.Schema(
            type=types.Type.STRING,
            description="A detailed explanation of why this verdict was reached, in Brazilian Portuguese.",
        ),
        "rule_citation": types.Schema(
            type=types.Type.STRING,
            description="The specific IFAB Law of the Game applied (e.g. Law 12 - Fouls and Misconduct).",
        ),
        "key_factors": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(type=types.Type.STRING),
            description="Visual factors observed, most decisive first (e.g. 'Contact was below the knee').",
        ),
    },
    required=["verdict", "confidence", "explanation", "rule_citation", "key_factors"],
)

BASE_INSTRUCTION = (
    "You are a senior video assistant referee (VAR). "
    "Analyse the visual content provided with strict technical precision, "
    "applying the IFAB Laws of the Game."
)

FOCUS_INSTRUCTIONS = {
    AnalysisFocus.GENERAL: (
        "Scan the play broadly for any clear infraction: fouls, offside, handball or misconduct."
    ),
    AnalysisFocus.OFFSIDE: (
        "Focus on offside. Pay close attention to the attacker's position relative to the "
        "second-last defender and to the ball at the moment the pass is played."
    ),
    AnalysisFocus.PENALTY: (
        "Focus on a possible penalty. Verify whether the contact happened inside the penalty "
        "area and assess whether it was careless, reckless or a handball."
    ),
    AnalysisFocus.HANDBALL: (
        "Focus on handball. Assess whether the arm or hand was in a natural position, whether "
        "the contact was deliberate and whether it made the body silhouette unnaturally bigger."
    ),
    AnalysisFocus.RED_CARD: (
        "Focus on a possible red card. Assess excessive force, serious foul play, violent "
        "conduct or the denial of an obvious goal-scoring opportunity."
    ),
    AnalysisFocus.GOAL_CHECK: (
        "Focus on goal-line technology. Verify whether the whole of the ball crossed the "
        "whole of the goal line."
    ),
}

FRAMES_INSTRUCTION = (
    "These images are sequential frames taken from a video of the play, in chronological order. "
    "Analyse the dynamics of the movement, the physical contact, its intensity and intent "
    "across the sequence. Identify infractions, offside positions or simulation."
)

IMAGE_INSTRUCTION = (
    "This is a single still image of the play. Analyse only what this frame shows: visible "
    "infractions, offside positions (virtual lines) or foul contact."
)

OUTPUT_INSTRUCTION = "Respond ONLY with the requested JSON and nothing else."


def build_prompt(focus: AnalysisFocus, payload: NormalizedPayload) -> str:
    media = FRAMES_INSTRUCTION if isinstance(payload, FrameSequencePayload) else IMAGE_INSTRUCTION
    return "\n".join(
        [BASE_INSTRUCTION, FOCUS_INSTRUCTIONS[focus], media, OUTPUT_INSTRUCTION]
    )


def build_parts(payload: NormalizedPayload) -> List[types.Part]:
    """Media parts in temporal order; the instruction is appended by the caller."""
    if isinstance(payload, ImagePayload):
        return [types.Part.from_bytes(data=base64.b64decode(payload.data), mime_type=payload.mime_type)]
    return [
        types.Part.from_bytes(data=base64.b64decode(frame), mime_type="image/jpeg")
        for frame in payload.frames
    ]


def build_config() -> types.GenerateContentConfig:
    return types.GenerateContentConfig(
        response_mime_type="application/json",
        response_schema=ANALYSIS_SCHEMA,
        temperature=TEMPERATURE,
    )


class VerdictService:
    def __init__(
        self,
        client: genai.Client,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.model = model or settings.GEMINI_MODEL
        self.timeout = timeout if timeout is not None else settings.INFERENCE_TIMEOUT

    async def request_verdict(self, payload: NormalizedPayload, focus: AnalysisFocus) -> AnalysisResult:
        parts = build_parts(payload)
        parts.append(types.Part.from_text(text=build_prompt(focus, payload)))
        contents = types.Content(role="user", parts=parts)

        log.info("Requesting verdict from %s (%d media parts, focus=%s)", self.model, len(parts) - 1, focus.value)
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=build_config(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            log.error("Inference timed out after %.0fs", self.timeout)
            raise InferenceTimeout(f"No answer within {self.timeout:.0f}s") from e
        except genai_errors.APIError as e:
            if e.code in (401, 403):
                log.error("Gemini rejected credentials: %s", e.message)
                raise InferenceConfigError("Gemini rejected the configured API key") from e
            log.exception("Gemini request failed")
            raise InferenceError(f"Gemini API error {e.code}") from e
        except Exception as e:
            log.exception("Gemini request failed: %s", e)
            raise InferenceError("Gemini request failed") from e

        result = parse_verdict(response.text)
        log.info("Verdict %s (confidence %.0f)", result.verdict.value, result.confidence)
        return result
