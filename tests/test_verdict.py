import json

import pytest

from app.core.errors import InferenceEmptyResponse, InferenceMalformedResponse, InferenceTimeout
from app.schemas.analysis import AnalysisFocus, Verdict
from app.schemas.media import FrameSequencePayload, ImagePayload
from app.services.verdict_parser import parse_verdict
from app.services.verdict_service import (
    ANALYSIS_SCHEMA,
    TEMPERATURE,
    VerdictService,
    build_prompt,
)

from conftest import VERDICT_JSON, FakeGenAI


def test_parse_valid_verdict():
    result = parse_verdict(json.dumps(VERDICT_JSON))
    assert result.verdict is Verdict.PENALTY
    assert result.confidence == 82
    assert result.rule_citation == "Law 12"
    assert result.key_factors == ["Contact inside area"]


@pytest.mark.parametrize("text", [None, "", "   \n"])
def test_empty_response(text):
    with pytest.raises(InferenceEmptyResponse):
        parse_verdict(text)


@pytest.mark.parametrize("missing", ["verdict", "confidence", "explanation", "rule_citation", "key_factors"])
def test_missing_field_rejected(missing):
    body = {k: v for k, v in VERDICT_JSON.items() if k != missing}
    with pytest.raises(InferenceMalformedResponse):
        parse_verdict(json.dumps(body))


@pytest.mark.parametrize("verdict", ["GOAL", "penalty", "", "YELLOW"])
def test_verdict_outside_closed_set_rejected(verdict):
    with pytest.raises(InferenceMalformedResponse):
        parse_verdict(json.dumps({**VERDICT_JSON, "verdict": verdict}))


@pytest.mark.parametrize(
    "patch",
    [
        {"confidence": "82"},
        {"confidence": 140},
        {"key_factors": "Contact inside area"},
        {"explanation": None},
    ],
)
def test_mistyped_fields_are_not_coerced(patch):
    with pytest.raises(InferenceMalformedResponse):
        parse_verdict(json.dumps({**VERDICT_JSON, **patch}))


@pytest.mark.parametrize("text", ["not json", "```json\n{}\n```", "[]", '{"verdict": "FOUL"'])
def test_unparseable_text_rejected(text):
    with pytest.raises(InferenceMalformedResponse):
        parse_verdict(text)


def test_schema_mirrors_result_shape():
    assert set(ANALYSIS_SCHEMA.required) == {"verdict", "confidence", "explanation", "rule_citation", "key_factors"}
    assert ANALYSIS_SCHEMA.properties["verdict"].enum == [v.value for v in Verdict]


def test_prompt_has_persona_focus_and_media_clauses():
    frames = FrameSequencePayload(frames=["AAAA"] * 8)
    image = ImagePayload(data="AAAA")

    offside = build_prompt(AnalysisFocus.OFFSIDE, frames)
    assert "video assistant referee" in offside
    assert "second-last defender" in offside
    assert "across the sequence" in offside
    assert "ONLY with the requested JSON" in offside

    goal = build_prompt(AnalysisFocus.GOAL_CHECK, image)
    assert "goal line" in goal
    assert "single still image" in goal
    assert "across the sequence" not in goal


@pytest.mark.parametrize(
    "focus,needle",
    [
        (AnalysisFocus.GENERAL, "any clear infraction"),
        (AnalysisFocus.PENALTY, "penalty area"),
        (AnalysisFocus.HANDBALL, "silhouette"),
        (AnalysisFocus.RED_CARD, "goal-scoring opportunity"),
    ],
)
def test_each_focus_has_its_clause(focus, needle):
    assert needle in build_prompt(focus, ImagePayload(data="AAAA"))


@pytest.mark.asyncio
async def test_request_sends_frames_in_order_then_prompt():
    genai = FakeGenAI()
    service = VerdictService(genai, model="gemini-test")
    frames = FrameSequencePayload(frames=["AAAA", "BBBB", "CCCC"])

    result = await service.request_verdict(frames, AnalysisFocus.PENALTY)

    assert result.verdict is Verdict.PENALTY
    assert len(genai.calls) == 1
    call = genai.calls[0]
    assert call["model"] == "gemini-test"
    parts = call["contents"].parts
    assert [p.inline_data.data for p in parts[:3]] == [b"\x00\x00\x00", b"\x04\x10\x41", b"\x08\x20\x82"]
    assert all(p.inline_data.mime_type == "image/jpeg" for p in parts[:3])
    assert "penalty area" in parts[3].text
    assert call["config"].temperature == TEMPERATURE == 0.1
    assert call["config"].response_mime_type == "application/json"


@pytest.mark.asyncio
async def test_empty_model_answer_propagates():
    service = VerdictService(FakeGenAI(text=None))
    with pytest.raises(InferenceEmptyResponse):
        await service.request_verdict(ImagePayload(data="AAAA"), AnalysisFocus.GENERAL)


@pytest.mark.asyncio
async def test_slow_model_times_out():
    import asyncio

    class SlowModels:
        async def generate_content(self, **kwargs):
            await asyncio.sleep(5)

    genai = FakeGenAI()
    genai.aio.models = SlowModels()
    service = VerdictService(genai, timeout=0.01)
    with pytest.raises(InferenceTimeout):
        await service.request_verdict(ImagePayload(data="AAAA"), AnalysisFocus.GENERAL)
