# tests/test_vision_analyze.py
import base64
import json

import httpx
import pytest

from app.core.errors import AnalysisError
from app.schemas.analysis import IngredientOrigin
from app.services.vision import GeminiVisionClient, parse_generation_response, strip_code_fences

API_URL = "https://gemini.example.test/v1beta/models/gemini-2.5-flash:generateContent"

ANALYSIS = {
    "scanId": "abc-123",
    "ingredients": [
        {
            "name": "Citric Acid",
            "eNumber": "E330",
            "category": "Acidity Regulator",
            "purpose": "Adds tartness",
            "description": "Organic acid",
            "alternativeNames": ["Acidum citricum"],
            "origin": "Both",
            "safetyNote": "Generally recognized as safe",
        }
    ],
    "summary": "One additive",
}


def _payload(text: str, finish_reason: str = "STOP") -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish_reason}]}


def _client(handler, api_key: str = "k-123") -> GeminiVisionClient:
    return GeminiVisionClient(api_key, API_URL, transport=httpx.MockTransport(handler))


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_fenced_and_plain_text_parse_the_same():
    plain = json.dumps(ANALYSIS)
    fenced = f"```json\n{plain}\n```"
    a = parse_generation_response(_payload(plain))
    b = parse_generation_response(_payload(fenced))
    assert a == b
    assert a.scan_id == "abc-123"
    ing = a.ingredients[0]
    assert ing.e_number == "E330"
    assert ing.alternative_names == ["Acidum citricum"]
    assert ing.origin is IngredientOrigin.BOTH


def test_non_stop_finish_still_parses():
    result = parse_generation_response(_payload(json.dumps(ANALYSIS), finish_reason="MAX_TOKENS"))
    assert result.ingredient_names() == ["Citric Acid"]


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"promptFeedback": {"blockReason": "SAFETY"}}, "Gemini blocked the prompt: SAFETY"),
        ({"candidates": []}, "No candidates found in Gemini response"),
        ({}, "No candidates found in Gemini response"),
        ({"candidates": [{"content": {"parts": []}}]}, "No content parts found in Gemini response"),
        ({"candidates": [{"content": {"parts": [{"inlineData": {}}]}}]}, "First content part has no text"),
    ],
)
def test_unusable_responses_fail(payload, message):
    with pytest.raises(AnalysisError) as ei:
        parse_generation_response(payload)
    assert ei.value.message == message


def test_empty_block_reason_is_not_a_block():
    payload = _payload(json.dumps(ANALYSIS))
    payload["promptFeedback"] = {"blockReason": ""}
    assert parse_generation_response(payload).scan_id == "abc-123"


@pytest.mark.parametrize("text", ["not json at all", '{"ingredients": "nope"}', "```json\n[1, 2\n```"])
def test_bad_analysis_json_fails(text):
    with pytest.raises(AnalysisError, match="Failed to parse analysis JSON"):
        parse_generation_response(_payload(text))


def test_lenient_fields():
    text = json.dumps({
        "ingredients": [
            {"name": "Sugar", "origin": "natural"},
            {"name": "Mystery", "origin": "martian"},
            {"category": "Color"},
        ]
    })
    result = parse_generation_response(_payload(text))
    # 缺 scanId 會自動補一個
    assert result.scan_id
    assert result.summary is None
    assert result.ingredients[0].origin is IngredientOrigin.NATURAL
    assert result.ingredients[1].origin is None
    assert result.ingredient_names() == ["Sugar", "Mystery"]


@pytest.mark.asyncio
async def test_analyze_sends_expected_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_payload(json.dumps(ANALYSIS)))

    client = _client(handler)
    try:
        result = await client.analyze(b"\xff\xd8\xffjpeg", "image/jpeg")
    finally:
        await client.aclose()

    assert result.scan_id == "abc-123"
    assert seen["url"].params["key"] == "k-123"

    body = seen["body"]
    parts = body["contents"][0]["parts"]
    assert parts[0]["inline_data"]["mime_type"] == "image/jpeg"
    assert base64.b64decode(parts[0]["inline_data"]["data"]) == b"\xff\xd8\xffjpeg"
    assert "ingredient" in parts[1]["text"]
    assert body["generationConfig"] == {
        "temperature": 0.2,
        "maxOutputTokens": 10000,
        "responseMimeType": "application/json",
    }
    assert body["safetySettings"] == [
        {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_LOW_AND_ABOVE"}
    ]


@pytest.mark.asyncio
async def test_analyze_http_error_status():
    client = _client(lambda request: httpx.Response(503, text="overloaded"))
    with pytest.raises(AnalysisError, match="Gemini returned HTTP 503"):
        await client.analyze(b"img", "image/png")
    await client.aclose()


@pytest.mark.asyncio
async def test_analyze_transport_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    client = _client(handler)
    with pytest.raises(AnalysisError) as ei:
        await client.analyze(b"img", "image/png")
    await client.aclose()
    assert ei.value.message == "Gemini request failed: ConnectTimeout"
    # API key 不可出現在錯誤訊息
    assert "k-123" not in ei.value.message


@pytest.mark.asyncio
async def test_analyze_non_json_body():
    client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(AnalysisError, match="not valid JSON"):
        await client.analyze(b"img", "image/png")
    await client.aclose()


@pytest.mark.asyncio
async def test_analyze_without_api_key_makes_no_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    client = _client(handler, api_key=None)
    with pytest.raises(AnalysisError, match="API key is not configured"):
        await client.analyze(b"img", "image/png")
    await client.aclose()
    assert calls == []
