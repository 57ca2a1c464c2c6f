# app/services/vision.py
"""
Gemini Vision 成分辨識：

  analyze(image_bytes, mime_type) -> AnalysisResult

一張圖 = 一次 generateContent POST（不重試）。回應解析規則：
  - promptFeedback.blockReason 有值 → 失敗
  - candidates 空 → 失敗；只取第一個 candidate
  - finishReason 不是 STOP → 只記 warning，繼續解析
  - 取第一個 part 的 text，拿掉 ```json / ``` 後當 JSON 解析；解析失敗即失敗
"""
import base64
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from app.core.config import Settings
from app.core.errors import AnalysisError
from app.schemas.analysis import AnalysisResult

logger = logging.getLogger(__name__)

INGREDIENT_PROMPT = """
Analyze the ingredient list from this product image and return structured information.

Extract ALL ingredients you can identify and for each one provide:
1. Name (standardized name)
2. E-number if applicable
3. Category (Preservative, Color, Emulsifier, Sweetener, etc.)
4. Purpose (what it does in the product)
5. Simple description (what it is)
6. Alternative names (common aliases)
7. Origin (Natural, Synthetic, or Both)
8. General safety note (if known)

IMPORTANT: Return ONLY valid JSON with this exact structure:
{
  "scanId": "generate-a-random-uuid",
  "ingredients": [
    {
      "name": "ingredient name",
      "eNumber": "E100 or null",
      "category": "category",
      "purpose": "what it does",
      "description": "simple description",
      "alternativeNames": ["alias1", "alias2"],
      "origin": "Natural/Synthetic/Both",
      "safetyNote": "general information"
    }
  ],
  "summary": "brief overall summary"
}

Be factual and objective. No medical claims.
"""


def strip_code_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def parse_generation_response(payload: Dict[str, Any]) -> AnalysisResult:
    if not isinstance(payload, dict):
        raise AnalysisError("Unexpected Gemini response shape")

    feedback = payload.get("promptFeedback") or {}
    block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
    if block_reason:
        raise AnalysisError(f"Gemini blocked the prompt: {block_reason}")

    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise AnalysisError("No candidates found in Gemini response")

    first = candidates[0] or {}
    finish_reason = first.get("finishReason")
    if finish_reason != "STOP":
        logger.warning("Gemini finish reason: %s", finish_reason)

    parts = (first.get("content") or {}).get("parts")
    if not isinstance(parts, list) or not parts:
        raise AnalysisError("No content parts found in Gemini response")

    text = (parts[0] or {}).get("text")
    if not isinstance(text, str):
        raise AnalysisError("First content part has no text")

    try:
        return AnalysisResult.model_validate_json(strip_code_fences(text))
    except PydanticValidationError as exc:
        logger.debug("Unparseable Gemini text: %.500s", text)
        raise AnalysisError(f"Failed to parse analysis JSON: {exc.error_count()} error(s)") from exc


class GeminiVisionClient:
    def __init__(
        self,
        api_key: Optional[str],
        api_url: str,
        *,
        timeout: float = 60.0,
        temperature: float = 0.2,
        max_output_tokens: int = 10000,
        safety_threshold: str = "BLOCK_LOW_AND_ABOVE",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.safety_threshold = safety_threshold
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "GeminiVisionClient":
        return cls(
            settings.GEMINI_API_KEY,
            settings.GEMINI_API_URL,
            timeout=settings.GEMINI_TIMEOUT_SEC,
            temperature=settings.GEMINI_TEMPERATURE,
            max_output_tokens=settings.GEMINI_MAX_OUTPUT_TOKENS,
            safety_threshold=settings.GEMINI_SAFETY_THRESHOLD,
            **kwargs,
        )

    def build_request_body(self, image_bytes: bytes, mime_type: str) -> Dict[str, Any]:
        image_part = {
            "inline_data": {
                "mime_type": mime_type,
                "data": base64.b64encode(image_bytes).decode("ascii"),
            }
        }
        return {
            "contents": [{"parts": [image_part, {"text": INGREDIENT_PROMPT}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "application/json",
            },
            "safetySettings": [
                {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": self.safety_threshold},
            ],
        }

    async def analyze(self, image_bytes: bytes, mime_type: str) -> AnalysisResult:
        if not self.api_key:
            raise AnalysisError("Gemini API key is not configured")

        body = self.build_request_body(image_bytes, mime_type)
        try:
            resp = await self._http.post(self.api_url, params={"key": self.api_key}, json=body)
        except httpx.HTTPError as exc:
            # 不印 request URL（含 API key）
            logger.error("Gemini request failed: %s", type(exc).__name__)
            raise AnalysisError(f"Gemini request failed: {type(exc).__name__}") from exc

        if resp.is_error:
            logger.error("Gemini returned HTTP %s: %.300s", resp.status_code, resp.text)
            raise AnalysisError(f"Gemini returned HTTP {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise AnalysisError("Gemini response is not valid JSON") from exc

        logger.debug("Raw Gemini response: %s", payload)
        return parse_generation_response(payload)

    async def aclose(self) -> None:
        await self._http.aclose()
