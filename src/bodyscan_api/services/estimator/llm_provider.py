"""
Multimodal LLM provider for body composition estimation.

Sends the four angle photos to a LangChain chat model (Gemini or OpenAI) and
parses the JSON verdict it returns.
"""

import asyncio
import base64
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage

from bodyscan_api.models.scan import SCAN_ANGLE_ORDER, QualityCheckResult, UserContext

from .base import BodyCompositionEstimate, BodyCompositionEstimator, EstimatorError

logger = logging.getLogger(__name__)

PhotoLoader = Callable[[str], Awaitable[bytes]]


QUALITY_CHECK_PROMPT = """You are a quality control expert for body composition photos. Analyze these 4 body scan photos (front, back, left, right) and determine if they are suitable for body composition analysis.

Check for:
1. Clear visibility of the person's body
2. Adequate lighting (not too dark or overexposed)
3. Person is standing straight with proper posture
4. Full body visible (head to feet)
5. Minimal clothing obstruction
6. No blur or motion artifacts
7. Consistent distance from camera across all angles

Respond ONLY with valid JSON in this format:
{
  "isValid": <true/false>,
  "issues": ["<specific issue found>"],
  "confidence": <0.0-1.0>,
  "poseOk": <true/false>,
  "lightingScore": <0.0-1.0>,
  "sameDressScore": <0.0-1.0>,
  "notes": "<short note>"
}

RULES:
- If photos are suitable, set isValid to true and confidence to 0.8-1.0
- If minor issues exist, list them but you may still set isValid to true with lower confidence
- If major issues exist, set isValid to false

Do not include any text outside the JSON."""


ANALYSIS_PROMPT = """You are an expert body composition analyst with medical training. Analyze these 4 body scan photos to estimate body composition metrics.

User Information:
- Weight: {weight} lbs
- Height: {height} cm
- Age: {age} years
- Gender: {gender}
- Fitness Goal: {goal}

Photos Provided (in order):
1. Front view - full body standing
2. Back view - full body standing
3. Left side view - full body standing
4. Right side view - full body standing

Provide estimates for:
1. Body Fat Percentage (use muscle definition, fat deposits, waist-to-hip ratio)
2. Lean Body Mass in pounds (Total Weight x (1 - Body Fat %))
3. Estimated Muscle Percentage (visual assessment of muscle development)
4. Posture Quality Score 0-100 (spinal alignment, shoulder and hip position)

Respond ONLY with valid JSON in this format:
{{
  "bodyFatPercent": <number, 5-50 range>,
  "leanBodyMass": <number in lbs>,
  "estimatedMusclePercent": <number, 20-55 range>,
  "postureScore": <number 0-100>,
  "confidence": <0.0-1.0>,
  "notes": "<brief assessment notes>"
}}

RULES:
- Be conservative with estimates (avoid extreme values)
- Consider gender-specific body composition norms and age-related changes
- Lower your confidence if the photos are unclear

Do not include any text outside the JSON."""


class LLMBodyCompositionEstimator(BodyCompositionEstimator):
    """
    Body composition estimation using a multimodal LangChain chat model.
    """

    def __init__(
        self,
        chat_model: BaseChatModel,
        model_name: str,
        qc_model: BaseChatModel | None = None,
        photo_loader: PhotoLoader | None = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the provider.

        Args:
            chat_model: Chat model used for the analysis call
            model_name: Identifier recorded on every estimate
            qc_model: Cheaper chat model for the quality check (defaults to chat_model)
            photo_loader: Reader for non-HTTP photo URLs (e.g. gridfs://)
            timeout: Photo download timeout in seconds
        """
        self.chat_model = chat_model
        self.model_name = model_name
        self.qc_model = qc_model or chat_model
        self.photo_loader = photo_loader
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def provider_name(self) -> str:
        return f"llm/{self.model_name}"

    async def quality_check(self, angle_urls: dict[str, str]) -> QualityCheckResult:
        photos = await self._load_photos(angle_urls)
        message = self._build_message(QUALITY_CHECK_PROMPT, photos)

        logger.info(f"Sending quality check request ({self.provider_name})")
        raw_response = await self._invoke(self.qc_model, message)

        return self._parse_quality_check(raw_response)

    async def estimate(
        self,
        angle_urls: dict[str, str],
        weight_lb: float,
        context: UserContext | None = None,
    ) -> BodyCompositionEstimate:
        start_time = time.time()
        context = context or UserContext()

        prompt = ANALYSIS_PROMPT.format(
            weight=weight_lb,
            height=context.height_cm or "unknown",
            age=context.age or "unknown",
            gender=context.gender or "unknown",
            goal=context.fitness_goal or "general fitness",
        )

        photos = await self._load_photos(angle_urls)
        message = self._build_message(prompt, photos)

        logger.info(f"Sending body composition request ({self.provider_name})")
        raw_response = await self._invoke(self.chat_model, message)

        estimate = self._parse_estimate(raw_response)

        processing_time = int((time.time() - start_time) * 1000)
        logger.info(
            f"Estimated bf={estimate.bf_percent:.3f} "
            f"(conf={estimate.confidence:.2f}) in {processing_time}ms"
        )
        return estimate

    async def health_check(self) -> bool:
        return self.chat_model is not None

    async def close(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _load_photos(self, angle_urls: dict[str, str]) -> list[bytes]:
        """Load the four photos in capture order."""
        missing = [a.value for a in SCAN_ANGLE_ORDER if not angle_urls.get(a.value)]
        if missing:
            raise EstimatorError(
                message=f"Missing photo URLs for: {', '.join(missing)}",
                error_code="MISSING_PHOTOS",
                provider=self.provider_name,
                details={"missing": missing},
            )

        return list(
            await asyncio.gather(
                *(self._load_photo(angle_urls[a.value]) for a in SCAN_ANGLE_ORDER)
            )
        )

    async def _load_photo(self, url: str) -> bytes:
        try:
            if url.startswith(("http://", "https://")):
                response = await self._client.get(url)
                response.raise_for_status()
                return response.content

            if self.photo_loader is None:
                raise EstimatorError(
                    message=f"No loader available for photo URL: {url}",
                    error_code="UNSUPPORTED_URL",
                    provider=self.provider_name,
                )
            return await self.photo_loader(url)

        except EstimatorError:
            raise
        except Exception as e:
            raise EstimatorError(
                message=f"Failed to load photo {url}: {e}",
                error_code="PHOTO_FETCH_ERROR",
                provider=self.provider_name,
                details={"url": url},
                transient=True,
            ) from e

    @staticmethod
    def _build_message(prompt: str, photos: list[bytes]) -> HumanMessage:
        content: list[str | dict[str, Any]] = [{"type": "text", "text": prompt}]
        for data in photos:
            image_b64 = base64.b64encode(data).decode("utf-8")
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"},
                }
            )
        return HumanMessage(content=content)

    async def _invoke(self, model: BaseChatModel, message: HumanMessage) -> str:
        try:
            response = await model.ainvoke([message])
        except Exception as e:
            logger.warning(f"Chat model call failed ({self.provider_name}): {e}")
            raise EstimatorError(
                message=f"Model request failed: {e}",
                error_code="PROVIDER_ERROR",
                provider=self.provider_name,
                transient=True,
            ) from e

        raw_response = _message_text(response)
        logger.debug(f"Raw model response: {raw_response[:500]}...")
        return raw_response

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse_quality_check(self, raw_response: str) -> QualityCheckResult:
        """Parse the QC verdict. Unparseable output is reported as an invalid check."""
        data = self._load_json(raw_response)
        if data is None:
            return QualityCheckResult(
                is_valid=False,
                issues=["Could not parse quality check response"],
                confidence=0.0,
            )

        issues = data.get("issues") or []
        if not isinstance(issues, list):
            issues = [str(issues)]

        return QualityCheckResult(
            is_valid=bool(data.get("isValid", False)),
            issues=[str(i) for i in issues if i],
            confidence=_clamp(data.get("confidence"), 0.0, 1.0) or 0.0,
            pose_ok=data.get("poseOk") if isinstance(data.get("poseOk"), bool) else None,
            lighting_score=_clamp(data.get("lightingScore"), 0.0, 1.0),
            same_dress_score=_clamp(data.get("sameDressScore"), 0.0, 1.0),
            notes=data.get("notes") or None,
        )

    def _parse_estimate(self, raw_response: str) -> BodyCompositionEstimate:
        data = self._load_json(raw_response)
        if data is None:
            raise EstimatorError(
                message="Could not parse analysis response",
                error_code="INVALID_RESPONSE",
                provider=self.provider_name,
                details={"raw_response": raw_response[:500]},
            )

        try:
            bf_value = float(data["bodyFatPercent"])
        except (KeyError, TypeError, ValueError) as e:
            raise EstimatorError(
                message="Analysis response has no usable bodyFatPercent",
                error_code="INVALID_RESPONSE",
                provider=self.provider_name,
                details={"raw_response": raw_response[:500]},
            ) from e

        return BodyCompositionEstimate(
            bf_percent=normalize_bf_fraction(bf_value),
            lbm_lb=_to_float(data.get("leanBodyMass")),
            muscle_percent=_to_float(data.get("estimatedMusclePercent")),
            posture_score=_clamp(data.get("postureScore"), 0.0, 100.0),
            confidence=_clamp(data.get("confidence"), 0.0, 1.0) or 0.0,
            model_version=self.model_name,
            notes=data.get("notes") or None,
        )

    def _load_json(self, raw_response: str) -> dict | None:
        json_str = self._extract_json(raw_response)
        if not json_str:
            logger.warning("Could not extract JSON from response")
            return None

        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON: {e}")
            return None

        return data if isinstance(data, dict) else None

    def _extract_json(self, text: str) -> str | None:
        """Extract the first balanced JSON object from a text response."""
        text = text.strip()

        start = text.find("{")
        if start == -1:
            return None

        brace_count = 0
        for i in range(start, len(text)):
            if text[i] == "{":
                brace_count += 1
            elif text[i] == "}":
                brace_count -= 1
                if brace_count == 0:
                    return text[start : i + 1]

        return None


def normalize_bf_fraction(value: float) -> float:
    """Models answer in percent (18.5); records store fractions (0.185)."""
    if value > 1:
        return value / 100
    return value


def _message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def _to_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _clamp(value: Any, low: float, high: float) -> float | None:
    number = _to_float(value)
    if number is None:
        return None
    return max(low, min(high, number))
