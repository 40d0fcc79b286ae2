"""
Gemini Generator for the ad variant pipeline.
Uses the Gemini REST API for ad analysis and image generation.

Required Environment Variables:
    GEMINI_API_KEY: Gemini API key

Optional Environment Variables:
    GEMINI_IMAGE_MODELS: Comma-separated image model ids, tried in order
    GEMINI_ANALYSIS_MODELS: Comma-separated analysis model ids, tried in order
    GEMINI_API_BASE: API base URL (default: public v1beta endpoint)
"""
import asyncio
import base64
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..errors import ContentFiltered, NoUsableOutput
from ..retry import DEFAULT_API_BASE, RetryingApiClient, RetryPolicy, Sleep
from .base import BaseGenerator, InlineImage

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """Analyze this advertisement image in detail and provide a comprehensive description in ENGLISH, including:
1. Overall visual style (color scheme, layout, design style)
2. Main elements and objects
3. Text content and placement. For text:
   - If text is already in English, preserve it exactly, or suggest minor improvements if needed
   - If text is in another language, translate it into professional, native English that keeps
     the meaning, the persuasive tone and the call-to-action strength; note the original language
4. Composition and layout structure
5. Color palette and combinations
6. Atmosphere and emotional tone
7. Target audience and marketing message

Write the ENTIRE description in English. Provide a detailed but concise description suitable for
generating similar advertisement images with professional English text that keeps or improves on
the original's impact."""


def _image_parts(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    candidates = payload.get("candidates") or []
    if not candidates:
        feedback = payload.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise ContentFiltered(feedback["blockReason"])
        raise NoUsableOutput("response has no candidates; content may have been filtered")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts:
        finish_reason = candidates[0].get("finishReason")
        if finish_reason in ("SAFETY", "IMAGE_SAFETY", "PROHIBITED_CONTENT"):
            raise ContentFiltered(finish_reason)
        raise NoUsableOutput("response candidate has no parts")
    return parts


def extract_image(payload: Dict[str, Any]) -> bytes:
    """Pull the first inline image out of a generateContent response."""
    texts = []
    for part in _image_parts(payload):
        inline = part.get("inline_data") or part.get("inlineData")
        if inline and inline.get("data"):
            return base64.b64decode(inline["data"])
        if part.get("text"):
            texts.append(part["text"])

    if texts:
        logger.error(f"Model returned text instead of an image: {texts[0][:200]}")
        raise NoUsableOutput("model returned text instead of an image")
    raise NoUsableOutput("no image data found in response parts")


def extract_text(payload: Dict[str, Any]) -> str:
    for part in _image_parts(payload):
        if part.get("text"):
            return part["text"]
    raise NoUsableOutput("no analysis text found in response")


def _models_from_env(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name, "")
    models = [m.strip() for m in raw.split(",") if m.strip()]
    return models or list(default)


class GeminiGenerator(BaseGenerator):
    """Gemini image generator with retry and model fallback."""

    ENV_API_KEY = "GEMINI_API_KEY"
    ENV_IMAGE_MODELS = "GEMINI_IMAGE_MODELS"
    ENV_ANALYSIS_MODELS = "GEMINI_ANALYSIS_MODELS"
    ENV_API_BASE = "GEMINI_API_BASE"

    DEFAULT_IMAGE_MODELS = ["gemini-2.5-flash-image"]
    DEFAULT_ANALYSIS_MODELS = ["gemini-2.0-flash"]

    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
        aspect_ratio: str = "1:1",
    ):
        self.api_key = os.getenv(self.ENV_API_KEY)
        self.image_models = _models_from_env(self.ENV_IMAGE_MODELS, self.DEFAULT_IMAGE_MODELS)
        self.analysis_models = _models_from_env(self.ENV_ANALYSIS_MODELS, self.DEFAULT_ANALYSIS_MODELS)
        self.api_base = os.getenv(self.ENV_API_BASE, DEFAULT_API_BASE)
        self.http = http
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.aspect_ratio = aspect_ratio

    @property
    def model(self) -> str:
        return self.image_models[0]

    def is_configured(self) -> bool:
        """Check if Gemini generator is properly configured."""
        return bool(self.api_key)

    def get_missing_config(self) -> list:
        """Return list of missing configuration variables."""
        return [] if self.api_key else [self.ENV_API_KEY]

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http is not None:
            yield self.http
        else:
            async with httpx.AsyncClient() as http:
                yield http

    def _client(self, http: httpx.AsyncClient, models: List[str], timeout: float) -> RetryingApiClient:
        if not self.is_configured():
            missing = self.get_missing_config()
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
        return RetryingApiClient(
            http,
            self.api_key,
            models,
            policy=self.policy,
            api_base=self.api_base,
            timeout=timeout,
            sleep=self.sleep,
        )

    @staticmethod
    def _inline_part(image: InlineImage) -> Dict[str, Any]:
        return {
            "inline_data": {
                "mime_type": image.mime_type,
                "data": base64.b64encode(image.data).decode("ascii"),
            }
        }

    async def generate_image(self, prompt: str, reference_images: List[InlineImage]) -> bytes:
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        parts.extend(self._inline_part(image) for image in reference_images)
        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": self.aspect_ratio},
            },
        }

        logger.info(
            f"Generating image: prompt {len(prompt)} chars, "
            f"{len(reference_images)} reference image(s), {len(parts)} part(s)"
        )
        async with self._session() as http:
            client = self._client(http, self.image_models, timeout=120.0)
            return await client.call(payload, extract_image)

    async def analyze_image(self, image: InlineImage) -> str:
        payload = {
            "contents": [{"parts": [{"text": ANALYSIS_PROMPT}, self._inline_part(image)]}],
            "generationConfig": {
                "temperature": 0.4,
                "topK": 32,
                "topP": 1,
                "maxOutputTokens": 2048,
            },
        }

        logger.info(f"Analyzing image ({len(image.data) // 1024} KB, {image.mime_type})")
        async with self._session() as http:
            client = self._client(http, self.analysis_models, timeout=60.0)
            analysis = await client.call(payload, extract_text)
        logger.info(f"Analysis complete, prompt length: {len(analysis)}")
        return analysis
