"""
Gemini Provider
===============

Native image generation and editing with Gemini image models
("Nano Banana Pro").

API: https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent
"""

import base64
import binascii
import logging
import time
from typing import Optional, List, Dict, Any, Tuple

from ..api_client import ApiClient
from ..config import credential_from_env
from ..errors import InvalidProviderResponse
from .base import (
    Capability,
    GenerationResult,
    MediaProvider,
    ProviderModel,
    SourceAsset,
    decode_base64_payload,
)


logger = logging.getLogger(__name__)


def extract_candidate_images(data: Dict[str, Any]) -> Tuple[List[bytes], str]:
    """Return the image of every candidate, in order, plus the first MIME type."""
    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not candidates:
        raise InvalidProviderResponse("No candidates in Gemini API response")

    images: List[bytes] = []
    mime_type = ""
    for index, candidate in enumerate(candidates):
        content = candidate.get("content") if isinstance(candidate, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []
        image, part_mime = _first_image(parts)
        if image is None:
            logger.warning(f"Gemini candidate {index} carried no image data")
            continue
        images.append(image)
        mime_type = mime_type or part_mime

    if not images:
        raise InvalidProviderResponse("No image data in Gemini API response")
    return images, mime_type


def _first_image(parts: List[Dict[str, Any]]) -> Tuple[Optional[bytes], str]:
    # Inline binary parts take precedence over text
    parts = [p for p in parts if isinstance(p, dict)]
    for part in parts:
        inline = part.get("inlineData") or part.get("inline_data")
        if isinstance(inline, dict) and inline.get("data"):
            try:
                data = base64.b64decode(inline["data"])
            except (binascii.Error, ValueError) as e:
                raise InvalidProviderResponse(f"Failed to decode base64 image from inlineData: {e}") from e
            return data, inline.get("mimeType") or inline.get("mime_type") or ""

    for part in parts:
        text = part.get("text")
        if not isinstance(text, str) or not text:
            continue
        try:
            return decode_base64_payload(text), ""
        except InvalidProviderResponse:
            continue
    return None, ""


class GeminiProvider(MediaProvider):
    """Gemini image generation and editing."""

    name = "gemini"
    display_name = "Google Gemini"
    requires_api_key = True
    capabilities = frozenset({Capability.GENERATE, Capability.EDIT})

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
    DEFAULT_MODEL = "gemini-3-pro-image-preview"

    MODELS = {
        "nano-banana-pro": ProviderModel(
            id=DEFAULT_MODEL,
            name="Gemini 3 Pro Image",
            description="Text-to-image and instruction-based editing",
            capability=Capability.GENERATE,
        ),
    }

    def __init__(self, api_key: Optional[str] = None, config: Optional[Dict] = None,
                 client: Optional[ApiClient] = None):
        if api_key is None:
            api_key = credential_from_env(self.name)
        super().__init__(api_key, config)
        self.model = self.config.get("model", self.DEFAULT_MODEL)
        self.client = client or ApiClient(
            headers={"x-goog-api-key": self.api_key or ""},
            timeout=self.config.get("timeout", 300),
        )

    @property
    def url(self) -> str:
        return f"{self.BASE_URL}/{self.model}:generateContent"

    def build_generation_config(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """Map tool options onto generationConfig."""
        config: Dict[str, Any] = {"responseModalities": ["IMAGE"]}

        aspect_ratio = options.get("aspect_ratio")
        resolution = options.get("resolution")
        if aspect_ratio or resolution:
            config["imageConfig"] = {}
            if aspect_ratio:
                config["imageConfig"]["aspectRatio"] = aspect_ratio
            if resolution:
                config["imageConfig"]["imageSize"] = resolution

        if options.get("number_of_images"):
            config["candidateCount"] = int(options["number_of_images"])
        return config

    async def generate(self, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        """Generate image(s) from text."""
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": self.build_generation_config(options),
        }
        return await self._request(payload, "generated")

    async def edit(self, source: SourceAsset, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        """Edit an image, sent inline as base64."""
        payload = {
            "contents": [{
                "parts": [
                    {"text": prompt},
                    {"inline_data": {"mime_type": source.mime_type, "data": source.base64}},
                ]
            }],
            "generationConfig": self.build_generation_config(options),
        }
        return await self._request(payload, "edited")

    async def _request(self, payload: Dict[str, Any], verb: str) -> GenerationResult:
        start_time = time.time()
        data = await self.client.post_json(self.url, payload)
        images, mime_type = extract_candidate_images(data)

        return GenerationResult(
            provider=self.name,
            model=self.model,
            outputs=images,
            content_type=mime_type,
            message=f"Image(s) {verb} successfully using {self.name}",
            generation_time_ms=int((time.time() - start_time) * 1000),
        )
