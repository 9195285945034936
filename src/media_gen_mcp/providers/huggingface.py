"""
Hugging Face Provider
=====================

Text-to-image through the Inference API, background removal through the
public BRIA RMBG-2.0 Space (no token needed).

API: https://api-inference.huggingface.co/models/{model_id}
"""

import time
from typing import Optional, Dict, Any

import aiohttp

from ..api_client import ApiClient
from ..config import credential_from_env
from ..errors import InvalidProviderResponse, ProviderRequestError
from .base import (
    Capability,
    GenerationResult,
    MediaProvider,
    ProviderModel,
    SourceAsset,
    decode_base64_payload,
)


class HuggingFaceProvider(MediaProvider):
    """Hugging Face Inference API and Spaces."""

    name = "huggingface"
    display_name = "Hugging Face"
    requires_api_key = True
    capabilities = frozenset({Capability.GENERATE, Capability.REMOVE_BACKGROUND})
    keyless_capabilities = frozenset({Capability.REMOVE_BACKGROUND})

    BASE_URL = "https://api-inference.huggingface.co/models"
    RMBG_SPACE_URL = "https://briaai-bria-rmbg-20.hf.space/run/predict"

    MODELS = {
        "sdxl": ProviderModel(
            id="stabilityai/stable-diffusion-xl-base-1.0",
            name="Stable Diffusion XL",
            description="Stability AI's SDXL base model",
            capability=Capability.GENERATE,
        ),
        "rmbg-2.0": ProviderModel(
            id="briaai/RMBG-2.0",
            name="BRIA RMBG 2.0",
            description="Background removal Space",
            capability=Capability.REMOVE_BACKGROUND,
        ),
    }

    def __init__(self, api_key: Optional[str] = None, config: Optional[Dict] = None,
                 client: Optional[ApiClient] = None, space_client: Optional[ApiClient] = None):
        if api_key is None:
            api_key = credential_from_env(self.name)
        super().__init__(api_key, config)
        timeout = self.config.get("timeout", 120)
        self.client = client or ApiClient(
            headers={"Authorization": f"Bearer {self.api_key or ''}"},
            timeout=timeout,
        )
        # Spaces are public; the token is not forwarded there
        self.space_client = space_client or ApiClient(timeout=timeout)

    async def generate(self, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        """Generate image using Hugging Face Inference API."""
        start_time = time.time()
        model_id = self.MODELS["sdxl"].id
        artifact = await self.client.post_for_bytes(f"{self.BASE_URL}/{model_id}", {"inputs": prompt})

        if not artifact.data:
            raise InvalidProviderResponse("Empty image returned by Hugging Face")

        return GenerationResult(
            provider=self.name,
            model=model_id,
            outputs=[artifact.data],
            message=f"Image(s) generated successfully using {self.name}",
            generation_time_ms=int((time.time() - start_time) * 1000),
        )

    async def remove_background(self, source: SourceAsset, options: Dict[str, Any]) -> GenerationResult:
        """Remove the background via the RMBG-2.0 Space."""
        start_time = time.time()
        form = aiohttp.FormData()
        form.add_field("data", source.data, filename="input.png", content_type=source.mime_type)

        result = await self.space_client.post_form(self.RMBG_SPACE_URL, form)
        image = self.parse_space_response(result)

        return GenerationResult(
            provider=self.name,
            model=self.MODELS["rmbg-2.0"].id,
            outputs=[image],
            content_type="image/png",
            message=f"Background removed successfully using {self.name}",
            generation_time_ms=int((time.time() - start_time) * 1000),
        )

    @staticmethod
    def parse_space_response(result: Any) -> bytes:
        """Decode `data[0]`, which is base64 or a data: URI."""
        if not isinstance(result, dict):
            raise InvalidProviderResponse("Unexpected Hugging Face Space response")
        if result.get("error"):
            # Spaces report failures inside a 200 body
            raise ProviderRequestError(200, f"Hugging Face Space error: {result['error']}")

        data = result.get("data") or []
        if not data or not isinstance(data[0], str):
            raise InvalidProviderResponse("No image data in Hugging Face Space response")
        return decode_base64_payload(data[0])
