"""Media generation providers."""

from .base import (
    Capability,
    MediaProvider,
    GenerationRequest,
    GenerationResult,
    SourceAsset,
    ImageFormat,
    ProviderStatus,
    ProviderModel,
    detect_image_format,
    decode_base64_payload,
)
from .gemini import GeminiProvider
from .replicate import ReplicateProvider
from .huggingface import HuggingFaceProvider

__all__ = [
    "Capability",
    "MediaProvider",
    "GenerationRequest",
    "GenerationResult",
    "SourceAsset",
    "ImageFormat",
    "ProviderStatus",
    "ProviderModel",
    "detect_image_format",
    "decode_base64_payload",
    "GeminiProvider",
    "ReplicateProvider",
    "HuggingFaceProvider",
]
