"""Base provider interface for media generation."""

from abc import ABC
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, List, Any, FrozenSet
import base64
import binascii
import re

from ..errors import CapabilityUnsupported, InvalidProviderResponse, SourceNotFound


class Capability(Enum):
    """Logical operations a provider may offer."""
    GENERATE = "generate"
    EDIT = "edit"
    REMOVE_BACKGROUND = "remove_background"
    GENERATE_MESH = "generate_mesh"
    GENERATE_SOUND = "generate_sound"


class ImageFormat(Enum):
    """Supported image formats."""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    GIF = "gif"
    UNKNOWN = "unknown"

    @property
    def mime_type(self) -> str:
        """Get MIME type for this format."""
        return {
            ImageFormat.JPEG: "image/jpeg",
            ImageFormat.PNG: "image/png",
            ImageFormat.WEBP: "image/webp",
            ImageFormat.GIF: "image/gif",
            ImageFormat.UNKNOWN: "application/octet-stream",
        }[self]


def detect_image_format(data: bytes) -> ImageFormat:
    """Detect image format from magic bytes."""
    if len(data) < 4:
        return ImageFormat.UNKNOWN

    # JPEG: FFD8FF
    if data[:3] == b'\xff\xd8\xff':
        return ImageFormat.JPEG
    # PNG: 89504E47 0D0A1A0A
    if data[:8] == b'\x89PNG\r\n\x1a\n':
        return ImageFormat.PNG
    # WebP: RIFF....WEBP
    if data[:4] == b'RIFF' and len(data) >= 12 and data[8:12] == b'WEBP':
        return ImageFormat.WEBP
    # GIF: GIF87a or GIF89a
    if data[:6] in (b'GIF87a', b'GIF89a'):
        return ImageFormat.GIF

    return ImageFormat.UNKNOWN


# Source extension -> MIME type sent to backends
SOURCE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=\s]+$")


def decode_base64_payload(text: str) -> bytes:
    """Decode base64 that may be wrapped in markdown fences or a data: URI."""
    clean = text.replace("```base64", "").replace("```", "").strip()
    if clean.startswith("data:") and "," in clean:
        clean = clean.split(",", 1)[1]
    if not clean or not _BASE64_RE.match(clean):
        raise InvalidProviderResponse("Response text is not base64 image data")
    try:
        return base64.b64decode(clean, validate=False)
    except (binascii.Error, ValueError) as e:
        raise InvalidProviderResponse(f"Failed to decode base64 image: {e}") from e


@dataclass
class SourceAsset:
    """An input file sent to a backend."""
    path: Path
    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def load(cls, path: str) -> "SourceAsset":
        resolved = Path(path).expanduser().resolve()
        if not resolved.is_file():
            raise SourceNotFound(str(resolved))
        mime_type = SOURCE_MIME_TYPES.get(resolved.suffix.lower(), "image/png")
        return cls(path=resolved, data=resolved.read_bytes(), mime_type=mime_type)

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


@dataclass
class GenerationRequest:
    """One capability invocation, as routed to a provider."""
    capability: Capability
    prompt: Optional[str] = None
    source: Optional[SourceAsset] = None
    options: Dict[str, Any] = field(default_factory=dict)
    output_path: Optional[str] = None


@dataclass
class GenerationResult:
    """Result of a generation request: one or more output buffers."""
    provider: str
    model: str
    outputs: List[bytes]

    content_type: str = ""
    message: str = ""
    source_url: Optional[str] = None
    generation_time_ms: int = 0

    def __post_init__(self):
        if not self.outputs:
            raise InvalidProviderResponse(f"{self.provider} returned no output data")
        if not self.content_type:
            self.content_type = detect_image_format(self.outputs[0]).mime_type


@dataclass
class ProviderModel:
    """Information about a backend model."""
    id: str
    name: str
    description: str
    capability: Capability = Capability.GENERATE
    version: Optional[str] = None


class ProviderStatus(Enum):
    """Provider availability status."""
    AVAILABLE = "available"
    UNCONFIGURED = "unconfigured"


class MediaProvider(ABC):
    """Base class for generation backends.

    Subclasses declare the capabilities they support and override the
    matching coroutine. Everything else raises CapabilityUnsupported.
    """

    name: str = "base"
    display_name: str = "Base Provider"
    requires_api_key: bool = True
    capabilities: FrozenSet[Capability] = frozenset()
    # Capabilities that work without a credential
    keyless_capabilities: FrozenSet[Capability] = frozenset()

    MODELS: Dict[str, ProviderModel] = {}

    def __init__(self, api_key: Optional[str] = None, config: Optional[Dict] = None):
        self.api_key = api_key
        self.config = config or {}
        self._last_error: Optional[str] = None
        self._request_count = 0

    @property
    def status(self) -> ProviderStatus:
        """Get current provider status."""
        if self.requires_api_key and not self.api_key:
            return ProviderStatus.UNCONFIGURED
        return ProviderStatus.AVAILABLE

    @property
    def is_configured(self) -> bool:
        return self.status is ProviderStatus.AVAILABLE

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def is_available_for(self, capability: Capability) -> bool:
        """Whether this provider can serve `capability` right now."""
        if not self.supports(capability):
            return False
        return self.is_configured or capability in self.keyless_capabilities

    async def execute(self, request: GenerationRequest) -> GenerationResult:
        """Route a request to the coroutine for its capability."""
        capability = request.capability
        if not self.supports(capability):
            raise CapabilityUnsupported(self.name, capability.value)

        self._request_count += 1
        try:
            if capability is Capability.GENERATE:
                return await self.generate(request.prompt or "", request.options)
            if capability is Capability.EDIT:
                return await self.edit(request.source, request.prompt or "", request.options)
            if capability is Capability.REMOVE_BACKGROUND:
                return await self.remove_background(request.source, request.options)
            if capability is Capability.GENERATE_MESH:
                return await self.generate_mesh(request.prompt or "", request.options)
            return await self.generate_sound(request.prompt or "", request.options)
        except Exception as e:
            self._last_error = str(e)
            raise

    async def generate(self, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        """Generate images from a text prompt."""
        raise CapabilityUnsupported(self.name, Capability.GENERATE.value)

    async def edit(self, source: SourceAsset, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        """Edit an existing image according to a prompt."""
        raise CapabilityUnsupported(self.name, Capability.EDIT.value)

    async def remove_background(self, source: SourceAsset, options: Dict[str, Any]) -> GenerationResult:
        raise CapabilityUnsupported(self.name, Capability.REMOVE_BACKGROUND.value)

    async def generate_mesh(self, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        raise CapabilityUnsupported(self.name, Capability.GENERATE_MESH.value)

    async def generate_sound(self, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        raise CapabilityUnsupported(self.name, Capability.GENERATE_SOUND.value)

    async def list_models(self) -> List[ProviderModel]:
        """List models this provider routes to."""
        return list(self.MODELS.values())

    async def check_health(self) -> Dict[str, Any]:
        """Report provider configuration and usage."""
        return {
            "provider": self.name,
            "display_name": self.display_name,
            "status": self.status.value,
            "configured": self.is_configured,
            "capabilities": sorted(c.value for c in self.capabilities),
            "request_count": self._request_count,
            "last_error": self._last_error,
        }
