"""Pytest configuration and fixtures for media-gen-mcp tests."""

import base64
import pytest
from unittest.mock import AsyncMock, MagicMock

from media_gen_mcp.api_client import ApiClient, Artifact
from media_gen_mcp.config import ModelVersionCache, ServerConfig

# Sample base64-encoded 1x1 PNG image (valid PNG)
SAMPLE_PNG_BASE64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="

# Sample base64-encoded 1x1 JPEG image (valid JPEG)
SAMPLE_JPEG_BASE64 = "/9j/4AAQSkZJRgABAQEASABIAAD/2wBDAAEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQH/2wBDAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQEBAQH/wAARCAABAAEDAREAAhEBAxEB/8QAFQABAQAAAAAAAAAAAAAAAAAAAAv/xAAUEAEAAAAAAAAAAAAAAAAAAAAA/8QAFQEBAQAAAAAAAAAAAAAAAAAAAAX/xAAUEQEAAAAAAAAAAAAAAAAAAAAA/9oADAMBAAIRAxEAPwA/wA//2Q=="

PNG_BYTES = base64.b64decode(SAMPLE_PNG_BASE64)


def prediction(pred_id="pred-1", status="starting", output=None, error=None):
    """A Replicate prediction body."""
    return {
        "id": pred_id,
        "status": status,
        "output": output,
        "error": error,
        "urls": {"get": f"https://api.replicate.com/v1/predictions/{pred_id}"},
    }


def make_client(post=None, get=(), download=None):
    """ApiClient double with scripted responses.

    `get` is consumed in order, one entry per status fetch.
    """
    client = MagicMock(spec=ApiClient)
    client.post_json = AsyncMock(return_value=post)
    client.get_json = AsyncMock(side_effect=list(get))
    client.download = AsyncMock(
        return_value=download or Artifact(data=PNG_BYTES, content_type="image/png",
                                          url="https://delivery.example/out.png")
    )
    client.post_for_bytes = AsyncMock()
    client.post_form = AsyncMock()
    return client


@pytest.fixture
def sample_png_bytes():
    """Return valid PNG image bytes."""
    return PNG_BYTES


@pytest.fixture
def sample_jpeg_bytes():
    """Return valid JPEG image bytes."""
    return base64.b64decode(SAMPLE_JPEG_BASE64)


@pytest.fixture
def sample_png_base64():
    """Return base64-encoded PNG."""
    return SAMPLE_PNG_BASE64


@pytest.fixture
def no_sleep():
    """Sleep replacement that records intervals instead of waiting."""
    return AsyncMock()


@pytest.fixture
def source_png(tmp_path):
    """A PNG file on disk to use as a tool source."""
    path = tmp_path / "source.png"
    path.write_bytes(PNG_BYTES)
    return path


@pytest.fixture
def output_dir(tmp_path):
    """Create temporary output directory for tests."""
    out = tmp_path / "generated"
    out.mkdir(parents=True, exist_ok=True)
    return out


@pytest.fixture
def server_config(output_dir):
    """Config with every credential set."""
    return ServerConfig(
        credentials={"gemini": "g-key", "replicate": "r-token", "huggingface": "hf-token"},
        provider_override="gemini",
        output_dir=output_dir,
        version_cache=ModelVersionCache(),
    )


@pytest.fixture
def mock_provider_class():
    """A MediaProvider subclass with scripted coroutines."""
    from media_gen_mcp.providers.base import (
        Capability,
        GenerationResult,
        MediaProvider,
    )

    class MockProvider(MediaProvider):
        name = "mock"
        display_name = "Mock Provider"
        requires_api_key = True
        capabilities = frozenset({Capability.GENERATE, Capability.EDIT})

        def __init__(self, name="mock", api_key="key", capabilities=None,
                     outputs=None, error=None, keyless=()):
            super().__init__(api_key=api_key)
            self.name = name
            self.display_name = name.title()
            if capabilities is not None:
                self.capabilities = frozenset(capabilities)
            self.keyless_capabilities = frozenset(keyless)
            self.outputs = outputs or [PNG_BYTES]
            self.error = error
            self.calls = []

        def _result(self, kind):
            if self.error is not None:
                raise self.error
            return GenerationResult(
                provider=self.name,
                model=f"{self.name}-model",
                outputs=list(self.outputs),
                message=f"{kind} using {self.name}",
            )

        async def generate(self, prompt, options):
            self.calls.append(("generate", prompt, options))
            return self._result("Generated")

        async def edit(self, source, prompt, options):
            self.calls.append(("edit", source, prompt, options))
            return self._result("Edited")

        async def remove_background(self, source, options):
            self.calls.append(("remove_background", source, options))
            return self._result("Background removed")

        async def generate_mesh(self, prompt, options):
            self.calls.append(("generate_mesh", prompt, options))
            return self._result("Mesh generated")

        async def generate_sound(self, prompt, options):
            self.calls.append(("generate_sound", prompt, options))
            return self._result("Sound generated")

    return MockProvider
