"""Runtime configuration read from the environment."""

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from .errors import MissingCredential


# Provider name -> accepted environment variables, first match wins
CREDENTIAL_ENV: Dict[str, Tuple[str, ...]] = {
    "gemini": ("GEMINI_API_KEY",),
    "replicate": ("REPLICATE_API_TOKEN", "REPLICATE_API_KEY"),
    "huggingface": ("HUGGING_FACE_TOKEN", "HUGGINGFACE_API_TOKEN", "HF_TOKEN"),
}

DEFAULT_PROVIDER = "gemini"

TOOLSETS = ("all", "image", "mesh", "sound")


def credential_from_env(
    provider: str, environ: Optional[Mapping[str, str]] = None
) -> Optional[str]:
    """Return the first non-empty credential for a provider, if any."""
    environ = os.environ if environ is None else environ
    for name in CREDENTIAL_ENV.get(provider, ()):
        value = environ.get(name)
        if value:
            return value
    return None


class ModelVersionCache:
    """Thread-safe model name -> version id map.

    Lives as long as the owning ServerConfig. Values are idempotent per
    model name so a racing double lookup is harmless.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._versions: Dict[str, str] = {}

    def get(self, model_name: str) -> Optional[str]:
        with self._lock:
            return self._versions.get(model_name)

    def set(self, model_name: str, version: str) -> None:
        with self._lock:
            self._versions[model_name] = version

    def __contains__(self, model_name: str) -> bool:
        with self._lock:
            return model_name in self._versions

    def __len__(self) -> int:
        with self._lock:
            return len(self._versions)


@dataclass
class ServerConfig:
    """Everything a server process needs, built once at startup."""

    credentials: Dict[str, str] = field(default_factory=dict)
    provider_override: Optional[str] = None
    output_dir: Path = field(default_factory=Path.cwd)
    toolset: str = "all"
    log_level: str = "INFO"
    version_cache: ModelVersionCache = field(default_factory=ModelVersionCache)

    @classmethod
    def from_env(
        cls, toolset: str = "all", environ: Optional[Mapping[str, str]] = None
    ) -> "ServerConfig":
        environ = os.environ if environ is None else environ
        credentials = {}
        for provider in CREDENTIAL_ENV:
            value = credential_from_env(provider, environ)
            if value:
                credentials[provider] = value

        output_dir = environ.get("MEDIA_GEN_OUTPUT_DIR")
        return cls(
            credentials=credentials,
            provider_override=(environ.get("IMAGE_GENERATION_PROVIDER") or DEFAULT_PROVIDER).lower(),
            output_dir=Path(output_dir).expanduser() if output_dir else Path.cwd(),
            toolset=toolset,
            log_level=environ.get("MEDIA_GEN_LOG_LEVEL", "INFO").upper(),
        )

    def has_credential(self, provider: str) -> bool:
        return bool(self.credentials.get(provider))

    def credential(self, provider: str) -> Optional[str]:
        return self.credentials.get(provider)

    def validate_startup(self) -> None:
        """Fail before serving when the toolset cannot work at all."""
        if self.toolset not in TOOLSETS:
            raise ValueError(f"Unknown toolset: {self.toolset}")

        if self.toolset in ("mesh", "sound"):
            if not self.has_credential("replicate"):
                kind = "mesh" if self.toolset == "mesh" else "sound"
                raise MissingCredential(
                    f"REPLICATE_API_TOKEN is required for {kind} generation."
                )
            return

        if not any(self.has_credential(p) for p in CREDENTIAL_ENV):
            raise MissingCredential(
                "No valid API key found. Please set GEMINI_API_KEY, "
                "REPLICATE_API_TOKEN, or HUGGING_FACE_TOKEN."
            )
