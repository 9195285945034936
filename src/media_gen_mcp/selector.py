"""Provider selection: which backend serves which capability."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from .config import ServerConfig
from .errors import (
    AllProvidersFailed,
    CapabilityUnsupported,
    NoCredentialsAvailable,
    ProviderError,
)
from .providers import (
    Capability,
    GeminiProvider,
    GenerationResult,
    HuggingFaceProvider,
    MediaProvider,
    ReplicateProvider,
)


logger = logging.getLogger(__name__)

# Provider priority for active provider resolution; the first entry is the default
PROVIDER_PRIORITY = ("gemini", "replicate", "huggingface")

# Capabilities served by a sequential best-effort chain instead of the active provider
FALLBACK_CHAINS: Dict[Capability, Tuple[str, ...]] = {
    Capability.REMOVE_BACKGROUND: ("replicate", "huggingface"),
}

# Capabilities only one backend offers, regardless of the active provider
DEDICATED_PROVIDERS: Dict[Capability, str] = {
    Capability.GENERATE_MESH: "replicate",
    Capability.GENERATE_SOUND: "replicate",
}

# Failures that let a fallback chain move on to the next provider
RECOVERABLE_ERRORS = (ProviderError, aiohttp.ClientError, asyncio.TimeoutError)


def build_providers(config: ServerConfig) -> Dict[str, MediaProvider]:
    """Instantiate every provider from a ServerConfig.

    The config is the only credential source; an empty key leaves the
    provider unconfigured instead of falling back to the process environment.
    """
    return {
        "gemini": GeminiProvider(api_key=config.credential("gemini") or ""),
        "replicate": ReplicateProvider(
            api_key=config.credential("replicate") or "",
            version_cache=config.version_cache,
        ),
        "huggingface": HuggingFaceProvider(api_key=config.credential("huggingface") or ""),
    }


class ProviderSelector:
    """Resolves providers for capabilities.

    The active provider is resolved lazily once and then kept for the
    selector's lifetime.
    """

    def __init__(
        self,
        providers: Dict[str, MediaProvider],
        override: Optional[str] = None,
        priority: Sequence[str] = PROVIDER_PRIORITY,
        fallback_chains: Optional[Dict[Capability, Tuple[str, ...]]] = None,
        dedicated: Optional[Dict[Capability, str]] = None,
    ):
        self.providers = providers
        self.override = override
        self.priority = tuple(priority)
        self.fallback_chains = FALLBACK_CHAINS if fallback_chains is None else fallback_chains
        self.dedicated = DEDICATED_PROVIDERS if dedicated is None else dedicated
        self._active: Optional[MediaProvider] = None

    @classmethod
    def from_config(cls, config: ServerConfig) -> "ProviderSelector":
        return cls(build_providers(config), override=config.provider_override)

    def resolution_order(self) -> List[str]:
        order = []
        if self.override:
            order.append(self.override)
        order.extend(name for name in self.priority if name not in order)
        return order

    def active_provider(self) -> MediaProvider:
        """The provider used for capabilities without a fallback chain."""
        if self._active is None:
            for name in self.resolution_order():
                provider = self.providers.get(name)
                if provider is not None and provider.is_configured:
                    self._active = provider
                    break
            else:
                raise NoCredentialsAvailable(
                    "No valid API key found. Please set GEMINI_API_KEY, "
                    "REPLICATE_API_TOKEN, or HUGGING_FACE_TOKEN."
                )
        return self._active

    def has_fallback(self, capability: Capability) -> bool:
        return capability in self.fallback_chains

    def resolve(self, capability: Capability) -> MediaProvider:
        """Single provider for a capability without a fallback chain."""
        if self.has_fallback(capability):
            return self.candidates(capability)[0]

        if capability in self.dedicated:
            return self._dedicated_provider(capability)

        provider = self.active_provider()
        if not provider.supports(capability):
            supported = [
                name for name in self.priority
                if name in self.providers and self.providers[name].supports(capability)
            ]
            raise CapabilityUnsupported(
                provider.name,
                capability.value,
                f"'{capability.value}' is not supported by the active provider "
                f"'{provider.name}' (supported by: {', '.join(supported) or 'none'})",
            )
        return provider

    def _dedicated_provider(self, capability: Capability) -> MediaProvider:
        name = self.dedicated[capability]
        provider = self.providers.get(name)
        if provider is None or not provider.is_available_for(capability):
            raise NoCredentialsAvailable(
                f"'{capability.value}' requires the {name} provider, which is not configured"
            )
        return provider

    def candidates(self, capability: Capability) -> List[MediaProvider]:
        """Ordered providers to try for a capability."""
        if not self.has_fallback(capability):
            return [self.resolve(capability)]

        names: List[str] = []
        if self.override:
            names.append(self.override)
        names.extend(n for n in self.fallback_chains[capability] if n not in names)

        found = [
            self.providers[n] for n in names
            if n in self.providers and self.providers[n].is_available_for(capability)
        ]
        if not found:
            raise NoCredentialsAvailable(
                f"No configured provider can perform '{capability.value}' "
                f"(tried: {', '.join(names)})"
            )
        return found

    async def run_with_fallback(
        self,
        capability: Capability,
        call: Callable[[MediaProvider], Awaitable[GenerationResult]],
    ) -> Tuple[GenerationResult, List[str]]:
        """Try each candidate in order until one succeeds.

        Returns the result and the swallowed errors of earlier candidates.
        """
        errors: List[str] = []
        for provider in self.candidates(capability):
            logger.info(f"Attempting {capability.value} with {provider.display_name}...")
            try:
                return await call(provider), errors
            except RECOVERABLE_ERRORS as e:
                logger.warning(f"{provider.display_name} {capability.value} failed: {e}")
                errors.append(f"{provider.name}: {e}")
        raise AllProvidersFailed(capability.value, errors)
