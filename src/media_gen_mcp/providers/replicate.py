"""
Replicate Provider
==================

Asynchronous predictions: every capability creates a prediction, polls it
to a terminal state with JobPoller and downloads the output file.

API: https://api.replicate.com/v1/predictions
"""

import asyncio
import logging
import time
from functools import partial
from typing import Optional, Dict, Any, Callable, Awaitable

import aiohttp

from ..api_client import ApiClient, Artifact
from ..config import ModelVersionCache, credential_from_env
from ..errors import InvalidArgument, InvalidProviderResponse, ProviderError
from ..polling import Job, JobPoller, PollPolicy, select_output_url
from .base import (
    Capability,
    GenerationResult,
    MediaProvider,
    ProviderModel,
    SourceAsset,
)


logger = logging.getLogger(__name__)


class ReplicateProvider(MediaProvider):
    """Replicate predictions for images, meshes and sound effects."""

    name = "replicate"
    display_name = "Replicate"
    requires_api_key = True
    capabilities = frozenset({
        Capability.GENERATE,
        Capability.EDIT,
        Capability.REMOVE_BACKGROUND,
        Capability.GENERATE_MESH,
        Capability.GENERATE_SOUND,
    })

    BASE_URL = "https://api.replicate.com/v1"

    MODELS = {
        "sdxl-lightning": ProviderModel(
            id="bytedance/sdxl-lightning-4step",
            name="SDXL Lightning 4-step",
            description="Fast text-to-image",
            capability=Capability.GENERATE,
            version="5599ed30703defd1d160a25a63321b4dec97101d98b4674bcc56e41f62f35637",
        ),
        "instruct-pix2pix": ProviderModel(
            id="timothybrooks/instruct-pix2pix",
            name="InstructPix2Pix",
            description="Instruction-based image editing",
            capability=Capability.EDIT,
            version="30c1d0b916a6f8efce20493f5d61ee27491ab2a60437c13c588468b9810ec23f",
        ),
        "background-remover": ProviderModel(
            id="851-labs/background-remover",
            name="Background Remover",
            description="Transparent-background cutouts",
            capability=Capability.REMOVE_BACKGROUND,
            version="a029dff38972b5fda4ec5d75d7d1cd25aeff621d2cf4946a41055d7db66b80bc",
        ),
        "shap-e": ProviderModel(
            id="cjwbw/shap-e",
            name="Shap-E",
            description="Text-to-3D mesh (OBJ)",
            capability=Capability.GENERATE_MESH,
        ),
        "audiogen": ProviderModel(
            id="sepal/audiogen",
            name="AudioGen",
            description="Text-to-sound effects (Meta AudioGen)",
            capability=Capability.GENERATE_SOUND,
        ),
    }

    # Known-good versions used when the latest-version lookup fails
    FALLBACK_VERSIONS = {
        "cjwbw/shap-e": "0d348e32f723509b8cd6d20be8c774a2fb6cfe6f442fed892005e327a6f06649",
        "sepal/audiogen": "154b3e5141493cb1b8cec976d9aa90f2b691137e39ad906d2421b74c2a8c52b8",
    }

    POLICIES = {
        Capability.GENERATE: PollPolicy(interval_seconds=1.0, max_attempts=120),
        Capability.EDIT: PollPolicy(interval_seconds=1.0, max_attempts=120),
        Capability.REMOVE_BACKGROUND: PollPolicy(interval_seconds=1.0, max_attempts=120),
        Capability.GENERATE_MESH: PollPolicy(interval_seconds=5.0, max_attempts=120),
        Capability.GENERATE_SOUND: PollPolicy(interval_seconds=1.0, max_attempts=300),
    }

    SOUND_TYPES = ("sfx",)

    MESH_DEFAULTS = {
        "guidance_scale": 15,
        "batch_size": 1,
        "render_mode": "nerf",
        "render_size": 128,
        "save_mesh": True,
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[Dict] = None,
        client: Optional[ApiClient] = None,
        version_cache: Optional[ModelVersionCache] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if api_key is None:
            api_key = credential_from_env(self.name)
        super().__init__(api_key, config)
        self.client = client or ApiClient(
            headers={"Authorization": f"Bearer {self.api_key or ''}"},
            timeout=self.config.get("timeout", 600),
        )
        self.version_cache = version_cache if version_cache is not None else ModelVersionCache()
        self.sleep = sleep

    # --- Version resolution ---

    async def resolve_version(self, model_name: str) -> str:
        """Latest version of `model_name`, looked up once per cache."""
        cached = self.version_cache.get(model_name)
        if cached:
            return cached

        version = None
        try:
            data = await self.client.get_json(f"{self.BASE_URL}/models/{model_name}")
            latest = data.get("latest_version") if isinstance(data, dict) else None
            if isinstance(latest, dict):
                version = latest.get("id")
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Error fetching version for {model_name}: {e}")

        if not version:
            version = self.FALLBACK_VERSIONS.get(model_name)
            if not version:
                raise InvalidProviderResponse(f"Could not determine version for model {model_name}")
            logger.info(f"Using fallback version for {model_name}")

        self.version_cache.set(model_name, version)
        return version

    async def _model_version(self, model_key: str) -> str:
        model = self.MODELS[model_key]
        return model.version or await self.resolve_version(model.id)

    # --- Prediction lifecycle ---

    async def create_prediction(self, version: str, input_data: Dict[str, Any]) -> Job:
        """POST a prediction; `Prefer: wait` may return it already finished."""
        data = await self.client.post_json(
            f"{self.BASE_URL}/predictions",
            {"version": version, "input": input_data},
            headers={"Prefer": "wait"},
        )
        job = Job.from_prediction(data, self.BASE_URL)
        logger.info(f"[{self.name}] Prediction {job.id} created ({job.status.value})")
        return job

    async def _run_prediction(
        self,
        capability: Capability,
        model_key: str,
        input_data: Dict[str, Any],
        select_output=select_output_url,
    ) -> Artifact:
        version = await self._model_version(model_key)
        poller = JobPoller(
            self.client,
            self.POLICIES[capability],
            sleep=self.sleep,
            base_url=self.BASE_URL,
            label=f"{self.name}:{model_key}",
        )
        return await poller.run_job(
            partial(self.create_prediction, version, input_data),
            select_output=select_output,
        )

    def _result(self, model_key: str, artifact: Artifact, message: str,
                start_time: float, content_type: str = "") -> GenerationResult:
        if not artifact.data:
            raise InvalidProviderResponse(f"Empty output downloaded from {artifact.url}")
        return GenerationResult(
            provider=self.name,
            model=self.MODELS[model_key].id,
            outputs=[artifact.data],
            content_type=content_type or artifact.content_type,
            message=message,
            source_url=artifact.url,
            generation_time_ms=int((time.time() - start_time) * 1000),
        )

    # --- Capabilities ---

    async def generate(self, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        """Generate an image with SDXL Lightning."""
        start_time = time.time()
        artifact = await self._run_prediction(
            Capability.GENERATE, "sdxl-lightning", {"prompt": prompt},
        )
        return self._result(
            "sdxl-lightning", artifact,
            f"Image(s) generated successfully using {self.name}", start_time,
        )

    async def edit(self, source: SourceAsset, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        """Edit an image with InstructPix2Pix; the image travels as a data: URI."""
        start_time = time.time()
        input_data = {
            "image": source.data_uri,
            "prompt": prompt,
            "image_guidance_scale": options.get("image_guidance_scale", 1.5),
        }
        artifact = await self._run_prediction(Capability.EDIT, "instruct-pix2pix", input_data)
        return self._result(
            "instruct-pix2pix", artifact,
            f"Image(s) edited successfully using {self.name}", start_time,
        )

    async def remove_background(self, source: SourceAsset, options: Dict[str, Any]) -> GenerationResult:
        start_time = time.time()
        artifact = await self._run_prediction(
            Capability.REMOVE_BACKGROUND, "background-remover", {"image": source.data_uri},
        )
        return self._result(
            "background-remover", artifact,
            f"Background removed successfully using {self.name}", start_time,
        )

    async def generate_mesh(self, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        """Generate an OBJ mesh with Shap-E.

        Shap-E may answer with GIF renders next to the mesh, so the .obj URL
        is preferred and .gif URLs are skipped.
        """
        start_time = time.time()
        input_data: Dict[str, Any] = {"prompt": prompt}
        for key, default in self.MESH_DEFAULTS.items():
            value = options.get(key)
            input_data[key] = default if value is None else value

        select_mesh = partial(select_output_url, preferred=(".obj",), excluded=(".gif",))
        artifact = await self._run_prediction(
            Capability.GENERATE_MESH, "shap-e", input_data, select_output=select_mesh,
        )
        return self._result(
            "shap-e", artifact,
            f"3D mesh generated successfully using Shap-E on {self.name}", start_time,
            content_type=artifact.content_type or "model/obj",
        )

    async def generate_sound(self, prompt: str, options: Dict[str, Any]) -> GenerationResult:
        """Generate a sound effect with AudioGen."""
        sound_type = options.get("sound_type", "sfx")
        if sound_type not in self.SOUND_TYPES:
            raise InvalidArgument(
                "sound_type",
                f"Invalid sound type: only {', '.join(repr(t) for t in self.SOUND_TYPES)} is supported",
            )

        start_time = time.time()
        duration = options.get("duration")
        input_data = {"prompt": prompt, "duration": 2 if duration is None else duration}
        artifact = await self._run_prediction(Capability.GENERATE_SOUND, "audiogen", input_data)
        return self._result(
            "audiogen", artifact,
            f"Sound generated successfully ({sound_type}) using {self.name}", start_time,
            content_type=artifact.content_type or "audio/wav",
        )
