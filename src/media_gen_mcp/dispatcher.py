"""
Tool Dispatcher
===============

Maps MCP tool calls onto provider capabilities and local image
operations, writes the results and builds the response envelope.

Tools:
- generate_image_from_text: Text-to-image with the active provider
- edit_image: Prompt-driven image editing with the active provider
- remove_background: Replicate, falling back to Hugging Face
- generate_3d_mesh: Text-to-OBJ with Shap-E on Replicate
- generate_sound_sfx: Sound effects with AudioGen on Replicate
- convert_image_format / resize_image / get_image_info: local Pillow operations
- list_providers: Provider configuration and routing
"""

import copy
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from . import imaging
from .config import ServerConfig
from .errors import InvalidArgument, NoCredentialsAvailable, UnknownTool
from .providers import Capability, GenerationRequest, GenerationResult, SourceAsset
from .selector import ProviderSelector


logger = logging.getLogger("media-gen-mcp")


TOOLS: Dict[str, Dict[str, Any]] = {
    "generate_image_from_text": {
        "description": "Generate an image from a text description. Note: When using Gemini, "
                       "it only supports specific resolutions and PNG format.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "prompt": {"type": "string", "description": "Detailed description of the image."},
                "output_path": {"type": "string", "description": "Path where the generated image will be saved."},
            },
            "required": ["prompt"],
        },
    },
    "edit_image": {
        "description": "Edit an existing image based on your prompt. Note: This tool ONLY alters the "
                       "visual content of the image; it does NOT change the image format or dimensions.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "image_path": {"type": "string", "description": "Path to the image file."},
                "prompt": {"type": "string", "description": "Instructions for editing."},
                "output_path": {"type": "string", "description": "Path where the generated image will be saved."},
            },
            "required": ["image_path", "prompt"],
        },
    },
    "remove_background": {
        "description": "Remove the background from an image.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "image_path": {"type": "string", "description": "Path to the image file."},
                "output_path": {"type": "string", "description": "Path where the transparent image will be saved."},
            },
            "required": ["image_path"],
        },
    },
    "convert_image_format": {
        "description": "Convert an image to a different format (e.g., PNG, JPEG, WEBP, GIF, TIFF, AVIF).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "source_path": {"type": "string", "description": "Path to the source image."},
                "output_path": {
                    "type": "string",
                    "description": "Path where the converted image will be saved. If not provided, "
                                   "will save in the same directory with new extension.",
                },
                "format": {"type": "string", "description": "Target format (png, jpeg, jpg, webp, gif, tiff, avif)."},
            },
            "required": ["source_path", "format"],
        },
    },
    "resize_image": {
        "description": "Resize an image to specific dimensions.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "source_path": {"type": "string", "description": "Path to the source image."},
                "output_path": {"type": "string", "description": "Path where the resized image will be saved."},
                "width": {"type": "number", "description": "Target width in pixels."},
                "height": {"type": "number", "description": "Target height in pixels. Optional if preserving aspect ratio."},
                "fit": {
                    "type": "string",
                    "description": "How the image should be resized to fit the dimensions "
                                   "(cover, contain, fill, inside, outside). Default is 'cover'.",
                },
            },
            "required": ["source_path", "width"],
        },
    },
    "get_image_info": {
        "description": "Get metadata about an image (dimensions, format, etc.).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "image_path": {"type": "string", "description": "Path to the image file."},
            },
            "required": ["image_path"],
        },
    },
    "generate_3d_mesh": {
        "description": "Generate a 3D mesh in OBJ format from a text description using Shap-E on Replicate.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "prompt": {"type": "string", "description": "Description of the 3D object to generate."},
                "output_path": {
                    "type": "string",
                    "description": "Path to save the OBJ mesh file (e.g., my_mesh.obj). "
                                   "If omitted, a .obj file will be created automatically.",
                },
                "guidance_scale": {
                    "type": "number",
                    "description": "Guidance scale for Shap-E (higher = more adherence to prompt). Default 15.",
                },
                "batch_size": {"type": "number", "description": "Number of samples to generate. Default 1."},
                "render_mode": {"type": "string", "description": "Render mode for Shap-E (e.g., 'nerf'). Default 'nerf'."},
                "render_size": {"type": "number", "description": "Render resolution; also affects mesh quality. Default 128."},
                "save_mesh": {
                    "type": "boolean",
                    "description": "Whether to save mesh data instead of only GIF renders. Default true.",
                },
            },
            "required": ["prompt"],
        },
    },
    "generate_sound_sfx": {
        "description": "Generate sound effects (SFX) using AudioGen (Meta). Best for real-world sounds "
                       "like footsteps, explosions, engine noises, etc.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "Description of the sound (e.g., 'footsteps on wooden floor', 'laser gun shot').",
                },
                "output_path": {"type": "string", "description": "Path to save the audio file."},
                "duration": {"type": "number", "description": "Duration in seconds (default 2)."},
            },
            "required": ["prompt"],
        },
    },
    "list_providers": {
        "description": "List providers with their status, capabilities and the routing in effect.",
        "inputSchema": {"type": "object", "properties": {}},
    },
}

TOOLSET_TOOLS = {
    "image": (
        "generate_image_from_text",
        "edit_image",
        "remove_background",
        "convert_image_format",
        "resize_image",
        "get_image_info",
        "list_providers",
    ),
    "mesh": ("generate_3d_mesh",),
    "sound": ("generate_sound_sfx",),
    "all": tuple(TOOLS),
}

# Extra schema properties exposed while Gemini is the active provider
GEMINI_PROPERTIES = {
    "generate_image_from_text": {
        "aspectRatio": {
            "type": "string",
            "description": "Aspect ratio of the image (e.g., '1:1', '3:4', '4:3', '9:16', '16:9').",
        },
        "resolution": {"type": "string", "description": "Resolution/Size of the image (e.g., '1K', '2K', '4K')."},
        "numberOfImages": {"type": "number", "description": "Number of images to generate."},
    },
    "edit_image": {
        "aspectRatio": {"type": "string", "description": "Aspect ratio."},
        "resolution": {"type": "string", "description": "Resolution/Size."},
        "numberOfImages": {"type": "number", "description": "Number of images."},
    },
}


def fan_out_paths(path: Path, count: int) -> List[Path]:
    """`img.png` -> [img.png, img_2.png, img_3.png, ...]."""
    paths = [path]
    for n in range(2, count + 1):
        paths.append(path.with_name(f"{path.stem}_{n}{path.suffix}"))
    return paths


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


class ToolDispatcher:
    """Validates tool arguments, routes them and persists the outputs."""

    def __init__(
        self,
        selector: ProviderSelector,
        output_dir: Optional[Path] = None,
        toolset: str = "all",
        clock: Callable[[], float] = time.time,
    ):
        self.selector = selector
        self.output_dir = Path(output_dir) if output_dir else Path.cwd()
        self.toolset = toolset
        self.clock = clock
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "generate_image_from_text": self.generate_image_from_text,
            "edit_image": self.edit_image,
            "remove_background": self.remove_background,
            "convert_image_format": self.convert_image_format,
            "resize_image": self.resize_image,
            "get_image_info": self.get_image_info,
            "generate_3d_mesh": self.generate_3d_mesh,
            "generate_sound_sfx": self.generate_sound_sfx,
            "list_providers": self.list_providers,
        }

    @classmethod
    def from_config(cls, config: ServerConfig) -> "ToolDispatcher":
        return cls(
            ProviderSelector.from_config(config),
            output_dir=config.output_dir,
            toolset=config.toolset,
        )

    @property
    def tool_names(self) -> Sequence[str]:
        return TOOLSET_TOOLS[self.toolset]

    def tool_definitions(self) -> List[Dict[str, Any]]:
        """JSON tool descriptors for this toolset."""
        try:
            gemini_active = self.selector.active_provider().name == "gemini"
        except NoCredentialsAvailable:
            gemini_active = False

        definitions = []
        for name in self.tool_names:
            tool = copy.deepcopy(TOOLS[name])
            if gemini_active and name in GEMINI_PROPERTIES:
                tool["inputSchema"]["properties"].update(copy.deepcopy(GEMINI_PROPERTIES[name]))
                if name == "generate_image_from_text":
                    tool["description"] += " Supports advanced parameters like aspectRatio and resolution."
            definitions.append({"name": name, **tool})
        return definitions

    async def invoke(self, name: str, args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Run one tool call and return its success envelope."""
        if name not in self.tool_names:
            raise UnknownTool(name)
        return await self._handlers[name](dict(args or {}))

    # --- Helpers ---

    @staticmethod
    def _require(args: Dict[str, Any], *fields: str) -> None:
        for field in fields:
            if not _present(args.get(field)):
                raise InvalidArgument(field)

    @staticmethod
    def _number(args: Dict[str, Any], field: str, cast=float, minimum: Optional[float] = None):
        value = args.get(field)
        if value is None:
            return None
        try:
            number = cast(value)
        except (TypeError, ValueError):
            raise InvalidArgument(field, f"Argument '{field}' must be a number")
        if minimum is not None and number < minimum:
            raise InvalidArgument(field, f"Argument '{field}' must be at least {minimum:g}")
        return number

    def resolve_output_path(self, path: Optional[str], default: str) -> Path:
        """Relative paths land under the output directory."""
        target = Path(path or default).expanduser()
        if not target.is_absolute():
            target = self.output_dir / target
        return target.resolve()

    def write_outputs(self, outputs: Sequence[bytes], path: Path) -> List[Path]:
        """Write every buffer; extra ones go to sibling `<base>_<n><ext>` paths."""
        paths = fan_out_paths(path, len(outputs))
        path.parent.mkdir(parents=True, exist_ok=True)
        for target, data in zip(paths, outputs):
            target.write_bytes(data)
            logger.info(f"Saved output to {target} ({len(data)} bytes)")
        return paths

    def _timestamp(self) -> int:
        return int(self.clock() * 1000)

    async def _route(self, request: GenerationRequest) -> Tuple[GenerationResult, List[str]]:
        capability = request.capability
        if self.selector.has_fallback(capability):
            return await self.selector.run_with_fallback(capability, lambda p: p.execute(request))

        provider = self.selector.resolve(capability)
        logger.info(f"Running {capability.value} with {provider.name}")
        return await provider.execute(request), []

    def _envelope(self, result: GenerationResult, paths: Sequence[Path],
                  fallback_errors: Sequence[str] = (), **extra: Any) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {
            "success": True,
            "output_paths": [str(p) for p in paths],
            "provider": result.provider,
            "model": result.model,
            "message": result.message,
        }
        envelope.update(extra)
        if fallback_errors:
            envelope["fallback_errors"] = list(fallback_errors)
        return envelope

    @staticmethod
    def _image_options(args: Dict[str, Any]) -> Dict[str, Any]:
        options: Dict[str, Any] = {}
        if _present(args.get("aspectRatio")):
            options["aspect_ratio"] = args["aspectRatio"]
        if _present(args.get("resolution")):
            options["resolution"] = args["resolution"]
        count = ToolDispatcher._number(args, "numberOfImages", int, minimum=1)
        if count is not None:
            options["number_of_images"] = count
        return options

    # --- Provider-backed tools ---

    async def generate_image_from_text(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(args, "prompt")
        request = GenerationRequest(
            capability=Capability.GENERATE,
            prompt=args["prompt"],
            options=self._image_options(args),
            output_path=args.get("output_path"),
        )
        logger.info(f"Generating image: '{request.prompt[:50]}'")
        result, errors = await self._route(request)
        paths = self.write_outputs(result.outputs, self.resolve_output_path(request.output_path, "output.png"))
        return self._envelope(result, paths, errors)

    async def edit_image(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(args, "image_path", "prompt")
        options = self._image_options(args)
        source = SourceAsset.load(args["image_path"])
        request = GenerationRequest(
            capability=Capability.EDIT,
            prompt=args["prompt"],
            source=source,
            options=options,
            output_path=args.get("output_path"),
        )
        logger.info(f"Editing image {source.path}: '{request.prompt[:50]}'")
        result, errors = await self._route(request)
        paths = self.write_outputs(result.outputs, self.resolve_output_path(request.output_path, "output.png"))
        return self._envelope(result, paths, errors)

    async def remove_background(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(args, "image_path")
        source = SourceAsset.load(args["image_path"])
        request = GenerationRequest(
            capability=Capability.REMOVE_BACKGROUND,
            source=source,
            output_path=args.get("output_path"),
        )
        result, errors = await self._route(request)

        default = source.path.with_name(f"{source.path.stem}_nobg.png")
        output = self.resolve_output_path(request.output_path, str(default))
        # Background removal always yields a single cutout
        paths = self.write_outputs(result.outputs[:1], output)
        return self._envelope(result, paths, errors)

    async def generate_3d_mesh(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(args, "prompt")
        options = {
            "guidance_scale": self._number(args, "guidance_scale"),
            "batch_size": self._number(args, "batch_size", int, minimum=1),
            "render_mode": args.get("render_mode"),
            "render_size": self._number(args, "render_size", int, minimum=1),
            "save_mesh": args.get("save_mesh"),
        }
        request = GenerationRequest(
            capability=Capability.GENERATE_MESH,
            prompt=args["prompt"],
            options={k: v for k, v in options.items() if v is not None},
            output_path=args.get("output_path"),
        )
        logger.info(f"Generating mesh: '{request.prompt[:50]}'")
        result, errors = await self._route(request)
        output = self.resolve_output_path(request.output_path, f"output_mesh_{self._timestamp()}.obj")
        paths = self.write_outputs(result.outputs[:1], output)
        return self._envelope(result, paths, errors, content_type=result.content_type, format="obj")

    async def generate_sound_sfx(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(args, "prompt")
        duration = self._number(args, "duration", minimum=0)
        request = GenerationRequest(
            capability=Capability.GENERATE_SOUND,
            prompt=args["prompt"],
            # A zero duration falls back to the default, as an omitted one does
            options={"sound_type": "sfx", "duration": duration or 2},
            output_path=args.get("output_path"),
        )
        logger.info(f"Generating sfx: '{request.prompt[:50]}'")
        result, errors = await self._route(request)
        output = self.resolve_output_path(request.output_path, f"output_sfx_{self._timestamp()}.wav")
        paths = self.write_outputs(result.outputs[:1], output)
        return self._envelope(result, paths, errors)

    # --- Local image tools ---

    async def convert_image_format(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(args, "source_path", "format")
        source = SourceAsset.load(args["source_path"]).path
        fmt = imaging.normalize_format(args["format"])
        default = source.with_suffix(f".{fmt}")
        output = self.resolve_output_path(args.get("output_path"), str(default))
        imaging.convert_image(source, output, fmt)
        return {
            "success": True,
            "output_paths": [str(output)],
            "message": f"Image converted to {fmt} successfully.",
        }

    async def resize_image(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(args, "source_path", "width")
        width = self._number(args, "width", int, minimum=1)
        height = self._number(args, "height", int, minimum=1)
        fit = args.get("fit") or "cover"
        source = SourceAsset.load(args["source_path"]).path
        default = source.with_name(f"{source.stem}_resized{source.suffix}")
        output = self.resolve_output_path(args.get("output_path"), str(default))
        imaging.resize_image(source, output, width, height, fit)
        return {
            "success": True,
            "output_paths": [str(output)],
            "message": f"Image resized to {width}x{height or 'auto'} successfully.",
        }

    async def get_image_info(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require(args, "image_path")
        path = SourceAsset.load(args["image_path"]).path
        return {"success": True, "info": imaging.image_info(path)}

    async def list_providers(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """List all providers, their status and the routing in effect."""
        providers_info = []
        for provider in self.selector.providers.values():
            info = await provider.check_health()
            info["models"] = [
                {
                    "id": m.id,
                    "name": m.name,
                    "description": m.description,
                    "capability": m.capability.value,
                }
                for m in await provider.list_models()
            ]
            providers_info.append(info)
        try:
            active = self.selector.active_provider().name
        except NoCredentialsAvailable:
            active = None

        return {
            "success": True,
            "providers": providers_info,
            "active_provider": active,
            "resolution_order": self.selector.resolution_order(),
            "fallback_chains": {
                cap.value: list(chain) for cap, chain in self.selector.fallback_chains.items()
            },
            "dedicated_providers": {
                cap.value: name for cap, name in self.selector.dedicated.items()
            },
        }
