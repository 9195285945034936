"""Local image operations backed by Pillow."""

from pathlib import Path
from typing import Any, Dict, Optional

from PIL import Image, ImageOps

from .errors import InvalidArgument


# Accepted target format -> Pillow format name
FORMATS = {
    "png": "PNG",
    "jpeg": "JPEG",
    "webp": "WEBP",
    "gif": "GIF",
    "tiff": "TIFF",
    "avif": "AVIF",
}

FIT_MODES = ("cover", "contain", "fill", "inside", "outside")


def normalize_format(fmt: str) -> str:
    """'JPG' / '.jpg' -> 'jpeg'."""
    fmt = (fmt or "").lower().lstrip(".")
    if fmt == "jpg":
        fmt = "jpeg"
    if fmt == "tif":
        fmt = "tiff"
    if fmt not in FORMATS:
        raise InvalidArgument("format", f"Unsupported format: {fmt or '<empty>'}")
    return fmt


def _prepare_for(img: Image.Image, pil_format: Optional[str]) -> Image.Image:
    # JPEG has no alpha channel or palette
    if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
        return img.convert("RGB")
    return img


def _target_format(output: Path, source_format: Optional[str]) -> Optional[str]:
    return Image.registered_extensions().get(output.suffix.lower()) or source_format


def convert_image(source: Path, output: Path, fmt: str) -> Path:
    """Convert `source` to `fmt`, writing `output`."""
    pil_format = FORMATS[normalize_format(fmt)]
    output.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(source) as img:
        img.load()
        _prepare_for(img, pil_format).save(output, format=pil_format)
    return output


def resize_image(source: Path, output: Path, width: int,
                 height: Optional[int] = None, fit: str = "cover") -> Path:
    """Resize with CSS-like fit modes.

    cover crops to fill the box, contain letterboxes, fill stretches,
    inside shrinks to fit within the box and outside grows to cover it
    without cropping. Without a height the aspect ratio is preserved.
    """
    fit = (fit or "cover").lower()
    if fit not in FIT_MODES:
        raise InvalidArgument("fit", f"Unsupported fit: {fit}. Use one of {', '.join(FIT_MODES)}")
    if width <= 0 or (height is not None and height <= 0):
        raise InvalidArgument("width", "width and height must be positive")

    output.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(source) as img:
        img.load()
        pil_format = _target_format(output, img.format)
        src_w, src_h = img.size

        if height is None:
            height = max(1, round(src_h * width / src_w))
            resized = img.resize((width, height), Image.LANCZOS)
        elif fit == "cover":
            resized = ImageOps.fit(img, (width, height), Image.LANCZOS)
        elif fit == "contain":
            if img.mode not in ("RGBA", "LA"):
                img = img.convert("RGBA")
            resized = ImageOps.pad(img, (width, height), Image.LANCZOS, color=(0, 0, 0, 0))
        elif fit == "fill":
            resized = img.resize((width, height), Image.LANCZOS)
        elif fit == "inside":
            resized = ImageOps.contain(img, (width, height), Image.LANCZOS)
        else:
            scale = max(width / src_w, height / src_h)
            resized = img.resize((max(1, round(src_w * scale)), max(1, round(src_h * scale))), Image.LANCZOS)

        _prepare_for(resized, pil_format).save(output, format=pil_format)
    return output


def image_info(path: Path) -> Dict[str, Any]:
    """Format, dimensions, channel count and file size."""
    with Image.open(path) as img:
        return {
            "format": (img.format or "").lower(),
            "width": img.width,
            "height": img.height,
            "channels": len(img.getbands()),
            "mode": img.mode,
            "size": path.stat().st_size,
        }
