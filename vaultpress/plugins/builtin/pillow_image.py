"""Image processor backed by Pillow."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from vaultpress.interfaces.image import (
    ImageMetadata,
    ImageProcessOptions,
    ImageProcessResult,
    ImageProcessor,
)
from vaultpress.interfaces.plugin import PluginContext

logger = logging.getLogger(__name__)

RASTER_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tif", ".tiff", ".avif"}

_PIL_FORMATS = {
    "webp": "WEBP",
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "png": "PNG",
    "avif": "AVIF",
}


class PillowImageProcessor(ImageProcessor):
    """Resizes and re-encodes raster images. Never upscales."""

    implementation = "pillow"

    async def setup(self, context: PluginContext) -> None:
        Image.init()
        fallback = self.options.get("fallback_format", "webp")
        if _PIL_FORMATS.get(fallback) not in Image.SAVE:
            raise RuntimeError(f"Pillow cannot encode fallback format '{fallback}'")

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() in RASTER_EXTENSIONS

    async def get_metadata(self, path: Path) -> ImageMetadata:
        return await asyncio.to_thread(self._read_metadata, path)

    async def process(
        self, input_path: Path, output_path: Path, options: ImageProcessOptions
    ) -> ImageProcessResult:
        return await asyncio.to_thread(self._process_sync, input_path, output_path, options)

    async def copy(self, input_path: Path, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, input_path, output_path)

    def output_format(self, requested: str) -> str:
        return self._resolve_format(requested)[0]

    # -- sync workers (run in a thread) ----------------------------------------

    def _read_metadata(self, path: Path) -> ImageMetadata:
        try:
            with Image.open(path) as img:
                return ImageMetadata(
                    width=img.width,
                    height=img.height,
                    format=(img.format or path.suffix.lstrip(".")).lower(),
                )
        except UnidentifiedImageError as e:
            raise ValueError(f"Not a readable image: {path}") from e

    def _resolve_format(self, requested: str) -> tuple[str, str]:
        fmt = requested.lower()
        pil_format = _PIL_FORMATS.get(fmt)
        if pil_format is None or pil_format not in Image.SAVE:
            fallback = self.options.get("fallback_format", "webp")
            logger.warning("Pillow cannot encode %s, using %s", requested, fallback)
            fmt = fallback
            pil_format = _PIL_FORMATS[fallback]
        return ("jpeg" if fmt == "jpg" else fmt), pil_format

    def _process_sync(
        self, input_path: Path, output_path: Path, options: ImageProcessOptions
    ) -> ImageProcessResult:
        fmt, pil_format = self._resolve_format(options.format)
        if output_path.suffix.lstrip(".").lower() != fmt:
            output_path = output_path.with_suffix(f".{fmt}")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with Image.open(input_path) as img:
            img.load()
            out = img
            if options.width or options.height:
                target = (options.width or img.width, options.height or img.height)
                if target[0] < img.width or target[1] < img.height:
                    out = img.copy()
                    out.thumbnail(target, Image.Resampling.LANCZOS)

            if pil_format == "JPEG" and out.mode not in ("RGB", "L"):
                out = out.convert("RGB")
            elif out.mode == "P":
                out = out.convert("RGBA")

            save_kwargs: dict = {}
            if pil_format in ("JPEG", "WEBP", "AVIF"):
                save_kwargs["quality"] = options.quality
            if pil_format == "PNG":
                save_kwargs["optimize"] = True
            out.save(output_path, format=pil_format, **save_kwargs)
            width, height = out.width, out.height

        return ImageProcessResult(
            output_path=str(output_path),
            width=width,
            height=height,
            format=fmt,
            size_bytes=output_path.stat().st_size,
        )
