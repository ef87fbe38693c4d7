"""
Bitmap optimization: orient, downsize, optionally grayscale and re-encode images.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, ImageStat

from config import AppConfig

_FORMAT_EXTENSIONS = {"WEBP": ".webp", "JPEG": ".jpg", "PNG": ".png"}
DEFAULT_IMAGE_EXTENSIONS = [".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"]
DEFAULT_EFFICIENT_EXTENSIONS = [".webp", ".jpg", ".jpeg"]


class ImageOptimizationError(RuntimeError):
    """Raised when an image cannot be decoded or encoded."""


class OptimizationOutcome(str, Enum):
    OPTIMIZED = "optimized"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class OptimizationResult:
    outcome: OptimizationOutcome
    reason: str
    source: Path
    output: Optional[Path] = None
    original_size: int = 0
    optimized_size: int = 0
    original_dimensions: Optional[tuple[int, int]] = None
    final_dimensions: Optional[tuple[int, int]] = None
    grayscale: bool = False

    @property
    def bytes_saved(self) -> int:
        if self.outcome is not OptimizationOutcome.OPTIMIZED:
            return 0
        return max(self.original_size - self.optimized_size, 0)


class ImageOptimizer:
    """Re-encode receipt images using the `optimization` configuration section."""

    def __init__(self, config: AppConfig, logger: Optional[logging.Logger] = None) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("receipt_vault")

        self.max_dimension_px = config.get_int("optimization", "max_dimension_px", default=2000, minimum=1)
        self.quality = config.get_int("optimization", "quality", default=85, minimum=1)
        self.output_format = str(config.get("optimization", "output_format", default="webp")).upper()
        if self.output_format == "JPG":
            self.output_format = "JPEG"
        if self.output_format not in _FORMAT_EXTENSIONS:
            self.logger.warning("Unsupported output format %s. Using WEBP.", self.output_format)
            self.output_format = "WEBP"
        self.min_size_bytes = config.get_int("optimization", "min_size_bytes", default=102_400, minimum=0)
        self.efficient_extensions = config.get_extensions(
            "optimization", "efficient_extensions", default=DEFAULT_EFFICIENT_EXTENSIONS
        )
        self.image_extensions = config.get_extensions(
            "optimization", "image_extensions", default=DEFAULT_IMAGE_EXTENSIONS
        )
        self.grayscale_detection = bool(config.get("optimization", "grayscale_detection", default=True))
        self.grayscale_threshold = config.get_float("optimization", "grayscale_threshold", default=4.0)
        self.preserve_metadata = bool(config.get("optimization", "preserve_metadata", default=False))

    @property
    def output_extension(self) -> str:
        return _FORMAT_EXTENSIONS[self.output_format]

    def is_image(self, path: Path) -> bool:
        return Path(path).suffix.lower() in self.image_extensions

    def output_path_for(self, source: Path) -> Path:
        return Path(source).with_suffix(self.output_extension)

    def optimize(self, source: Path, output: Path) -> OptimizationResult:
        """Write an optimized copy of `source` to `output` when it is worth it."""
        source = Path(source)
        output = Path(output)
        original_size = source.stat().st_size
        if original_size < self.min_size_bytes and source.suffix.lower() in self.efficient_extensions:
            return OptimizationResult(
                outcome=OptimizationOutcome.SKIPPED,
                reason="below_threshold",
                source=source,
                original_size=original_size,
            )

        partial = output.with_name(f".{output.name}.part")
        try:
            with Image.open(source) as opened:
                opened.load()
                original_dimensions = opened.size
                icc_profile = opened.info.get("icc_profile")
                image = ImageOps.exif_transpose(opened)
            exif = image.info.get("exif")

            grayscale = False
            if self.grayscale_detection and self._is_near_grayscale(image):
                image = image.convert("L")
                grayscale = True

            if max(image.size) > self.max_dimension_px:
                image.thumbnail((self.max_dimension_px, self.max_dimension_px), Image.Resampling.LANCZOS)

            image = self._prepare_mode(image)
            save_params = self._save_params()
            if self.preserve_metadata:
                if exif:
                    save_params["exif"] = exif
                if icc_profile:
                    save_params["icc_profile"] = icc_profile
            output.parent.mkdir(parents=True, exist_ok=True)
            image.save(partial, format=self.output_format, **save_params)
            final_dimensions = image.size
        except (OSError, ValueError, KeyError, Image.DecompressionBombError) as exc:
            _discard(partial)
            raise ImageOptimizationError(f"Failed to optimize {source}: {exc}") from exc

        optimized_size = partial.stat().st_size
        if optimized_size >= original_size:
            _discard(partial)
            return OptimizationResult(
                outcome=OptimizationOutcome.SKIPPED,
                reason="not_smaller",
                source=source,
                original_size=original_size,
                optimized_size=optimized_size,
                original_dimensions=original_dimensions,
                final_dimensions=final_dimensions,
                grayscale=grayscale,
            )

        os.replace(partial, output)
        self.logger.debug(
            "Optimized %s: %s -> %s bytes, %s -> %s",
            source.name,
            original_size,
            optimized_size,
            original_dimensions,
            final_dimensions,
        )
        return OptimizationResult(
            outcome=OptimizationOutcome.OPTIMIZED,
            reason="ok",
            source=source,
            output=output,
            original_size=original_size,
            optimized_size=optimized_size,
            original_dimensions=original_dimensions,
            final_dimensions=final_dimensions,
            grayscale=grayscale,
        )

    def _is_near_grayscale(self, image: Image.Image) -> bool:
        if image.mode in ("1", "L", "LA", "I", "F"):
            return False
        means = ImageStat.Stat(image.convert("RGB")).mean
        return max(means) - min(means) < self.grayscale_threshold

    def _prepare_mode(self, image: Image.Image) -> Image.Image:
        has_alpha = "A" in image.getbands() or "transparency" in image.info
        if self.output_format == "JPEG":
            if image.mode not in ("RGB", "L"):
                return image.convert("RGB")
            return image
        if image.mode in ("RGB", "RGBA", "L"):
            return image
        return image.convert("RGBA" if has_alpha else "RGB")

    def _save_params(self) -> dict:
        if self.output_format == "WEBP":
            return {"quality": self.quality, "method": 6}
        if self.output_format == "JPEG":
            return {"quality": self.quality, "optimize": True, "progressive": True}
        return {"optimize": True}


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
