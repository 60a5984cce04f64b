"""
Pillow-backed encoder.

Raster formats are re-encoded with Pillow. SVG is text: comments and
whitespace between tags are stripped, the ``viewBox`` is left alone.
"""

from __future__ import annotations

import io
import re

from PIL import Image, UnidentifiedImageError

from imageforge.encoders.base import Encoder, EncoderError

_SVG_COMMENT = re.compile(rb"<!--.*?-->", re.DOTALL)
_SVG_INTERTAG_SPACE = re.compile(rb">\s+<")


def minify_svg(source: bytes) -> bytes:
    """Drop comments and inter-tag whitespace from an SVG document."""
    out = _SVG_COMMENT.sub(b"", source)
    out = _SVG_INTERTAG_SPACE.sub(b"><", out)
    return out.strip() + b"\n"


class PillowEncoder(Encoder):
    """Encoder using Pillow for JPEG, PNG and WebP output."""

    FORMATS = frozenset({"jpeg", "png", "webp", "svg"})

    def __init__(
        self,
        jpeg_quality: int = 80,
        png_compress_level: int = 9,
        webp_quality: int = 80,
    ):
        """
        Initialize encoder.

        Args:
            jpeg_quality: JPEG quality (1-100).
            png_compress_level: zlib level for PNG (0-9).
            webp_quality: WebP quality (1-100).
        """
        self.jpeg_quality = jpeg_quality
        self.png_compress_level = png_compress_level
        self.webp_quality = webp_quality

    def supports(self, fmt: str) -> bool:
        return fmt in self.FORMATS

    def encode(self, source: bytes, fmt: str) -> bytes:
        if fmt == "svg":
            return minify_svg(source)
        if fmt not in self.FORMATS:
            raise EncoderError(f"Unsupported target format: {fmt}", fmt=fmt)

        try:
            with Image.open(io.BytesIO(source)) as img:
                img.load()
                return self._save(img, fmt)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise EncoderError(f"Failed to encode {fmt}: {e}", fmt=fmt) from e

    def _save(self, img: Image.Image, fmt: str) -> bytes:
        buf = io.BytesIO()

        if fmt == "jpeg":
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(buf, format="JPEG", quality=self.jpeg_quality, optimize=True, progressive=True)
        elif fmt == "png":
            img.save(buf, format="PNG", optimize=True, compress_level=self.png_compress_level)
        else:
            has_alpha = img.mode in ("RGBA", "LA") or "transparency" in img.info
            img = img.convert("RGBA" if has_alpha else "RGB")
            img.save(buf, format="WEBP", quality=self.webp_quality, method=6)

        return buf.getvalue()
