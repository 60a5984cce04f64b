"""
Image format tables.

Extensions are compared lowercased, including the leading dot.
"""

from __future__ import annotations

from pathlib import PurePath

# Inputs the pipeline recognizes (raster + vector)
SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp"}
)

# Raster inputs that also get a WebP sibling
DERIVATIVE_ELIGIBLE_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg", ".png"})

DERIVATIVE_EXTENSION = ".webp"

# Primary outputs for these are byte-for-byte copies of the source
PASSTHROUGH_EXTENSIONS: frozenset[str] = frozenset({".gif", ".webp"})

# Encoder format names by extension
FORMAT_BY_EXTENSION: dict[str, str] = {
    ".jpg": "jpeg",
    ".jpeg": "jpeg",
    ".png": "png",
    ".gif": "gif",
    ".svg": "svg",
    ".webp": "webp",
}


def extension_of(path: str | PurePath) -> str:
    """Lowercased extension of a path, with leading dot."""
    return PurePath(path).suffix.lower()


def is_supported(path: str | PurePath) -> bool:
    return extension_of(path) in SUPPORTED_EXTENSIONS


def is_derivative_eligible(path: str | PurePath) -> bool:
    return extension_of(path) in DERIVATIVE_ELIGIBLE_EXTENSIONS


def format_for(path: str | PurePath) -> str:
    """
    Encoder format name for a source path.

    Raises:
        ValueError: If the extension is not supported.
    """
    ext = extension_of(path)
    try:
        return FORMAT_BY_EXTENSION[ext]
    except KeyError:
        raise ValueError(f"Unsupported image extension: {ext or '<none>'}") from None
