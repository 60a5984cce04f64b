"""Core utilities: configuration, formats, canonical JSON."""

from imageforge.core.config import PipelineConfig
from imageforge.core.formats import (
    DERIVATIVE_ELIGIBLE_EXTENSIONS,
    DERIVATIVE_EXTENSION,
    SUPPORTED_EXTENSIONS,
)

__all__ = [
    "PipelineConfig",
    "SUPPORTED_EXTENSIONS",
    "DERIVATIVE_ELIGIBLE_EXTENSIONS",
    "DERIVATIVE_EXTENSION",
]
