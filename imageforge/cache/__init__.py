"""Change detection and path resolution."""

from imageforge.cache.detector import ChangeDetector, Decision, DecisionReason
from imageforge.cache.paths import PathResolver, ResolvedPaths

__all__ = [
    "ChangeDetector",
    "Decision",
    "DecisionReason",
    "PathResolver",
    "ResolvedPaths",
]
