"""Pipeline orchestration."""

from imageforge.pipelines.runner import (
    FileOutcome,
    PipelineDriver,
    RunCancelled,
    RunResult,
    create_driver,
)

__all__ = [
    "FileOutcome",
    "PipelineDriver",
    "RunCancelled",
    "RunResult",
    "create_driver",
]
