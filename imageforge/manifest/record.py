"""
Manifest schema.

One record per source image, keyed by its POSIX path relative to the source
root. A record only exists for a file that was processed successfully.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from imageforge.core.json_canonical import canonical_json_dumps


class ManifestRecord(BaseModel):
    """Cache record for a single source image."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content_hash: str = Field(
        validation_alias=AliasChoices("hash"),
        serialization_alias="hash",
        description="Hash of the source bytes at last successful processing",
    )
    size: int = Field(ge=0, description="Source byte length at last processing")
    # Older manifests stored float milliseconds under "mtimeMs"
    modified_time: int | float = Field(
        validation_alias=AliasChoices("modifiedTime", "mtimeMs"),
        serialization_alias="modifiedTime",
        description="Opaque filesystem modification stamp",
    )
    has_derivative: bool = Field(
        default=False,
        validation_alias=AliasChoices("hasDerivative", "webp"),
        serialization_alias="hasDerivative",
        description="Whether a WebP sibling was produced",
    )

    def matches_stat(self, size: int, modified_time: int | float) -> bool:
        """True when size and modification stamp both equal the stored ones."""
        return self.size == size and self.modified_time == modified_time

    def refreshed(self, content_hash: str, size: int, modified_time: int | float) -> ManifestRecord:
        """Copy with new hash and stat fields, derivative flag unchanged."""
        return self.model_copy(
            update={
                "content_hash": content_hash,
                "size": size,
                "modified_time": modified_time,
            }
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the on-disk dictionary form."""
        return self.model_dump(by_alias=True)


class Manifest(BaseModel):
    """
    Persistent cache state for a whole source tree.

    Only ``files`` is persisted; unknown top-level keys are ignored on load.
    """

    files: dict[str, ManifestRecord] = Field(
        default_factory=dict, description="Records by source-relative path"
    )

    def get(self, key: str) -> ManifestRecord | None:
        return self.files.get(key)

    def __len__(self) -> int:
        return len(self.files)

    def __contains__(self, key: object) -> bool:
        return key in self.files

    def with_records(self, records: dict[str, ManifestRecord]) -> Manifest:
        """New manifest with ``records`` merged over the current entries."""
        merged = dict(self.files)
        merged.update(records)
        return Manifest(files=merged)

    def to_dict(self) -> dict[str, Any]:
        return {"files": {key: rec.to_dict() for key, rec in self.files.items()}}

    def to_json(self, indent: bool = True) -> str:
        """Serialize to canonical JSON with a trailing newline."""
        return canonical_json_dumps(self.to_dict(), indent=indent) + "\n"
