"""
Encoder interface.

An encoder turns source bytes into optimized bytes for a target format. The
pipeline only calls it for files the change detector marked as changed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class EncoderError(Exception):
    """An encoder could not produce output for a source file."""

    def __init__(self, message: str, fmt: str | None = None):
        super().__init__(message)
        self.fmt = fmt


class Encoder(ABC):
    """Abstract image encoder."""

    @abstractmethod
    def encode(self, source: bytes, fmt: str) -> bytes:
        """
        Encode image bytes.

        Args:
            source: Raw bytes of the source image.
            fmt: Target format name (``jpeg``, ``png``, ``svg``, ``webp``...).

        Returns:
            Encoded bytes.

        Raises:
            EncoderError: If the source cannot be decoded or encoded.
        """
        ...

    def supports(self, fmt: str) -> bool:
        """Whether ``fmt`` is a target this encoder understands."""
        return True
