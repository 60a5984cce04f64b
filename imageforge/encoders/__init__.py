"""Image encoders."""

from imageforge.encoders.base import Encoder, EncoderError
from imageforge.encoders.pillow_encoder import PillowEncoder

__all__ = ["Encoder", "EncoderError", "PillowEncoder"]
