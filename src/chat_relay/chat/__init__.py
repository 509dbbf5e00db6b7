"""Chat relay package."""

from .image_generation import ImageGenerationError, ImageGenerator
from .provider import ProviderClient
from .relay import ChatRelay, RelayState
from .types import ChatReply, ChatRequest, StreamEvent

__all__ = [
    "ChatRelay",
    "ChatReply",
    "ChatRequest",
    "ImageGenerationError",
    "ImageGenerator",
    "ProviderClient",
    "RelayState",
    "StreamEvent",
]
