"""Provider contract and test doubles."""

from llmflow.providers.base import ChatResponse, Provider, StructuredResponse
from llmflow.providers.fake import FakeProvider

__all__ = [
    "ChatResponse",
    "FakeProvider",
    "Provider",
    "StructuredResponse",
]
