"""Embedding providers: abstract interface, batching and HTTP clients."""

from ragidx.embed.base import BaseEmbedder
from ragidx.embed.ollama import OllamaEmbedder
from ragidx.embed.openai_compat import OpenAICompatEmbedder
from ragidx.registry import default_registry

__all__ = ["BaseEmbedder", "OllamaEmbedder", "OpenAICompatEmbedder"]

default_registry.register("ollama", OllamaEmbedder)
default_registry.register("openai", OpenAICompatEmbedder)
