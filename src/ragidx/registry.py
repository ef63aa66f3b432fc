"""Embedder registry for ragidx.

Resolves the ``[embedding] provider`` setting to an embedder instance.
Built-in providers (``ollama``, ``openai``) register themselves when
``ragidx.embed`` is imported.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ragidx.exceptions import PluginError

if TYPE_CHECKING:
    from collections.abc import Callable

    from ragidx.config import RagidxConfig
    from ragidx.embed.base import BaseEmbedder

__all__ = ["EmbedderRegistry", "default_registry"]

logger = logging.getLogger(__name__)


class EmbedderRegistry:
    """Maps provider names to embedder factories.

    Usage::

        registry = EmbedderRegistry()
        registry.register("ollama", OllamaEmbedder)
        embedder = registry.create(config)  # uses config.embedding.provider
    """

    def __init__(self, *, auto_discover: bool = False) -> None:
        self._factories: dict[str, Callable[[RagidxConfig], BaseEmbedder]] = {}
        self._auto_discover = auto_discover
        self._discovered = False

    def register(self, name: str, factory: Callable[[RagidxConfig], BaseEmbedder]) -> None:
        """Register an embedder factory under a provider name.

        Raises:
            PluginError: If the name is empty or already registered.
        """
        if not name:
            raise PluginError("Embedding provider name must not be empty")
        if name in self._factories:
            raise PluginError(f"Embedding provider '{name}' already registered")
        self._factories[name] = factory
        logger.debug("Registered embedding provider %s", name)

    def _ensure_discovered(self) -> None:
        if self._discovered or not self._auto_discover:
            return
        self._discovered = True
        import ragidx.embed  # noqa: F401  registers built-in providers

    def create(self, config: RagidxConfig, name: str | None = None) -> BaseEmbedder:
        """Create the embedder named by ``name`` or ``config.embedding.provider``.

        Raises:
            PluginError: If the provider is unknown or its factory does not
                return an embedder.
        """
        from ragidx.embed.base import BaseEmbedder

        self._ensure_discovered()
        name = name or config.embedding.provider
        factory = self._factories.get(name)
        if factory is None:
            raise PluginError(
                f"Unknown embedding provider '{name}'. Available: {self.names()}"
            )

        logger.info("Creating embedder %s (model %s)", name, config.embedding.model)
        embedder = factory(config)
        if not isinstance(embedder, BaseEmbedder):
            raise PluginError(
                f"Embedding provider '{name}' returned {type(embedder).__name__}, "
                "not an embedder"
            )
        return embedder

    def names(self) -> list[str]:
        """Registered provider names, sorted."""
        self._ensure_discovered()
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        self._ensure_discovered()
        return name in self._factories


default_registry = EmbedderRegistry(auto_discover=True)
