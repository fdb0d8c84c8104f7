# src/providers/fetcher_factory.py — v1
"""Factory: instantiate a usage fetcher from its provider id."""

from __future__ import annotations

from quotabar.config.settings import Settings
from quotabar.providers.base_fetcher import BaseUsageFetcher, FetcherDeps
from quotabar.providers.claude import ClaudeUsageFetcher
from quotabar.providers.codex import CodexUsageFetcher
from quotabar.providers.ollama import OllamaUsageFetcher
from quotabar.providers.openrouter import OpenRouterUsageFetcher
from quotabar.providers.zai import ZaiUsageFetcher

# Registry maps provider id → fetcher class.
_FETCHER_REGISTRY: dict[str, type[BaseUsageFetcher]] = {}


def _register_defaults() -> None:
    """Register built-in fetchers."""
    for cls in [CodexUsageFetcher, ClaudeUsageFetcher, OllamaUsageFetcher,
                OpenRouterUsageFetcher, ZaiUsageFetcher]:
        _FETCHER_REGISTRY[cls.provider] = cls


_register_defaults()


class UnsupportedProviderError(ValueError):
    """Raised when no fetcher is registered for a provider."""


def create_fetcher(provider: str, settings: Settings, deps: FetcherDeps) -> BaseUsageFetcher:
    """Create the fetcher for ``provider``.

    Raises:
        UnsupportedProviderError: If no fetcher is registered.
    """
    cls = _FETCHER_REGISTRY.get(provider.lower())
    if cls is None:
        raise UnsupportedProviderError(
            f"No fetcher for provider {provider!r}. "
            f"Supported: {', '.join(sorted(_FETCHER_REGISTRY))}"
        )
    return cls(settings, deps)


def register_fetcher(provider: str, cls: type[BaseUsageFetcher]) -> None:
    """Register a custom fetcher for a provider id."""
    _FETCHER_REGISTRY[provider.lower()] = cls


def supported_providers() -> list[str]:
    return sorted(_FETCHER_REGISTRY)
