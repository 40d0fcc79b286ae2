"""
Ad variant generator clients
"""
from typing import Optional

import httpx

from .base import AttemptResult, BaseGenerator, InlineImage
from .gemini import GeminiGenerator


def get_generator(provider: str = "gemini", http: Optional[httpx.AsyncClient] = None) -> BaseGenerator:
    """
    Factory function to get the appropriate generator.

    Args:
        provider: 'gemini' (only Gemini is currently supported)
        http: Shared async HTTP client; a per-call client is used if omitted

    Returns:
        BaseGenerator instance
    """
    provider = provider.lower()
    if provider == "gemini":
        return GeminiGenerator(http=http)
    raise ValueError(f"Unknown provider: {provider}. Use 'gemini'.")


__all__ = ["get_generator", "AttemptResult", "BaseGenerator", "InlineImage", "GeminiGenerator"]
