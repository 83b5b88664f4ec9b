"""LLM client creation factory.

This module provides a centralized way to create LLM clients (OpenRouter or any
other OpenAI-compatible endpoint) to ensure consistent configuration of API keys,
base URLs, attribution headers and timeouts.
"""

import os
from typing import Any, Dict, Optional

from loguru import logger
from openai import OpenAI

from src.utils.errors import ConfigurationError


def create_openai_client(
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    max_retries: int = 2,
    *,
    app_url: Optional[str] = None,
    app_title: Optional[str] = None,
    **kwargs: Any,
) -> OpenAI:
    """Create and configure an OpenAI-compatible client.

    Args:
        api_key: The API key. If None, falls back to OPENROUTER_API_KEY, then OPENAI_API_KEY.
        base_url: The base URL. If None, tries OPENAI_BASE_URL.
        timeout: Request timeout in seconds.
        max_retries: Number of retries performed by the client itself.
        app_url: Sent as ``HTTP-Referer`` for OpenRouter attribution.
        app_title: Sent as ``X-Title`` for OpenRouter attribution.
        **kwargs: Additional arguments to pass to the OpenAI constructor.

    Returns:
        Configured OpenAI client.

    Raises:
        ConfigurationError: If no API key can be resolved.
    """
    final_api_key = api_key or os.getenv("OPENROUTER_API_KEY") or os.getenv("OPENAI_API_KEY")
    if not final_api_key:
        raise ConfigurationError("OPENROUTER_API_KEY", "OPENROUTER_API_KEY not configured")

    final_base_url = base_url or os.getenv("OPENAI_BASE_URL")

    headers: Dict[str, str] = dict(kwargs.pop("default_headers", None) or {})
    if app_url:
        headers["HTTP-Referer"] = app_url
    if app_title:
        headers["X-Title"] = app_title

    # Log configuration (masking key)
    masked_key = (
        f"{final_api_key[:4]}...{final_api_key[-4:]}" if len(final_api_key) > 8 else "***"
    )
    logger.debug(
        f"Creating OpenAI client: base_url={final_base_url}, "
        f"api_key={masked_key}, timeout={timeout}"
    )

    return OpenAI(
        api_key=final_api_key,
        base_url=final_base_url,
        timeout=timeout,
        max_retries=max_retries,
        default_headers=headers or None,
        **kwargs,
    )
