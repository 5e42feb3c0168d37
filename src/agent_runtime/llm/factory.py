"""
Provider selection for the agent runtime.

Anthropic is served by its native SDK; OpenAI and OpenRouter share the
OpenAI-compatible client and differ only in endpoint.
"""

import structlog

from ..config import LLMConfig, Settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM

logger = structlog.get_logger()

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# provider -> (client class, endpoint used when the config names none)
PROVIDERS: dict[str, tuple[type[BaseLLM], str | None]] = {
    "anthropic": (AnthropicLLM, None),
    "openai": (OpenAILLM, None),
    "openrouter": (OpenAILLM, OPENROUTER_BASE_URL),
}


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Build the client for ``config``, or for the default provider in ``settings``.

    Raises ValueError for a provider with no registered client.
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    try:
        llm_class, default_base_url = PROVIDERS[config.provider]
    except KeyError:
        raise ValueError(
            f"Unknown LLM provider: {config.provider} (expected one of {', '.join(PROVIDERS)})"
        ) from None

    base_url = config.base_url or default_base_url
    logger.debug("llm_client_created", provider=config.provider, model=config.model, base_url=base_url)
    return llm_class(
        api_key=config.api_key,
        model=config.model,
        base_url=base_url,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
    )
