"""Client factories for the language model and search providers."""

from .clients.base import ChatClient, SearchClient
from .clients.exa import ExaClient
from .clients.openrouter import OpenRouterClient
from .config import PROVIDER_HELP_URLS, STANDARD_ENV_VAR_NAMES, LLMSettings, SearchSettings
from .exceptions import ApiKeyError, ConfigError

OPENAI_BASE_URL = "https://api.openai.com/v1"


def get_chat_client(settings: LLMSettings) -> ChatClient:
    """Create the chat client for the configured provider.

    Both supported providers speak the OpenAI chat completions protocol; they
    differ in base URL and key name.

    Raises:
        ApiKeyError: No API key is configured and no custom base URL is set
        ConfigError: Unsupported provider
    """
    provider = settings.provider
    if provider not in STANDARD_ENV_VAR_NAMES:
        raise ConfigError(f"Unsupported provider: {provider}", config_key="provider")

    key_name = STANDARD_ENV_VAR_NAMES[provider]
    api_key = settings.get_api_key_for_provider()
    if not api_key and not settings.base_url:
        raise ApiKeyError(
            key_name,
            f"API key required for provider '{provider}'. Set {key_name} or MCP_LLM_API_KEY environment variable.",
            help_url=PROVIDER_HELP_URLS.get(provider),
        )

    base_url = settings.base_url or (OPENAI_BASE_URL if provider == "openai" else None)
    return OpenRouterClient(
        api_key or "",
        base_url,
        chat_timeout=settings.chat_timeout,
        stream_timeout=settings.stream_timeout,
        list_timeout=settings.list_timeout,
        max_retries=settings.max_retries,
        key_name=key_name,
    )


def get_search_client(settings: SearchSettings) -> SearchClient:
    """Create the Exa search client.

    Raises:
        ApiKeyError: No Exa API key is configured
    """
    api_key = settings.get_api_key_for_provider()
    if not api_key:
        raise ApiKeyError(
            "EXA_API_KEY",
            "Exa API key required. Set EXA_API_KEY or MCP_SEARCH_API_KEY environment variable.",
            help_url=PROVIDER_HELP_URLS["exa"],
        )
    return ExaClient(api_key, settings.base_url, timeout=settings.timeout, max_retries=settings.max_retries)
