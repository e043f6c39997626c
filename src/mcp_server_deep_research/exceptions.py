"""Custom exceptions for the deep research server."""


class DeepResearchError(Exception):
    """Base exception for deep research errors."""

    pass


class ConfigError(DeepResearchError):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, message: str, config_key: str | None = None):
        super().__init__(message)
        self.config_key = config_key


class ApiKeyError(ConfigError):
    """Raised when a provider API key is missing or rejected."""

    def __init__(self, key_name: str, message: str | None = None, help_url: str | None = None):
        if message is None:
            message = f"{key_name} is not set or invalid."
            if help_url:
                message += f" Get your key at: {help_url}"
        super().__init__(message, config_key=key_name)
        self.key_name = key_name
        self.help_url = help_url


class ProviderError(DeepResearchError):
    """Raised when a language model or search provider call fails."""

    def __init__(self, message: str, service: str = "", status_code: int | None = None):
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class RateLimitError(ProviderError):
    """Raised when a provider keeps rate limiting after all retries."""

    def __init__(self, service: str, retry_after: float | None = None):
        hint = f" Please wait {retry_after:.0f} seconds and try again." if retry_after else " Please wait a moment and try again."
        super().__init__(f"{service} rate limit exceeded.{hint}", service=service, status_code=429)
        self.retry_after = retry_after


class ProviderTimeoutError(ProviderError):
    """Raised when a provider request exceeds its timeout."""

    pass


class PlanningError(DeepResearchError):
    """Raised when the planning model output cannot be turned into a plan."""

    def __init__(self, message: str, raw_content: str = ""):
        super().__init__(message)
        self.raw_content = raw_content


class SearchError(ProviderError):
    """Raised when a search provider request fails."""

    def __init__(self, message: str, query: str | None = None, status_code: int | None = None):
        super().__init__(message, service="Exa", status_code=status_code)
        self.query = query
