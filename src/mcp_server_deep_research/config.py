"""Configuration management using Pydantic settings with optional file persistence."""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Paths ---

APP_NAME = "mcp-server-deep-research"


def get_config_dir() -> Path:
    """Get the configuration directory (e.g. ~/.config/mcp-server-deep-research)."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / ".config")).expanduser()
    else:
        base = Path("~/.config").expanduser()

    path = base / APP_NAME
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_default_results_dir() -> Path:
    """Get the default directory for saving reports."""
    base = Path("~/Documents").expanduser()
    if not base.exists():
        base = Path.home()

    return base / "deep-research-reports"


def get_config_file() -> Path:
    return get_config_dir() / "config.json"


def load_config_file() -> dict[str, Any]:
    """Load settings from the JSON config file if it exists."""
    config_file = get_config_file()
    if not config_file.exists():
        return {}

    try:
        text = config_file.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        return json.loads(text)
    except (OSError, json.JSONDecodeError):
        return {}


def save_config_file(config_data: dict[str, Any]) -> Path:
    """Save settings to the JSON config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config_data, indent=2), encoding="utf-8")
    return config_file


# Standard environment variable names for API keys (industry convention)
STANDARD_ENV_VAR_NAMES: dict[str, str] = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "exa": "EXA_API_KEY",
}

PROVIDER_HELP_URLS: dict[str, str] = {
    "openrouter": "https://openrouter.ai/keys",
    "openai": "https://platform.openai.com/api-keys",
    "exa": "https://dashboard.exa.ai/api-keys",
}

UNLIMITED_TOKENS = frozenset({"unlimited", "infinite", "inf"})


def parse_int_or_unlimited(value: Any) -> Any:
    """Map 'unlimited'-style values and negative numbers to None (no limit)."""
    if value is None:
        return None
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in UNLIMITED_TOKENS:
            return None
        try:
            value = int(normalized)
        except ValueError:
            return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value == float("inf") or value < 0:
            return None
        return int(value)
    return value


ProviderType = Literal["openrouter", "openai"]
ReasoningEffort = Literal["low", "medium", "high"]


def _resolve_api_key(explicit: Optional[SecretStr], provider: str, prefix: str) -> Optional[str]:
    # 1. Generic override (highest priority)
    if explicit:
        return explicit.get_secret_value()

    # 2. Standard env var name (industry convention)
    standard_var = STANDARD_ENV_VAR_NAMES.get(provider)
    if standard_var:
        key = os.environ.get(standard_var)
        if key:
            return key

    # 3. Prefixed fallback
    return os.environ.get(f"{prefix}{provider.upper()}_API_KEY")


class LLMSettings(BaseSettings):
    """Language model provider configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_LLM_")

    provider: ProviderType = Field(default="openrouter")
    model_name: str = Field(default="moonshotai/kimi-k2-thinking", description="Model used for planning, gap analysis and synthesis")
    sub_agent_model: str = Field(default="qwen/qwen3-235b-a22b-2507", description="Model used by sub-research agents")
    fact_check_model: str = Field(default="google/gemini-2.0-flash-001")
    summarizer_model: str = Field(default="google/gemini-2.0-flash-001", description="Fast model for reasoning summaries")
    api_key: Optional[SecretStr] = Field(default=None, description="Generic API key override (highest priority)")
    base_url: Optional[str] = Field(default=None, description="Custom base URL for OpenAI-compatible APIs")

    reasoning_effort: ReasoningEffort = Field(default="high")
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    seed: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None

    chat_timeout: float = Field(default=300.0, description="Timeout per chat request in seconds")
    stream_timeout: float = Field(default=900.0, description="Timeout per streaming request in seconds")
    list_timeout: float = Field(default=60.0, description="Timeout for listing models in seconds")
    max_retries: int = Field(default=3, ge=1)

    def get_api_key_for_provider(self) -> Optional[str]:
        """Resolve API key with priority: generic > standard > MCP-prefixed.

        Priority order:
        1. MCP_LLM_API_KEY (generic override, applies to any provider)
        2. <PROVIDER>_API_KEY (standard name, e.g., OPENROUTER_API_KEY)
        3. MCP_LLM_<PROVIDER>_API_KEY (MCP-prefixed)
        """
        return _resolve_api_key(self.api_key, self.provider, "MCP_LLM_")


class SearchSettings(BaseSettings):
    """Search and content provider configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_SEARCH_")

    api_key: Optional[SecretStr] = Field(default=None)
    base_url: str = Field(default="https://api.exa.ai")
    timeout: float = Field(default=90.0, description="Timeout per search request in seconds")
    max_retries: int = Field(default=3, ge=1)

    def get_api_key_for_provider(self) -> Optional[str]:
        return _resolve_api_key(self.api_key, "exa", "MCP_SEARCH_")


class ResearchSettings(BaseSettings):
    """Deep research guardrails and behaviour.

    Values are soft defaults; the guardrail resolver clamps them to hard ceilings.
    """

    model_config = SettingsConfigDict(env_prefix="MCP_RESEARCH_", env_ignore_empty=True)

    plan_min_steps: int = Field(default=4, ge=1)
    plan_max_steps: int = Field(default=7, ge=1)
    num_results: int = Field(default=8, ge=1, description="Search results requested per query")

    max_search_rounds: Optional[int] = Field(default=5, description="Search rounds per sub-agent ('unlimited' allowed)")
    max_expanded_urls: Optional[int] = Field(default=5, description="Pages read in full per sub-agent")
    expand_sources: bool = Field(default=True)
    expansion_candidates: int = Field(default=8, ge=1)
    max_recursion_depth: int = Field(default=2, ge=0)
    source_text_chars: int = Field(default=2200, ge=0)
    expanded_text_chars: int = Field(default=4500, ge=0)
    max_total_source_chars: Optional[int] = Field(default=65_000, description="Total source context budget ('unlimited' allowed)")
    concurrency: Optional[int] = Field(default=None, ge=1, description="Sub-agent pool size (default: batch size)")

    auto_followup: bool = Field(default=True)
    max_followup_rounds: Optional[int] = Field(default=2, description="Gap-filling rounds ('unlimited' allowed)")
    max_gaps_per_round: int = Field(default=5, ge=1)

    verify_claims: bool = Field(default=True)
    stream_output: bool = Field(default=True)
    save_directory: Optional[str] = Field(default=None, description="Directory to save research reports")

    @field_validator("max_search_rounds", "max_expanded_urls", "max_total_source_chars", "max_followup_rounds", mode="before")
    @classmethod
    def _allow_unlimited(cls, value: Any) -> Any:
        return parse_int_or_unlimited(value)


TransportType = Literal["stdio", "streamable-http", "sse"]


class ServerSettings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_SERVER_")

    logging_level: str = Field(default="INFO")
    transport: TransportType = Field(default="streamable-http", description="MCP transport: stdio, streamable-http, or sse")
    host: str = Field(default="127.0.0.1", description="Host for HTTP transports")
    port: int = Field(default=8484, description="Port for HTTP transports")
    results_dir: Optional[str] = Field(default=None, description="Directory to save execution results")


class AppSettings(BaseSettings):
    """Root application settings.

    Priority: Environment Variables > Config File > Defaults
    """

    model_config = SettingsConfigDict(env_prefix="MCP_", extra="ignore")

    llm: LLMSettings = Field(default_factory=LLMSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    research: ResearchSettings = Field(default_factory=ResearchSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    def save(self) -> Path:
        """Save current configuration to file (excluding secrets)."""
        data = self.model_dump(mode="json", exclude_none=True)
        for section in ("llm", "search"):
            data.get(section, {}).pop("api_key", None)
        return save_config_file(data)

    def get_results_dir(self) -> Path:
        """Get the results directory, creating if needed."""
        if self.server.results_dir:
            path = Path(self.server.results_dir).expanduser()
        else:
            path = get_default_results_dir()
        path.mkdir(parents=True, exist_ok=True)
        return path


def _load_settings() -> AppSettings:
    """Load settings with file config as base, env vars overlay."""
    file_data = load_config_file()
    sections = {}
    # Nested settings read their own env prefixes; file values seed them.
    for name, cls in (("llm", LLMSettings), ("search", SearchSettings), ("research", ResearchSettings), ("server", ServerSettings)):
        section_data = file_data.get(name) or {}
        env_overrides = {field for field in cls.model_fields if f"{cls.model_config['env_prefix']}{field}".upper() in os.environ}
        sections[name] = cls(**{k: v for k, v in section_data.items() if k not in env_overrides})
    return AppSettings(**sections)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    return _load_settings()
