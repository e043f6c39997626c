"""MCP server and CLI for multi-agent deep research."""

from .config import get_settings
from .exceptions import ApiKeyError, ConfigError, DeepResearchError, PlanningError, ProviderError, SearchError
from .research import ResearchMachine


def main() -> None:
    """Start the MCP server."""
    from .server import main as server_main

    server_main()


__all__ = [
    "main",
    "get_settings",
    "ResearchMachine",
    "DeepResearchError",
    "ConfigError",
    "ApiKeyError",
    "ProviderError",
    "PlanningError",
    "SearchError",
]
