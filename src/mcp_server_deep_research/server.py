"""MCP server exposing deep research as tools with native background task support."""

import asyncio
import json
import logging
import sys
import uuid


def _configure_stdio_logging() -> None:
    """Route all logging to stderr.

    In stdio mode, stdout is reserved exclusively for JSON-RPC messages.
    Any logging or print() to stdout corrupts the protocol stream.
    """
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root = logging.getLogger()
    root.handlers = [stderr_handler]
    root.setLevel(logging.WARNING)

    for logger_name in ["httpx", "httpcore", "asyncio", "mcp", "uvicorn.access"]:
        dep_logger = logging.getLogger(logger_name)
        dep_logger.setLevel(logging.WARNING)
        dep_logger.handlers = [stderr_handler]
        dep_logger.propagate = False


# Configure logging BEFORE importing noisy dependencies
_configure_stdio_logging()

# ruff: noqa: E402 - Intentional late imports after logging configuration
from fastmcp import FastMCP
from fastmcp.dependencies import CurrentContext, Progress
from fastmcp.server.context import Context
from fastmcp.server.tasks.config import TaskConfig

from .config import get_settings
from .exceptions import ApiKeyError, ConfigError
from .observability import RunRecord, RunStatus, bind_run_context, clear_run_context, get_run_logger, get_run_registry, setup_structured_logging
from .providers import get_chat_client, get_search_client
from .research import ResearchMachine, resolve_guardrails
from .research.guardrails import UNSET
from .research.planner import Planner
from .utils import safe_filename, save_execution_result

settings = get_settings()

logger = logging.getLogger("mcp_server_deep_research")
logger.setLevel(getattr(logging, settings.server.logging_level.upper(), logging.INFO))


def serve() -> FastMCP:
    """Create and configure MCP server with background task support."""
    setup_structured_logging(settings.server.logging_level)

    server = FastMCP("mcp_server_deep_research")
    registry = get_run_registry()

    @server.tool(task=TaskConfig(mode="optional"))
    async def run_deep_research(
        question: str,
        max_search_rounds: int | None = None,
        max_followup_rounds: int | None = None,
        verify: bool | None = None,
        save_to_file: str | None = None,
        ctx: Context = CurrentContext(),
        progress: Progress = Progress(),
    ) -> str:
        """
        Research a question in depth and return a cited markdown report.

        The question is split into sub-questions researched in parallel with web
        search, knowledge gaps are filled with follow-up rounds, and the findings
        are synthesized into one report with optional claim verification.

        Args:
            question: The research question to investigate
            max_search_rounds: Search rounds per sub-agent (default from settings, -1 for unlimited)
            max_followup_rounds: Gap-filling rounds (default from settings, 0 disables, -1 for unlimited)
            verify: Fact-check claims against sources (default from settings)
            save_to_file: Optional file path to save the report

        Returns:
            The research report as markdown
        """
        run_id = str(uuid.uuid4())
        registry.create(
            RunRecord(
                run_id=run_id,
                question=question,
                input_params={
                    "max_search_rounds": max_search_rounds,
                    "max_followup_rounds": max_followup_rounds,
                    "verify": verify,
                    "save_to_file": save_to_file,
                },
            )
        )
        bind_run_context(run_id)
        run_logger = get_run_logger()
        logger.info(f"Starting deep research: {question}")
        run_logger.info("run_created", question=question[:100])

        chat = None
        try:
            chat = get_chat_client(settings.llm)
            search = get_search_client(settings.search)
        except ConfigError as e:
            if chat is not None:
                await chat.aclose()
            logger.error(f"Client initialization failed: {e}")
            registry.update_status(run_id, RunStatus.FAILED, error=str(e))
            clear_run_context()
            return f"Error: {e}"

        registry.update_status(run_id, RunStatus.RUNNING)

        overrides = {}
        if max_search_rounds is not None:
            overrides["max_search_rounds"] = None if max_search_rounds < 0 else max_search_rounds
        followups = UNSET if max_followup_rounds is None else (None if max_followup_rounds < 0 else max_followup_rounds)
        save_dir = settings.research.save_directory
        save_path = save_to_file or (f"{save_dir}/{safe_filename(question)}.md" if save_dir else None)

        try:
            machine = ResearchMachine(
                chat,
                search,
                settings.llm,
                settings.research,
                guardrails=resolve_guardrails(settings.research, **overrides),
                max_followup_rounds=followups,
                verify=verify,
                save_path=save_path,
                progress=progress,
                ctx=ctx,
                run_id=run_id,
            )

            # Register task for cancellation support
            research_task = asyncio.create_task(machine.run(question))
            registry.attach_task(run_id, research_task)
            try:
                result = await research_task
            finally:
                registry.detach_task(run_id)

            if settings.server.results_dir and not save_to_file:
                saved_path = save_execution_result(
                    result.markdown,
                    prefix=f"research_{question[:20]}",
                    metadata={"question": question, "run_id": run_id, "sources": result.sources},
                    results_dir=settings.get_results_dir(),
                )
                await ctx.info(f"Saved to: {saved_path.name}")

            registry.update_status(run_id, RunStatus.COMPLETED)
            run_logger.info("run_completed", report_length=len(result.markdown), sources=len(result.sources))
            return result.markdown

        except asyncio.CancelledError:
            registry.update_status(run_id, RunStatus.CANCELLED, error="Cancelled by user")
            run_logger.info("run_cancelled")
            raise

        except Exception as e:
            registry.update_status(run_id, RunStatus.FAILED, error=str(e))
            run_logger.error("run_failed", error=str(e))
            raise

        finally:
            clear_run_context()
            await chat.aclose()
            await search.aclose()

    @server.tool()
    async def plan_research(question: str) -> str:
        """
        Create a research plan for a question without executing it.

        Args:
            question: The research question to plan

        Returns:
            JSON research plan with the main question and sub-question steps
        """
        try:
            chat = get_chat_client(settings.llm)
        except ApiKeyError as e:
            return json.dumps({"error": str(e)})

        try:
            planner = Planner(
                chat,
                settings.llm.model_name,
                min_steps=settings.research.plan_min_steps,
                max_steps=settings.research.plan_max_steps,
            )
            plan = await planner.create_plan(question)
        finally:
            await chat.aclose()
        return json.dumps(plan.to_dict(), indent=2)

    @server.tool()
    async def research_list_running() -> str:
        """
        List research runs currently in progress.

        Returns:
            JSON list of running research runs with stage and progress
        """
        return json.dumps([record.summary() for record in registry.running()], indent=2)

    @server.tool()
    async def research_cancel(run_id: str) -> str:
        """
        Cancel a running research run.

        Args:
            run_id: Run ID (full or prefix match)

        Returns:
            JSON with success status and message
        """
        matched_id = registry.cancel(run_id)
        if not matched_id:
            return json.dumps({"success": False, "error": f"Run '{run_id}' not found or not running"})
        return json.dumps({"success": True, "run_id": matched_id[:8], "message": "Run cancelled"})

    return server


server_instance = serve()


def main() -> None:
    """Entry point for MCP server."""
    transport = settings.server.transport

    if transport == "stdio":
        logger.info(f"Starting MCP deep research server (provider: {settings.llm.provider}, transport: stdio)")
        server_instance.run(transport="stdio")
    elif transport in ("streamable-http", "sse"):
        logger.info(f"Starting MCP deep research server (provider: {settings.llm.provider}, transport: {transport})")
        logger.info(f"HTTP server at http://{settings.server.host}:{settings.server.port}/mcp")
        server_instance.run(transport=transport, host=settings.server.host, port=settings.server.port)
    else:
        raise ValueError(f"Unknown transport: {transport}")


if __name__ == "__main__":
    main()
