"""CLI interface for the deep research engine."""

import asyncio
import json
import sys
from contextlib import asynccontextmanager

import typer

from .config import get_settings, parse_int_or_unlimited
from .exceptions import DeepResearchError
from .providers import get_chat_client, get_search_client

app = typer.Typer(help="Deep research CLI: plan, search, synthesize and verify")


def _parse_limit(value: str | None, option: str) -> int | None:
    parsed = parse_int_or_unlimited(value)
    if parsed is not None and not isinstance(parsed, int):
        raise typer.BadParameter(f"expected a number or 'unlimited', got {value!r}", param_hint=option)
    return parsed


@asynccontextmanager
async def _clients(need_search: bool = True):
    settings = get_settings()
    chat = get_chat_client(settings.llm)
    try:
        search = get_search_client(settings.search) if need_search else None
    except DeepResearchError:
        await chat.aclose()
        raise
    try:
        yield chat, search
    finally:
        for client in (chat, search):
            if client is not None and hasattr(client, "aclose"):
                await client.aclose()


def _fail(error: Exception) -> None:
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(code=1)


@app.command()
def research(
    question: str = typer.Argument(..., help="Question to research"),
    max_rounds: str = typer.Option(None, "--max-rounds", "-r", help="Search rounds per sub-agent (number or 'unlimited')"),
    depth: int = typer.Option(None, "--depth", "-d", help="Maximum recursion depth for sub-topics"),
    followups: str = typer.Option(None, "--followups", "-f", help="Gap-filling rounds (number or 'unlimited', 0 disables)"),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip fact checking"),
    save_to: str = typer.Option(None, "--save", "-s", help="File path to save the report"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only estimate the cost"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Hide live status output"),
) -> None:
    """Execute a deep research run on a question."""
    from .research import ResearchCallbacks, ResearchMachine, resolve_guardrails
    from .research.fact_checker import format_as_markdown
    from .research.guardrails import UNSET

    settings = get_settings()
    overrides = {}
    if max_rounds is not None:
        overrides["max_search_rounds"] = _parse_limit(max_rounds, "--max-rounds")
    if depth is not None:
        overrides["max_recursion_depth"] = depth
    guardrails = resolve_guardrails(settings.research, **overrides)
    followup_rounds = _parse_limit(followups, "--followups") if followups is not None else UNSET

    streamed: list[str] = []

    def status(message: str) -> None:
        if not quiet:
            typer.echo(f"» {message}", err=True)

    def stream(chunk: str) -> None:
        streamed.append(chunk)
        sys.stdout.write(chunk)
        sys.stdout.flush()

    callbacks = ResearchCallbacks(
        on_status=status,
        on_reasoning=lambda summary: status(f"Thinking: {summary}"),
        on_stream_output=stream,
    )

    async def _research():
        async with _clients() as (chat, search):
            machine = ResearchMachine(
                chat,
                search,
                settings.llm,
                settings.research,
                guardrails=guardrails,
                max_followup_rounds=followup_rounds,
                verify=False if no_verify else None,
                save_path=save_to,
                callbacks=callbacks,
            )
            return await machine.run(question, dry_run=dry_run)

    try:
        result = asyncio.run(_research())
    except DeepResearchError as e:
        _fail(e)

    if streamed:
        if result.verification and result.verification.total_claims:
            print(format_as_markdown(result.verification))
        else:
            print()
    else:
        print(result.markdown)

    if not dry_run:
        status(f"{len(result.reports)} reports, {len(result.sources)} unique sources")
    if result.saved_path:
        status(f"Saved to: {result.saved_path}")


@app.command()
def plan(question: str = typer.Argument(..., help="Question to plan research for")) -> None:
    """Create a research plan and print it as JSON."""
    from .research.planner import Planner

    settings = get_settings()

    async def _plan():
        async with _clients(need_search=False) as (chat, _):
            planner = Planner(
                chat,
                settings.llm.model_name,
                min_steps=settings.research.plan_min_steps,
                max_steps=settings.research.plan_max_steps,
            )
            return await planner.create_plan(question)

    try:
        research_plan = asyncio.run(_plan())
    except DeepResearchError as e:
        _fail(e)
    print(json.dumps(research_plan.to_dict(), indent=2))


@app.command()
def models(search: str = typer.Option(None, "--search", help="Only show models whose id contains this text")) -> None:
    """List models available from the language model provider."""

    async def _models():
        async with _clients(need_search=False) as (chat, _):
            return await chat.list_models()

    try:
        available = asyncio.run(_models())
    except DeepResearchError as e:
        _fail(e)

    for model in available:
        if search and search.lower() not in model.id.lower():
            continue
        prompt = model.pricing.prompt * 1_000_000
        completion = model.pricing.completion * 1_000_000
        print(f"{model.id:<50} ctx={model.context_length:<8} ${prompt:.2f}/${completion:.2f} per 1M tokens")


@app.command()
def config() -> None:
    """Show current configuration."""
    settings = get_settings()
    print(f"Provider: {settings.llm.provider}")
    print(f"Model: {settings.llm.model_name}")
    print(f"Sub-agent model: {settings.llm.sub_agent_model}")
    print(f"Fact-check model: {settings.llm.fact_check_model}")
    print(f"Base URL: {settings.llm.base_url or '(default)'}")
    print(f"LLM API key: {'set' if settings.llm.get_api_key_for_provider() else '(missing)'}")
    print(f"Exa API key: {'set' if settings.search.get_api_key_for_provider() else '(missing)'}")
    print(f"Plan steps: {settings.research.plan_min_steps}-{settings.research.plan_max_steps}")
    print(f"Max search rounds: {settings.research.max_search_rounds or 'unlimited'}")
    print(f"Max recursion depth: {settings.research.max_recursion_depth}")
    print(f"Follow-up rounds: {settings.research.max_followup_rounds if settings.research.max_followup_rounds is not None else 'unlimited'}")
    print(f"Verify claims: {settings.research.verify_claims}")


@app.command()
def server() -> None:
    """Start the MCP server."""
    from .server import main

    main()


if __name__ == "__main__":
    app()
