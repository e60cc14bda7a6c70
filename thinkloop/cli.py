"""Command-line interface for the agent engine."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated

import typer

from .config.loader import DEFAULT_CONFIG_PATH, list_profiles, load_config, load_config_from_yaml
from .config.factory import create_chat_model, create_event_publisher, create_orchestrator, create_reasoning_loop
from .errors import AgentError
from .extraction import StreamingJsonParser
from .llm.protocols import Message
from .orchestration import EventPublishingObserver, OrchestrationObserver, OrchestrationOptions, Stage
from .tools import builtin_registry

app = typer.Typer(
    name="thinkloop",
    help="Reasoning loops and host/specialist orchestration over chat models.",
    add_completion=False,
)


class ConsoleObserver(OrchestrationObserver):
    """Prints stage and plan-step progress to stderr."""

    async def on_stage_start(self, stage, state):
        typer.echo(f"[{stage.value}] round {state.round_number}", err=True)

    async def on_plan_step_create(self, state, step):
        typer.echo(f"  + {step.id} {step.name}".rstrip(), err=True)

    async def on_plan_step_status(self, state, step):
        typer.echo(f"  * {step.id} -> {step.status.value}", err=True)

    async def on_plan_step_delete(self, state, step_id):
        typer.echo(f"  - {step_id}", err=True)


@app.command()
def ask(
    question: Annotated[str, typer.Argument(help="Question or task for the agent")],
    profile: Annotated[
        str,
        typer.Option("--profile", "-p", help="Configuration profile (defaults to MODEL_PROFILE or dev-fast)"),
    ] = None,
    mode: Annotated[
        str,
        typer.Option("--mode", "-m", help="Controller: agent (reasoning loop) or orchestrate (host + specialists)"),
    ] = "agent",
    stream: Annotated[
        bool,
        typer.Option("--stream/--no-stream", help="Print output while it is generated"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show stage and plan-step progress on stderr"),
    ] = False,
    max_iterations: Annotated[
        int,
        typer.Option("--max-iterations", help="Override the reasoning loop iteration limit"),
    ] = None,
    max_rounds: Annotated[
        int,
        typer.Option("--max-rounds", help="Override the orchestration round limit"),
    ] = None,
):
    """
    Answer a question with the reasoning loop or the orchestrator.

    Examples:

        # Single agent with the built-in tools
        thinkloop ask "What is 17 * 23 + 4?"

        # Host plans the work and dispatches specialists
        thinkloop ask "Compare REST and gRPC for internal services" -m orchestrate -v

        # Stream the answer with a specific profile
        thinkloop ask "Explain backpressure" --stream -p dev-anthropic
    """
    if mode not in ("agent", "orchestrate"):
        typer.echo("Error: Mode must be one of: agent, orchestrate", err=True)
        raise typer.Exit(1)

    try:
        asyncio.run(_ask_async(question, profile, mode, stream, verbose, max_iterations, max_rounds))
    except AgentError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


async def _ask_async(
    question: str,
    profile_name: str | None,
    mode: str,
    stream: bool,
    verbose: bool,
    max_iterations: int | None,
    max_rounds: int | None,
):
    """Async implementation of ask."""
    from .agent import RunOptions

    config = load_config(profile_name)
    if max_iterations is not None:
        config.reasoning.max_iterations = max_iterations
    if max_rounds is not None:
        config.orchestrator.max_rounds = max_rounds

    registry = builtin_registry()
    model = create_chat_model(config.model)
    messages = [Message.user(question)]

    async with model:
        if mode == "agent":
            loop = create_reasoning_loop(model, config.reasoning, registry)
            if stream:
                await _print_stream(loop.stream(messages, RunOptions()), verbose)
            else:
                answer = await loop.invoke(messages)
                typer.echo(answer.content)
            return

        orchestrator = create_orchestrator(model, config.orchestrator, registry)
        observers = [ConsoleObserver()] if verbose else []
        publisher = create_event_publisher(config.events)
        if publisher is None:
            await _orchestrate(orchestrator, messages, observers, stream, verbose)
            return
        async with publisher:
            observers.append(EventPublishingObserver(publisher))
            await _orchestrate(orchestrator, messages, observers, stream, verbose)


async def _orchestrate(orchestrator, messages, observers, stream: bool, verbose: bool):
    options = OrchestrationOptions(observers=observers)
    if stream:
        await _print_stream(orchestrator.stream(messages, options), verbose)
    else:
        answer = await orchestrator.invoke(messages, options)
        typer.echo(answer.content)


async def _print_stream(chunks, verbose: bool):
    """Echo final-answer chunks to stdout and, when verbose, the rest to stderr."""
    final_stages = {Stage.FINAL_ANSWER.value, Stage.DIRECT_ANSWER.value}
    printed_final = False
    async for chunk in chunks:
        if chunk.name == "complete":
            if not printed_final:
                typer.echo(chunk.content)
            else:
                typer.echo()
            continue
        if chunk.name in final_stages:
            printed_final = True
            typer.echo(chunk.content, nl=False)
        elif verbose and chunk.content:
            typer.echo(chunk.content, nl=False, err=True)


@app.command()
def extract(
    source: Annotated[
        Path,
        typer.Argument(help="JSON file to read; '-' reads stdin"),
    ] = Path("-"),
    patterns: Annotated[
        list[str],
        typer.Option("--pattern", "-p", help="Path pattern to watch, e.g. 'steps[*].name' (can specify multiple)"),
    ] = None,
    realtime: Annotated[
        bool,
        typer.Option("--realtime", "-r", help="Report strings while they are still being received"),
    ] = False,
    incremental: Annotated[
        bool,
        typer.Option("--incremental", "-i", help="Report only the newly received part of strings"),
    ] = False,
    chunk_size: Annotated[
        int,
        typer.Option("--chunk-size", "-c", help="Characters fed to the parser per chunk"),
    ] = 16,
):
    """
    Stream a JSON document through the incremental extractor.

    Each matching value is printed as one JSON line {"path": ..., "value": ...}.

    Examples:

        # Watch plan step names as they arrive
        thinkloop extract plan.json -p 'steps[*].name'

        # Print every appended piece of a long string field
        cat reply.json | thinkloop extract -p answer -r -i
    """
    if chunk_size <= 0:
        typer.echo("Error: --chunk-size must be positive", err=True)
        raise typer.Exit(1)

    text = sys.stdin.read() if str(source) == "-" else source.read_text()

    parser = StreamingJsonParser(realtime=realtime, incremental=incremental)

    def report(path, value):
        typer.echo(json.dumps({"path": list(path), "value": value}, ensure_ascii=False))

    for pattern in patterns or ["$"]:
        parser.on(pattern, report)

    try:
        for start in range(0, len(text), chunk_size):
            parser.feed(text[start:start + chunk_size])
        parser.end()
    except AgentError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def profiles(
    config_path: Annotated[
        Path,
        typer.Option("--config", help="Config file to read"),
    ] = DEFAULT_CONFIG_PATH,
):
    """List available configuration profiles."""
    typer.echo("Available profiles:\n")
    for name in list_profiles(config_path):
        profile = load_config_from_yaml(config_path, name)
        specialists = ", ".join(s.name for s in profile.orchestrator.specialists) or "general only"

        typer.echo(f"  {name}")
        typer.echo(f"    Model: {profile.model.backend} / {profile.model.model or 'default'}")
        typer.echo(f"    Limits: {profile.reasoning.max_iterations} iterations, {profile.orchestrator.max_rounds} rounds")
        typer.echo(f"    Specialists: {specialists}")
        typer.echo()


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
