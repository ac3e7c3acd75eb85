"""Command-line interface for ctxintel."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from ctxintel import __version__
from ctxintel.config import (
    find_project_root,
    get_ctxintel_dir,
    load_config,
    save_config,
    set_config_value,
)
from ctxintel.context.engine import ContextEngine
from ctxintel.context.models import SelectionStrategy
from ctxintel.context.optimizer import OptimizeOptions
from ctxintel.context.scorer import ScoreOptions
from ctxintel.exceptions import CtxIntelError
from ctxintel.graph.builder import GraphOptions
from ctxintel.graph.dependency_graph import EXPORT_FORMATS
from ctxintel.suggest.classifier import TASK_PATTERNS
from ctxintel.suggest.suggester import SuggestOptions
from ctxintel.ui.console import Console

console = Console()


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No ctxintel project found. Run 'ctxintel init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _engine(root: Path) -> ContextEngine:
    try:
        return ContextEngine.for_project(root)
    except CtxIntelError as e:
        console.error(str(e))
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="ctxintel")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def main(verbose: bool):
    """ctxintel - pick the code an LLM should see, within its token budget."""
    console.setup_logging(verbose)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--model", "-m", default=None, help="Default model name for token limits.")
def init(path: str | None, model: str | None):
    """Create .ctxintel/config.json for a repository."""
    root = Path(path or ".").resolve()
    if not root.is_dir():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing ctxintel for: {root}")
    try:
        config = load_config(root)
    except CtxIntelError as e:
        console.error(str(e))
        sys.exit(1)
    config.name = root.name
    config.root_path = str(root)
    if model:
        config.model = model
    save_config(root, config)
    console.success(f"Configuration saved to {get_ctxintel_dir(root).name}/")


# =========================================================================
# Dependency graph
# =========================================================================

@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option(
    "--format", "-f", "fmt",
    type=click.Choice(EXPORT_FORMATS),
    default=None,
    help="Export the graph instead of showing statistics.",
)
@click.option("--output", "-o", default=None, help="Write the export to this file.")
@click.option("--cycles", is_flag=True, help="Report import cycles.")
def graph(path: str | None, fmt: str | None, output: str | None, cycles: bool):
    """Build the file dependency graph."""
    root = _get_project_root(path)
    engine = _engine(root)
    result = engine.build_dependency_graph(options=GraphOptions(detect_cycles=cycles))

    if fmt:
        text = engine.export_graph(fmt)
        if output:
            Path(output).write_text(text)
            console.success(f"Wrote {fmt} graph to {output}")
        else:
            click.echo(text)
    else:
        stats = result.graph.stats()
        stats["most_depended_on"] = [
            (os.path.relpath(p, root), n) for p, n in stats["most_depended_on"]
        ]
        console.show_graph_stats(stats)

    if cycles:
        console.show_cycles(result.cycles, label=lambda p: os.path.relpath(p, root))
    console.show_errors(result.errors)


# =========================================================================
# Ranking and context
# =========================================================================

@main.command()
@click.argument("query")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--max-files", "-n", default=10, type=int, help="Most files to show.")
@click.option("--min-score", default=1.0, type=float, help="Hide files scoring below this.")
def score(query: str, path: str | None, max_files: int, min_score: float):
    """Rank files by relevance to QUERY."""
    root = _get_project_root(path)
    engine = _engine(root)
    result = engine.score_files(
        query, options=ScoreOptions(max_files=max_files, min_score=min_score, root=str(root))
    )
    console.show_scores(result)
    console.show_errors(result.errors)


@main.command()
@click.argument("task")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--max", "-n", "max_suggestions", default=10, type=int, help="Most suggestions.")
@click.option(
    "--task-type", "-t",
    type=click.Choice(list(TASK_PATTERNS)),
    default=None,
    help="Skip classification and use this task type.",
)
@click.option("--detailed", is_flag=True, help="Include optimized token counts.")
def suggest(
    task: str, path: str | None, max_suggestions: int, task_type: str | None, detailed: bool
):
    """Suggest which files to work on for TASK."""
    root = _get_project_root(path)
    engine = _engine(root)
    result = engine.suggest_files(
        task,
        options=SuggestOptions(
            max_suggestions=max_suggestions,
            task_type=task_type,
            model=engine.model,
            detail_level="detailed" if detailed else "standard",
            root=str(root),
        ),
    )
    console.show_suggestions(result)
    console.show_errors(result.errors)


@main.command()
@click.argument("query")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--model", "-m", default=None, help="Model whose token limit to fit.")
@click.option("--tokens", type=int, default=None, help="Explicit token limit.")
@click.option("--max-files", "-n", default=None, type=int, help="Most files to include.")
@click.option(
    "--strategy", "-s",
    type=click.Choice([s.value for s in SelectionStrategy]),
    default=SelectionStrategy.DIVERSITY_FIRST.value,
    help="File selection strategy.",
)
@click.option("--show-content", is_flag=True, help="Print the optimized file content.")
def context(
    query: str,
    path: str | None,
    model: str | None,
    tokens: int | None,
    max_files: int | None,
    strategy: str,
    show_content: bool,
):
    """Assemble token-budgeted file context for QUERY."""
    root = _get_project_root(path)
    engine = _engine(root)
    try:
        result = engine.optimize_context(
            query,
            options=OptimizeOptions(
                model=model or engine.model,
                token_limit=tokens,
                max_files=max_files or engine.config.window.max_files,
                strategy=strategy,
                root=str(root),
            ),
        )
    except CtxIntelError as e:
        console.error(str(e))
        sys.exit(1)
    console.show_context(result, show_content=show_content)
    console.show_errors(result.errors)


# =========================================================================
# Token budget
# =========================================================================

@main.command()
@click.argument("files", nargs=-1, type=click.Path(exists=True, dir_okay=False))
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--model", "-m", default=None, help="Model whose token limit to use.")
@click.option("--category", "-c", default="essentials", help="Budget category for FILES.")
@click.option("--prune", "prune_strategy", default=None, help="Prune with this strategy.")
def budget(
    files: tuple[str, ...],
    path: str | None,
    model: str | None,
    category: str,
    prune_strategy: str | None,
):
    """Charge FILES to a budget category and show the token budget."""
    root = _get_project_root(path)
    engine = _engine(root)
    try:
        for f in files:
            decision = engine.add_file(f, category=category, model=model)
            if decision.allowed:
                console.success(f"Added {f} ({decision.requested} tokens)")
            else:
                console.warning(
                    f"{f} does not fit in {category}: {decision.requested} tokens, "
                    f"{decision.available} available (over by {decision.over_by})"
                )
        console.show_budget(engine.get_budget_status(model))
        console.show_analysis(engine.analyze_context(model=model))
        if prune_strategy:
            console.show_prune(engine.prune_context(prune_strategy, model))
    except CtxIntelError as e:
        console.error(str(e))
        sys.exit(1)


# =========================================================================
# Config Management
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage ctxintel configuration."""
    root = _get_project_root(path)
    try:
        config = load_config(root)
    except CtxIntelError as e:
        console.error(str(e))
        sys.exit(1)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: ctxintel config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: ctxintel config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except CtxIntelError as e:
            console.error(str(e))
            sys.exit(1)


if __name__ == "__main__":
    main()
