"""Rich-powered console output for ctxintel."""

from __future__ import annotations

import logging
from collections.abc import Callable

from rich.console import Console as RichConsole
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ctxintel import __version__
from ctxintel.context.models import (
    BudgetStatus,
    ContextAnalysis,
    OptimizedContext,
    PruneResult,
    ScoringResult,
)
from ctxintel.graph.dependency_graph import Cycle
from ctxintel.parser.models import FileError
from ctxintel.suggest.suggester import SuggestionResult

_STATUS_COLORS = {"healthy": "green", "moderate": "cyan", "warning": "yellow", "critical": "red"}
_SEVERITY_COLORS = {"low": "yellow", "medium": "dark_orange", "high": "red"}


class Console:
    """Terminal output for ctxintel using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def setup_logging(self, verbose: bool = False) -> None:
        """Route the ``ctxintel`` loggers through a Rich handler on stderr."""
        logger = logging.getLogger("ctxintel")
        for handler in list(logger.handlers):
            if isinstance(handler, RichHandler):
                logger.removeHandler(handler)
        handler = RichHandler(
            console=RichConsole(stderr=True), show_time=False, show_path=verbose
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]ctxintel[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Relevant code context within a token budget[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def show_errors(self, errors: list[FileError]) -> None:
        """List skipped files, one line each."""
        if not errors:
            return
        self.warning(f"{len(errors)} file(s) skipped:")
        for err in errors:
            self.console.print(f"  [dim]{err.kind}[/dim] [cyan]{err.path}[/cyan] {err.message}")

    def show_graph_stats(self, stats: dict) -> None:
        table = Table(title="Dependency Graph", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="right", style="cyan")

        table.add_row("Files", str(stats.get("files", 0)))
        table.add_row("Edges", str(stats.get("edges", 0)))
        table.add_row("External imports", str(stats.get("external_imports", 0)))
        table.add_row("Cycles", str(stats.get("cycles", 0)))

        kinds = stats.get("edge_kinds", {})
        classes = stats.get("classifications", {})
        if kinds or classes:
            table.add_section()
            for kind, n in sorted(kinds.items(), key=lambda x: -x[1]):
                table.add_row(f"  {kind} edges", str(n))
            for cls, n in sorted(classes.items(), key=lambda x: -x[1]):
                table.add_row(f"  {cls}", str(n))

        self.console.print(table)

        top = stats.get("most_depended_on", [])
        if top:
            self.console.print("\n[bold]Most depended on:[/bold]")
            for path, n in top:
                self.console.print(f"  [cyan]{path}[/cyan] [dim]({n})[/dim]")

    def show_cycles(self, cycles: list[Cycle], label: Callable[[str], str] = str) -> None:
        if not cycles:
            self.success("No import cycles found")
            return
        self.warning(f"{len(cycles)} import cycle(s):")
        for cycle in cycles:
            color = _SEVERITY_COLORS.get(cycle.severity, "yellow")
            chain = " -> ".join(label(p) for p in cycle.nodes)
            self.console.print(f"  [{color}]{cycle.severity}[/{color}] {chain}")

    def show_scores(self, result: ScoringResult) -> None:
        if not result.ranked:
            self.warning(f"No relevant files for: {' '.join(result.terms) or '(empty query)'}")
            return
        table = Table(border_style="cyan")
        table.add_column("#", justify="right", style="dim")
        table.add_column("File", style="cyan", no_wrap=True)
        table.add_column("Score", justify="right", style="bold")
        table.add_column("Why")
        for i, scored in enumerate(result.ranked, start=1):
            table.add_row(
                str(i), scored.rel_path, f"{scored.score.total:g}", "; ".join(scored.score.factors)
            )
        self.console.print(table)

    def show_suggestions(self, result: SuggestionResult) -> None:
        analysis = result.analysis
        self.info(
            f"Task: [bold]{analysis.type}[/bold] ({analysis.confidence}% confidence, "
            f"{analysis.risk_level} risk)"
        )
        if result.suggestions:
            table = Table(border_style="cyan")
            table.add_column("#", justify="right", style="dim")
            table.add_column("File", style="cyan", no_wrap=True)
            table.add_column("Score", justify="right", style="bold")
            table.add_column("Priority")
            table.add_column("Action")
            for s in result.suggestions:
                table.add_row(str(s.rank), s.rel_path, str(s.score), s.priority, s.action)
            self.console.print(table)
            for s in result.suggestions:
                extra = f" [dim]({s.tokens} tokens)[/dim]" if s.tokens is not None else ""
                self.console.print(f"  [bold]{s.name}[/bold]: {s.reasoning}{extra}")
        self.console.print()
        for rec in result.recommendations:
            self.console.print(f"  {rec}")

    def show_context(self, context: OptimizedContext, show_content: bool = False) -> None:
        self.info(context.summary)
        table = Table(border_style="cyan")
        table.add_column("File", style="cyan", no_wrap=True)
        table.add_column("Relevance", justify="right")
        table.add_column("Tokens", justify="right", style="bold")
        table.add_column("Sections", style="dim")
        for f in context.files:
            table.add_row(
                f.rel_path or f.path, f"{f.relevance:g}", str(f.tokens), ", ".join(f.sections)
            )
        if context.files:
            self.console.print(table)
            self.console.print(
                f"Total: {context.total_tokens} / {context.token_limit} tokens "
                f"({context.utilization_pct}%), strategy {context.strategy.value}"
            )
        if show_content:
            for f in context.files:
                self.console.print(Panel(Text(f.content), title=f.rel_path or f.path, border_style="dim"))

    def show_budget(self, status: BudgetStatus) -> None:
        table = Table(
            title=f"Token Budget ({status.model}, {status.token_limit} tokens)",
            border_style="cyan",
        )
        table.add_column("Category", style="bold")
        table.add_column("Used", justify="right")
        table.add_column("Capacity", justify="right")
        table.add_column("Available", justify="right", style="cyan")
        table.add_column("Utilization", justify="right")
        for c in status.categories:
            table.add_row(
                c.name, str(c.used), str(c.capacity), str(c.available), f"{c.utilization:.0%}"
            )
        table.add_section()
        table.add_row(
            "total",
            str(status.total_used),
            str(status.token_limit),
            str(status.remaining),
            f"{status.utilization:.0%}",
        )
        self.console.print(table)
        color = _STATUS_COLORS[status.status]
        self.console.print(f"Status: [{color}]{status.status}[/{color}]")

    def show_analysis(self, analysis: ContextAnalysis) -> None:
        color = _STATUS_COLORS[analysis.status]
        self.console.print(
            f"{analysis.current_tokens} / {analysis.token_limit} tokens "
            f"({analysis.utilization:.0%}) [{color}]{analysis.status}[/{color}]"
        )
        for rec in analysis.recommendations:
            self.console.print(f"  {rec}")

    def show_prune(self, result: PruneResult) -> None:
        if not result.pruned:
            self.info(f"Nothing pruned: {result.reason}")
            return
        self.success(
            f"Pruned {len(result.pruned_files)} file(s), {result.tokens_removed} tokens "
            f"({result.utilization_before:.0%} -> {result.utilization_after:.0%})"
        )
        for f in result.pruned_files:
            self.console.print(f"  [cyan]{f.path}[/cyan] [dim]{f.tokens} tokens, {f.reason}[/dim]")
        if not result.target_met:
            self.warning(f"Target utilization {result.target_utilization:.0%} not reached")
