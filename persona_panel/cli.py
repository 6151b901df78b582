import asyncio
import base64
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table

from persona_panel.config import PanelConfig
from persona_panel.errors import JobValidationError
from persona_panel.models import AnalysisContext, JobProgress, Persona

load_dotenv()
app = typer.Typer()
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_personas(path: Path) -> list[Persona]:
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = data.get("personas", [])
    personas = []
    for i, row in enumerate(data):
        row.setdefault("id", f"{path.stem}_{i}")
        personas.append(Persona.model_validate(row))
    return personas


@app.command()
def run(
    personas_file: Path = typer.Argument(..., help="JSON file with a list of persona objects"),
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Webpage or ad URL to review"),
    image: Optional[Path] = typer.Option(None, "--image", "-i", help="Screenshot (PNG) to review"),
    question_set: str = typer.Option("complete", "--set", "-s", help="ad | landing_page | combined | complete"),
    demo: bool = typer.Option(False, "--demo", help="Use canned answers instead of the model"),
    resume: Optional[bool] = typer.Option(None, "--resume/--no-resume", help="Resume saved progress without asking"),
    session: str = typer.Option("default", "--session", help="Progress key for resumable runs"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save report to file instead of printing"),
    fmt: str = typer.Option("markdown", "--format", "-f", help="markdown | json | raw"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Ask every persona the questionnaire and print the aggregated report."""
    _setup_logging(verbose)
    if fmt not in ("markdown", "json", "raw"):
        console.print(f"[bold red]Error:[/] --format must be 'markdown', 'json' or 'raw', got '{fmt}'")
        raise typer.Exit(1)

    try:
        personas = _load_personas(personas_file)
        context = AnalysisContext(
            target_url=url,
            image_base64=base64.b64encode(image.read_bytes()).decode() if image else None,
        )
    except (ValidationError, ValueError, OSError) as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise typer.Exit(1)

    from persona_panel.orchestrator import AnalysisOrchestrator, JobState, ResumePolicy
    from persona_panel.progress_store import make_progress_store

    config = PanelConfig.from_env()
    store = make_progress_store(
        f"cli:{session}", db_path=config.db_path, ttl_seconds=config.progress_ttl_seconds,
        backend=config.progress_backend,
    )

    def _on_progress(p: JobProgress) -> None:
        console.print(
            f"[dim]persona {p.personas_done_count}/{p.personas_total} · batch {p.batch_index}/{p.batches_total}[/]"
        )

    def _confirm_resume(p: JobProgress) -> bool:
        return typer.confirm(
            f"Found an earlier run with {p.personas_done_count} of {p.personas_total} personas done. Resume?",
            default=True,
        )

    def _confirm_demo(message: str) -> bool:
        console.print(f"[bold red]Model credential problem:[/] {message}")
        return typer.confirm("Continue with demo data instead?", default=False)

    policy = ResumePolicy.ASK if resume is None else (ResumePolicy.ALWAYS if resume else ResumePolicy.NEVER)
    orchestrator = AnalysisOrchestrator(
        config,
        store=store,
        on_progress=_on_progress,
        on_error=lambda msg: console.print(f"[yellow]Warning:[/] {msg}"),
        confirm_resume=_confirm_resume,
        confirm_demo=_confirm_demo,
        resume_policy=policy,
    )

    console.print(f"[bold green]Analyzing {len(personas)} personas...[/]")
    try:
        outcome = asyncio.run(orchestrator.run(personas, question_set, context, demo_mode=demo))
    except JobValidationError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise typer.Exit(1)

    if outcome.state != JobState.COMPLETED:
        console.print(
            f"[bold red]Job {outcome.state.value}[/] after {outcome.progress.personas_done_count} personas; "
            "run again to resume, or use --demo."
        )
        raise typer.Exit(2)

    from persona_panel.analyzers.aggregator import aggregate
    from persona_panel.formatter import export_json, export_markdown, export_report_json

    report = aggregate(outcome.answers)
    if fmt == "raw":
        text = export_json(outcome.answers)
    elif fmt == "json":
        text = export_report_json(report)
    else:
        text = export_markdown(report)

    if output:
        output.write_text(text)
        console.print(f"[bold green]✓[/] Report saved to [cyan]{output}[/]")
    elif fmt == "markdown":
        console.print(Markdown(text))
    else:
        console.print_json(text)


@app.command()
def questions(question_set: str = typer.Argument("complete", help="Question set name")):
    """List the questions of a set."""
    from persona_panel.questions import questions_for_set

    table = Table(title=f"Question set: {question_set}")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Question")
    for q in questions_for_set(question_set):
        table.add_row(q.id, q.kind.value, q.text)
    console.print(table)


@app.command("clear-progress")
def clear_progress(session: str = typer.Option("default", "--session", help="Progress key to clear")):
    """Forget a saved, unfinished run."""
    from persona_panel.progress_store import make_progress_store

    config = PanelConfig.from_env()
    store = make_progress_store(f"cli:{session}", db_path=config.db_path, backend=config.progress_backend)
    asyncio.run(store.clear())
    console.print(f"[bold green]✓[/] Cleared saved progress for [cyan]{session}[/]")


if __name__ == "__main__":
    app()
