"""
Exam Pathway command line.

Commands:
    simulate        - Run an adaptive assessment for a simulated student
    validate-graph  - Check a jurisdiction's concept graph
    plan            - Simulate an assessment, then generate a learning path
    serve           - Start the HTTP API
"""

import random
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from core.adaptive_tester import AdaptiveTester
from core.assessment_session import AssessmentConfig, DiagnosticReport
from core.config import get_settings
from core.irt_engine import probability_correct
from core.knowledge_graph import validate_graph
from core.logging_config import configure_logging, get_logger
from core.repositories import ContentBundle, load_content
from learning_path.path_generator import Pace, PathGenerator, StudentProfile

console = Console()
app = typer.Typer(help="IRT adaptive assessment and learning-path tools.")


def _load(content_dir: Optional[Path]) -> ContentBundle:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    return load_content(content_dir or settings.content_dir)


def _simulated_answer(item, true_theta: float, rng: random.Random) -> str:
    """Correct with probability P(true_theta), otherwise some other option."""
    if rng.random() < probability_correct(true_theta, item.irt_params()):
        return item.correct_answer
    wrong = [key for key in item.options if key != item.correct_answer]
    return rng.choice(wrong) if wrong else ""


def run_simulation(
    bundle: ContentBundle,
    jurisdiction: str,
    true_theta: float,
    seed: int,
    config: AssessmentConfig,
    show_trace: bool = True,
) -> DiagnosticReport:
    rng = random.Random(seed)
    settings = get_settings()
    tester = AdaptiveTester(
        bundle.items,
        jurisdiction,
        config=config,
        exposure_control=settings.exposure_control,
        randomness=settings.selection_randomness,
        total_assessments=settings.total_assessments,
        rng=random.Random(seed + 1),
        log=get_logger("simulate", jurisdiction_id=jurisdiction),
    )

    trace = Table(show_header=True, header_style="bold magenta")
    for column in ("#", "Item", "Topic", "b", "Correct", "θ", "SE", "Reason"):
        trace.add_column(column)

    question = tester.start()
    while question is not None:
        item = question.item
        outcome = tester.submit_response(item.id, _simulated_answer(item, true_theta, rng), time_seconds=60)
        trace.add_row(
            str(tester.state.questions_asked),
            item.id,
            item.topic,
            f"{item.irt_params().b:+.2f}",
            "[green]yes[/green]" if outcome.is_correct else "[red]no[/red]",
            f"{outcome.theta:+.2f}",
            f"{outcome.se:.3f}",
            question.reason,
        )
        question = outcome.next_question

    if show_trace:
        console.print(trace)
    return tester.report()


def _print_report(report: DiagnosticReport, true_theta: float):
    low, high = report.confidence_interval_95
    console.print()
    console.rule("[bold blue]Diagnostic Report[/bold blue]")
    console.print(f"[bold]True θ:[/] {true_theta:+.2f}")
    console.print(f"[bold]Estimated θ:[/] {report.final_ability:+.2f}  (SE {report.final_se:.3f}, 95% CI {low:+.2f}..{high:+.2f})")
    console.print(f"[bold]Questions:[/] {report.questions_asked}  [bold]Ended:[/] {report.termination_reason.value}")
    console.print(f"[bold]Estimated score:[/] {report.estimated_exam_score:.0f}%  [bold]Readiness:[/] {report.readiness_level.value}")

    topics = Table(show_header=True, header_style="bold magenta")
    topics.add_column("Topic")
    topics.add_column("Asked")
    topics.add_column("Accuracy")
    topics.add_column("θ (topic)")
    for perf in report.topic_performance:
        topics.add_row(perf.topic, str(perf.questions_asked), f"{perf.accuracy:.0%}", f"{perf.estimated_ability:+.2f}")
    console.print(topics)

    if report.weak_concepts:
        console.print("[yellow]Weak:[/yellow] " + ", ".join(w.topic for w in report.weak_concepts))
    if report.strong_concepts:
        console.print("[green]Strong:[/green] " + ", ".join(s.topic for s in report.strong_concepts))


@app.command()
def simulate(
    true_theta: float = typer.Option(0.0, "--true-theta", help="Ability of the simulated student."),
    jurisdiction: Optional[str] = typer.Option(None, "--jurisdiction", help="Content jurisdiction; defaults to DEFAULT_JURISDICTION."),
    seed: int = typer.Option(7, "--seed", help="Random seed for simulated answers."),
    min_questions: Optional[int] = typer.Option(None, "--min-questions"),
    max_questions: Optional[int] = typer.Option(None, "--max-questions"),
    content_dir: Optional[Path] = typer.Option(None, "--content-dir", help="Directory of content JSON bundles."),
) -> None:
    """
    Run a full adaptive assessment against the loaded item pool.
    """
    bundle = _load(content_dir)
    settings = get_settings()
    jurisdiction = jurisdiction or settings.default_jurisdiction
    config = settings.assessment_config(min_questions=min_questions, max_questions=max_questions)

    console.rule("[bold blue]Adaptive Assessment Simulation[/bold blue]")
    report = run_simulation(bundle, jurisdiction, true_theta, seed, config)
    _print_report(report, true_theta)


@app.command("validate-graph")
def validate_graph_command(
    jurisdiction: Optional[str] = typer.Option(None, "--jurisdiction"),
    content_dir: Optional[Path] = typer.Option(None, "--content-dir"),
) -> None:
    """
    Check the concept graph for cycles, dangling prerequisites and duplicates.
    """
    bundle = _load(content_dir)
    jurisdiction = jurisdiction or get_settings().default_jurisdiction
    result = validate_graph(bundle.concepts.find_concepts(jurisdiction))

    stats = Table(show_header=True, header_style="bold magenta")
    stats.add_column("Stat")
    stats.add_column("Value")
    for name, value in result.stats.items():
        stats.add_row(name, str(value))
    console.print(stats)

    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    for error in result.errors:
        console.print(f"[red]error:[/red] {error}")

    if not result.is_valid:
        raise typer.Exit(code=1)
    console.print("[green]✅ Concept graph is valid[/green]")


@app.command()
def plan(
    true_theta: float = typer.Option(-0.5, "--true-theta", help="Ability of the simulated student."),
    pace: Pace = typer.Option(Pace.MEDIUM, "--pace"),
    daily_goal_minutes: int = typer.Option(30, "--daily-goal-minutes"),
    jurisdiction: Optional[str] = typer.Option(None, "--jurisdiction"),
    seed: int = typer.Option(7, "--seed"),
    content_dir: Optional[Path] = typer.Option(None, "--content-dir"),
) -> None:
    """
    Simulate an assessment, then build a learning path from its report.
    """
    bundle = _load(content_dir)
    settings = get_settings()
    jurisdiction = jurisdiction or settings.default_jurisdiction

    report = run_simulation(bundle, jurisdiction, true_theta, seed, settings.assessment_config(), show_trace=False)
    _print_report(report, true_theta)

    profile = StudentProfile(
        user_id="simulated",
        theta=report.final_ability,
        pace=pace,
        daily_goal_minutes=daily_goal_minutes,
    )
    path = PathGenerator(bundle.concepts, bundle.similarity).generate_learning_path(report, profile, jurisdiction)

    console.print()
    console.rule(f"[bold blue]{path.name}[/bold blue]")
    console.print(path.description)

    steps = Table(show_header=True, header_style="bold magenta")
    steps.add_column("#")
    steps.add_column("Type")
    steps.add_column("Title")
    steps.add_column("Minutes")
    for step in path.steps:
        steps.add_row(str(step.sequence), step.kind, step.title, str(step.estimated_minutes))
    console.print(steps)

    for milestone in path.milestones:
        console.print(
            f"[bold]Milestone {milestone.sequence}:[/] {milestone.title} "
            f"(steps 0-{max(milestone.required_step_indices)}) -> {milestone.reward.kind}"
        )
    console.print(f"[bold]Total:[/] {path.estimated_minutes} min, ~{path.estimated_days} days at {pace.value} pace")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """
    Start the FastAPI server.
    """
    import uvicorn
    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
