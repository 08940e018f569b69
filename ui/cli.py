"""Command Line Interface (CLI) output helpers."""

from typing import Sequence

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table
from rich.panel import Panel
from rich.text import Text

from core.models import Batch, EvaluationResult, ProgressEvent, ProgressKind, QuestionRecord
from utils.logger import get_logger

logger = get_logger()
console = Console()

PROGRESS_STYLES = {
    ProgressKind.BATCH_STARTED: "blue",
    ProgressKind.BATCH_RETRY: "yellow",
    ProgressKind.BATCH_COMPLETED: "green",
    ProgressKind.BATCH_FAILED: "bold red",
}


def display_welcome():
    """Displays a welcome message."""
    console.print(Panel(
        "[bold green]GradeLab Answer Sheet Evaluator[/bold green]",
        title="Welcome",
        border_style="blue"
    ))
    console.print("Aligns questions with the answer key and grades each answer with Gemini AI.")
    console.rule()


def display_farewell():
    """Displays a farewell message."""
    console.rule()
    console.print("[bold cyan]Done. Exiting.[/bold cyan]")


def display_error(message: str):
    """Displays an error message in a standard format."""
    console.print(Panel(f"[bold red]Error:[/bold red] {escape(message)}", title="Error", border_style="red"))


def display_warning(message: str):
    """Displays a warning message."""
    console.print(f"[yellow]Warning:[/yellow] {escape(message)}")


def display_success(message: str):
    """Displays a success message."""
    console.print(f"[green]Success:[/green] {escape(message)}")


def display_step(step_number: int, description: str):
    """Displays the current step in the process."""
    console.print(f"\n[bold blue]Step {step_number}:[/bold blue] {escape(description)}")
    console.rule()


def display_text(text: str):
    """Prints extracted text verbatim (no markup interpretation)."""
    console.print(text, markup=False, highlight=False)


def confirm_action(message: str, default: bool = True) -> bool:
    """Asks the user for confirmation.

    Args:
        message: The confirmation prompt message.
        default: The default action if the user just presses Enter.

    Returns:
        True if the user confirms, False otherwise.
    """
    return Confirm.ask(message, default=default)


def display_alignment(questions: Sequence[QuestionRecord]):
    """Shows the aligned question records, flagging alignment warnings."""
    table = Table(title=f"Aligned Questions ({len(questions)})", show_header=True, header_style="bold magenta")
    table.add_column("Section", style="cyan")
    table.add_column("Q#", style="dim", justify="right")
    table.add_column("Marks", justify="right")
    table.add_column("Question")
    table.add_column("Expected Answer", style="green")
    table.add_column("Warnings", style="yellow")

    for q in questions:
        table.add_row(
            escape(q.section),
            str(q.number),
            f"{q.max_marks:g}",
            Text(q.text[:60]),
            Text(q.expected_answer[:40]) if q.expected_answer else Text("(missing)", style="bold red"),
            Text("; ".join(q.warnings)),
        )
    console.print(table)


def display_plan(batches: Sequence[Batch]):
    """Shows the batch plan with token estimates."""
    table = Table(title=f"Batch Plan ({len(batches)} batches)", show_header=True, header_style="bold magenta")
    table.add_column("Batch", style="dim", justify="right")
    table.add_column("Questions", justify="right")
    table.add_column("Sections", style="cyan")
    table.add_column("Range")
    table.add_column("Input Tokens (est.)", justify="right")
    table.add_column("Max Output Tokens", justify="right")

    for batch in batches:
        first, last = batch.questions[0], batch.questions[-1]
        table.add_row(
            str(batch.index + 1),
            str(len(batch.questions)),
            escape(", ".join(batch.sections)),
            escape(f"{first.label} - {last.label}"),
            str(batch.estimated_input_tokens),
            str(batch.max_output_tokens),
        )
    console.print(table)


def display_progress_event(event: ProgressEvent):
    """Prints one batch progress event. Safe to call from worker threads."""
    style = PROGRESS_STYLES.get(event.kind, "white")
    line = f"[{style}]Batch {event.batch_index + 1}/{event.total_batches}: {event.kind.value}[/{style}]"
    if event.message:
        line += f" - {escape(event.message)}"
    console.print(line)


def display_evaluation_summary(result: EvaluationResult):
    """Displays a per-question summary table and the overall performance block."""
    if not result.answers:
        console.print("[yellow]No answers were graded.[/yellow]")
        return

    table = Table(
        title=escape(f"Evaluation: {result.student_name} ({result.roll_no}, {result.class_name}, {result.subject})"),
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Section", style="cyan")
    table.add_column("Q#", style="dim", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Conf.", justify="right")
    table.add_column("Remarks")
    table.add_column("Notes", style="yellow")

    for answer in result.answers:
        earned, possible = answer.score
        if possible and earned >= possible:
            score_style = "green"
        elif earned > 0:
            score_style = "yellow"
        else:
            score_style = "red"
        table.add_row(
            escape(answer.section),
            str(answer.question_no),
            Text(f"{earned:g}/{possible:g}", style=score_style),
            f"{answer.confidence:.2f}",
            Text(answer.remarks[:80]),
            Text(answer.alignment_notes[:60]),
        )
    console.print(table)

    earned, possible = result.total_score()
    sections = ", ".join(f"{escape(name)}: {count}" for name, count in result.questions_by_section.items())
    console.print(f"Questions detected: {result.total_questions_detected} ({sections})")
    console.print(f"[bold]Total: {earned:g}/{possible:g}[/bold]")

    performance = result.overall_performance
    body = "\n".join([
        escape(performance.personalized_summary),
        "",
        "[bold]Strengths:[/bold] " + escape("; ".join(performance.strengths)),
        "[bold]Areas for improvement:[/bold] " + escape("; ".join(performance.areas_for_improvement)),
        "[bold]Study recommendations:[/bold] " + escape("; ".join(performance.study_recommendations)),
    ])
    console.print(Panel(body, title="Overall Performance", border_style="green"))
