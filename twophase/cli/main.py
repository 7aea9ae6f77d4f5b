"""Command-line front end for taking attempts, running detectors, grading, and alert triage."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from twophase.catalog import QuestionCatalog, load_catalog
from twophase.core.config import EngineConfig, load_engine_config, merge_engine_config
from twophase.core.models import AlertStatus, GamingPattern, Question
from twophase.core.provenance import AuditLog
from twophase.core.switches import describe_enabled, parse_detector_flag
from twophase.engine.analytics import category_performance, class_summary, pattern_distribution
from twophase.engine.detection import detect_all_patterns, recommend_interventions
from twophase.engine.grading import calculate_final_grade, render_grade_report, student_test_scores
from twophase.engine.service import AssessmentService
from twophase.engine.session import AssessmentSession, Phase
from twophase.engine.timer import IntervalTicker
from twophase.gradebook import load_evaluations, load_gradebook, load_responses, load_test_scores
from twophase.storage import SQLiteResultStore

ENV_REPO_ROOT = "TWOPHASE_REPO_ROOT"
STORE_ENV_VAR = "TWOPHASE_RESULTS_STORE"
CONFIG_ENV_VAR = "TWOPHASE_CONFIG"
ALERT_STATUSES = ("pending", "acknowledged", "resolved")
QUIT_WORDS = {"quit", "q"}
FLAG_WORDS = {"flag", "f"}


def _resolve_repo_root() -> Path:
    override = os.environ.get(ENV_REPO_ROOT)
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).resolve().parents[2]


def _resolve_default_store(repo_root: Path | None = None) -> Path:
    env_store = os.environ.get(STORE_ENV_VAR)
    if env_store:
        return Path(env_store).expanduser().resolve()
    base_root = repo_root or _resolve_repo_root()
    return (base_root / "outputs" / "results.sqlite").resolve()


DEFAULT_STORE = _resolve_default_store()

app = typer.Typer(help="Two-phase assessment attempts, integrity detection, and grading.")
console = Console()

STORE_HELP = f"SQLite results store (defaults to {STORE_ENV_VAR} or {DEFAULT_STORE})."
CONFIG_HELP = f"Engine config YAML (defaults to {CONFIG_ENV_VAR}, else built-in defaults)."


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level for engine diagnostics."),
) -> None:
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level {log_level!r}", param_hint="--log-level")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# ---------------------------------------------------------------------------
# Shared option handling


def _open_store(path: Path | None, *, must_exist: bool) -> SQLiteResultStore:
    resolved = path.expanduser().resolve() if path is not None else _resolve_default_store()
    if must_exist and not resolved.exists():
        raise typer.BadParameter(f"Results store not found at {resolved}")
    return SQLiteResultStore(resolved)


def _load_config(path: Path | None, skip: str | None = None) -> EngineConfig:
    if path is None and os.environ.get(CONFIG_ENV_VAR):
        path = Path(os.environ[CONFIG_ENV_VAR])
    try:
        config = load_engine_config(path)
        disabled = parse_detector_flag(skip)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    if disabled:
        combined = list(dict.fromkeys([*config.detection.disabled, *disabled]))
        config = merge_engine_config(config, {"detection": {"disabled": combined}})
    return config


def _load_catalog(path: Path) -> QuestionCatalog:
    try:
        return load_catalog(path)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--catalog") from exc


def _dump(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _print_table(headers: list[str], rows: List[dict], keys: list[str]) -> None:
    table = Table(*headers)
    for row in rows:
        table.add_row(*[str(row.get(key, "")) for key in keys])
    console.print(table)


def _pattern_rows(patterns: List[GamingPattern]) -> List[dict]:
    return [
        {
            "student": pattern.student_id,
            "pattern": pattern.pattern_type.value,
            "confidence": f"{pattern.confidence:.2f}",
            "details": ", ".join(f"{key}={value}" for key, value in pattern.details.items()),
        }
        for pattern in patterns
    ]


# ---------------------------------------------------------------------------
# take


def _resolve_choice(raw: str, ids: List[str]) -> str:
    if raw.isdigit() and 1 <= int(raw) <= len(ids):
        return ids[int(raw) - 1]
    return raw


def _show_question(session: AssessmentSession, question: Question) -> None:
    console.print(
        f"\n[bold]Question {session.index + 1}/{len(session.questions)}[/bold] "
        f"[dim]({question.category}, {session.remaining}s left)[/dim]"
    )
    console.print(question.content or question.id)
    for number, option in enumerate(question.ordered_options, start=1):
        console.print(f"  {number}. [{option.id}] {option.text}")


def _show_rationales(question: Question) -> None:
    console.print("[bold]Why?[/bold] Choose the rationale that supports your answer:")
    for number, rationale in enumerate(question.rationales, start=1):
        console.print(f"  {number}. [{rationale.id}] {rationale.text}")


def _run_attempt(session: AssessmentSession) -> None:
    while session.active:
        question = session.current_question
        if session.phase is Phase.ANSWER:
            _show_question(session, question)
            raw = typer.prompt("Answer (number or id, 'quit' to abandon)").strip()
            if raw.lower() in QUIT_WORDS:
                session.abandon()
                break
            choice = _resolve_choice(raw, [option.id for option in question.ordered_options])
            if not session.select_answer(choice):
                console.print(f"[yellow]{raw!r} is not an option for this question.[/yellow]")
                continue
            session.lock_answer()
            continue

        _show_rationales(question)
        raw = typer.prompt("Rationale (number or id, 'flag' to mark for review, 'quit' to abandon)").strip()
        if raw.lower() in QUIT_WORDS:
            session.abandon()
            break
        if raw.lower() in FLAG_WORDS:
            session.flag_for_review()
            console.print("[cyan]Question flagged for review.[/cyan]")
            continue
        choice = _resolve_choice(raw, [rationale.id for rationale in question.rationales])
        if not session.select_rationale(choice):
            console.print(f"[yellow]{raw!r} is not a rationale for this question.[/yellow]")
            continue
        session.submit_rationale()
        if session.flagged:
            console.print("[red]Response pattern flagged for faculty review.[/red]")


@app.command()
def take(
    catalog_path: Path = typer.Argument(..., help="Question catalog (JSON or YAML)."),
    assessment: str = typer.Option(..., "--assessment", "-a", help="Assessment id to attempt."),
    student: str = typer.Option(..., "--student", "-s", help="Student id taking the attempt."),
    name: Optional[str] = typer.Option(None, "--name", help="Student display name for alerts."),
    store: Path | None = typer.Option(None, "--store", show_default=False, help=STORE_HELP),
    config: Path | None = typer.Option(None, "--config", show_default=False, help=CONFIG_HELP),
    audit: Path | None = typer.Option(None, "--audit", help="Append lifecycle events to this JSONL file."),
) -> None:
    """Take a two-phase attempt interactively: lock an answer, then justify it."""

    catalog = _load_catalog(catalog_path)
    service = AssessmentService(
        catalog,
        _open_store(store, must_exist=False),
        config=_load_config(config),
        audit=AuditLog(audit) if audit else None,
    )
    try:
        session = service.start(student, assessment)
    except (KeyError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--assessment") from exc

    with IntervalTicker(session.tick):
        _run_attempt(session)
    result = service.finish(session, name)

    console.print(f"\n[bold]Attempt {result.outcome}[/bold] in {result.total_time_spent}s")
    console.print(
        f"Score {result.score:.1f}% (answers {result.answer_accuracy:.1f}%, "
        f"rationales {result.rationale_accuracy:.1f}%) - {'passed' if result.passed else 'not passed'}"
    )
    if result.patterns:
        _print_table(["Student", "Pattern", "Confidence", "Details"], _pattern_rows(result.patterns), ["student", "pattern", "confidence", "details"])


# ---------------------------------------------------------------------------
# detect / grade


@app.command()
def detect(
    responses_path: Path = typer.Argument(..., help="Response records (JSON or YAML)."),
    catalog_path: Path = typer.Option(..., "--catalog", help="Question catalog (JSON or YAML)."),
    evaluations_path: Path | None = typer.Option(None, "--evaluations", help="Peer evaluations file."),
    test_scores_path: Path | None = typer.Option(
        None,
        "--test-scores",
        help="student_id -> test average mapping; computed from the responses when omitted.",
    ),
    skip: Optional[str] = typer.Option(None, "--skip", help="Comma-separated detectors to disable."),
    config: Path | None = typer.Option(None, "--config", show_default=False, help=CONFIG_HELP),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """Run the integrity detectors over exported records."""

    engine_config = _load_config(config, skip)
    catalog = _load_catalog(catalog_path)
    try:
        responses = load_responses(responses_path)
        evaluations = load_evaluations(evaluations_path) if evaluations_path else []
        test_scores = load_test_scores(test_scores_path) if test_scores_path else None
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    if test_scores is None:
        test_scores = student_test_scores(responses, catalog, catalog.assessments, engine_config.grading)

    patterns = detect_all_patterns(responses, catalog, evaluations, test_scores, engine_config.detection)
    if as_json:
        _dump([pattern.model_dump(mode="json") for pattern in patterns])
        return

    console.print(f"[dim]Detectors enabled: {describe_enabled(engine_config.detection.disabled)}[/dim]")
    if not patterns:
        console.print("[green]No integrity patterns detected.[/green]")
        return
    _print_table(["Student", "Pattern", "Confidence", "Details"], _pattern_rows(patterns), ["student", "pattern", "confidence", "details"])
    console.print("[bold]Recommended interventions:[/bold]")
    for item in recommend_interventions(patterns):
        console.print(f"  - {item}")


@app.command()
def grade(
    bundle_path: Path = typer.Argument(..., help="Gradebook bundle for one student (JSON or YAML)."),
    catalog_path: Path = typer.Option(..., "--catalog", help="Question catalog (JSON or YAML)."),
    config: Path | None = typer.Option(None, "--config", show_default=False, help=CONFIG_HELP),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of the text report."),
) -> None:
    """Compute the weighted final grade for one student."""

    engine_config = _load_config(config)
    catalog = _load_catalog(catalog_path)
    try:
        bundle = load_gradebook(bundle_path)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    patterns = bundle.patterns
    if patterns is None:
        test_scores = student_test_scores(bundle.responses, catalog, catalog.assessments, engine_config.grading)
        detected = detect_all_patterns(
            bundle.responses,
            catalog,
            bundle.evaluations,
            test_scores,
            engine_config.detection,
        )
        patterns = [pattern for pattern in detected if pattern.student_id == bundle.student_id]

    calculation = calculate_final_grade(
        bundle.student_id,
        bundle.own_responses,
        catalog,
        catalog.assessments,
        evaluations_received=bundle.evaluations_received,
        evaluations_given=bundle.evaluations_given,
        faculty_benchmarks=bundle.faculty_benchmarks,
        group_member_ids=bundle.group_member_ids,
        group_responses=bundle.responses_by_member(),
        patterns=patterns,
        attendance_rate=bundle.attendance_rate,
        reflection=bundle.reflection,
        settings=engine_config.grading,
    )
    if as_json:
        payload = calculation.model_dump(mode="json")
        payload["patterns"] = [pattern.model_dump(mode="json") for pattern in patterns]
        _dump(payload)
        return
    typer.echo(render_grade_report(calculation, engine_config.grading))


# ---------------------------------------------------------------------------
# stored results and alerts


@app.command()
def results(
    student: Optional[str] = typer.Option(None, "--student", help="Only show this student's attempts."),
    store: Path | None = typer.Option(None, "--store", show_default=False, help=STORE_HELP),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """List stored attempt results."""

    repository = _open_store(store, must_exist=True)
    records = repository.get_results_for_student(student) if student else repository.get_all_results()
    if as_json:
        _dump([record.model_dump(mode="json") for record in records])
        return
    rows = [
        {
            "id": record.id,
            "assessment": record.assessment_id,
            "student": record.student_id,
            "outcome": record.outcome,
            "score": f"{record.score:.1f}",
            "passed": "yes" if record.passed else "no",
            "patterns": ", ".join(pattern.pattern_type.value for pattern in record.patterns) or "-",
        }
        for record in records
    ]
    _print_table(
        ["ID", "Assessment", "Student", "Outcome", "Score", "Passed", "Patterns"],
        rows,
        ["id", "assessment", "student", "outcome", "score", "passed", "patterns"],
    )


@app.command()
def summary(
    catalog_path: Path | None = typer.Option(None, "--catalog", help="Catalog for per-category accuracy."),
    store: Path | None = typer.Option(None, "--store", show_default=False, help=STORE_HELP),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of tables."),
) -> None:
    """Class-level roll-up of stored attempts."""

    repository = _open_store(store, must_exist=True)
    records = repository.get_all_results()
    payload: Dict[str, Any] = {
        "summary": class_summary(records).model_dump(mode="json"),
        "patterns": [item.model_dump(mode="json") for item in pattern_distribution(records)],
    }
    if catalog_path is not None:
        catalog = _load_catalog(catalog_path)
        responses = [response for record in records for response in record.responses]
        payload["categories"] = [item.model_dump(mode="json") for item in category_performance(responses, catalog)]
    if as_json:
        _dump(payload)
        return

    table = Table("Metric", "Value")
    for key, value in payload["summary"].items():
        table.add_row(key.replace("_", " ").capitalize(), str(value))
    console.print(table)
    _print_table(["Pattern", "Count", "%"], payload["patterns"], ["pattern_type", "count", "percentage"])
    if "categories" in payload:
        _print_table(["Category", "Correct", "Total", "Accuracy %"], payload["categories"], ["category", "correct", "total", "accuracy"])


@app.command()
def alerts(
    status: Optional[str] = typer.Option(None, "--status", help="pending, acknowledged, or resolved."),
    store: Path | None = typer.Option(None, "--store", show_default=False, help=STORE_HELP),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """List intervention alerts."""

    if status is not None and status not in ALERT_STATUSES:
        raise typer.BadParameter(f"Status must be one of {', '.join(ALERT_STATUSES)}", param_hint="--status")
    repository = _open_store(store, must_exist=True)
    records = repository.get_alerts(status)  # type: ignore[arg-type]
    if as_json:
        _dump([record.model_dump(mode="json") for record in records])
        return
    rows = [
        {
            "id": record.id,
            "target": record.target_id,
            "priority": record.priority,
            "status": record.status,
            "reason": record.reason,
        }
        for record in records
    ]
    _print_table(["ID", "Student", "Priority", "Status", "Reason"], rows, ["id", "target", "priority", "status", "reason"])


def _update_alert(alert_id: str, status: AlertStatus, notes: str | None, store: Path | None) -> None:
    repository = _open_store(store, must_exist=True)
    updated = repository.update_alert_status(alert_id, status, notes)
    if updated is None:
        console.print(f"[red]Alert {alert_id} not found.[/red]")
        raise typer.Exit(code=1)
    console.print(f"Alert {updated.id} is now [bold]{updated.status}[/bold].")


@app.command()
def ack(
    alert_id: str = typer.Argument(..., help="Alert id to acknowledge."),
    notes: Optional[str] = typer.Option(None, "--notes", help="Faculty notes to attach."),
    store: Path | None = typer.Option(None, "--store", show_default=False, help=STORE_HELP),
) -> None:
    """Acknowledge a pending alert."""

    _update_alert(alert_id, "acknowledged", notes, store)


@app.command()
def resolve(
    alert_id: str = typer.Argument(..., help="Alert id to resolve."),
    notes: Optional[str] = typer.Option(None, "--notes", help="Faculty notes to attach."),
    store: Path | None = typer.Option(None, "--store", show_default=False, help=STORE_HELP),
) -> None:
    """Resolve an alert and stamp its resolution time."""

    _update_alert(alert_id, "resolved", notes, store)


if __name__ == "__main__":  # pragma: no cover
    app()
