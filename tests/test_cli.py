import importlib
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import twophase.cli.main as cli_main
from twophase.catalog import load_catalog
from twophase.core.models import InterventionAlert
from twophase.engine.service import AssessmentService
from twophase.engine.timer import ManualClock
from twophase.storage import SQLiteResultStore

RUNNER = CliRunner()
REPO_ROOT = Path(__file__).resolve().parents[1]
CATALOG = REPO_ROOT / "data" / "nursing_catalog.yaml"
GRADEBOOK = REPO_ROOT / "data" / "sample_gradebook.yaml"

# Wrong answer with the correct rationale on every question.
MINED_ANSWERS = {
    "q-med-1": ("b", "r1"),
    "q-med-2": ("a", "r2"),
    "q-med-3": ("a", "r1"),
    "q-card-1": ("a", "r1"),
    "q-card-2": ("b", "r2"),
}


def _write_responses(tmp_path: Path, answers: dict) -> Path:
    records = [
        {
            "student_id": "s-9",
            "question_id": question_id,
            "assessment_id": "quiz-week-1" if question_id.startswith("q-med") else "exam-unit-1",
            "answer_id": answer,
            "answer_locked_at": "2024-09-02T10:00:00Z",
            "time_on_question": 30,
            "rationale_id": rationale,
            "rationale_submitted_at": "2024-09-02T10:00:20Z",
            "time_on_rationale": 20,
        }
        for question_id, (answer, rationale) in answers.items()
    ]
    path = tmp_path / "responses.json"
    path.write_text(json.dumps(records), encoding="utf-8")
    return path


def _seed_alert(store: Path) -> InterventionAlert:
    alert = InterventionAlert(target_id="s-9", reason="Potential gaming patterns detected for s-9", priority="high")
    SQLiteResultStore(store).save_alert(alert)
    return alert


def test_default_store_honours_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("TWOPHASE_RESULTS_STORE", raising=False)
    monkeypatch.setenv("TWOPHASE_REPO_ROOT", str(tmp_path / "repo"))
    module = importlib.reload(cli_main)
    assert module.DEFAULT_STORE == (tmp_path / "repo" / "outputs" / "results.sqlite").resolve()

    custom_store = tmp_path / "alt" / "custom.sqlite"
    monkeypatch.setenv("TWOPHASE_RESULTS_STORE", str(custom_store))
    module = importlib.reload(cli_main)
    assert module.DEFAULT_STORE == custom_store.resolve()

    monkeypatch.delenv("TWOPHASE_RESULTS_STORE", raising=False)
    monkeypatch.delenv("TWOPHASE_REPO_ROOT", raising=False)
    importlib.reload(cli_main)


def test_detect_json_reports_mining(tmp_path: Path) -> None:
    responses = _write_responses(tmp_path, MINED_ANSWERS)
    result = RUNNER.invoke(cli_main.app, ["detect", str(responses), "--catalog", str(CATALOG), "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert {item["pattern_type"] for item in payload} == {"rationale_mining", "answer_rationale_mismatch"}
    assert all(item["student_id"] == "s-9" for item in payload)


def test_detect_skip_flag(tmp_path: Path) -> None:
    responses = _write_responses(tmp_path, MINED_ANSWERS)
    result = RUNNER.invoke(
        cli_main.app,
        ["detect", str(responses), "--catalog", str(CATALOG), "--skip", "rationale_mining", "--json"],
    )
    assert result.exit_code == 0, result.output
    assert [item["pattern_type"] for item in json.loads(result.stdout)] == ["answer_rationale_mismatch"]

    bad = RUNNER.invoke(cli_main.app, ["detect", str(responses), "--catalog", str(CATALOG), "--skip", "bogus"])
    assert bad.exit_code != 0


def test_detect_table_for_clean_records(tmp_path: Path) -> None:
    clean = {"q-med-1": ("a", "r1"), "q-med-2": ("c", "r2")}
    responses = _write_responses(tmp_path, clean)
    result = RUNNER.invoke(cli_main.app, ["detect", str(responses), "--catalog", str(CATALOG)])
    assert result.exit_code == 0, result.output
    assert "No integrity patterns detected." in result.stdout


def test_detect_missing_catalog(tmp_path: Path) -> None:
    responses = _write_responses(tmp_path, MINED_ANSWERS)
    result = RUNNER.invoke(cli_main.app, ["detect", str(responses), "--catalog", str(tmp_path / "nope.yaml")])
    assert result.exit_code != 0


def test_grade_sample_gradebook() -> None:
    report = RUNNER.invoke(cli_main.app, ["grade", str(GRADEBOOK), "--catalog", str(CATALOG)])
    assert report.exit_code == 0, report.output
    assert "Grade Report for Student: s-001" in report.stdout
    assert "Letter Grade:" in report.stdout

    as_json = RUNNER.invoke(cli_main.app, ["grade", str(GRADEBOOK), "--catalog", str(CATALOG), "--json"])
    assert as_json.exit_code == 0, as_json.output
    payload = json.loads(as_json.stdout)
    assert payload["student_id"] == "s-001"
    # s-001 and s-002 rate each other well above their own test averages
    assert [item["pattern_type"] for item in payload["patterns"]] == ["reciprocal_inflation"]
    assert payload["adjustments"]["gaming_penalty"] == pytest.approx(4.0)
    assert 0.0 <= payload["final_grade"] <= 100.0


def test_take_complete_attempt_persists_result(tmp_path: Path) -> None:
    store = tmp_path / "results.sqlite"
    result = RUNNER.invoke(
        cli_main.app,
        ["take", str(CATALOG), "-a", "quiz-week-1", "-s", "s-1", "--store", str(store)],
        input="a\nr1\nc\nr2\nb\nr1\n",
    )
    assert result.exit_code == 0, result.output
    assert "Attempt complete" in result.stdout
    assert "Score 100.0%" in result.stdout

    listing = RUNNER.invoke(cli_main.app, ["results", "--store", str(store), "--student", "s-1", "--json"])
    assert listing.exit_code == 0, listing.output
    records = json.loads(listing.stdout)
    assert len(records) == 1
    assert records[0]["passed"] is True
    assert len(records[0]["responses"]) == 3


def test_take_quit_abandons(tmp_path: Path) -> None:
    store = tmp_path / "results.sqlite"
    result = RUNNER.invoke(
        cli_main.app,
        ["take", str(CATALOG), "-a", "quiz-week-1", "-s", "s-2", "--store", str(store)],
        input="1\nquit\n",
    )
    assert result.exit_code == 0, result.output
    assert "Attempt abandoned" in result.stdout
    assert SQLiteResultStore(store).get_results_for_student("s-2")[0].outcome == "abandoned"


def test_take_unknown_assessment(tmp_path: Path) -> None:
    result = RUNNER.invoke(
        cli_main.app,
        ["take", str(CATALOG), "-a", "quiz-404", "-s", "s-1", "--store", str(tmp_path / "results.sqlite")],
    )
    assert result.exit_code != 0


def test_results_requires_existing_store(tmp_path: Path) -> None:
    result = RUNNER.invoke(cli_main.app, ["results", "--store", str(tmp_path / "missing.sqlite")])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_summary_json(tmp_path: Path) -> None:
    store = tmp_path / "results.sqlite"
    service = AssessmentService(load_catalog(CATALOG), SQLiteResultStore(store), clock=ManualClock())
    session = service.start("s-1", "quiz-week-1")
    for answer, rationale in (("a", "r1"), ("c", "r2"), ("a", "r1")):
        session.select_answer(answer)
        session.lock_answer()
        session.select_rationale(rationale)
        session.submit_rationale()
    service.finish(session)

    result = RUNNER.invoke(cli_main.app, ["summary", "--store", str(store), "--catalog", str(CATALOG), "--json"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["summary"]["attempts"] == 1
    assert payload["summary"]["completed"] == 1
    assert payload["categories"][0]["category"] == "pharmacology"
    assert payload["categories"][0]["total"] == 2
    assert payload["categories"][1]["category"] == "safety"
    assert {item["pattern_type"] for item in payload["patterns"]} >= {"rationale_mining"}


def test_alert_triage_commands(tmp_path: Path) -> None:
    store = tmp_path / "results.sqlite"
    alert = _seed_alert(store)

    listing = RUNNER.invoke(cli_main.app, ["alerts", "--store", str(store), "--status", "pending", "--json"])
    assert listing.exit_code == 0, listing.output
    assert [item["id"] for item in json.loads(listing.stdout)] == [alert.id]

    ack = RUNNER.invoke(cli_main.app, ["ack", alert.id, "--notes", "Met with student", "--store", str(store)])
    assert ack.exit_code == 0, ack.output
    assert "acknowledged" in ack.stdout

    resolved = RUNNER.invoke(cli_main.app, ["resolve", alert.id, "--store", str(store)])
    assert resolved.exit_code == 0, resolved.output
    stored = SQLiteResultStore(store).get_alerts("resolved")
    assert stored[0].faculty_notes == "Met with student"
    assert stored[0].resolved_at is not None


def test_alert_commands_reject_bad_input(tmp_path: Path) -> None:
    store = tmp_path / "results.sqlite"
    _seed_alert(store)

    missing = RUNNER.invoke(cli_main.app, ["ack", "alert-missing", "--store", str(store)])
    assert missing.exit_code == 1
    assert "not found" in missing.stdout

    bad_status = RUNNER.invoke(cli_main.app, ["alerts", "--store", str(store), "--status", "closed"])
    assert bad_status.exit_code != 0


def test_alerts_use_store_from_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    store = tmp_path / "env.sqlite"
    alert = _seed_alert(store)
    monkeypatch.setenv("TWOPHASE_RESULTS_STORE", str(store))
    result = RUNNER.invoke(cli_main.app, ["alerts", "--json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)[0]["id"] == alert.id


def test_invalid_log_level(tmp_path: Path) -> None:
    result = RUNNER.invoke(cli_main.app, ["--log-level", "chatty", "alerts", "--store", str(tmp_path / "x.sqlite")])
    assert result.exit_code != 0
