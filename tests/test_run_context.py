from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.pipeline.context import RunContext
from src.pipeline.steps import FailureKind, Step, StepResult, StepStatus
from src.pipeline.triggers import TriggerEvent, TriggerKind
from src.utils.schema_validation import is_valid_run_report, validate_run_report


@pytest.mark.unit
def test_mark_checkpoint_ignores_blank_name(tmp_path: Path) -> None:
    ctx = RunContext(checkout_dir=tmp_path)
    ctx.mark_checkpoint(" ")
    ctx.mark_checkpoint("")
    assert ctx.checkpoints == {}


@pytest.mark.unit
def test_mark_checkpoint_sets_timestamp(tmp_path: Path) -> None:
    ctx = RunContext(checkout_dir=tmp_path)
    ctx.mark_checkpoint("start")
    assert isinstance(ctx.checkpoints["start"], str)


@pytest.mark.unit
def test_record_failed_step_marks_run_failed(tmp_path: Path) -> None:
    ctx = RunContext(checkout_dir=tmp_path)
    ctx.record_step(StepResult(step=Step.CHECKOUT, status=StepStatus.COMPLETED))
    ctx.record_step(
        StepResult(
            step=Step.RUN_COLLECTOR,
            status=StepStatus.FAILED,
            failure_kind=FailureKind.COLLECTOR,
            message="Collector exited with code 1",
        )
    )

    assert ctx.success is False
    assert ctx.failed_step is Step.RUN_COLLECTOR
    assert ctx.failure_kind is FailureKind.COLLECTOR
    assert ctx.errors == ["run_collector: Collector exited with code 1"]
    assert ctx.step_status(Step.CHECKOUT) is StepStatus.COMPLETED
    assert ctx.step_status(Step.PUBLISH_ARTIFACT) is None


@pytest.mark.unit
def test_failure_without_kind_defaults_to_internal(tmp_path: Path) -> None:
    ctx = RunContext(checkout_dir=tmp_path)
    ctx.record_step(StepResult(step=Step.DETECT_CHANGES, status=StepStatus.FAILED))
    assert ctx.failure_kind is FailureKind.INTERNAL


@pytest.mark.unit
def test_skipped_step_does_not_fail_run(tmp_path: Path) -> None:
    ctx = RunContext(checkout_dir=tmp_path)
    ctx.record_step(StepResult(step=Step.COMMIT_AND_PUSH, status=StepStatus.SKIPPED, details={"reason": "no changes"}))
    assert ctx.success is True
    assert ctx.step_results[Step.COMMIT_AND_PUSH].success is True


@pytest.mark.unit
def test_payload_validates_and_round_trips(tmp_path: Path) -> None:
    ctx = RunContext(
        checkout_dir=tmp_path.resolve(),
        trigger=TriggerEvent(kind=TriggerKind.PUSH, ref="refs/heads/main", revision="abc123"),
    )
    ctx.record_step(StepResult(step=Step.CHECKOUT, status=StepStatus.COMPLETED, details={"head": "abc123"}))
    ctx.record_step(
        StepResult(
            step=Step.COMMIT_AND_PUSH,
            status=StepStatus.FAILED,
            failure_kind=FailureKind.PUSH_CONFLICT,
            message="rejected",
        )
    )
    ctx.changes_present = True
    ctx.commit_sha = "f" * 40
    ctx.finish()

    payload = ctx.to_payload()
    validate_run_report(payload)

    out = tmp_path / "state" / "report.json"
    ctx.write_json(out)
    loaded = RunContext.read_json(out)

    assert loaded is not None
    assert loaded.to_payload() == payload
    assert loaded.trigger.branch == "main"
    assert json.loads(out.read_text(encoding="utf-8"))["failure_kind"] == "push_conflict"


@pytest.mark.unit
def test_read_json_returns_none_for_bad_files(tmp_path: Path) -> None:
    assert RunContext.read_json(tmp_path / "missing.json") is None

    bad = tmp_path / "bad.json"
    bad.write_text("{", encoding="utf-8")
    assert RunContext.read_json(bad) is None

    wrong = tmp_path / "wrong.json"
    wrong.write_text(json.dumps({"failed_step": "not-a-step"}), encoding="utf-8")
    assert RunContext.read_json(wrong) is None


@pytest.mark.unit
def test_report_cross_field_rules(tmp_path: Path) -> None:
    ctx = RunContext(checkout_dir=tmp_path)
    payload = ctx.to_payload()
    assert is_valid_run_report(payload)

    payload["failed_step"] = "checkout"
    with pytest.raises(ValueError, match="successful runs"):
        validate_run_report(payload)

    payload["success"] = False
    payload["failed_step"] = None
    with pytest.raises(ValueError, match="failed runs"):
        validate_run_report(payload)


@pytest.mark.unit
def test_report_schema_rejects_unknown_fields_and_steps(tmp_path: Path) -> None:
    payload = RunContext(checkout_dir=tmp_path).to_payload()

    extra = dict(payload, surprise=True)
    assert not is_valid_run_report(extra)

    bad_step = dict(payload, steps={"deploy": {}})
    assert not is_valid_run_report(bad_step)

    assert not is_valid_run_report(["not", "a", "dict"])
