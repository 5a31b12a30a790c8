from __future__ import annotations

from sam_deploy_kit.reconciler import EntryResult, Outcome
from sam_deploy_kit.report import format_results, has_drift, has_failures


def test_format_results_lists_each_entry_and_totals() -> None:
    results = [
        EntryResult("a", Outcome.CREATED, expected="1"),
        EntryResult("b", Outcome.DRIFT_DETECTED, expected="new", existing="old"),
        EntryResult("c", Outcome.UNCHANGED, expected="x", existing="x"),
    ]

    lines = format_results("Parameters", results)

    assert lines[0] == "## Parameters"
    assert "- a: 생성 value=1" in lines
    assert "- b: drift 감지 (덮어쓰지 않음) expected=new existing=old" in lines
    assert lines[-1] == "- 합계: unchanged=1, drift=1, created=1"
    assert has_drift(results)
    assert not has_failures(results)


def test_format_results_redacts_values() -> None:
    results = [
        EntryResult("db", Outcome.OVERWRITTEN, expected='"s3cret"', existing='"old"'),
        EntryResult("api", Outcome.FAILED, expected=None, error="throttled"),
    ]

    text = "\n".join(format_results("Secrets", results, redact=True))

    assert "s3cret" not in text
    assert "old" not in text
    assert "throttled" in text
    assert has_failures(results)


def test_format_results_empty() -> None:
    assert format_results("Secrets", []) == ["## Secrets", "- (none)"]
