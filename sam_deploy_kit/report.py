from __future__ import annotations

from collections import Counter
from typing import Iterable, List

from .reconciler import EntryResult, Outcome


_LABELS = {
    Outcome.UNCHANGED: "변경 없음",
    Outcome.DRIFT_DETECTED: "drift 감지 (덮어쓰지 않음)",
    Outcome.CREATED: "생성",
    Outcome.OVERWRITTEN: "덮어씀",
    Outcome.FAILED: "실패",
}


def describe_result(result: EntryResult, redact: bool = False) -> str:
    label = _LABELS[result.outcome]
    if result.dry_run and result.outcome is Outcome.CREATED:
        label = "생성 예정 (dry-run)"
    line = f"- {result.name}: {label}"

    if redact:
        if result.failed and result.error:
            line += f" ({result.error})"
        return line

    if result.outcome is Outcome.CREATED:
        line += f" value={result.expected}"
    elif result.drifted:
        line += f" expected={result.expected} existing={result.existing}"
    elif result.failed and result.error:
        line += f" ({result.error})"
    return line


def format_results(title: str, results: Iterable[EntryResult], redact: bool = False) -> List[str]:
    """시크릿처럼 값을 보여주면 안 되는 경우 redact=True."""
    results = list(results)
    lines = [f"## {title}"]
    if not results:
        lines.append("- (none)")
        return lines

    for r in results:
        lines.append(describe_result(r, redact=redact))

    counts = Counter(r.outcome for r in results)
    summary = ", ".join(f"{o.value}={counts[o]}" for o in Outcome if counts[o])
    lines.append(f"- 합계: {summary}")
    return lines


def has_failures(results: Iterable[EntryResult]) -> bool:
    return any(r.failed for r in results)


def has_drift(results: Iterable[EntryResult]) -> bool:
    return any(r.outcome is Outcome.DRIFT_DETECTED for r in results)
