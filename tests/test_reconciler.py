from __future__ import annotations

import threading
from collections import OrderedDict

import pytest

from sam_deploy_kit.reconciler import (
    ConfigEntry,
    EncodingFailure,
    InMemoryStore,
    NotFound,
    Outcome,
    StoreUnavailable,
    encode_value,
    entries_from_mapping,
    reconcile,
    reconcile_all,
)


class _FlakyStore(InMemoryStore):
    """get/put 실패를 주입할 수 있는 저장소."""

    def __init__(self, initial=None, *, fail_get=(), fail_put=(), boom_get=()) -> None:  # noqa: ANN001
        super().__init__(initial)
        self.fail_get = set(fail_get)
        self.fail_put = set(fail_put)
        self.boom_get = set(boom_get)

    def get(self, name: str) -> str:
        if name in self.fail_get:
            raise StoreUnavailable(f"timeout: {name}")
        if name in self.boom_get:
            raise KeyError(name)
        return super().get(name)

    def put(self, name: str, value: str) -> None:
        if name in self.fail_put:
            raise StoreUnavailable(f"throttled: {name}")
        super().put(name, value)


def test_encode_value_passes_strings_through() -> None:
    assert encode_value("localhost") == "localhost"
    assert encode_value('{"a": 1}') == '{"a": 1}'


def test_encode_value_is_deterministic_for_mappings() -> None:
    a = {"b": 1, "a": [1, 2], "c": {"y": True, "x": None}}
    b = OrderedDict([("c", OrderedDict([("x", None), ("y", True)])), ("a", [1, 2]), ("b", 1)])

    assert encode_value(a) == encode_value(b)
    assert encode_value(a) == '{"a":[1,2],"b":1,"c":{"x":null,"y":true}}'


def test_encode_value_numbers_and_bools() -> None:
    assert encode_value(3) == "3"
    assert encode_value(True) == "true"
    assert encode_value(1.5) == "1.5"


def test_encode_value_writes_integral_floats_as_integers() -> None:
    assert encode_value(1.0) == "1"
    assert encode_value({"ratio": 2.0, "items": [3.0, 0.5]}) == '{"items":[3,0.5],"ratio":2}'


def test_integral_float_matches_previously_written_integer() -> None:
    store = InMemoryStore({"timeout": "30"})

    result = reconcile(store, "timeout", 30.0)

    assert result.outcome is Outcome.UNCHANGED
    assert store.put_calls == []


def test_encode_value_rejects_non_serializable() -> None:
    with pytest.raises(EncodingFailure):
        encode_value({"when": object()})
    with pytest.raises(EncodingFailure):
        encode_value(float("nan"))


def test_create_on_absence() -> None:
    store = InMemoryStore()

    result = reconcile(store, "db-host", "localhost")

    assert result.outcome is Outcome.CREATED
    assert store.get("db-host") == "localhost"


def test_idempotent_when_value_matches() -> None:
    store = InMemoryStore({"retries": "3"})

    for _ in range(3):
        result = reconcile(store, "retries", 3, allow_override=True)
        assert result.outcome is Outcome.UNCHANGED

    assert store.put_calls == []


def test_drift_without_override_is_non_destructive() -> None:
    store = InMemoryStore({"flag": "A"})

    result = reconcile(store, "flag", "B", allow_override=False)

    assert result.outcome is Outcome.DRIFT_DETECTED
    assert result.existing == "A"
    assert result.expected == "B"
    assert store.get("flag") == "A"
    assert store.put_calls == []


def test_drift_with_override_converges() -> None:
    store = InMemoryStore({"flag": "A"})

    result = reconcile(store, "flag", "B", allow_override=True)

    assert result.outcome is Outcome.OVERWRITTEN
    assert result.existing == "A"
    assert store.get("flag") == "B"


@pytest.mark.parametrize("allow_override", [True, False])
@pytest.mark.parametrize("initial", [{}, {"k": "same"}, {"k": "other"}])
def test_dry_run_never_writes(initial: dict, allow_override: bool) -> None:
    store = InMemoryStore(initial)

    result = reconcile(store, "k", "same", dry_run=True, allow_override=allow_override)

    assert store.put_calls == []
    assert result.dry_run
    assert result.outcome is not Outcome.OVERWRITTEN


def test_dry_run_still_reports_creation() -> None:
    store = InMemoryStore()

    result = reconcile(store, "new", {"a": 1}, dry_run=True)

    assert result.outcome is Outcome.CREATED
    assert result.expected == '{"a":1}'
    with pytest.raises(NotFound):
        store.get("new")


def test_fetch_failure_is_not_treated_as_absence() -> None:
    store = _FlakyStore(fail_get={"db-host"})

    result = reconcile(store, "db-host", "localhost")

    assert result.outcome is Outcome.FAILED
    assert "timeout" in (result.error or "")
    assert store.put_calls == []


def test_put_failure_marks_entry_failed() -> None:
    store = _FlakyStore({"flag": "A"}, fail_put={"flag"})

    result = reconcile(store, "flag", "B", allow_override=True)

    assert result.outcome is Outcome.FAILED
    assert result.existing == "A"


def test_encoding_failure_is_reported_not_skipped() -> None:
    store = InMemoryStore()

    result = reconcile(store, "bad", {1, 2, 3})

    assert result.outcome is Outcome.FAILED
    assert store.put_calls == []


def test_reconcile_all_scenario_first_and_second_run() -> None:
    store = InMemoryStore()
    entries = entries_from_mapping({"db-host": "localhost", "retries": 3})

    first = reconcile_all(store, entries)

    assert [r.outcome for r in first] == [Outcome.CREATED, Outcome.CREATED]
    assert store.snapshot() == {"db-host": "localhost", "retries": "3"}

    writes_before = len(store.put_calls)
    second = reconcile_all(store, entries)

    assert [r.outcome for r in second] == [Outcome.UNCHANGED, Outcome.UNCHANGED]
    assert len(store.put_calls) == writes_before


def test_reconcile_all_isolates_failures() -> None:
    store = _FlakyStore({"b": "old"}, fail_get={"a"}, fail_put={"b"}, boom_get={"c"})
    entries = [
        ConfigEntry("a", "1"),
        ConfigEntry("b", "new"),
        ConfigEntry("c", "x"),
        ConfigEntry("d", "4"),
    ]

    results = reconcile_all(store, entries, allow_override=True, max_workers=4)

    assert [r.name for r in results] == ["a", "b", "c", "d"]
    assert [r.outcome for r in results] == [
        Outcome.FAILED,
        Outcome.FAILED,
        Outcome.FAILED,
        Outcome.CREATED,
    ]
    assert store.get("d") == "4"


def test_reconcile_all_runs_entries_concurrently() -> None:
    barrier = threading.Barrier(3, timeout=5)

    class _BarrierStore(InMemoryStore):
        def get(self, name: str) -> str:
            # 세 항목이 동시에 get 에 도달해야만 통과한다.
            barrier.wait()
            return super().get(name)

    store = _BarrierStore()
    results = reconcile_all(store, entries_from_mapping({"x": 1, "y": 2, "z": 3}), max_workers=3)

    assert all(r.outcome is Outcome.CREATED for r in results)


def test_reconcile_all_empty() -> None:
    assert reconcile_all(InMemoryStore(), []) == []
