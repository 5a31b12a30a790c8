"""
reconciler
----------

설정 항목(파라미터/시크릿)의 원하는 값과 원격 key-value 저장소의 현재 값을 비교하여
drift 를 보고하거나, 허용된 경우 원격 값을 덮어쓰는 모듈.

저장소는 ``get(name) -> str`` / ``put(name, value) -> None`` 만 제공하면 된다.
- get: 키가 없으면 NotFound, 그 외 실패는 StoreUnavailable 을 raise
- put: 실패 시 StoreUnavailable 을 raise
"""

from __future__ import annotations

import enum
import json
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from .logging_utils import get_logger


logger = get_logger(__name__)


class ReconcileError(Exception):
    """reconcile 단계에서 발생하는 오류의 공통 베이스."""


class NotFound(ReconcileError):
    """저장소에 해당 키가 없음."""


class StoreUnavailable(ReconcileError):
    """키 없음 이외의 이유로 저장소 호출이 실패함."""


class EncodingFailure(ReconcileError):
    """원하는 값을 결정적인 문자열로 직렬화할 수 없음."""


class KeyValueStore(Protocol):
    def get(self, name: str) -> str: ...

    def put(self, name: str, value: str) -> None: ...


class Outcome(str, enum.Enum):
    UNCHANGED = "unchanged"
    DRIFT_DETECTED = "drift"
    CREATED = "created"
    OVERWRITTEN = "overwritten"
    FAILED = "failed"


@dataclass(frozen=True)
class ConfigEntry:
    name: str
    desired_value: Any


@dataclass(frozen=True)
class EntryResult:
    name: str
    outcome: Outcome
    expected: Optional[str] = None
    existing: Optional[str] = None
    dry_run: bool = False
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED

    @property
    def drifted(self) -> bool:
        return self.outcome in (Outcome.DRIFT_DETECTED, Outcome.OVERWRITTEN)


def canonical_json(value: Any) -> str:
    """
    정렬된 키의 compact JSON.

    같은 값이면 생성 순서와 무관하게 항상 같은 문자열이 나와야 하므로
    sort_keys 를 사용하고, NaN/Infinity 처럼 표준 JSON 이 아닌 값은 거부한다.
    1.0 같은 정수값 float 은 1 로 쓴다. (JSON.stringify 로 기록된 값과 같은 문자열)
    """
    try:
        return json.dumps(_integral_floats(value), sort_keys=True, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise EncodingFailure(f"값을 직렬화할 수 없습니다: {e}") from e


def _integral_floats(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {k: _integral_floats(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_integral_floats(v) for v in value]
    return value


def _shown(value: Optional[str], sensitive: bool) -> Optional[str]:
    return "******" if sensitive and value is not None else value


def encode_value(raw: Any) -> str:
    """문자열은 그대로, 그 외의 값은 canonical_json 으로 직렬화한다."""
    if isinstance(raw, str):
        return raw
    return canonical_json(raw)


def reconcile(
    store: KeyValueStore,
    name: str,
    desired_value: Any,
    *,
    dry_run: bool = False,
    allow_override: bool = False,
    encoder: Callable[[Any], str] = encode_value,
    sensitive: bool = False,
) -> EntryResult:
    """
    단일 항목을 원하는 값으로 수렴시킨다.

    오류는 raise 하지 않고 Outcome.FAILED 결과로 돌려준다.
    dry_run 이면 put 을 절대 호출하지 않고, 수행했을 동작만 결과로 남긴다.
    """
    if not name:
        return EntryResult(name=name, outcome=Outcome.FAILED, dry_run=dry_run, error="빈 이름의 항목입니다.")

    try:
        encoded = encoder(desired_value)
    except EncodingFailure as e:
        logger.error("직렬화 실패: %s (%s)", name, e)
        return EntryResult(name=name, outcome=Outcome.FAILED, dry_run=dry_run, error=str(e))

    try:
        existing: Optional[str] = store.get(name)
    except NotFound:
        existing = None
    except StoreUnavailable as e:
        logger.error("저장소 조회 실패: %s (%s)", name, e)
        return EntryResult(name=name, outcome=Outcome.FAILED, expected=encoded, dry_run=dry_run, error=str(e))

    if existing is None:
        logger.info("항목이 없어 새로 생성합니다: %s = %s%s", name, _shown(encoded, sensitive), " (dry-run)" if dry_run else "")
        return _write(store, name, encoded, Outcome.CREATED, None, dry_run)

    if existing == encoded:
        logger.debug("변경 없음: %s", name)
        return EntryResult(name=name, outcome=Outcome.UNCHANGED, expected=encoded, existing=existing, dry_run=dry_run)

    logger.warning(
        "drift 감지: %s (expected=%s, existing=%s)",
        name,
        _shown(encoded, sensitive),
        _shown(existing, sensitive),
    )

    if not allow_override or dry_run:
        if allow_override:
            logger.info("dry-run 이므로 덮어쓰지 않습니다: %s", name)
        return EntryResult(
            name=name,
            outcome=Outcome.DRIFT_DETECTED,
            expected=encoded,
            existing=existing,
            dry_run=dry_run,
        )

    logger.info("원격 값을 덮어씁니다: %s = %s", name, _shown(encoded, sensitive))
    return _write(store, name, encoded, Outcome.OVERWRITTEN, existing, dry_run)


def _write(
    store: KeyValueStore,
    name: str,
    encoded: str,
    outcome: Outcome,
    existing: Optional[str],
    dry_run: bool,
) -> EntryResult:
    if not dry_run:
        try:
            store.put(name, encoded)
        except StoreUnavailable as e:
            logger.error("저장소 쓰기 실패: %s (%s)", name, e)
            return EntryResult(
                name=name,
                outcome=Outcome.FAILED,
                expected=encoded,
                existing=existing,
                dry_run=dry_run,
                error=str(e),
            )
    return EntryResult(name=name, outcome=outcome, expected=encoded, existing=existing, dry_run=dry_run)


def entries_from_mapping(values: Optional[Mapping[str, Any]]) -> List[ConfigEntry]:
    return [ConfigEntry(name=k, desired_value=v) for k, v in (values or {}).items()]


def reconcile_all(
    store: KeyValueStore,
    entries: List[ConfigEntry],
    *,
    dry_run: bool = False,
    allow_override: bool = False,
    encoder: Callable[[Any], str] = encode_value,
    sensitive: bool = False,
    max_workers: int = 8,
) -> List[EntryResult]:
    """
    항목들을 스레드 풀에서 동시에 reconcile 하고, 모두 끝날 때까지 기다린다.

    한 항목의 실패는 다른 항목에 영향을 주지 않는다. 결과는 입력 순서대로 반환한다.
    """
    if not entries:
        return []

    results: Dict[int, EntryResult] = {}
    workers = max(1, min(int(max_workers), len(entries)))

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reconcile") as executor:
        future_map = {
            executor.submit(
                reconcile,
                store,
                entry.name,
                entry.desired_value,
                dry_run=dry_run,
                allow_override=allow_override,
                encoder=encoder,
                sensitive=sensitive,
            ): idx
            for idx, entry in enumerate(entries)
        }
        for future in as_completed(future_map):
            idx = future_map[future]
            try:
                results[idx] = future.result()
            except Exception as e:  # noqa: BLE001
                # 저장소 구현이 약속하지 않은 예외를 던진 경우에도 해당 항목만 실패로 처리
                name = entries[idx].name
                logger.exception("reconcile 중 예외 발생: %s", name)
                results[idx] = EntryResult(name=name, outcome=Outcome.FAILED, dry_run=dry_run, error=str(e))

    return [results[i] for i in range(len(entries))]


class InMemoryStore:
    """
    dict 기반 저장소. 테스트와 로컬 dry-run 점검용.
    """

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()
        self.put_calls: List[tuple[str, str]] = []

    def get(self, name: str) -> str:
        with self._lock:
            if name not in self._data:
                raise NotFound(name)
            return self._data[name]

    def put(self, name: str, value: str) -> None:
        with self._lock:
            self._data[name] = value
            self.put_calls.append((name, value))

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._data)
