"""
dynamodb_stream
---------------

로컬/원격 DynamoDB 테이블의 최신 스트림을 TRIM_HORIZON 부터 읽어 출력하는 모듈.
"""

from __future__ import annotations

import json
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any, Callable, Iterator, List, Optional

from .logging_utils import get_logger


logger = get_logger(__name__)


def latest_stream_arn(dynamodb: Any, table_name: str) -> str | None:
    resp = dynamodb.describe_table(TableName=table_name)
    return resp["Table"].get("LatestStreamArn")


def shard_ids(streams: Any, stream_arn: str) -> List[str]:
    ids: List[str] = []
    kwargs = {"StreamArn": stream_arn}
    while True:
        resp = streams.describe_stream(**kwargs)
        desc = resp["StreamDescription"]
        ids.extend(shard["ShardId"] for shard in desc.get("Shards", []))
        last = desc.get("LastEvaluatedShardId")
        if not last:
            return ids
        kwargs["ExclusiveStartShardId"] = last


def iter_shard_records(
    streams: Any,
    stream_arn: str,
    shard_id: str,
    *,
    poll_interval: float = 1.0,
    max_empty_polls: int | None = None,
    stop: Optional[threading.Event] = None,
) -> Iterator[List[dict]]:
    """
    샤드의 레코드 배치를 순서대로 돌려준다.
    NextShardIterator 가 없어지면(닫힌 샤드) 또는 stop 이 set 되면 종료한다.
    """
    stop = stop if stop is not None else threading.Event()
    iterator = streams.get_shard_iterator(
        StreamArn=stream_arn,
        ShardId=shard_id,
        ShardIteratorType="TRIM_HORIZON",
    ).get("ShardIterator")

    empty_polls = 0
    while iterator and not stop.is_set():
        resp = streams.get_records(ShardIterator=iterator)
        records = resp.get("Records", [])
        if records:
            empty_polls = 0
            yield records
        else:
            empty_polls += 1
            if max_empty_polls is not None and empty_polls >= max_empty_polls:
                return
            # sleep 대신 wait 를 써서 중단 요청에 바로 반응한다.
            if stop.wait(poll_interval):
                break
        iterator = resp.get("NextShardIterator")

    logger.info("샤드 스트리밍 종료: %s", shard_id)


def read_stream(
    dynamodb: Any,
    streams: Any,
    table_name: str,
    emit: Callable[[str], None],
    *,
    poll_interval: float = 1.0,
    max_empty_polls: int | None = None,
    stop: Optional[threading.Event] = None,
) -> int:
    """
    테이블 스트림의 모든 샤드를 읽어 비어 있지 않은 배치를 JSON 으로 emit 한다.
    emit 한 배치 수를 반환한다.

    한 샤드에서 예외가 나거나 KeyboardInterrupt 가 들어오면 나머지 샤드도 멈추고
    예외를 그대로 올린다.
    """
    stream_arn = latest_stream_arn(dynamodb, table_name)
    if not stream_arn:
        raise ValueError(f"테이블 {table_name} 에 LatestStreamArn 이 없습니다. (스트림 비활성화)")

    ids = shard_ids(streams, stream_arn)
    if not ids:
        return 0

    stop = stop if stop is not None else threading.Event()
    emit_lock = threading.Lock()
    emitted = 0

    def _read(shard_id: str) -> None:
        nonlocal emitted
        logger.debug("샤드 읽기 시작: %s", shard_id)
        for records in iter_shard_records(
            streams,
            stream_arn,
            shard_id,
            poll_interval=poll_interval,
            max_empty_polls=max_empty_polls,
            stop=stop,
        ):
            with emit_lock:
                emit(json.dumps(records, indent=2, default=str))
                emitted += 1

    # 열린 샤드는 계속 폴링하므로 샤드마다 별도 스레드에서 읽는다.
    executor = ThreadPoolExecutor(max_workers=len(ids), thread_name_prefix="shard")
    try:
        futures = [executor.submit(_read, shard_id) for shard_id in ids]
        pending = set(futures)
        # 짧은 timeout 으로 기다려야 메인 스레드가 Ctrl-C 를 받을 수 있다.
        while pending:
            done, pending = wait(pending, timeout=0.5, return_when=FIRST_EXCEPTION)
            for future in done:
                future.result()
    finally:
        stop.set()
        executor.shutdown(wait=False, cancel_futures=True)
    return emitted
