from __future__ import annotations

import json
import threading
import time
from typing import Dict, List

import pytest

from sam_deploy_kit.dynamodb_stream import read_stream, shard_ids


class FakeDynamoDb:
    def __init__(self, stream_arn: str | None) -> None:
        self.stream_arn = stream_arn

    def describe_table(self, TableName: str) -> dict:  # noqa: N803
        table = {"TableName": TableName}
        if self.stream_arn:
            table["LatestStreamArn"] = self.stream_arn
        return {"Table": table}


class FakeStreams:
    """샤드별로 미리 정해진 get_records 응답을 순서대로 돌려준다."""

    def __init__(self, pages: Dict[str, List[List[dict]]]) -> None:
        self.pages = pages

    def describe_stream(self, StreamArn: str, ExclusiveStartShardId: str | None = None) -> dict:  # noqa: N803
        ids = list(self.pages)
        if ExclusiveStartShardId is None:
            return {"StreamDescription": {"Shards": [{"ShardId": ids[0]}], "LastEvaluatedShardId": ids[0]}}
        rest = ids[ids.index(ExclusiveStartShardId) + 1:]
        return {"StreamDescription": {"Shards": [{"ShardId": s} for s in rest]}}

    def get_shard_iterator(self, StreamArn: str, ShardId: str, ShardIteratorType: str) -> dict:  # noqa: N803
        assert ShardIteratorType == "TRIM_HORIZON"
        return {"ShardIterator": f"{ShardId}:0"}

    def get_records(self, ShardIterator: str) -> dict:  # noqa: N803
        shard, idx = ShardIterator.rsplit(":", 1)
        pos = int(idx)
        batches = self.pages[shard]
        resp = {"Records": batches[pos]}
        if pos + 1 < len(batches):
            resp["NextShardIterator"] = f"{shard}:{pos + 1}"
        return resp


def test_shard_ids_follows_pagination() -> None:
    streams = FakeStreams({"s1": [[]], "s2": [[]], "s3": [[]]})

    assert shard_ids(streams, "arn") == ["s1", "s2", "s3"]


def test_read_stream_emits_non_empty_batches() -> None:
    streams = FakeStreams(
        {
            "s1": [[{"eventID": "1"}], [], [{"eventID": "2"}]],
            "s2": [[], [{"eventID": "3"}]],
        }
    )
    emitted: List[str] = []

    count = read_stream(FakeDynamoDb("arn:stream"), streams, "orders", emitted.append, poll_interval=0)

    assert count == 3
    ids = sorted(r["eventID"] for batch in emitted for r in json.loads(batch))
    assert ids == ["1", "2", "3"]


def test_read_stream_stops_after_empty_polls() -> None:
    streams = FakeStreams({"s1": [[], [], [], [{"eventID": "late"}]]})
    emitted: List[str] = []

    count = read_stream(
        FakeDynamoDb("arn:stream"), streams, "orders", emitted.append, poll_interval=0, max_empty_polls=2
    )

    assert count == 0
    assert emitted == []


def test_read_stream_requires_stream() -> None:
    with pytest.raises(ValueError, match="LatestStreamArn"):
        read_stream(FakeDynamoDb(None), FakeStreams({}), "orders", print)


class OpenShardStreams(FakeStreams):
    """첫 호출에만 레코드를 주고 이후 빈 응답으로 영원히 열려 있는 샤드."""

    def get_records(self, ShardIterator: str) -> dict:  # noqa: N803
        shard, idx = ShardIterator.rsplit(":", 1)
        pos = int(idx)
        batches = self.pages[shard]
        records = batches[pos] if pos < len(batches) else []
        return {"Records": records, "NextShardIterator": f"{shard}:{pos + 1}"}


def test_read_stream_stops_open_shards_on_interrupt() -> None:
    streams = OpenShardStreams({"s1": [[{"eventID": "1"}]], "s2": []})
    stop = threading.Event()

    def emit(batch: str) -> None:
        raise KeyboardInterrupt

    started = time.monotonic()
    with pytest.raises(KeyboardInterrupt):
        read_stream(FakeDynamoDb("arn:stream"), streams, "orders", emit, poll_interval=0.01, stop=stop)

    assert stop.is_set()
    assert time.monotonic() - started < 5


def test_read_stream_surfaces_shard_error_while_other_shard_open() -> None:
    class _Broken(OpenShardStreams):
        def get_records(self, ShardIterator: str) -> dict:  # noqa: N803
            if ShardIterator.startswith("s2:"):
                raise RuntimeError("ExpiredIteratorException")
            return super().get_records(ShardIterator)

    stop = threading.Event()

    with pytest.raises(RuntimeError, match="ExpiredIterator"):
        read_stream(
            FakeDynamoDb("arn:stream"), _Broken({"s1": [], "s2": []}), "orders", print, poll_interval=0.01, stop=stop
        )
    assert stop.is_set()


def test_read_stream_returns_when_stop_is_set() -> None:
    streams = OpenShardStreams({"s1": [[{"eventID": "1"}]]})
    stop = threading.Event()
    emitted: List[str] = []

    def emit(batch: str) -> None:
        emitted.append(batch)
        stop.set()

    count = read_stream(FakeDynamoDb("arn:stream"), streams, "orders", emit, poll_interval=0.01, stop=stop)

    assert count == 1
    assert len(emitted) == 1
