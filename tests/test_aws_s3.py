from __future__ import annotations

from typing import Any, Dict, Optional

import pytest
from botocore.exceptions import ClientError

from sam_deploy_kit.aws_s3 import bucket_region, check_source_bucket, ensure_source_bucket
from sam_deploy_kit.errors import DeployError


class FakeS3:
    def __init__(self, buckets: Dict[str, Optional[str]]) -> None:
        self.buckets = buckets

    def head_bucket(self, Bucket: str) -> Dict[str, Any]:  # noqa: N803
        if Bucket not in self.buckets:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadBucket")
        return {}

    def get_bucket_location(self, Bucket: str) -> Dict[str, Any]:  # noqa: N803
        return {"LocationConstraint": self.buckets[Bucket]}


@pytest.mark.parametrize(
    ("constraint", "expected"),
    [(None, "us-east-1"), ("", "us-east-1"), ("EU", "eu-west-1"), ("ap-northeast-2", "ap-northeast-2")],
)
def test_bucket_region(constraint: Optional[str], expected: str) -> None:
    assert bucket_region(constraint) == expected


def test_ensure_source_bucket_ok() -> None:
    ensure_source_bucket(FakeS3({"artifacts": "ap-northeast-2"}), "artifacts", "ap-northeast-2")
    ensure_source_bucket(FakeS3({"artifacts": None}), "artifacts", "us-east-1")


def test_ensure_source_bucket_missing() -> None:
    with pytest.raises(DeployError, match="존재하지 않거나"):
        ensure_source_bucket(FakeS3({}), "artifacts", "us-east-1")


def test_ensure_source_bucket_wrong_region() -> None:
    with pytest.raises(DeployError, match="eu-west-1"):
        ensure_source_bucket(FakeS3({"artifacts": "eu-west-1"}), "artifacts", "us-east-1")


def test_check_source_bucket_reports_status() -> None:
    assert "사용 가능" in check_source_bucket(FakeS3({"a": None}), "a", "us-east-1")
    assert "문제 있음" in check_source_bucket(FakeS3({}), "a", "us-east-1")
