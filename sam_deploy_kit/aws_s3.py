"""
aws_s3
------

SAM 패키지 업로드용 소스 버킷의 존재 여부와 리전을 검증하는 모듈.
"""

from __future__ import annotations

from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .errors import DeployError
from .logging_utils import get_logger


logger = get_logger(__name__)


def bucket_region(location_constraint: Optional[str]) -> str:
    """
    GetBucketLocation 의 LocationConstraint 를 리전 이름으로 변환한다.
    us-east-1 버킷은 LocationConstraint 가 비어 있다. (과거 'EU' 값은 eu-west-1)
    """
    if not location_constraint:
        return "us-east-1"
    if location_constraint == "EU":
        return "eu-west-1"
    return location_constraint


def ensure_source_bucket(s3: Any, bucket: str, region: str) -> None:
    """
    버킷이 존재하고 region 에 위치하는지 확인한다. 아니면 DeployError.
    """
    logger.info("소스 버킷 확인: %s (region=%s)", bucket, region)
    try:
        s3.head_bucket(Bucket=bucket)
    except (ClientError, BotoCoreError) as e:
        raise DeployError(f"버킷 {bucket} 이(가) 존재하지 않거나 접근할 수 없어 배포할 수 없습니다. ({e})") from e

    try:
        resp = s3.get_bucket_location(Bucket=bucket)
    except (ClientError, BotoCoreError) as e:
        raise DeployError(f"버킷 {bucket} 의 리전을 확인할 수 없습니다. ({e})") from e

    located = bucket_region(resp.get("LocationConstraint"))
    if located != region:
        raise DeployError(
            f"{region} 에 배포할 수 없습니다: 버킷 {bucket} 은(는) {located} 에 있습니다."
        )
    logger.info("소스 버킷 검증 완료: %s", bucket)


def check_source_bucket(s3: Any, bucket: str, region: str) -> str:
    """
    ensure_source_bucket 과 같은 검증을 하되, 결과를 상태 문자열로 돌려준다.
    """
    try:
        ensure_source_bucket(s3, bucket, region)
    except DeployError as e:
        return f"S3: 문제 있음 ({e})"
    return f"S3: 버킷 사용 가능 ({bucket}, {region})"
