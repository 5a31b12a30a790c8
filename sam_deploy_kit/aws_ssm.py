"""
aws_ssm
-------

Systems Manager Parameter Store 를 reconciler 의 저장소로 감싸는 모듈.
"""

from __future__ import annotations

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .aws_session import AwsContext
from .logging_utils import get_logger
from .reconciler import NotFound, StoreUnavailable


logger = get_logger(__name__)


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


class SsmParameterStore:
    """
    String 타입 파라미터만 다룬다. put 은 항상 Overwrite=True 로 호출한다.
    """

    def __init__(self, ctx: AwsContext, client: Any = None) -> None:
        self._client = client if client is not None else ctx.client("ssm")

    def get(self, name: str) -> str:
        try:
            resp = self._client.get_parameter(Name=name)
        except ClientError as e:
            if _error_code(e) == "ParameterNotFound":
                raise NotFound(name) from e
            raise StoreUnavailable(f"get_parameter 실패: {name} ({_error_code(e) or e})") from e
        except BotoCoreError as e:
            raise StoreUnavailable(f"get_parameter 실패: {name} ({e})") from e
        return resp["Parameter"]["Value"]

    def put(self, name: str, value: str) -> None:
        try:
            self._client.put_parameter(
                Name=name,
                Value=value,
                Type="String",
                Overwrite=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"put_parameter 실패: {name} ({e})") from e
