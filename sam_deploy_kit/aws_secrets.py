"""
aws_secrets
-----------

Secrets Manager 를 reconciler 의 저장소로 감싸는 모듈.

SecretString 은 JSON 문서로 저장한다. get 시 원격 JSON 을 같은 규칙
(정렬된 키, compact)으로 다시 직렬화하여, 키 순서만 다른 문서가 drift 로
보고되지 않도록 한다.
"""

from __future__ import annotations

import json
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .aws_session import AwsContext
from .logging_utils import get_logger
from .reconciler import EncodingFailure, NotFound, StoreUnavailable, canonical_json


logger = get_logger(__name__)


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def normalize_secret_string(raw: str) -> str:
    try:
        parsed = json.loads(raw)
    except ValueError:
        # JSON 이 아닌 평문 시크릿은 그대로 비교
        return raw
    try:
        return canonical_json(parsed)
    except EncodingFailure:
        return raw


def encode_secret_value(raw: Any) -> str:
    """
    시크릿 값은 문자열이라도 JSON 문서로 저장한다.
    """
    return canonical_json(raw)


class SecretsManagerStore:
    def __init__(self, ctx: AwsContext, client: Any = None) -> None:
        self._client = client if client is not None else ctx.client("secretsmanager")

    def get(self, name: str) -> str:
        try:
            resp = self._client.get_secret_value(SecretId=name)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                raise NotFound(name) from e
            raise StoreUnavailable(f"get_secret_value 실패: {name} ({_error_code(e) or e})") from e
        except BotoCoreError as e:
            raise StoreUnavailable(f"get_secret_value 실패: {name} ({e})") from e

        secret_string = resp.get("SecretString")
        if secret_string is None:
            raise StoreUnavailable(f"SecretString 이 없는 시크릿입니다 (binary 시크릿은 지원하지 않음): {name}")
        return normalize_secret_string(secret_string)

    def put(self, name: str, value: str) -> None:
        try:
            self._client.put_secret_value(SecretId=name, SecretString=value)
            logger.info("SecretString 값을 업데이트했습니다: %s", name)
            return
        except ClientError as e:
            if _error_code(e) != "ResourceNotFoundException":
                raise StoreUnavailable(f"put_secret_value 실패: {name} ({_error_code(e) or e})") from e
        except BotoCoreError as e:
            raise StoreUnavailable(f"put_secret_value 실패: {name} ({e})") from e

        try:
            self._client.create_secret(Name=name, SecretString=value)
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"create_secret 실패: {name} ({e})") from e
        logger.info("SecretString 을 생성했습니다: %s", name)
