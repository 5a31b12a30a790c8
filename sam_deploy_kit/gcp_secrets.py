"""
gcp_secrets
-----------

Google Secret Manager 를 reconciler 의 시크릿 저장소로 감싸는 모듈.
stack-config 의 secretStore.type 이 gcp-secret-manager 일 때 사용된다.
"""

from __future__ import annotations

from typing import Any

from google.api_core.exceptions import GoogleAPICallError, NotFound as GcpNotFound
from google.cloud import secretmanager

from .aws_secrets import normalize_secret_string
from .logging_utils import get_logger
from .reconciler import NotFound, StoreUnavailable


logger = get_logger(__name__)


class GcpSecretStore:
    """
    get 은 latest 버전을 읽고, put 은 새 버전을 추가한다.
    시크릿 자체가 없으면 automatic replication 으로 먼저 생성한다.
    """

    def __init__(self, project_id: str, client: Any = None, secret_prefix: str = "") -> None:
        if not project_id:
            raise ValueError("gcp-secret-manager 저장소에는 secretStore.projectId 가 필요합니다.")
        self._client = client if client is not None else secretmanager.SecretManagerServiceClient()
        self._parent = f"projects/{project_id}"
        self._prefix = secret_prefix

    def _secret_id(self, name: str) -> str:
        # Secret Manager 의 secret id 에는 '/' 를 쓸 수 없다.
        return f"{self._prefix}{name}".strip("/").replace("/", "_")

    def _secret_name(self, name: str) -> str:
        return f"{self._parent}/secrets/{self._secret_id(name)}"

    def get(self, name: str) -> str:
        version = f"{self._secret_name(name)}/versions/latest"
        try:
            resp = self._client.access_secret_version(name=version)
        except GcpNotFound as e:
            raise NotFound(name) from e
        except GoogleAPICallError as e:
            raise StoreUnavailable(f"access_secret_version 실패: {version} ({e})") from e
        return normalize_secret_string(resp.payload.data.decode("utf-8"))

    def put(self, name: str, value: str) -> None:
        secret_name = self._secret_name(name)
        try:
            try:
                self._client.get_secret(name=secret_name)
            except GcpNotFound:
                logger.info("Secret 이 없어 새로 생성합니다: %s", secret_name)
                self._client.create_secret(
                    parent=self._parent,
                    secret_id=self._secret_id(name),
                    secret={
                        "replication": {"automatic": {}},
                    },
                )

            self._client.add_secret_version(
                parent=secret_name,
                payload={"data": value.encode("utf-8")},
            )
        except GoogleAPICallError as e:
            raise StoreUnavailable(f"Secret 버전 추가 실패: {secret_name} ({e})") from e
        logger.info("Secret 에 새 버전을 추가했습니다: %s", secret_name)
