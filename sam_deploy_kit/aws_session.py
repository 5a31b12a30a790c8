"""
aws_session
-----------

리전/프로파일을 담는 AwsContext. 각 AWS 클라이언트는 이 컨텍스트로부터 만들어지며,
프로세스 전역 설정(boto3.setup_default_session 등)은 건드리지 않는다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import boto3

from .logging_utils import get_logger


logger = get_logger(__name__)


@dataclass
class AwsContext:
    region: str
    profile: Optional[str] = None
    endpoint_url: Optional[str] = None
    _session: Any = field(default=None, init=False, repr=False, compare=False)

    def session(self) -> boto3.session.Session:
        if self._session is None:
            if self.profile:
                logger.info("AWS 프로파일 사용: %s", self.profile)
            self._session = boto3.Session(profile_name=self.profile, region_name=self.region)
        return self._session

    def client(self, service: str) -> Any:
        kwargs = {"region_name": self.region}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return self.session().client(service, **kwargs)
