"""
aws_lambda
----------

스택 전체를 다시 배포하지 않고 함수 하나의 코드만 교체하는 모듈.
"""

from __future__ import annotations

import os
import shutil
from typing import Any, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .errors import DeployError
from .logging_utils import get_logger
from .subprocess_utils import ProgressSettings, run_command


logger = get_logger(__name__)


def resolve_function_name(cloudformation: Any, stack_name: str, logical_id: str) -> str:
    """
    SAM 템플릿의 논리 ID 를 실제 Lambda 함수 이름(PhysicalResourceId)으로 변환한다.
    """
    try:
        resp = cloudformation.describe_stack_resource(
            StackName=stack_name,
            LogicalResourceId=logical_id,
        )
    except (ClientError, BotoCoreError) as e:
        raise DeployError(
            f"스택 {stack_name} 에서 {logical_id} 리소스를 찾을 수 없습니다. ({e})"
        ) from e
    return resp["StackResourceDetail"]["PhysicalResourceId"]


def build_function_command(logical_id: str) -> List[str]:
    return ["yarn", "build", "-f", logical_id]


def update_function_code_command(
    function_name: str,
    zip_path: str,
    region: str,
    profile: Optional[str] = None,
) -> List[str]:
    cmd = [
        "aws",
        "lambda",
        "update-function-code",
        "--function-name",
        function_name,
        "--publish",
        "--zip-file",
        f"fileb://{os.path.abspath(zip_path)}",
        "--region",
        region,
    ]
    if profile:
        cmd += ["--profile", profile]
    return cmd


def zip_function(deploy_dir: str, logical_id: str) -> str:
    """
    deploy_dir/<logical_id> 의 빌드 결과를 deploy_dir/<logical_id>.zip 으로 묶는다.
    """
    built_path = os.path.join(deploy_dir, logical_id)
    if not os.path.isdir(built_path):
        raise DeployError(f"빌드 결과 디렉토리가 없습니다: {built_path}")
    archive = shutil.make_archive(built_path, "zip", root_dir=built_path)
    logger.info("함수 코드 압축 완료: %s", archive)
    return archive


def deploy_function_code(
    *,
    logical_id: str,
    function_name: str,
    deploy_dir: str,
    region: str,
    profile: Optional[str] = None,
    dry_run: bool = False,
    progress: Optional[ProgressSettings] = None,
) -> None:
    run_command(build_function_command(logical_id), progress_message=f"Building {logical_id}", progress=progress)

    zip_path = zip_function(deploy_dir, logical_id)
    try:
        cmd = update_function_code_command(function_name, zip_path, region, profile)
        if dry_run:
            logger.info("[dry-run] 실행하지 않음: %s", " ".join(cmd))
            return
        run_command(
            cmd,
            progress_message=f"Deploying {logical_id} to {function_name}",
            progress=progress,
        )
        logger.info("함수 배포 완료: %s -> %s", logical_id, function_name)
    finally:
        try:
            os.remove(zip_path)
        except FileNotFoundError:
            pass
