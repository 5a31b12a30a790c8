"""
sam_commands
------------

sam / aws CLI 명령 구성 및 실행을 담당하는 모듈.

명령은 문자열이 아닌 argv 리스트로 만들어 shell 을 거치지 않는다.
dry-run 이면 실행할 명령만 로그로 남기고 None 을 반환한다.
"""

from __future__ import annotations

import os
from typing import Any, List, Mapping, Optional, Sequence

from .logging_utils import get_logger
from .subprocess_utils import ProgressSettings, RunResult, run_command


logger = get_logger(__name__)

PACKAGED_TEMPLATE = "packaged.yml"


def _with_profile(cmd: List[str], profile: Optional[str]) -> List[str]:
    if profile:
        cmd += ["--profile", profile]
    return cmd


def build_command(region: str, profile: Optional[str] = None) -> List[str]:
    return _with_profile(["sam", "build", "--region", region], profile)


def package_command(
    bucket: str,
    deploy_dir: str,
    template_file: str,
    region: str,
    profile: Optional[str] = None,
) -> List[str]:
    cmd = [
        "sam",
        "package",
        "--template-file",
        os.path.join(deploy_dir, template_file),
        "--s3-bucket",
        bucket,
        "--output-template-file",
        os.path.join(deploy_dir, PACKAGED_TEMPLATE),
        "--region",
        region,
    ]
    return _with_profile(cmd, profile)


def format_parameter_overrides(overrides: Mapping[str, Any]) -> List[str]:
    """
    {Name: Value} 를 sam 의 Name="Value" 인자 목록으로 변환한다.

    sam 은 따옴표 없는 값을 첫 공백에서 잘라내므로 항상 큰따옴표로 감싸고,
    값 안의 \\ 와 " 는 escape 한다.
    """
    return [f'{name}="{_quote(_override_value(value))}"' for name, value in overrides.items()]


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _override_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def deploy_command(
    stack_name: str,
    deploy_dir: str,
    bucket: str,
    region: str,
    parameter_overrides: Optional[Mapping[str, Any]] = None,
    capabilities: Optional[Sequence[str]] = None,
    profile: Optional[str] = None,
) -> List[str]:
    cmd = [
        "sam",
        "deploy",
        "--template-file",
        os.path.join(deploy_dir, PACKAGED_TEMPLATE),
        "--s3-bucket",
        bucket,
        "--stack-name",
        stack_name,
        "--region",
        region,
    ]
    if capabilities:
        cmd += ["--capabilities", *capabilities]
    if parameter_overrides:
        cmd += ["--parameter-overrides", *format_parameter_overrides(parameter_overrides)]
    # 변경 사항이 없을 때 sam deploy 가 실패로 끝나지 않도록 한다.
    cmd += ["--no-fail-on-empty-changeset"]
    return _with_profile(cmd, profile)


def _execute(
    cmd: List[str],
    *,
    dry_run: bool,
    message: str,
    progress: Optional[ProgressSettings],
    stream_output: bool = False,
) -> Optional[RunResult]:
    if dry_run:
        logger.info("[dry-run] 실행하지 않음: %s", " ".join(cmd))
        return None
    return run_command(cmd, stream_output=stream_output, progress_message=message, progress=progress)


def sam_build(
    region: str,
    profile: Optional[str] = None,
    *,
    dry_run: bool = False,
    progress: Optional[ProgressSettings] = None,
) -> Optional[RunResult]:
    return _execute(build_command(region, profile), dry_run=dry_run, message="Building the stack", progress=progress)


def sam_package(
    bucket: str,
    deploy_dir: str,
    template_file: str,
    region: str,
    profile: Optional[str] = None,
    *,
    dry_run: bool = False,
    progress: Optional[ProgressSettings] = None,
) -> Optional[RunResult]:
    cmd = package_command(bucket, deploy_dir, template_file, region, profile)
    return _execute(cmd, dry_run=dry_run, message="Packaging the stack", progress=progress)


def sam_deploy(
    stack_name: str,
    deploy_dir: str,
    bucket: str,
    region: str,
    parameter_overrides: Optional[Mapping[str, Any]] = None,
    capabilities: Optional[Sequence[str]] = None,
    profile: Optional[str] = None,
    *,
    dry_run: bool = False,
    progress: Optional[ProgressSettings] = None,
) -> Optional[RunResult]:
    cmd = deploy_command(
        stack_name,
        deploy_dir,
        bucket,
        region,
        parameter_overrides=parameter_overrides,
        capabilities=capabilities,
        profile=profile,
    )
    return _execute(
        cmd,
        dry_run=dry_run,
        message=f"Deploying {stack_name} in {region}",
        progress=progress,
        stream_output=True,
    )


def get_configured_region(profile: Optional[str] = None) -> str:
    """
    `aws configure get region` 결과를 반환한다. 설정이 없으면 빈 문자열.
    """
    cmd = _with_profile(["aws", "configure", "get", "region"], profile)
    try:
        result = run_command(cmd, timeout=30.0, progress=ProgressSettings(show=False))
    except RuntimeError as e:
        # 값이 없으면 aws configure get 은 exit 1 로 끝난다.
        logger.debug("aws configure get region 실패: %s", e)
        return ""
    return result.stdout.strip()
