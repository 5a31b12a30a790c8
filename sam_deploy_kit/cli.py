import os
import sys
from typing import Callable, NoReturn, Optional

import click

from .config import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_DEPLOY_DIR,
    DEFAULT_TEMPLATE,
    RuntimeSettings,
    StackConfig,
    load_env_files,
)
from .errors import ConfigError
from .logging_utils import setup_logging, get_logger
from .subprocess_utils import ProgressSettings
from . import orchestrator


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (.env 와 stack-config 를 찾는 위치, 기본: 현재 디렉토리)",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-vv 이면 botocore 로그까지 출력)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """AWS SAM 스택 배포용 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _load_from_ctx(ctx: click.Context, config_file: str) -> tuple[StackConfig, RuntimeSettings]:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    settings = RuntimeSettings.from_env()
    path = config_file if os.path.isabs(config_file) else os.path.join(base_dir, config_file)
    cfg = StackConfig.from_file(path)
    logger.debug("Config loaded: %s", cfg)
    return cfg, settings


def _progress(settings: RuntimeSettings) -> ProgressSettings:
    return ProgressSettings.from_env(ProgressSettings(show=settings.show_progress))


def _fail(prefix: str, e: Exception) -> NoReturn:
    click.echo(f"[ERROR] {prefix}: {e}", err=True)
    sys.exit(1)


def _run_or_fail(prefix: str, fn: Callable[[], tuple[str, bool]]) -> None:
    try:
        summary, has_failures = fn()
    except Exception as e:  # noqa: BLE001
        logger.exception("%s 중 오류 발생", prefix)
        _fail(prefix, e)

    click.echo(summary)
    if has_failures:
        sys.exit(1)


def _common_options(fn):  # noqa: ANN001, ANN202
    fn = click.option(
        "--dry-run",
        "dry_run",
        is_flag=True,
        help="실제 변경 없이 수행할 작업만 출력합니다.",
    )(fn)
    fn = click.option(
        "-p",
        "--override-parameters",
        "override_parameters",
        is_flag=True,
        help="Parameter Store 의 값을 stack-config 에 정의된 값으로 덮어씁니다.",
    )(fn)
    fn = click.option(
        "-t",
        "--template",
        "template_file",
        default=DEFAULT_TEMPLATE,
        show_default=True,
        help="--deploy-dir 안의 패키징할 템플릿 파일 이름",
    )(fn)
    fn = click.option(
        "-d",
        "--deploy-dir",
        "deploy_dir",
        default=DEFAULT_DEPLOY_DIR,
        show_default=True,
        help="빌드 결과물과 템플릿이 있는 로컬 배포 디렉토리",
    )(fn)
    fn = click.option(
        "-c",
        "--config-file",
        "config_file",
        default=DEFAULT_CONFIG_FILE,
        show_default=True,
        help="stack-config.json 경로",
    )(fn)
    fn = click.option("-r", "--region", "region", default=None, help="배포 대상 AWS 리전")(fn)
    return fn


@main.command()
@click.option("-s", "--stage", "stage", default="dev", show_default=True, help="배포할 스테이지")
@click.option("--skip-build", "skip_build", is_flag=True, help="sam build 단계를 건너뜁니다.")
@_common_options
@click.pass_context
def deploy(
    ctx: click.Context,
    stage: str,
    skip_build: bool,
    region: Optional[str],
    config_file: str,
    deploy_dir: str,
    template_file: str,
    override_parameters: bool,
    dry_run: bool,
) -> None:
    """stack-config.json 설정으로 SAM 스택({name}-{stage})을 배포"""
    try:
        cfg, settings = _load_from_ctx(ctx, config_file)
        plan = orchestrator.plan_for_stage(
            cfg,
            stage,
            region=region,
            deploy_dir=deploy_dir,
            template_file=template_file,
            dry_run=dry_run,
            override_parameters=override_parameters,
            skip_build=skip_build,
        )
    except (ConfigError, ValueError, RuntimeError) as e:
        _fail("설정 로드 실패", e)

    _run_or_fail("배포", lambda: orchestrator.deploy_stack(plan, cfg, settings, _progress(settings)))


@main.command(name="deploy-config")
@click.option(
    "-n",
    "--stack-name",
    "stack_name",
    required=True,
    help="stack-config.json 의 stacks 안에서 배포할 스택 이름",
)
@_common_options
@click.pass_context
def deploy_config(
    ctx: click.Context,
    stack_name: str,
    region: Optional[str],
    config_file: str,
    deploy_dir: str,
    template_file: str,
    override_parameters: bool,
    dry_run: bool,
) -> None:
    """stack-config.json 의 stacks 정의 하나를 배포 (빌드 없이 package/deploy)"""
    try:
        cfg, settings = _load_from_ctx(ctx, config_file)
        plan = orchestrator.plan_for_stack(
            cfg,
            stack_name,
            region=region,
            deploy_dir=deploy_dir,
            template_file=template_file,
            dry_run=dry_run,
            override_parameters=override_parameters,
        )
    except (ConfigError, ValueError, RuntimeError) as e:
        _fail("설정 로드 실패", e)

    _run_or_fail("배포", lambda: orchestrator.deploy_stack(plan, cfg, settings, _progress(settings)))


@main.command(name="deploy-function")
@click.argument("function")
@click.option("-s", "--stage", "stage", default="dev", show_default=True, help="배포할 스테이지")
@click.option("-r", "--region", "region", default=None, help="배포 대상 AWS 리전")
@click.option(
    "-c",
    "--config-file",
    "config_file",
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="stack-config.json 경로",
)
@click.option(
    "-d",
    "--deploy-dir",
    "deploy_dir",
    default=DEFAULT_DEPLOY_DIR,
    show_default=True,
    help="함수 빌드 결과물이 있는 로컬 배포 디렉토리",
)
@click.option("--dry-run", "dry_run", is_flag=True, help="업로드 직전까지만 수행합니다.")
@click.pass_context
def deploy_function(
    ctx: click.Context,
    function: str,
    stage: str,
    region: Optional[str],
    config_file: str,
    deploy_dir: str,
    dry_run: bool,
) -> None:
    """SAM 템플릿의 논리 ID 로 지정한 함수 하나의 코드만 배포"""
    try:
        cfg, settings = _load_from_ctx(ctx, config_file)
    except (ConfigError, ValueError) as e:
        _fail("설정 로드 실패", e)

    try:
        function_name = orchestrator.deploy_function(
            cfg,
            stage,
            function,
            settings,
            region=region,
            deploy_dir=deploy_dir,
            dry_run=dry_run,
            progress=_progress(settings),
        )
    except Exception as e:  # noqa: BLE001
        logger.exception("함수 배포 중 오류 발생")
        _fail("함수 배포 실패", e)

    if dry_run:
        click.echo(f"[dry-run] {function} -> {function_name} 업로드를 건너뛰었습니다.")
    else:
        click.echo(f"{function} 을(를) {function_name} 에 배포했습니다.")


@main.command()
@click.option("-s", "--stage", "stage", default=None, help="점검할 스테이지 (deploy 와 같은 계획)")
@click.option("-n", "--stack-name", "stack_name", default=None, help="점검할 stacks 항목 (deploy-config 와 같은 계획)")
@click.option("-r", "--region", "region", default=None, help="대상 AWS 리전")
@click.option(
    "-c",
    "--config-file",
    "config_file",
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="stack-config.json 경로",
)
@click.option(
    "-d",
    "--deploy-dir",
    "deploy_dir",
    default=DEFAULT_DEPLOY_DIR,
    show_default=True,
    help="템플릿이 있는 로컬 배포 디렉토리",
)
@click.option("-t", "--template", "template_file", default=DEFAULT_TEMPLATE, show_default=True)
@click.pass_context
def check(
    ctx: click.Context,
    stage: Optional[str],
    stack_name: Optional[str],
    region: Optional[str],
    config_file: str,
    deploy_dir: str,
    template_file: str,
) -> None:
    """
    배포 전에 리전/버킷/SSM 의존성과 파라미터·시크릿 drift 를 점검한다.
    (실제 리소스 생성/변경은 하지 않는다)
    """
    if bool(stage) == bool(stack_name):
        click.echo("[ERROR] --stage 와 --stack-name 중 하나만 지정하세요.", err=True)
        sys.exit(1)

    try:
        cfg, settings = _load_from_ctx(ctx, config_file)
        if stack_name:
            plan = orchestrator.plan_for_stack(
                cfg, stack_name, region=region, deploy_dir=deploy_dir, template_file=template_file
            )
        else:
            plan = orchestrator.plan_for_stage(
                cfg, stage or "dev", region=region, deploy_dir=deploy_dir, template_file=template_file
            )
    except (ConfigError, ValueError, RuntimeError) as e:
        _fail("설정 로드 실패", e)

    _run_or_fail("체크", lambda: orchestrator.check_stack(plan, cfg, settings))


@main.command(name="read-stream")
@click.argument("table_name")
@click.option(
    "-e",
    "--endpoint",
    "endpoint",
    default=None,
    help="DynamoDB 엔드포인트. 로컬 DynamoDB 를 사용할 때 지정 (예: http://localhost:8000)",
)
@click.option("-r", "--region", "region", default=None, help="AWS 리전")
@click.pass_context
def read_stream(ctx: click.Context, table_name: str, endpoint: Optional[str], region: Optional[str]) -> None:
    """
    테이블의 DynamoDB 스트림을 처음부터 읽어 출력한다.

    \b
    예시:
      deploy-sam read-stream local-db-table
      deploy-sam read-stream local-db-table --endpoint http://localhost:8000
    """
    from .aws_session import AwsContext
    from .dynamodb_stream import read_stream as _read_stream

    load_env_files(ctx.obj["chdir"])
    settings = RuntimeSettings.from_env()
    aws = AwsContext(
        region=region or settings.aws_region or "us-east-1",
        profile=settings.aws_profile,
        endpoint_url=endpoint,
    )

    try:
        _read_stream(aws.client("dynamodb"), aws.client("dynamodbstreams"), table_name, click.echo)
    except KeyboardInterrupt:
        click.echo("스트리밍을 중단합니다.", err=True)
    except Exception as e:  # noqa: BLE001
        logger.exception("스트림 읽기 중 오류 발생")
        _fail("스트림 읽기 실패", e)
