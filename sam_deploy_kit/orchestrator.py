from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from .aws_session import AwsContext
from .config import (
    DEFAULT_DEPLOY_DIR,
    DEFAULT_TEMPLATE,
    RegionConfig,
    RuntimeSettings,
    StackConfig,
)
from .errors import ConfigError, DeployError
from .logging_utils import get_logger
from .reconciler import (
    EntryResult,
    KeyValueStore,
    NotFound,
    Outcome,
    StoreUnavailable,
    entries_from_mapping,
    reconcile_all,
)
from .subprocess_utils import ProgressSettings
from . import (
    aws_lambda,
    aws_s3,
    aws_secrets,
    aws_ssm,
    report,
    sam_commands,
    template,
)


logger = get_logger(__name__)


@dataclass
class DeployPlan:
    """
    deploy / deploy-config 명령이 공통으로 사용하는 실행 계획.
    stack-config 와 CLI 플래그를 합쳐서 만든다.
    """

    stack_name: str
    regions: Dict[str, RegionConfig]
    profile: Optional[str] = None
    region: Optional[str] = None
    deploy_dir: str = DEFAULT_DEPLOY_DIR
    template_file: str = DEFAULT_TEMPLATE
    parameters: Dict[str, Any] = field(default_factory=dict)
    parameter_overrides: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, Any] = field(default_factory=dict)
    capabilities: List[str] = field(default_factory=list)
    build: bool = True
    dry_run: bool = False
    override_parameters: bool = False


@dataclass
class ResolvedTarget:
    ctx: AwsContext
    bucket: str


# -----------------------------
# 실행 계획 구성
# -----------------------------


def build_secret_id(cfg: StackConfig, stage: str, name: str) -> str:
    if not cfg.namespace or not cfg.service:
        raise ConfigError("secrets 를 사용하려면 stack-config 에 namespace 와 service 가 필요합니다.")
    test_suffix = "/test" if stage == "test" else ""
    return f"/{cfg.namespace}/{cfg.service}{test_suffix}/{name}"


def plan_for_stage(
    cfg: StackConfig,
    stage: str,
    *,
    region: Optional[str] = None,
    deploy_dir: str = DEFAULT_DEPLOY_DIR,
    template_file: str = DEFAULT_TEMPLATE,
    dry_run: bool = False,
    override_parameters: bool = False,
    skip_build: bool = False,
) -> DeployPlan:
    """`deploy` 명령용 계획. 스택 이름은 {name}-{stage}."""
    if not cfg.name:
        raise ConfigError(f"{cfg.source_path} 에 name 이 없습니다.")

    overrides = dict(cfg.parameter_overrides)
    overrides["Stage"] = stage

    return DeployPlan(
        stack_name=f"{cfg.name}-{stage}",
        regions=cfg.regions,
        profile=cfg.profile,
        region=region,
        deploy_dir=deploy_dir,
        template_file=template_file,
        parameters=dict(cfg.parameters),
        parameter_overrides=overrides,
        secrets={build_secret_id(cfg, stage, k): v for k, v in cfg.secrets.items()},
        capabilities=list(cfg.capabilities),
        build=not skip_build,
        dry_run=dry_run,
        override_parameters=override_parameters,
    )


def plan_for_stack(
    cfg: StackConfig,
    stack_name: str,
    *,
    region: Optional[str] = None,
    deploy_dir: str = DEFAULT_DEPLOY_DIR,
    template_file: str = DEFAULT_TEMPLATE,
    dry_run: bool = False,
    override_parameters: bool = False,
) -> DeployPlan:
    """`deploy-config` 명령용 계획. stacks[stack_name] 정의를 사용하며 빌드는 하지 않는다."""
    stack = cfg.stacks.get(stack_name)
    if stack is None:
        raise DeployError(
            f"스택 {stack_name} 을(를) 배포할 수 없습니다: {cfg.source_path} 에 정의가 없습니다."
        )

    return DeployPlan(
        stack_name=stack_name,
        regions=cfg.regions,
        profile=cfg.profile,
        region=region,
        deploy_dir=deploy_dir,
        template_file=template_file,
        parameters=dict(stack.parameters),
        parameter_overrides=dict(stack.parameter_overrides),
        secrets=dict(cfg.secrets),
        capabilities=list(cfg.capabilities),
        build=False,
        dry_run=dry_run,
        override_parameters=override_parameters,
    )


# -----------------------------
# 전제 조건
# -----------------------------


def resolve_region(
    explicit: Optional[str],
    settings: RuntimeSettings,
    profile: Optional[str],
    lookup: Callable[[Optional[str]], str] = sam_commands.get_configured_region,
) -> str:
    """--region > AWS_REGION > `aws configure get region` 순으로 리전을 결정한다."""
    region = explicit or settings.aws_region or lookup(profile)
    if not region:
        raise DeployError("AWS 리전이 지정되지 않아 배포할 수 없습니다. --region 플래그로 지정하세요.")
    return region


def region_bucket(regions: Dict[str, RegionConfig], region: str) -> str:
    region_cfg = regions.get(region)
    if region_cfg is None:
        raise DeployError(f"리전 {region} 에 대한 설정(regions.{region})이 없어 배포할 수 없습니다.")
    if not region_cfg.bucket:
        raise DeployError(f"리전 설정 {region} 에 소스 코드 버킷(bucket)이 지정되지 않았습니다.")
    return region_cfg.bucket


def locate_target(
    regions: Dict[str, RegionConfig],
    profile: Optional[str],
    explicit_region: Optional[str],
    settings: RuntimeSettings,
) -> ResolvedTarget:
    """리전과 버킷 이름만 결정한다. 버킷 자체는 확인하지 않는다."""
    profile = profile or settings.aws_profile
    region = resolve_region(explicit_region, settings, profile)
    bucket = region_bucket(regions, region)
    return ResolvedTarget(ctx=AwsContext(region=region, profile=profile), bucket=bucket)


def resolve_target(
    regions: Dict[str, RegionConfig],
    profile: Optional[str],
    explicit_region: Optional[str],
    settings: RuntimeSettings,
) -> ResolvedTarget:
    target = locate_target(regions, profile, explicit_region, settings)
    aws_s3.ensure_source_bucket(target.ctx.client("s3"), target.bucket, target.ctx.region)
    return target


def check_template_dependencies(
    store: KeyValueStore,
    deploy_dir: str,
    template_file: str,
    planned: Iterable[str] = (),
) -> List[str]:
    """
    템플릿이 참조하는 SSM 파라미터 중 존재하지 않는 것의 이름 목록을 반환한다.
    planned 는 이번 실행에서 생성될(dry-run 포함) 파라미터 이름이다.
    """
    doc = template.load_template(deploy_dir, template_file)
    planned_names = set(planned)
    missing: List[str] = []
    for dep in template.ssm_dependencies(doc):
        if dep.parameter_name in planned_names:
            continue
        try:
            store.get(dep.parameter_name)
        except NotFound:
            missing.append(dep.parameter_name)
        except StoreUnavailable as e:
            raise DeployError(f"SSM 파라미터 {dep.parameter_name} 를 확인할 수 없습니다. ({e})") from e
    return missing


def _created(results: List[EntryResult]) -> List[str]:
    return [r.name for r in results if r.outcome is Outcome.CREATED]


def parameter_store(ctx: AwsContext) -> KeyValueStore:
    return aws_ssm.SsmParameterStore(ctx)


def secret_store(cfg_store_type: str, gcp_project_id: Optional[str], ctx: AwsContext) -> KeyValueStore:
    if cfg_store_type == "aws-secrets-manager":
        return aws_secrets.SecretsManagerStore(ctx)
    if cfg_store_type == "gcp-secret-manager":
        from .gcp_secrets import GcpSecretStore

        return GcpSecretStore(gcp_project_id or "")
    raise ConfigError(f"알 수 없는 secretStore.type 입니다: {cfg_store_type!r} (aws-secrets-manager | gcp-secret-manager)")


# -----------------------------
# reconcile 단계
# -----------------------------


def reconcile_parameters(
    store: KeyValueStore,
    plan: DeployPlan,
    settings: RuntimeSettings,
    *,
    dry_run: Optional[bool] = None,
) -> List[EntryResult]:
    return reconcile_all(
        store,
        entries_from_mapping(plan.parameters),
        dry_run=plan.dry_run if dry_run is None else dry_run,
        allow_override=plan.override_parameters,
        max_workers=settings.max_workers,
    )


def reconcile_secrets(
    store: KeyValueStore,
    plan: DeployPlan,
    settings: RuntimeSettings,
    *,
    dry_run: Optional[bool] = None,
) -> List[EntryResult]:
    # 시크릿은 항상 stack-config 값을 기준으로 덮어쓴다.
    return reconcile_all(
        store,
        entries_from_mapping(plan.secrets),
        dry_run=plan.dry_run if dry_run is None else dry_run,
        allow_override=True,
        encoder=aws_secrets.encode_secret_value,
        sensitive=True,
        max_workers=settings.max_workers,
    )


# -----------------------------
# 명령 단위 실행
# -----------------------------


def deploy_stack(
    plan: DeployPlan,
    cfg: StackConfig,
    settings: RuntimeSettings,
    progress: Optional[ProgressSettings] = None,
) -> tuple[str, bool]:
    """
    전제 조건 확인 → 파라미터/시크릿 reconcile → sam build/package/deploy.

    전제 조건을 만족하지 못하면 DeployError 를 raise 한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_failures: reconcile 실패 항목이 있어 배포를 중단했는지 여부
    """
    target = resolve_target(plan.regions, plan.profile, plan.region, settings)
    ctx = target.ctx
    logger.info("배포 대상: stack=%s region=%s dry_run=%s", plan.stack_name, ctx.region, plan.dry_run)

    ssm = parameter_store(ctx)
    param_results = reconcile_parameters(ssm, plan, settings)

    missing = check_template_dependencies(
        ssm, plan.deploy_dir, plan.template_file, planned=_created(param_results)
    )
    if missing:
        raise DeployError(
            "스택이 다음 SSM 파라미터에 의존하지만 존재하지 않습니다. "
            "Parameter Store 에 먼저 생성한 뒤 다시 시도하세요: " + ", ".join(missing)
        )

    secret_results: List[EntryResult] = []
    if plan.secrets:
        store = secret_store(cfg.secret_store.type, cfg.secret_store.gcp_project_id, ctx)
        secret_results = reconcile_secrets(store, plan, settings)

    lines: List[str] = []
    lines.append("# Deploy summary")
    lines.append(f"- stack: {plan.stack_name}")
    lines.append(f"- region: {ctx.region}")
    lines.append(f"- bucket: {target.bucket}")
    if plan.dry_run:
        lines.append("- dry-run: 실제 변경 없이 수행할 작업만 출력합니다.")
    lines.append("")
    lines += report.format_results("Parameters", param_results)
    lines.append("")
    lines += report.format_results("Secrets", secret_results, redact=True)
    lines.append("")

    if report.has_failures(param_results) or report.has_failures(secret_results):
        lines.append("## Result")
        lines.append("- 파라미터/시크릿 설정에 실패한 항목이 있어 배포를 중단했습니다.")
        return "\n".join(lines), True

    if report.has_drift(param_results):
        logger.warning("drift 가 감지된 파라미터가 있습니다. 덮어쓰려면 --override-parameters 를 사용하세요.")

    lines.append("## Steps")
    if plan.build:
        sam_commands.sam_build(ctx.region, ctx.profile, dry_run=plan.dry_run, progress=progress)
        lines.append("- build: done" if not plan.dry_run else "- build: dry-run")
    else:
        lines.append("- build: skipped")

    sam_commands.sam_package(
        target.bucket,
        plan.deploy_dir,
        plan.template_file,
        ctx.region,
        ctx.profile,
        dry_run=plan.dry_run,
        progress=progress,
    )
    lines.append("- package: done" if not plan.dry_run else "- package: dry-run")

    sam_commands.sam_deploy(
        plan.stack_name,
        plan.deploy_dir,
        target.bucket,
        ctx.region,
        parameter_overrides=plan.parameter_overrides,
        capabilities=plan.capabilities,
        profile=ctx.profile,
        dry_run=plan.dry_run,
        progress=progress,
    )
    lines.append("- deploy: done" if not plan.dry_run else "- deploy: dry-run")

    return "\n".join(lines), False


def check_stack(plan: DeployPlan, cfg: StackConfig, settings: RuntimeSettings) -> tuple[str, bool]:
    """
    실제 변경 없이 전제 조건과 파라미터/시크릿 drift 를 점검한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_issues: 크리티컬 이슈나 drift 가 있는지 여부
    """
    lines: List[str] = ["# Deploy pre-check", f"- stack: {plan.stack_name}", ""]
    critical: List[str] = []
    warnings: List[str] = []

    lines.append("## Region & bucket")
    try:
        target = locate_target(plan.regions, plan.profile, plan.region, settings)
    except DeployError as e:
        critical.append(str(e))
        lines.append(f"- {e}")
        lines.append("")
        lines += _check_summary(critical, warnings)
        return "\n".join(lines), True
    lines.append(f"- region: {target.ctx.region}")
    bucket_status = aws_s3.check_source_bucket(target.ctx.client("s3"), target.bucket, target.ctx.region)
    lines.append(f"- {bucket_status}")
    lines.append("")
    if "문제 있음" in bucket_status:
        critical.append(bucket_status)

    ssm = parameter_store(target.ctx)
    param_results = reconcile_parameters(ssm, plan, settings, dry_run=True)
    lines += report.format_results("Parameters", param_results)
    lines.append("")

    lines.append("## Template dependencies")
    try:
        missing = check_template_dependencies(
            ssm, plan.deploy_dir, plan.template_file, planned=_created(param_results)
        )
        if missing:
            for name in missing:
                critical.append(f"SSM 파라미터 없음: {name}")
                lines.append(f"- 없음: {name}")
        else:
            lines.append("- 모든 SSM 의존성이 존재합니다.")
    except DeployError as e:
        critical.append(str(e))
        lines.append(f"- {e}")
    lines.append("")

    secret_results: List[EntryResult] = []
    if plan.secrets:
        store = secret_store(cfg.secret_store.type, cfg.secret_store.gcp_project_id, target.ctx)
        secret_results = reconcile_secrets(store, plan, settings, dry_run=True)
    lines += report.format_results("Secrets", secret_results, redact=True)
    lines.append("")

    for r in param_results + secret_results:
        if r.failed:
            critical.append(f"{r.name}: {r.error}")
        elif r.drifted:
            warnings.append(f"{r.name}: drift")

    lines += _check_summary(critical, warnings)
    return "\n".join(lines), bool(critical or warnings)


def _check_summary(critical: List[str], warnings: List[str]) -> List[str]:
    lines = ["## Summary"]
    if critical:
        lines.append("- 상태: 크리티컬 이슈가 있습니다. 배포 전 반드시 해결해야 합니다.")
    elif warnings:
        lines.append("- 상태: drift 가 있습니다. --override-parameters 로 덮어쓸 수 있습니다.")
    else:
        lines.append("- 상태: 주요 이슈 없음 (배포 가능 상태로 보입니다)")

    if critical:
        lines.append("")
        lines.append("### Critical issues")
        lines += [f"- {i}" for i in critical]
    if warnings:
        lines.append("")
        lines.append("### Warnings")
        lines += [f"- {i}" for i in warnings]
    return lines


def deploy_function(
    cfg: StackConfig,
    stage: str,
    logical_id: str,
    settings: RuntimeSettings,
    *,
    region: Optional[str] = None,
    deploy_dir: str = DEFAULT_DEPLOY_DIR,
    dry_run: bool = False,
    progress: Optional[ProgressSettings] = None,
) -> str:
    """
    스택에 이미 배포된 함수 하나의 코드만 교체한다. 배포된 함수 이름을 반환한다.
    """
    if not cfg.name:
        raise ConfigError(f"{cfg.source_path} 에 name 이 없습니다.")
    stage_cfg = cfg.stages.get(stage)
    if stage_cfg is None:
        raise DeployError(f"{cfg.source_path} 에 스테이지 {stage} 설정(stages.{stage})이 없습니다.")

    stack_name = f"{cfg.name}-{stage}"
    target = resolve_target(stage_cfg.regions, stage_cfg.profile, region, settings)
    ctx = target.ctx

    function_name = aws_lambda.resolve_function_name(ctx.client("cloudformation"), stack_name, logical_id)
    logger.info("함수 배포 대상: %s -> %s", logical_id, function_name)

    aws_lambda.deploy_function_code(
        logical_id=logical_id,
        function_name=function_name,
        deploy_dir=deploy_dir,
        region=ctx.region,
        profile=ctx.profile,
        dry_run=dry_run,
        progress=progress,
    )
    return function_name
