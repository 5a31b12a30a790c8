from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigError


ENV_FILES_DEFAULT_ORDER = [".env", ".env.deploy"]

DEFAULT_CONFIG_FILE = "./stack-config.json"
DEFAULT_DEPLOY_DIR = "./.aws-sam/build"
DEFAULT_TEMPLATE = "template.yaml"
DEFAULT_CAPABILITIES = ["CAPABILITY_IAM"]


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} 는 정수여야 합니다: {raw!r}") from e


@dataclass
class RuntimeSettings:
    # 환경변수로만 조정하는 실행 옵션
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None
    max_workers: int = 8
    show_progress: bool = True

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            aws_region=os.getenv("AWS_REGION") or None,
            aws_profile=os.getenv("AWS_PROFILE") or None,
            max_workers=max(1, _get_int("DEPLOY_MAX_WORKERS", 8)),
            show_progress=_get_bool("CLI_SHOW_PROGRESS", True),
        )


@dataclass
class RegionConfig:
    region: str
    bucket: Optional[str] = None


@dataclass
class SecretStoreConfig:
    # aws-secrets-manager | gcp-secret-manager
    type: str = "aws-secrets-manager"
    gcp_project_id: Optional[str] = None


@dataclass
class StageConfig:
    name: str
    profile: Optional[str] = None
    regions: Dict[str, RegionConfig] = field(default_factory=dict)


@dataclass
class NamedStackConfig:
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    parameter_overrides: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StackConfig:
    """
    stack-config.json 의 내용을 표현한다.

    deploy / deploy-config / deploy-function 명령이 같은 파일을 공유하며,
    각 명령이 필요로 하는 섹션만 검증한다.
    """

    name: Optional[str] = None
    profile: Optional[str] = None
    namespace: Optional[str] = None
    service: Optional[str] = None
    capabilities: List[str] = field(default_factory=lambda: list(DEFAULT_CAPABILITIES))

    regions: Dict[str, RegionConfig] = field(default_factory=dict)
    parameters: Dict[str, Any] = field(default_factory=dict)
    parameter_overrides: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, Any] = field(default_factory=dict)
    secret_store: SecretStoreConfig = field(default_factory=SecretStoreConfig)

    stacks: Dict[str, NamedStackConfig] = field(default_factory=dict)
    stages: Dict[str, StageConfig] = field(default_factory=dict)

    source_path: str = DEFAULT_CONFIG_FILE

    @classmethod
    def from_file(cls, path: str) -> "StackConfig":
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"설정 파일을 찾을 수 없습니다: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"설정 파일이 올바른 JSON 이 아닙니다: {path} ({e})") from e

        cfg = cls.from_dict(raw, source_path=path)
        return cfg

    @classmethod
    def from_dict(cls, raw: Any, source_path: str = DEFAULT_CONFIG_FILE) -> "StackConfig":
        if not isinstance(raw, dict):
            raise ConfigError(f"설정 파일의 최상위 값은 object 여야 합니다: {source_path}")

        capabilities = raw.get("capabilities")
        if capabilities is None:
            capabilities = list(DEFAULT_CAPABILITIES)
        elif not isinstance(capabilities, list):
            raise ConfigError("capabilities 는 문자열 배열이어야 합니다.")

        stacks: Dict[str, NamedStackConfig] = {}
        for stack_name, stack_raw in _section(raw, "stacks").items():
            stack_raw = stack_raw or {}
            if not isinstance(stack_raw, dict):
                raise ConfigError(f"stacks.{stack_name} 는 object 여야 합니다.")
            stacks[stack_name] = NamedStackConfig(
                name=stack_name,
                parameters=_section(stack_raw, "parameters", f"stacks.{stack_name}."),
                parameter_overrides=_section(stack_raw, "parameterOverrides", f"stacks.{stack_name}."),
            )

        stages: Dict[str, StageConfig] = {}
        for stage_name, stage_raw in _section(raw, "stages").items():
            stage_raw = stage_raw or {}
            if not isinstance(stage_raw, dict):
                raise ConfigError(f"stages.{stage_name} 는 object 여야 합니다.")
            stages[stage_name] = StageConfig(
                name=stage_name,
                profile=stage_raw.get("profile"),
                regions=_regions(_section(stage_raw, "regions", f"stages.{stage_name}.")),
            )

        store_raw = _section(raw, "secretStore")
        secret_store = SecretStoreConfig(
            type=store_raw.get("type", "aws-secrets-manager"),
            gcp_project_id=store_raw.get("projectId"),
        )

        return cls(
            name=raw.get("name"),
            profile=raw.get("profile"),
            namespace=raw.get("namespace"),
            service=raw.get("service"),
            capabilities=[str(c) for c in capabilities],
            regions=_regions(_section(raw, "regions")),
            parameters=_section(raw, "parameters"),
            parameter_overrides=_section(raw, "parameterOverrides"),
            secrets=_section(raw, "secrets"),
            secret_store=secret_store,
            stacks=stacks,
            stages=stages,
            source_path=source_path,
        )


def _section(raw: Dict[str, Any], key: str, prefix: str = "") -> Dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{prefix}{key} 는 object 여야 합니다.")
    return dict(value)


def _regions(raw: Dict[str, Any]) -> Dict[str, RegionConfig]:
    regions: Dict[str, RegionConfig] = {}
    for region, region_raw in raw.items():
        region_raw = region_raw or {}
        if not isinstance(region_raw, dict):
            raise ConfigError(f"regions.{region} 는 object 여야 합니다.")
        regions[region] = RegionConfig(region=region, bucket=region_raw.get("bucket") or None)
    return regions
