"""
template
--------

SAM/CloudFormation 템플릿을 읽어서, 배포 전에 존재해야 하는
SSM 파라미터 의존성을 찾아내는 모듈.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List

import yaml

from .errors import DeployError


SSM_PARAMETER_TYPE = re.compile(r"AWS::SSM::Parameter::Value")


class _CfnLoader(yaml.SafeLoader):
    """!Ref, !Sub, !GetAtt 같은 CloudFormation 단축 태그를 허용하는 로더."""


def _construct_cfn_tag(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Dict[str, Any]:
    if isinstance(node, yaml.ScalarNode):
        value: Any = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    name = tag_suffix if tag_suffix == "Ref" else f"Fn::{tag_suffix}"
    if tag_suffix == "GetAtt" and isinstance(value, str):
        value = value.split(".", 1)
    return {name: value}


_CfnLoader.add_multi_constructor("!", _construct_cfn_tag)


@dataclass(frozen=True)
class SsmDependency:
    logical_id: str
    parameter_name: str


def load_template(deploy_dir: str, template_file: str) -> Dict[str, Any]:
    path = os.path.join(deploy_dir, template_file)
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.load(f, Loader=_CfnLoader)
    except FileNotFoundError as e:
        raise DeployError(f"템플릿 파일을 찾을 수 없습니다: {path}") from e
    except yaml.YAMLError as e:
        raise DeployError(f"템플릿 파일을 해석할 수 없습니다: {path} ({e})") from e

    if not isinstance(doc, dict):
        raise DeployError(f"템플릿 최상위 값이 mapping 이 아닙니다: {path}")
    return doc


def ssm_dependencies(doc: Dict[str, Any]) -> List[SsmDependency]:
    """
    Type 이 AWS::SSM::Parameter::Value<...> 인 파라미터의 Default(파라미터 이름)를 모은다.
    """
    deps: List[SsmDependency] = []
    for logical_id, parameter in (doc.get("Parameters") or {}).items():
        if not isinstance(parameter, dict):
            continue
        if not SSM_PARAMETER_TYPE.search(str(parameter.get("Type", ""))):
            continue
        default = parameter.get("Default")
        if not default:
            raise DeployError(
                f"SSM 파라미터 타입인 {logical_id} 에 Default(파라미터 이름)가 없습니다."
            )
        deps.append(SsmDependency(logical_id=logical_id, parameter_name=str(default)))
    return deps
