from __future__ import annotations


class DeployError(RuntimeError):
    """배포 전제 조건을 만족하지 못해 배포를 진행할 수 없음."""


class ConfigError(ValueError):
    """stack-config 파일을 읽거나 해석할 수 없음."""
