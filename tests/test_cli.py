from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from sam_deploy_kit import cli, orchestrator


@pytest.fixture()
def workdir(tmp_path: Path) -> Path:
    (tmp_path / "stack-config.json").write_text(
        json.dumps(
            {
                "name": "orders",
                "namespace": "shop",
                "service": "orders",
                "regions": {"us-east-1": {"bucket": "orders-artifacts"}},
                "stacks": {"shared": {}},
            }
        ),
        encoding="utf-8",
    )
    return tmp_path


def test_deploy_prints_summary(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    def fake_deploy(plan, cfg, settings, progress=None):  # noqa: ANN001, ANN202
        seen["plan"] = plan
        return "# Deploy summary", False

    monkeypatch.setattr(orchestrator, "deploy_stack", fake_deploy)

    result = CliRunner().invoke(
        cli.main, ["-C", str(workdir), "deploy", "-s", "prod", "--dry-run", "-p", "-r", "us-east-1"]
    )

    assert result.exit_code == 0, result.output
    assert "# Deploy summary" in result.output
    assert seen["plan"].stack_name == "orders-prod"
    assert seen["plan"].dry_run is True
    assert seen["plan"].override_parameters is True


def test_deploy_exits_non_zero_on_failed_entries(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(orchestrator, "deploy_stack", lambda *a, **kw: ("summary", True))

    result = CliRunner().invoke(cli.main, ["-C", str(workdir), "deploy"])

    assert result.exit_code == 1


def test_deploy_config_unknown_stack(workdir: Path) -> None:
    result = CliRunner().invoke(cli.main, ["-C", str(workdir), "deploy-config", "-n", "missing"])

    assert result.exit_code == 1
    assert "missing" in result.output


def test_missing_config_file(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli.main, ["-C", str(tmp_path), "deploy"])

    assert result.exit_code == 1
    assert "설정 로드 실패" in result.output


def test_check_requires_exactly_one_target(workdir: Path) -> None:
    runner = CliRunner()

    assert runner.invoke(cli.main, ["-C", str(workdir), "check"]).exit_code == 1
    assert runner.invoke(cli.main, ["-C", str(workdir), "check", "-s", "dev", "-n", "shared"]).exit_code == 1


def test_check_uses_stack_plan(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    def fake_check(plan, cfg, settings):  # noqa: ANN001, ANN202
        seen["plan"] = plan
        return "# Deploy pre-check", False

    monkeypatch.setattr(orchestrator, "check_stack", fake_check)

    result = CliRunner().invoke(cli.main, ["-C", str(workdir), "check", "-n", "shared"])

    assert result.exit_code == 0, result.output
    assert seen["plan"].stack_name == "shared"


def test_deploy_function_reports_function_name(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(orchestrator, "deploy_function", lambda *a, **kw: "orders-dev-OrdersFn-XYZ")

    result = CliRunner().invoke(cli.main, ["-C", str(workdir), "deploy-function", "OrdersFn", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "orders-dev-OrdersFn-XYZ" in result.output
