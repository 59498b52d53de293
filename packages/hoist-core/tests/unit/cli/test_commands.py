"""Unit tests for the single-step commands: latest-dev-tag, promote, rollout, history."""

from __future__ import annotations

import json
from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from hoist_core.cli.main import cli, main
from hoist_core.errors import (
    AuthenticationError,
    DeploymentNotFoundError,
    DevTagNotFoundError,
    RegistryUnavailableError,
)
from hoist_core.release.audit import PromotionAuditLog
from hoist_core.release.tags import parse_dev_tag
from hoist_core.schemas.release import PromotionRecord, RolloutReport, RolloutState

REGISTRY = ["--registry", "oci://registry.test/team"]


class TestLatestDevTag:
    """Tests for ``hoist latest-dev-tag``."""

    @pytest.mark.requirement("FR-010")
    def test_prints_tag(self, cli_runner: CliRunner) -> None:
        """The latest dev tag is printed alone on stdout."""
        with patch("hoist_core.registry.client.RegistryClient") as client_cls:
            client_cls.return_value.latest_dev_tag.return_value = parse_dev_tag(
                "1.2.0-dev2", "shop"
            )

            result = cli_runner.invoke(cli, ["latest-dev-tag", "--repo", "shop", *REGISTRY])

        assert result.exit_code == 0, result.output
        assert result.stdout.strip() == "1.2.0-dev2"

    @pytest.mark.requirement("FR-010")
    def test_json(self, cli_runner: CliRunner) -> None:
        """JSON output carries the version, build and pullable image."""
        with patch("hoist_core.registry.client.RegistryClient") as client_cls:
            client = client_cls.return_value
            client.latest_dev_tag.return_value = parse_dev_tag("1.2.0-dev2", "shop")
            client.image_reference.return_value = "registry.test/team/shop:1.2.0-dev2"

            result = cli_runner.invoke(
                cli,
                [
                    "latest-dev-tag",
                    "--repo",
                    "shop",
                    "--version-prefix",
                    "1.2",
                    "-o",
                    "json",
                    *REGISTRY,
                ],
            )

        document = json.loads(result.stdout)
        assert document == {
            "repository": "shop",
            "tag": "1.2.0-dev2",
            "version": "1.2.0",
            "build": 2,
            "image": "registry.test/team/shop:1.2.0-dev2",
        }
        assert client.latest_dev_tag.call_args.kwargs["version_prefix"] == "1.2"

    @pytest.mark.requirement("FR-060")
    @pytest.mark.parametrize(
        ("error", "exit_code"),
        [
            (DevTagNotFoundError("shop", None), 3),
            (AuthenticationError("registry.test", "HTTP 401"), 2),
            (RegistryUnavailableError("registry.test", "HTTP 503"), 5),
        ],
    )
    def test_error_exit_codes(
        self, cli_runner: CliRunner, error: Exception, exit_code: int
    ) -> None:
        """Registry errors map to their exit codes."""
        with patch("hoist_core.registry.client.RegistryClient") as client_cls:
            client_cls.return_value.latest_dev_tag.side_effect = error

            result = cli_runner.invoke(cli, ["latest-dev-tag", "--repo", "shop", *REGISTRY])

        assert result.exit_code == exit_code


class TestPromote:
    """Tests for ``hoist promote``."""

    @pytest.mark.requirement("FR-020")
    def test_promotes_latest_by_default(
        self, cli_runner: CliRunner, promotion_record: PromotionRecord
    ) -> None:
        """Without --tag the latest dev tag is promoted."""
        dev_tag = parse_dev_tag("1.2.0-dev2", "shop")
        with (
            patch("hoist_core.registry.client.RegistryClient") as client_cls,
            patch("hoist_core.release.promoter.Promoter") as promoter_cls,
        ):
            client_cls.return_value.latest_dev_tag.return_value = dev_tag
            promoter_cls.return_value.promote.return_value = promotion_record

            result = cli_runner.invoke(cli, ["promote", "--repo", "shop", *REGISTRY])

        assert result.exit_code == 0, result.output
        promoter_cls.return_value.promote.assert_called_once_with(dev_tag)
        assert "promoted: shop:1.2.0" in result.stdout

    @pytest.mark.requirement("FR-020")
    def test_explicit_tag(self, cli_runner: CliRunner, promotion_record: PromotionRecord) -> None:
        """--tag promotes that tag without listing the repository."""
        with (
            patch("hoist_core.registry.client.RegistryClient") as client_cls,
            patch("hoist_core.release.promoter.Promoter") as promoter_cls,
        ):
            promoter_cls.return_value.promote.return_value = promotion_record

            result = cli_runner.invoke(
                cli, ["promote", "--repo", "shop", "--tag", "1.2.0-dev2", "--dry-run", *REGISTRY]
            )

        assert result.exit_code == 0, result.output
        client_cls.return_value.latest_dev_tag.assert_not_called()
        promoter_cls.return_value.promote.assert_called_once_with("1.2.0-dev2", repository="shop")
        assert promoter_cls.call_args.kwargs["dry_run"] is True

    @pytest.mark.requirement("FR-022")
    def test_json_record(self, cli_runner: CliRunner, promotion_record: PromotionRecord) -> None:
        """JSON output is the promotion record."""
        with (
            patch("hoist_core.registry.client.RegistryClient"),
            patch("hoist_core.release.promoter.Promoter") as promoter_cls,
        ):
            promoter_cls.return_value.promote.return_value = promotion_record

            result = cli_runner.invoke(
                cli, ["promote", "--repo", "shop", "--tag", "1.2.0-dev2", "-o", "json", *REGISTRY]
            )

        document = json.loads(result.stdout)
        assert document["promotion_id"] == str(promotion_record.promotion_id)
        assert document["trace_id"] == promotion_record.trace_id


class TestRollout:
    """Tests for ``hoist rollout``."""

    @pytest.fixture
    def driver_cls(self) -> Generator[MagicMock, None, None]:
        """Patched orchestrator and driver; yields the driver class."""
        with (
            patch("hoist_core.rollout.orchestrator.KubernetesOrchestrator"),
            patch("hoist_core.rollout.driver.RolloutDriver") as mock_cls,
        ):
            yield mock_cls

    def _report(self, state: RolloutState, reason: str = "") -> RolloutReport:
        return RolloutReport(
            target="shop/web",
            image="registry.test/team/shop:1.2.0",
            previous_image="registry.test/team/shop:1.1.0",
            state=state,
            reason=reason,
        )

    @pytest.mark.requirement("FR-030")
    @pytest.mark.parametrize(
        ("state", "exit_code"),
        [
            (RolloutState.HEALTHY, 0),
            (RolloutState.FAILED, 7),
            (RolloutState.ROLLED_BACK, 8),
        ],
    )
    def test_exit_code_per_state(
        self,
        cli_runner: CliRunner,
        driver_cls: MagicMock,
        state: RolloutState,
        exit_code: int,
    ) -> None:
        """The exit code follows the terminal rollout state."""
        driver_cls.return_value.rollout.return_value = self._report(state)

        result = cli_runner.invoke(
            cli,
            ["rollout", "--target", "shop/web", "--image", "registry.test/team/shop:1.2.0"],
        )

        assert result.exit_code == exit_code

    @pytest.mark.requirement("FR-030")
    def test_timeout_override(self, cli_runner: CliRunner, driver_cls: MagicMock) -> None:
        """--timeout reaches the driver configuration; no registry is needed."""
        driver_cls.return_value.rollout.return_value = self._report(RolloutState.HEALTHY)

        cli_runner.invoke(
            cli,
            ["rollout", "--target", "web", "--image", "shop:1.2.0", "--timeout", "60"],
        )

        config = driver_cls.call_args.args[1]
        assert config.timeout_seconds == 60

    @pytest.mark.requirement("FR-030")
    def test_short_timeout(self, cli_runner: CliRunner, driver_cls: MagicMock) -> None:
        """--timeout 2 is valid even though polls default to every 5s."""
        driver_cls.return_value.rollout.return_value = self._report(RolloutState.HEALTHY)

        result = cli_runner.invoke(
            cli, ["rollout", "--target", "web", "--image", "shop:1.2.0", "--timeout", "2"]
        )

        assert result.exit_code == 0, result.output
        assert driver_cls.call_args.args[1].timeout_seconds == 2

    @pytest.mark.requirement("FR-030")
    def test_json_report(self, cli_runner: CliRunner, driver_cls: MagicMock) -> None:
        """JSON output is the rollout report plus its exit code."""
        driver_cls.return_value.rollout.return_value = self._report(
            RolloutState.ROLLED_BACK, "replicas not ready within 300s"
        )

        result = cli_runner.invoke(
            cli, ["rollout", "--target", "shop/web", "--image", "shop:1.2.0", "-o", "json"]
        )

        document = json.loads(result.stdout)
        assert document["state"] == "rolled_back"
        assert document["exit_code"] == 8
        assert document["previous_image"] == "registry.test/team/shop:1.1.0"

    @pytest.mark.requirement("FR-060")
    def test_missing_deployment(self, cli_runner: CliRunner, driver_cls: MagicMock) -> None:
        """A missing deployment exits 3."""
        driver_cls.return_value.rollout.side_effect = DeploymentNotFoundError("shop/web")

        result = cli_runner.invoke(
            cli, ["rollout", "--target", "shop/web", "--image", "shop:1.2.0"]
        )

        assert result.exit_code == 3


class TestHistory:
    """Tests for ``hoist history``."""

    @pytest.fixture
    def audit_path(self, tmp_path: Path, promotion_record: PromotionRecord) -> Path:
        """Audit log holding two promotions."""
        path = tmp_path / "promotions.jsonl"
        log = PromotionAuditLog(path)
        log.append(promotion_record)
        log.append(
            promotion_record.model_copy(
                update={"repository": "cart", "source_tag": "0.3.0-dev7", "derived_tag": "0.3.0"}
            )
        )
        return path

    @pytest.mark.requirement("FR-022")
    def test_table(self, cli_runner: CliRunner, audit_path: Path) -> None:
        """Records are listed oldest first under a header."""
        result = cli_runner.invoke(cli, ["history", "--audit-log", str(audit_path)])

        lines = result.stdout.splitlines()
        assert result.exit_code == 0
        assert lines[0].startswith("PROMOTED AT")
        assert "1.2.0-dev2" in lines[1]
        assert "0.3.0-dev7" in lines[2]

    @pytest.mark.requirement("FR-022")
    def test_filter_and_limit(self, cli_runner: CliRunner, audit_path: Path) -> None:
        """--repo filters and --limit keeps the newest records."""
        result = cli_runner.invoke(
            cli,
            [
                "history",
                "--audit-log",
                str(audit_path),
                "--repo",
                "cart",
                "--limit",
                "1",
                "-o",
                "json",
            ],
        )

        document = json.loads(result.stdout)
        assert [r["repository"] for r in document] == ["cart"]

    @pytest.mark.requirement("FR-022")
    def test_empty_log(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        """A missing log is reported as no promotions."""
        result = cli_runner.invoke(cli, ["history", "--audit-log", str(tmp_path / "none.jsonl")])

        assert result.exit_code == 0
        assert "No promotions recorded." in result.stderr


class TestMain:
    """Tests for the console entry point."""

    @pytest.mark.requirement("FR-050")
    def test_usage_error_exits_2(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Missing required options exit with click's usage code."""
        with pytest.raises(SystemExit) as exc_info:
            main(["promote-and-deploy"])

        assert exc_info.value.code == 2
        assert "Missing option" in capsys.readouterr().err

    @pytest.mark.requirement("FR-050")
    def test_help_lists_commands(self, cli_runner: CliRunner) -> None:
        """The root help names every command."""
        result = cli_runner.invoke(cli, ["--help"])

        for command in ("promote-and-deploy", "latest-dev-tag", "promote", "rollout", "history"):
            assert command in result.stdout
