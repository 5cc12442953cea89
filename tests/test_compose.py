import subprocess
import pytest
from unittest.mock import patch

from compose import build_compose, compose_base_command, deploy_compose
from models import ComposeDeployRequest
from utils import BuildError, ConfigurationError, DeploymentError


def completed(command, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(command, returncode, stdout, stderr)


@pytest.fixture
def compose_file(tmp_path):
    path = tmp_path / "docker-compose.yaml"
    path.write_text("services:\n  app:\n    image: nginx\n")
    return str(path)


def commands_run(mock_run):
    return [call.args[0] for call in mock_run.call_args_list]


class TestDeployCompose:
    def test_up_then_ps(self, compose_file):
        with patch("compose.subprocess.run") as mock_run:
            mock_run.side_effect = lambda command, **kwargs: completed(
                command, stdout="NAME  STATUS\napp   running\n"
            )

            result = deploy_compose(ComposeDeployRequest(compose_file=compose_file))

        base = ["docker", "compose", "-f", compose_file]
        assert commands_run(mock_run) == [base + ["up", "-d"], base + ["ps"]]
        assert "app   running" in result["status"]

    def test_pull_recreate_project_and_services(self, compose_file):
        request = ComposeDeployRequest(
            compose_file=compose_file,
            project_name="shop",
            services=["app", "worker"],
            pull=True,
            recreate=True,
        )
        with patch("compose.subprocess.run") as mock_run:
            mock_run.side_effect = lambda command, **kwargs: completed(command)
            deploy_compose(request)

        base = ["docker", "compose", "-f", compose_file, "-p", "shop"]
        assert commands_run(mock_run) == [
            base + ["pull", "app", "worker"],
            base + ["up", "-d", "--force-recreate", "app", "worker"],
            base + ["ps"],
        ]

    def test_missing_compose_file(self, tmp_path):
        with patch("compose.subprocess.run") as mock_run:
            with pytest.raises(ConfigurationError):
                deploy_compose(
                    ComposeDeployRequest(compose_file=str(tmp_path / "missing.yaml"))
                )

        mock_run.assert_not_called()

    def test_failed_up_raises(self, compose_file):
        with patch("compose.subprocess.run") as mock_run:
            mock_run.side_effect = lambda command, **kwargs: completed(
                command, returncode=1, stderr="pull access denied"
            )

            with pytest.raises(DeploymentError) as exc_info:
                deploy_compose(ComposeDeployRequest(compose_file=compose_file))

        assert exc_info.value.reason == "compose_failed"
        assert exc_info.value.diagnostic == "pull access denied"
        # ps is not run after a failed up
        assert mock_run.call_count == 1

    def test_failed_ps_raises(self, compose_file):
        def run(command, **kwargs):
            if command[-1] == "ps":
                return completed(command, returncode=1, stderr="no such service")
            return completed(command)

        with patch("compose.subprocess.run") as mock_run:
            mock_run.side_effect = run

            with pytest.raises(DeploymentError) as exc_info:
                deploy_compose(ComposeDeployRequest(compose_file=compose_file))

        assert exc_info.value.reason == "compose_failed"
        assert exc_info.value.diagnostic == "no such service"
        assert mock_run.call_count == 2


class TestBuildCompose:
    def test_build_with_options(self, compose_file):
        with patch("compose.subprocess.run") as mock_run:
            mock_run.side_effect = lambda command, **kwargs: completed(command)
            result = build_compose(compose_file, ["app"], no_cache=True)

        assert commands_run(mock_run) == [
            ["docker", "compose", "-f", compose_file, "build", "--no-cache", "app"]
        ]
        assert result["services"] == ["app"]

    def test_build_failure(self, compose_file):
        with patch("compose.subprocess.run") as mock_run:
            mock_run.side_effect = lambda command, **kwargs: completed(
                command, returncode=17, stderr="failed to solve"
            )

            with pytest.raises(BuildError) as exc_info:
                build_compose(compose_file)

        assert exc_info.value.diagnostic == "failed to solve"


def test_base_command_without_project():
    assert compose_base_command("stack.yaml") == [
        "docker",
        "compose",
        "-f",
        "stack.yaml",
    ]
