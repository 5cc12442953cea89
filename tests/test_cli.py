import json
import pytest
from unittest.mock import patch

import cli
from models import DeploymentOutcome, DeploymentState, FailureReason, ImageBuildResult
from utils import BuildError, ConfigurationError, DeploymentError, RuntimeCallError


def outcome(state=DeploymentState.RUNNING, reason=None, attempts=1):
    return DeploymentOutcome(
        container_name="web",
        image_reference="nginx:latest",
        final_state=state,
        attempts=attempts,
        reason=reason,
        diagnostic="" if reason is None else "something went wrong",
    )


class TestDeployCommand:
    def test_builds_request_from_flags(self, capsys):
        with patch("cli.deploy_container") as mock_deploy:
            mock_deploy.return_value = outcome()

            code = cli.main(
                [
                    "deploy",
                    "--image", "nginx:latest",
                    "--name", "web",
                    "-p", "8080:80",
                    "-p", "8443:443",
                    "-v", "/srv/www:/usr/share/nginx/html:ro",
                    "-e", "MODE=prod",
                    "--env-file", "web.env",
                    "--network", "frontend",
                    "--restart", "always",
                ]
            )

        assert code == cli.EXIT_OK
        request = mock_deploy.call_args.args[0]
        assert request.image_reference == "nginx:latest"
        assert request.container_name == "web"
        assert request.port_mappings == [("8080", "80"), ("8443", "443")]
        assert request.volume_mappings == [("/srv/www", "/usr/share/nginx/html:ro")]
        assert request.environment_variables == [("MODE", "prod")]
        assert request.environment_file == "web.env"
        assert request.network == "frontend"
        assert request.restart_policy == "always"
        assert request.health_check_enabled is True
        assert request.remove_existing is True
        assert json.loads(capsys.readouterr().out)["final_state"] == "running"

    def test_toggles(self):
        with patch("cli.deploy_container") as mock_deploy:
            mock_deploy.return_value = outcome(attempts=0)
            cli.main(
                [
                    "deploy",
                    "--image", "nginx",
                    "--name", "web",
                    "--no-health-check",
                    "--keep-existing",
                ]
            )

        request = mock_deploy.call_args.args[0]
        assert request.health_check_enabled is False
        assert request.remove_existing is False

    @pytest.mark.parametrize(
        "state,reason,expected",
        [
            (DeploymentState.FAILED, FailureReason.CREATION_FAILED, cli.EXIT_CREATION_FAILED),
            (DeploymentState.FAILED, FailureReason.CONTAINER_EXITED, cli.EXIT_CONTAINER_EXITED),
            (
                DeploymentState.TIMED_OUT,
                FailureReason.HEALTH_CHECK_TIMED_OUT,
                cli.EXIT_TIMED_OUT,
            ),
        ],
    )
    def test_exit_codes_per_outcome(self, state, reason, expected):
        with patch("cli.deploy_container") as mock_deploy, patch(
            "cli.get_container_logs"
        ) as mock_logs:
            mock_deploy.return_value = outcome(state, reason)
            mock_logs.return_value = {"logs": "Traceback ..."}

            code = cli.main(["deploy", "--image", "nginx", "--name", "web"])

        assert code == expected

    def test_logs_printed_after_exit(self, capsys):
        with patch("cli.deploy_container") as mock_deploy, patch(
            "cli.get_container_logs"
        ) as mock_logs:
            mock_deploy.return_value = outcome(
                DeploymentState.FAILED, FailureReason.CONTAINER_EXITED
            )
            mock_logs.return_value = {"name": "web", "logs": "panic: no config"}

            cli.main(["deploy", "--image", "nginx", "--name", "web"])

        mock_logs.assert_called_once_with("web")
        assert "panic: no config" in capsys.readouterr().err

    def test_no_logs_fetched_when_creation_failed(self):
        with patch("cli.deploy_container") as mock_deploy, patch(
            "cli.get_container_logs"
        ) as mock_logs:
            mock_deploy.return_value = outcome(
                DeploymentState.FAILED, FailureReason.CREATION_FAILED
            )
            cli.main(["deploy", "--image", "nginx", "--name", "web"])

        mock_logs.assert_not_called()

    def test_malformed_port(self):
        with patch("cli.deploy_container") as mock_deploy:
            code = cli.main(["deploy", "--image", "nginx", "--name", "web", "-p", "80"])

        assert code == cli.EXIT_CONFIGURATION_ERROR
        mock_deploy.assert_not_called()

    def test_port_with_host_address(self):
        args = cli.build_parser().parse_args(
            ["deploy", "--image", "nginx", "--name", "web", "-p", "127.0.0.1:8080:80"]
        )

        request = cli.deployment_request_from_args(args)

        assert request.port_mappings == [("127.0.0.1:8080", "80")]

    def test_empty_name_is_configuration_error(self):
        with patch("cli.deploy_container") as mock_deploy:
            mock_deploy.side_effect = ConfigurationError("'container_name' is required")
            code = cli.main(["deploy", "--image", "nginx", "--name", ""])

        assert code == cli.EXIT_CONFIGURATION_ERROR

    def test_docker_unavailable(self):
        with patch("cli.deploy_container") as mock_deploy:
            mock_deploy.side_effect = RuntimeCallError(
                "Docker is not available on this system"
            )
            code = cli.main(["deploy", "--image", "nginx", "--name", "web"])

        assert code == cli.EXIT_UNEXPECTED_ERROR


class TestOtherCommands:
    def test_compose(self, capsys):
        with patch("cli.deploy_compose") as mock_compose:
            mock_compose.return_value = {"status": "app running"}
            code = cli.main(
                [
                    "compose",
                    "-f", "stack.yaml",
                    "--project", "shop",
                    "--service", "app",
                    "--pull",
                    "--recreate",
                ]
            )

        assert code == cli.EXIT_OK
        request = mock_compose.call_args.args[0]
        assert request.compose_file == "stack.yaml"
        assert request.project_name == "shop"
        assert request.services == ["app"]
        assert request.pull is True
        assert request.recreate is True
        assert "app running" in capsys.readouterr().out

    def test_compose_failure(self):
        with patch("cli.deploy_compose") as mock_compose:
            mock_compose.side_effect = DeploymentError(
                "Command failed", reason="compose_failed", diagnostic="boom"
            )
            code = cli.main(["compose", "-f", "stack.yaml"])

        assert code == cli.EXIT_CREATION_FAILED

    def test_build(self):
        with patch("cli.build_image") as mock_build:
            mock_build.return_value = ImageBuildResult(
                image_name="app", image_tag="1.0", full_image_name="app:1.0"
            )
            code = cli.main(
                [
                    "build",
                    "--image", "app",
                    "--tag", "1.0",
                    "--build-arg", "VERSION=1.0",
                    "--no-pull",
                ]
            )

        assert code == cli.EXIT_OK
        request = mock_build.call_args.args[0]
        assert request.build_args == [("VERSION", "1.0")]
        assert request.pull is False
        assert request.no_cache is False

    def test_build_failure(self):
        with patch("cli.build_image") as mock_build:
            mock_build.side_effect = BuildError("Failed to build app:latest", "oops")
            code = cli.main(["build", "--image", "app"])

        assert code == cli.EXIT_CREATION_FAILED

    def test_logs(self, capsys):
        with patch("cli.get_container_logs") as mock_logs:
            mock_logs.return_value = {"name": "web", "logs": "hello"}
            code = cli.main(["logs", "web", "--lines", "5"])

        assert code == cli.EXIT_OK
        mock_logs.assert_called_once_with("web", 5)
        assert capsys.readouterr().out.strip() == "hello"

    def test_logs_missing_container(self):
        with patch("cli.get_container_logs") as mock_logs:
            mock_logs.return_value = {"error": "Container not found"}
            code = cli.main(["logs", "web"])

        assert code == cli.EXIT_UNEXPECTED_ERROR

    def test_cleanup(self):
        with patch("cli.cleanup_images") as mock_cleanup:
            mock_cleanup.return_value = {"pruned": [], "removed": [], "failed": []}
            code = cli.main(["cleanup", "--image", "app", "--keep-dangling"])

        assert code == cli.EXIT_OK
        request = mock_cleanup.call_args.args[0]
        assert request.image_name == "app"
        assert request.dangling is False
