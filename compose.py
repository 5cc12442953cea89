"""
Compose Module

`docker compose` deployments and builds. The Docker SDK has no compose
support, so these shell out to the docker CLI.
"""

import os
import subprocess
from typing import List, Optional
from models import ComposeDeployRequest, FailureReason
from utils import logger, ConfigurationError, DeploymentError, BuildError

COMPOSE_TIMEOUT = 600


def compose_base_command(compose_file: str, project_name: Optional[str] = None):
    command = ["docker", "compose", "-f", compose_file]
    if project_name:
        command += ["-p", project_name]
    return command


def _run(command: List[str]) -> subprocess.CompletedProcess:
    logger.info("Running compose command", command=" ".join(command))
    return subprocess.run(
        command,
        capture_output=True,
        text=True,
        timeout=COMPOSE_TIMEOUT,
    )


def _require_compose_file(compose_file: str):
    if not compose_file:
        raise ConfigurationError("'compose_file' is required")
    if not os.path.isfile(compose_file):
        raise ConfigurationError(f"Compose file '{compose_file}' not found")


def deploy_compose(request: ComposeDeployRequest) -> dict:
    """Pull (optionally), bring the stack up detached and report `ps` output"""
    _require_compose_file(request.compose_file)
    base = compose_base_command(request.compose_file, request.project_name)

    logger.info(
        "Deploying with docker compose",
        compose_file=request.compose_file,
        project_name=request.project_name,
        services=request.services,
    )

    commands = []
    if request.pull:
        commands.append(base + ["pull"] + request.services)

    up_command = base + ["up", "-d"]
    if request.recreate:
        up_command.append("--force-recreate")
    commands.append(up_command + request.services)
    commands.append(base + ["ps"])

    for command in commands:
        result = _run(command)
        if result.returncode != 0:
            raise DeploymentError(
                f"Command failed: {' '.join(command)}",
                reason=FailureReason.COMPOSE_FAILED.value,
                diagnostic=result.stderr,
            )

    # output of the last command, ps
    status = result
    logger.info(
        "Docker compose deployment completed", compose_file=request.compose_file
    )
    return {
        "compose_file": request.compose_file,
        "project_name": request.project_name,
        "services": request.services,
        "status": status.stdout,
    }


def build_compose(
    compose_file: str, services: List[str] = None, no_cache: bool = False
) -> dict:
    """Build the images of a compose file"""
    _require_compose_file(compose_file)
    services = services or []

    command = compose_base_command(compose_file) + ["build"]
    if no_cache:
        command.append("--no-cache")
    command += services

    result = _run(command)
    if result.returncode != 0:
        raise BuildError(
            f"Compose build failed for {compose_file}", diagnostic=result.stderr
        )

    logger.info("Docker compose build completed", compose_file=compose_file)
    return {"compose_file": compose_file, "services": services, "output": result.stdout}
