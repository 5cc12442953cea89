"""
Container Runtime Module

The container runtime collaborator used by the deployment orchestrator:
stop, remove, network creation, create+start, status inspection and logs.
Every call returns a RuntimeResult instead of raising, so callers can tell an
idempotent "nothing to do" apart from a genuine failure.
"""

import os
from abc import ABC, abstractmethod
import docker
from docker.errors import DockerException, APIError, NotFound
from dotenv import dotenv_values
from models import ContainerSpec, ResultKind, RuntimeResult
from utils import logger, RuntimeCallError

try:
    client = docker.from_env()
    DOCKER_AVAILABLE = True
except DockerException as e:
    logger.warning("Docker is not available", error=str(e))
    client = None
    DOCKER_AVAILABLE = False


class ContainerRuntime(ABC):
    """Operations the orchestrator needs from a container engine"""

    @abstractmethod
    def stop(self, name: str) -> RuntimeResult:
        raise NotImplementedError

    @abstractmethod
    def remove(self, name: str, force: bool = False) -> RuntimeResult:
        raise NotImplementedError

    @abstractmethod
    def create_network(self, name: str) -> RuntimeResult:
        raise NotImplementedError

    @abstractmethod
    def create_and_start(self, spec: ContainerSpec) -> RuntimeResult:
        raise NotImplementedError

    @abstractmethod
    def inspect_status(self, name: str) -> RuntimeResult:
        """Result output carries the container state, e.g. "running" """
        raise NotImplementedError

    @abstractmethod
    def logs(self, name: str, tail_lines: int = 100) -> RuntimeResult:
        raise NotImplementedError


def read_env_file(path: str):
    """Load KEY=VALUE pairs the way `docker run --env-file` does

    Bare keys take their value from the current environment and are dropped
    when it is unset. ${VAR} references are kept literally, as docker does.
    Unlike docker, surrounding quotes are stripped from values.
    """
    values = {}
    for key, value in dotenv_values(path, interpolate=False).items():
        if value is None:
            value = os.environ.get(key)
            if value is None:
                continue
        values[key] = value
    return values


class DockerRuntime(ContainerRuntime):
    """ContainerRuntime backed by the local Docker Engine"""

    def __init__(self, docker_client=None):
        self.client = docker_client or client
        if self.client is None:
            raise RuntimeCallError("Docker is not available on this system")

    def stop(self, name: str) -> RuntimeResult:
        try:
            container = self.client.containers.get(name)
            container.stop()
            return RuntimeResult(kind=ResultKind.OK)
        except NotFound:
            return RuntimeResult(kind=ResultKind.NOT_FOUND)
        except DockerException as e:
            return RuntimeResult(kind=ResultKind.ERROR, output=str(e))

    def remove(self, name: str, force: bool = False) -> RuntimeResult:
        try:
            container = self.client.containers.get(name)
            container.remove(force=force)
            return RuntimeResult(kind=ResultKind.OK)
        except NotFound:
            return RuntimeResult(kind=ResultKind.NOT_FOUND)
        except DockerException as e:
            return RuntimeResult(kind=ResultKind.ERROR, output=str(e))

    def create_network(self, name: str) -> RuntimeResult:
        try:
            # The name filter is a substring match
            existing = self.client.networks.list(names=[name])
            if any(network.name == name for network in existing):
                return RuntimeResult(kind=ResultKind.ALREADY_EXISTS)

            self.client.networks.create(name)
            return RuntimeResult(kind=ResultKind.OK)
        except APIError as e:
            if e.status_code == 409:
                return RuntimeResult(kind=ResultKind.ALREADY_EXISTS)
            return RuntimeResult(kind=ResultKind.ERROR, output=str(e))
        except DockerException as e:
            return RuntimeResult(kind=ResultKind.ERROR, output=str(e))

    def create_and_start(self, spec: ContainerSpec) -> RuntimeResult:
        try:
            env_file_values = read_env_file(spec.env_file) if spec.env_file else None
            container = self.client.containers.run(
                **spec.to_run_kwargs(env_file_values)
            )
            return RuntimeResult(kind=ResultKind.OK, output=container.id)
        except DockerException as e:
            return RuntimeResult(kind=ResultKind.ERROR, output=str(e))
        except OSError as e:
            return RuntimeResult(
                kind=ResultKind.ERROR, output=f"Could not read env file: {e}"
            )
        except ValueError as e:
            return RuntimeResult(kind=ResultKind.ERROR, output=str(e))

    def inspect_status(self, name: str) -> RuntimeResult:
        try:
            container = self.client.containers.get(name)
            return RuntimeResult(
                kind=ResultKind.OK, output=container.attrs["State"]["Status"]
            )
        except NotFound:
            return RuntimeResult(kind=ResultKind.NOT_FOUND)
        except DockerException as e:
            return RuntimeResult(kind=ResultKind.ERROR, output=str(e))

    def logs(self, name: str, tail_lines: int = 100) -> RuntimeResult:
        try:
            container = self.client.containers.get(name)
            output = container.logs(tail=tail_lines)
            return RuntimeResult(
                kind=ResultKind.OK, output=output.decode("utf-8", errors="replace")
            )
        except NotFound:
            return RuntimeResult(kind=ResultKind.NOT_FOUND)
        except DockerException as e:
            return RuntimeResult(kind=ResultKind.ERROR, output=str(e))
