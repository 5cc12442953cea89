from enum import Enum
from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Tuple, Dict, Any

DEFAULT_RESTART_POLICY = "unless-stopped"
RESTART_POLICIES = ("no", "always", "unless-stopped", "on-failure")


def parse_restart_policy(policy: str) -> Dict[str, Any]:
    """ "on-failure:3" -> {"Name": "on-failure", "MaximumRetryCount": 3}

    Raises ValueError for an unknown policy or a malformed retry count.
    """
    name, sep, retries = policy.partition(":")
    if name not in RESTART_POLICIES:
        raise ValueError(f"unknown restart policy '{name}'")
    config = {"Name": name}
    if sep:
        if name != "on-failure" or not retries.isdigit():
            raise ValueError(f"invalid restart policy '{policy}'")
        config["MaximumRetryCount"] = int(retries)
    return config


def port_binding(host: str):
    """Host side of a port mapping as the Docker SDK expects it

    "8080" -> "8080", "127.0.0.1:8080" -> ("127.0.0.1", "8080"),
    "127.0.0.1:" -> ("127.0.0.1",) for a random port on that address.
    """
    address, sep, host_port = host.rpartition(":")
    if not sep:
        return host
    if not host_port:
        return (address,)
    return (address, host_port)


class ResultKind(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    ERROR = "error"


class RuntimeResult(BaseModel):
    """Outcome of a single container runtime call"""

    kind: ResultKind
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == ResultKind.OK


class DeploymentState(str, Enum):
    RUNNING = "running"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class FailureReason(str, Enum):
    CREATION_FAILED = "creation_failed"
    CONTAINER_EXITED = "container_exited"
    HEALTH_CHECK_TIMED_OUT = "health_check_timed_out"
    COMPOSE_FAILED = "compose_failed"


class DeploymentRequest(BaseModel):
    """Everything needed to put one image into one named container slot"""

    model_config = ConfigDict(frozen=True)

    image_reference: str
    container_name: str
    port_mappings: List[Tuple[str, str]] = []  # e.g., [("127.0.0.1:8080", "80")]
    volume_mappings: List[Tuple[str, str]] = []  # e.g., [("/srv/data", "/data")]
    environment_variables: List[Tuple[str, str]] = []
    environment_file: Optional[str] = None
    network: Optional[str] = None
    restart_policy: str = DEFAULT_RESTART_POLICY
    health_check_enabled: bool = True
    remove_existing: bool = True


class DeploymentOutcome(BaseModel):
    container_name: str
    image_reference: str
    final_state: DeploymentState
    attempts: int = 0
    reason: Optional[FailureReason] = None
    diagnostic: str = ""

    @property
    def running(self) -> bool:
        return self.final_state == DeploymentState.RUNNING


class ContainerSpec(BaseModel):
    """Creation command for a container, renderable for the CLI or the SDK"""

    model_config = ConfigDict(frozen=True)

    name: str
    image: str
    restart_policy: str = DEFAULT_RESTART_POLICY
    ports: List[Tuple[str, str]] = []
    volumes: List[Tuple[str, str]] = []
    env: List[Tuple[str, str]] = []
    env_file: Optional[str] = None
    network: Optional[str] = None

    @classmethod
    def from_request(cls, request: DeploymentRequest, env_file_exists: bool):
        return cls(
            name=request.container_name,
            image=request.image_reference,
            restart_policy=request.restart_policy,
            ports=request.port_mappings,
            volumes=request.volume_mappings,
            env=request.environment_variables,
            env_file=request.environment_file if env_file_exists else None,
            network=request.network,
        )

    def to_command(self) -> List[str]:
        """Equivalent `docker run` argv, image reference last"""
        command = ["docker", "run", "-d", "--name", self.name]
        command += ["--restart", self.restart_policy]
        for host_port, container_port in self.ports:
            command += ["-p", f"{host_port}:{container_port}"]
        for host_path, container_path in self.volumes:
            command += ["-v", f"{host_path}:{container_path}"]
        for key, value in self.env:
            command += ["-e", f"{key}={value}"]
        if self.env_file:
            command += ["--env-file", self.env_file]
        if self.network:
            command += ["--network", self.network]
        command.append(self.image)
        return command

    def restart_policy_config(self) -> Dict[str, Any]:
        return parse_restart_policy(self.restart_policy)

    def to_run_kwargs(self, env_file_values: Optional[Dict[str, str]] = None):
        """Keyword arguments for docker SDK `containers.run`

        Values from the env file come first so explicit variables override
        them, as with `docker run --env-file ... -e ...`.
        """
        ports = {}
        for host, container_port in self.ports:
            ports.setdefault(container_port, []).append(port_binding(host))
        ports = {
            container_port: hosts[0] if len(hosts) == 1 else hosts
            for container_port, hosts in ports.items()
        }

        environment = [
            f"{key}={value}" for key, value in (env_file_values or {}).items()
        ]
        environment += [f"{key}={value}" for key, value in self.env]

        run_kwargs = {
            "image": self.image,
            "name": self.name,
            "detach": True,
            "restart_policy": self.restart_policy_config(),
            "ports": ports,
            "volumes": [f"{host}:{container}" for host, container in self.volumes],
            "environment": environment,
        }
        if self.network:
            run_kwargs["network"] = self.network
        return run_kwargs


class ComposeDeployRequest(BaseModel):
    compose_file: str
    project_name: Optional[str] = None
    services: List[str] = []
    pull: bool = False
    recreate: bool = False


class ImageBuildRequest(BaseModel):
    image_name: str
    image_tag: str = "latest"
    dockerfile: str = "Dockerfile"
    context: str = "."
    build_args: List[Tuple[str, str]] = []
    no_cache: bool = False
    pull: bool = True
    registry: str = ""
    push: bool = False

    @property
    def repository(self) -> str:
        if self.registry:
            return f"{self.registry}/{self.image_name}"
        return self.image_name

    @property
    def full_image_name(self) -> str:
        return f"{self.repository}:{self.image_tag}"


class ImageBuildResult(BaseModel):
    image_name: str
    image_tag: str
    full_image_name: str
    image_id: Optional[str] = None
    pushed: bool = False


class CleanupRequest(BaseModel):
    image_name: Optional[str] = None
    dangling: bool = True


class ComposeBuildRequest(BaseModel):
    compose_file: str
    services: List[str] = []
    no_cache: bool = False


class TagRequest(BaseModel):
    source_image: str
    target_image: str
