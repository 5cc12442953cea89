"""
Docker Service Module - Main API Interface

This module provides a unified interface to the deployment functionality,
wiring the local Docker runtime into the specialized modules:
- runtime.py: Container runtime operations against the Docker Engine
- deployer.py: Single-container deployment with health confirmation
- compose.py: docker compose deployments and builds
- image_builder.py: Image build, push, tag and cleanup
"""

from models import (
    CleanupRequest,
    DeploymentOutcome,
    DeploymentRequest,
    ImageBuildRequest,
    ImageBuildResult,
    ResultKind,
)
from runtime import DockerRuntime, DOCKER_AVAILABLE
from deployer import Deployer
from compose import deploy_compose, build_compose
import image_builder
from utils import DEPLOY_LOG_TAIL, registry_auth_config


def get_runtime() -> DockerRuntime:
    """Runtime for the local Docker Engine, RuntimeCallError if unreachable"""
    return DockerRuntime()


def deploy_container(
    request: DeploymentRequest, abort_on_failure: bool = False
) -> DeploymentOutcome:
    return Deployer(get_runtime()).deploy(request, abort_on_failure=abort_on_failure)


def get_container_status(name: str):
    """Check if a container is running and return its status"""
    result = get_runtime().inspect_status(name)
    if result.kind == ResultKind.NOT_FOUND:
        return {"error": "Container not found"}
    if result.kind == ResultKind.ERROR:
        return {"error": result.output}
    return {
        "name": name,
        "status": result.output,
        "running": result.output == "running",
    }


def get_container_logs(name: str, lines: int = DEPLOY_LOG_TAIL):
    result = get_runtime().logs(name, lines)
    if result.kind == ResultKind.NOT_FOUND:
        return {"error": "Container not found"}
    if result.kind == ResultKind.ERROR:
        return {"error": f"Error getting logs: {result.output}"}
    return {"name": name, "logs": result.output}


def stop_container(name: str):
    """Stop a running container"""
    result = get_runtime().stop(name)
    if result.kind == ResultKind.NOT_FOUND:
        return {"error": "Container not found"}
    if result.kind == ResultKind.ERROR:
        return {"error": result.output}
    return {"message": f"Container {name} stopped successfully"}


def remove_container(name: str, force: bool = False):
    result = get_runtime().remove(name, force=force)
    if result.kind == ResultKind.NOT_FOUND:
        return {"message": f"Container {name} was already removed"}
    if result.kind == ResultKind.ERROR:
        return {"error": result.output}
    return {"message": f"Container {name} removed successfully"}


def build_image(request: ImageBuildRequest) -> ImageBuildResult:
    return image_builder.build_image(
        get_runtime().client, request, registry_auth_config()
    )


def tag_image(source_image: str, target_image: str):
    return image_builder.tag_image(get_runtime().client, source_image, target_image)


def cleanup_images(request: CleanupRequest):
    return image_builder.cleanup_images(
        get_runtime().client, request.image_name, request.dangling
    )


# Public API exports - these are the functions that should be imported by other modules
__all__ = [
    "DOCKER_AVAILABLE",
    # Deployment
    "deploy_container",
    "deploy_compose",
    # Container operations
    "get_container_status",
    "get_container_logs",
    "stop_container",
    "remove_container",
    # Images
    "build_image",
    "build_compose",
    "tag_image",
    "cleanup_images",
]
