"""
Image Builder Module

Build, push, tag and clean up Docker images through the Docker SDK.
"""

from typing import Dict, Optional
from docker.errors import DockerException
from models import ImageBuildRequest, ImageBuildResult
from utils import logger, log_container_operation, ConfigurationError, BuildError

# Versions of a named image kept by cleanup_images
IMAGES_TO_KEEP = 3


def _split_reference(reference: str):
    """ "registry:5000/app:1.2" -> ("registry:5000/app", "1.2") """
    repository, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, "latest"
    return repository, tag


def build_image(
    client, request: ImageBuildRequest, auth_config: Optional[Dict[str, str]] = None
) -> ImageBuildResult:
    """Build an image from a Dockerfile and push it when a registry is set

    auth_config ({"username": ..., "password": ...}) authenticates the push.
    """
    if not request.image_name:
        raise ConfigurationError(
            "'image_name' is required when building from a Dockerfile"
        )

    full_image_name = request.full_image_name
    logger.info(
        "Building Docker image",
        image=full_image_name,
        dockerfile=request.dockerfile,
        context=request.context,
    )

    try:
        image, build_logs = client.images.build(
            path=request.context,
            dockerfile=request.dockerfile,
            tag=full_image_name,
            buildargs=dict(request.build_args),
            nocache=request.no_cache,
            pull=request.pull,
            rm=True,
        )
        for chunk in build_logs:
            if "stream" in chunk:
                logger.debug("Build output", line=chunk["stream"].rstrip())
    except DockerException as e:
        log_container_operation("build", full_image_name, "failed", {"error": str(e)})
        raise BuildError(f"Failed to build {full_image_name}", diagnostic=str(e))

    pushed = False
    if request.push and request.registry:
        push_image(client, request.repository, request.image_tag, auth_config)
        pushed = True

    log_container_operation("build", full_image_name, "success")
    return ImageBuildResult(
        image_name=request.image_name,
        image_tag=request.image_tag,
        full_image_name=full_image_name,
        image_id=image.id,
        pushed=pushed,
    )


def push_image(
    client, repository: str, tag: str, auth_config: Optional[Dict[str, str]] = None
):
    logger.info(
        "Pushing image to registry",
        repository=repository,
        tag=tag,
        authenticated=auth_config is not None,
    )
    push_kwargs = {"tag": tag, "stream": True, "decode": True}
    if auth_config:
        push_kwargs["auth_config"] = auth_config
    try:
        for line in client.images.push(repository, **push_kwargs):
            # Push failures arrive in the stream, not as an exception
            if "error" in line:
                raise BuildError(
                    f"Failed to push {repository}:{tag}", diagnostic=line["error"]
                )
    except DockerException as e:
        raise BuildError(f"Failed to push {repository}:{tag}", diagnostic=str(e))


def tag_image(client, source_image: str, target_image: str) -> dict:
    logger.info("Tagging image", source=source_image, target=target_image)
    repository, tag = _split_reference(target_image)
    try:
        image = client.images.get(source_image)
        image.tag(repository, tag=tag)
    except DockerException as e:
        raise BuildError(f"Failed to tag {source_image}", diagnostic=str(e))
    return {"source": source_image, "target": f"{repository}:{tag}"}


def cleanup_images(client, image_name: str = None, dangling: bool = True) -> dict:
    """Prune dangling images and old versions of image_name

    The IMAGES_TO_KEEP newest versions of image_name survive. Removal
    failures (e.g. an image still used by a container) are logged and skipped.
    """
    logger.info("Cleaning up Docker images", image_name=image_name, dangling=dangling)
    result = {"pruned": [], "removed": [], "failed": []}

    if dangling:
        try:
            pruned = client.images.prune(filters={"dangling": True})
            result["pruned"] = [
                entry.get("Deleted") or entry.get("Untagged")
                for entry in pruned.get("ImagesDeleted") or []
            ]
        except DockerException as e:
            logger.warning("Could not prune dangling images", error=str(e))

    if image_name:
        try:
            images = client.images.list(name=image_name)
        except DockerException as e:
            logger.warning("Could not list images", image_name=image_name, error=str(e))
            images = []

        images = sorted(images, key=lambda image: image.attrs["Created"], reverse=True)
        for image in images[IMAGES_TO_KEEP:]:
            try:
                client.images.remove(image.id, force=True)
                result["removed"].append(image.id)
            except DockerException as e:
                logger.warning(
                    "Could not remove image", image_id=image.id, error=str(e)
                )
                result["failed"].append(image.id)

    return result
