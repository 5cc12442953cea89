#!/usr/bin/env python3
"""Deploy containers, compose stacks and images on the local Docker host."""
import argparse
import json
import sys

from models import (
    CleanupRequest,
    ComposeDeployRequest,
    DeploymentRequest,
    DeploymentState,
    FailureReason,
    ImageBuildRequest,
    DEFAULT_RESTART_POLICY,
)
from docker_service import (
    deploy_container,
    deploy_compose,
    build_image,
    get_container_logs,
    cleanup_images,
)
from utils import (
    logger,
    parse_pairs,
    ConfigurationError,
    DeployerException,
    DeploymentError,
    BuildError,
    DEPLOY_LOG_TAIL,
)

# exit codes, distinct per failure kind so calling pipelines can branch
EXIT_OK = 0
EXIT_UNEXPECTED_ERROR = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_CREATION_FAILED = 3
EXIT_CONTAINER_EXITED = 4
EXIT_TIMED_OUT = 5

REASON_EXIT_CODES = {
    FailureReason.CREATION_FAILED.value: EXIT_CREATION_FAILED,
    FailureReason.COMPOSE_FAILED.value: EXIT_CREATION_FAILED,
    FailureReason.CONTAINER_EXITED.value: EXIT_CONTAINER_EXITED,
    FailureReason.HEALTH_CHECK_TIMED_OUT.value: EXIT_TIMED_OUT,
}

# subcommands labels

SUBCOMMAND = "subcommand"
DEPLOY_SUBCOMMAND = "deploy"
COMPOSE_SUBCOMMAND = "compose"
BUILD_SUBCOMMAND = "build"
LOGS_SUBCOMMAND = "logs"
CLEANUP_SUBCOMMAND = "cleanup"


def build_parser():
    parser = argparse.ArgumentParser(
        description=__doc__,
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest=SUBCOMMAND, metavar="subcommand")
    subparsers.required = True

    # deploy
    deploy = subparsers.add_parser(
        DEPLOY_SUBCOMMAND,
        help="deploy a single container and wait until it is running",
        allow_abbrev=False,
    )
    deploy.add_argument("--image", required=True, help="image reference to run")
    deploy.add_argument("--name", required=True, help="container name (slot)")
    deploy.add_argument(
        "-p", "--port", action="append", default=[], metavar="[IP:]HOST:CONTAINER"
    )
    deploy.add_argument(
        "-v", "--volume", action="append", default=[], metavar="HOST:CONTAINER"
    )
    deploy.add_argument(
        "-e", "--env", action="append", default=[], metavar="KEY=VALUE"
    )
    deploy.add_argument("--env-file", help="only used when the file exists")
    deploy.add_argument("--network", help="created if it does not exist")
    deploy.add_argument("--restart", default=DEFAULT_RESTART_POLICY)
    deploy.add_argument(
        "--no-health-check",
        action="store_true",
        help="do not wait for the container to report running",
    )
    deploy.add_argument(
        "--keep-existing",
        action="store_true",
        help="do not stop and remove an existing container with the same name",
    )

    # compose
    compose = subparsers.add_parser(
        COMPOSE_SUBCOMMAND,
        help="deploy with docker compose",
        allow_abbrev=False,
    )
    compose.add_argument("-f", "--file", required=True, dest="compose_file")
    compose.add_argument("--project", dest="project_name")
    compose.add_argument(
        "--service", action="append", default=[], dest="services"
    )
    compose.add_argument("--pull", action="store_true", help="pull images first")
    compose.add_argument(
        "--recreate", action="store_true", help="force recreate containers"
    )

    # build
    build = subparsers.add_parser(
        BUILD_SUBCOMMAND,
        help="build an image from a Dockerfile",
        allow_abbrev=False,
    )
    build.add_argument("--image", required=True, dest="image_name")
    build.add_argument("--tag", default="latest", dest="image_tag")
    build.add_argument("--dockerfile", default="Dockerfile")
    build.add_argument("--context", default=".")
    build.add_argument(
        "--build-arg", action="append", default=[], metavar="KEY=VALUE"
    )
    build.add_argument("--no-cache", action="store_true")
    build.add_argument("--no-pull", action="store_true")
    build.add_argument("--registry", default="")
    build.add_argument(
        "--push", action="store_true", help="push to --registry after building"
    )

    # logs
    logs = subparsers.add_parser(
        LOGS_SUBCOMMAND, help="print the last lines of a container's logs"
    )
    logs.add_argument("name")
    logs.add_argument("--lines", type=int, default=DEPLOY_LOG_TAIL)

    # cleanup
    cleanup = subparsers.add_parser(
        CLEANUP_SUBCOMMAND,
        help="prune dangling images and old versions of an image",
    )
    cleanup.add_argument("--image", dest="image_name")
    cleanup.add_argument(
        "--keep-dangling", action="store_true", help="skip pruning dangling images"
    )

    return parser


def deployment_request_from_args(args) -> DeploymentRequest:
    return DeploymentRequest(
        image_reference=args.image,
        container_name=args.name,
        port_mappings=parse_pairs(args.port, ":", "port mapping", from_right=True),
        volume_mappings=parse_pairs(args.volume, ":", "volume mapping"),
        environment_variables=parse_pairs(args.env, "=", "environment variable"),
        environment_file=args.env_file,
        network=args.network,
        restart_policy=args.restart,
        health_check_enabled=not args.no_health_check,
        remove_existing=not args.keep_existing,
    )


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _deploy(args):
    outcome = deploy_container(deployment_request_from_args(args))
    _print_json(outcome.model_dump(mode="json"))
    if outcome.final_state == DeploymentState.RUNNING:
        return EXIT_OK

    print(outcome.diagnostic, file=sys.stderr)
    if outcome.reason != FailureReason.CREATION_FAILED:
        logs = get_container_logs(outcome.container_name)
        if "logs" in logs:
            print(logs["logs"], file=sys.stderr)
    return REASON_EXIT_CODES[outcome.reason.value]


def _compose(args):
    result = deploy_compose(
        ComposeDeployRequest(
            compose_file=args.compose_file,
            project_name=args.project_name,
            services=args.services,
            pull=args.pull,
            recreate=args.recreate,
        )
    )
    print(result["status"])
    return EXIT_OK


def _build(args):
    result = build_image(
        ImageBuildRequest(
            image_name=args.image_name,
            image_tag=args.image_tag,
            dockerfile=args.dockerfile,
            context=args.context,
            build_args=parse_pairs(args.build_arg, "=", "build arg"),
            no_cache=args.no_cache,
            pull=not args.no_pull,
            registry=args.registry,
            push=args.push,
        )
    )
    _print_json(result.model_dump())
    return EXIT_OK


def _logs(args):
    result = get_container_logs(args.name, args.lines)
    if "error" in result:
        print(result["error"], file=sys.stderr)
        return EXIT_UNEXPECTED_ERROR
    print(result["logs"])
    return EXIT_OK


def _cleanup(args):
    result = cleanup_images(
        CleanupRequest(image_name=args.image_name, dangling=not args.keep_dangling)
    )
    _print_json(result)
    return EXIT_OK


SUBCOMMAND_HANDLERS = {
    DEPLOY_SUBCOMMAND: _deploy,
    COMPOSE_SUBCOMMAND: _compose,
    BUILD_SUBCOMMAND: _build,
    LOGS_SUBCOMMAND: _logs,
    CLEANUP_SUBCOMMAND: _cleanup,
}


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        return SUBCOMMAND_HANDLERS[args.subcommand](args)
    except ConfigurationError as e:
        print(f"{args.subcommand}: {e.message}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except DeploymentError as e:
        print(f"{args.subcommand}: {e.message}\n{e.diagnostic}", file=sys.stderr)
        return REASON_EXIT_CODES.get(e.reason, EXIT_UNEXPECTED_ERROR)
    except BuildError as e:
        print(f"{args.subcommand}: {e.message}\n{e.diagnostic}", file=sys.stderr)
        return EXIT_CREATION_FAILED
    except DeployerException as e:
        logger.error("Deployer exception", error_code=e.error_code, message=e.message)
        print(f"{args.subcommand}: {e.message}", file=sys.stderr)
        return EXIT_UNEXPECTED_ERROR


if __name__ == "__main__":
    sys.exit(main())
