"""
Deployment Orchestrator Module

Moves a named container slot to "running the requested image":
evict the current occupant, make sure the network exists, create and start
the new container, then poll its status until it is running, has exited, or
the attempt budget runs out.
"""

import os
import time
from models import (
    ContainerSpec,
    DeploymentOutcome,
    DeploymentRequest,
    DeploymentState,
    FailureReason,
    ResultKind,
    parse_restart_policy,
)
from runtime import ContainerRuntime
from utils import (
    logger,
    log_container_operation,
    ConfigurationError,
    DeploymentError,
    DEPLOYMENTS,
    HEALTH_CHECK_POLLS,
    DEPLOY_POLL_INTERVAL,
    DEPLOY_MAX_ATTEMPTS,
)

STATUS_RUNNING = "running"
STATUS_EXITED = "exited"


def validate_request(request: DeploymentRequest):
    if not request.image_reference:
        raise ConfigurationError("'image_reference' is required")
    if not request.container_name:
        raise ConfigurationError("'container_name' is required")
    try:
        parse_restart_policy(request.restart_policy)
    except ValueError as e:
        raise ConfigurationError(f"Invalid 'restart_policy': {e}")


class Deployer:
    """Stateless deployment transition over a ContainerRuntime"""

    def __init__(
        self,
        runtime: ContainerRuntime,
        sleep=time.sleep,
        log=None,
        poll_interval: float = DEPLOY_POLL_INTERVAL,
        max_attempts: int = DEPLOY_MAX_ATTEMPTS,
        path_exists=os.path.isfile,
    ):
        self.runtime = runtime
        self.sleep = sleep
        self.log = log or logger
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.path_exists = path_exists

    def build_spec(self, request: DeploymentRequest) -> ContainerSpec:
        """Creation command for the request; a missing env file is skipped"""
        env_file_exists = False
        if request.environment_file:
            env_file_exists = self.path_exists(request.environment_file)
            if not env_file_exists:
                self.log.warning(
                    "Env file not found, skipping",
                    env_file=request.environment_file,
                    container_name=request.container_name,
                )
        return ContainerSpec.from_request(request, env_file_exists)

    def deploy(
        self, request: DeploymentRequest, abort_on_failure: bool = False
    ) -> DeploymentOutcome:
        """Deploy the request and report how the slot ended up

        With abort_on_failure, any outcome other than running raises
        DeploymentError carrying the outcome instead of returning it.
        """
        validate_request(request)

        log = self.log.bind(
            container_name=request.container_name, image=request.image_reference
        )
        log.info("Deploying container")

        if request.remove_existing:
            self._evict(request.container_name, log)

        if request.network:
            self._ensure_network(request.network, log)

        spec = self.build_spec(request)
        log.info("Starting container", command=" ".join(spec.to_command()))
        result = self.runtime.create_and_start(spec)

        if not result.ok:
            log_container_operation(
                "create", request.container_name, "failed", {"error": result.output}
            )
            outcome = DeploymentOutcome(
                container_name=request.container_name,
                image_reference=request.image_reference,
                final_state=DeploymentState.FAILED,
                reason=FailureReason.CREATION_FAILED,
                diagnostic=result.output,
            )
        elif not request.health_check_enabled:
            log_container_operation("create", request.container_name, "success")
            outcome = DeploymentOutcome(
                container_name=request.container_name,
                image_reference=request.image_reference,
                final_state=DeploymentState.RUNNING,
            )
        else:
            log_container_operation("create", request.container_name, "success")
            outcome = self._confirm_health(request, log)

        return self._finish(outcome, abort_on_failure, log)

    def _evict(self, name: str, log):
        log.info("Stopping existing container if running")
        for operation, call in (
            ("stop", self.runtime.stop),
            ("remove", self.runtime.remove),
        ):
            result = call(name)
            if result.kind == ResultKind.ERROR:
                log.warning(
                    "Could not evict existing container",
                    operation=operation,
                    error=result.output,
                )
            elif result.kind == ResultKind.OK:
                log_container_operation(operation, name, "success")

    def _ensure_network(self, network: str, log):
        result = self.runtime.create_network(network)
        if result.kind == ResultKind.ERROR:
            log.warning(
                "Could not create network", network=network, error=result.output
            )
        elif result.kind == ResultKind.OK:
            log.info("Created network", network=network)

    def _confirm_health(self, request: DeploymentRequest, log) -> DeploymentOutcome:
        log.info("Waiting for container to be healthy", max_attempts=self.max_attempts)
        name = request.container_name

        for attempt in range(1, self.max_attempts + 1):
            self.sleep(self.poll_interval)
            result = self.runtime.inspect_status(name)
            status = result.output if result.ok else result.kind.value

            if result.ok and status == STATUS_RUNNING:
                log.info("Container is running", attempts=attempt)
                return DeploymentOutcome(
                    container_name=name,
                    image_reference=request.image_reference,
                    final_state=DeploymentState.RUNNING,
                    attempts=attempt,
                )

            if result.ok and status == STATUS_EXITED:
                return DeploymentOutcome(
                    container_name=name,
                    image_reference=request.image_reference,
                    final_state=DeploymentState.FAILED,
                    attempts=attempt,
                    reason=FailureReason.CONTAINER_EXITED,
                    diagnostic=(
                        "Container exited unexpectedly. "
                        f"Check logs with: docker logs {name}"
                    ),
                )

            log.debug("Container not running yet", attempt=attempt, status=status)

        return DeploymentOutcome(
            container_name=name,
            image_reference=request.image_reference,
            final_state=DeploymentState.TIMED_OUT,
            attempts=self.max_attempts,
            reason=FailureReason.HEALTH_CHECK_TIMED_OUT,
            diagnostic=(
                "Container failed to start within "
                f"{self.max_attempts * self.poll_interval:g} seconds"
            ),
        )

    def _finish(self, outcome: DeploymentOutcome, abort_on_failure: bool, log):
        DEPLOYMENTS.labels(state=outcome.final_state.value).inc()
        if outcome.attempts:
            HEALTH_CHECK_POLLS.observe(outcome.attempts)

        if outcome.running:
            log.info("Container deployed successfully", attempts=outcome.attempts)
            return outcome

        log.error(
            "Container deployment failed",
            state=outcome.final_state.value,
            reason=outcome.reason.value,
            attempts=outcome.attempts,
            diagnostic=outcome.diagnostic,
        )
        if abort_on_failure:
            raise DeploymentError(
                f"Deployment of {outcome.container_name} failed: "
                f"{outcome.reason.value}",
                reason=outcome.reason.value,
                diagnostic=outcome.diagnostic,
                outcome=outcome,
            )
        return outcome
