import os
import structlog
import time
from typing import Optional, Dict, Any, List, Tuple
from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
)
from fastapi import Request
from datetime import datetime
from dotenv import load_dotenv

load_dotenv()

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"]
)
REQUEST_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency")
CONTAINER_OPERATIONS = Counter(
    "container_operations_total", "Container operations", ["operation", "status"]
)
DEPLOYMENTS = Counter(
    "deployments_total", "Container deployments by final state", ["state"]
)
HEALTH_CHECK_POLLS = Histogram(
    "deployment_health_check_polls",
    "Status polls needed to settle a deployment",
    buckets=(1, 2, 5, 10, 20, 30),
)

# Deployment configuration
DEPLOYER_TOKEN = os.getenv("DEPLOYER_TOKEN", "default-secret-token")
DEPLOY_POLL_INTERVAL = float(os.getenv("DEPLOY_POLL_INTERVAL", 2))
DEPLOY_MAX_ATTEMPTS = int(os.getenv("DEPLOY_MAX_ATTEMPTS", 30))
DEPLOY_LOG_TAIL = int(os.getenv("DEPLOY_LOG_TAIL", 100))

# Registry credentials used when pushing images
REGISTRY_USERNAME = os.getenv("REGISTRY_USERNAME", "")
REGISTRY_PASSWORD = os.getenv("REGISTRY_PASSWORD", "")


def registry_auth_config() -> Optional[Dict[str, str]]:
    """Docker SDK auth_config for pushes, None when no credentials are set"""
    if not REGISTRY_USERNAME:
        return None
    return {"username": REGISTRY_USERNAME, "password": REGISTRY_PASSWORD}


def parse_pair(
    value: str, separator: str, field: str, from_right: bool = False
) -> Tuple[str, str]:
    """Split "left<sep>right" on the first (or last) separator

    Used for volume ("/host:/container:ro"), env ("KEY=VALUE") and build arg
    strings coming from the CLI and config files. Ports split from the right
    so "127.0.0.1:8080:80" keeps its host address on the left.
    """
    if from_right:
        left, sep, right = value.rpartition(separator)
    else:
        left, sep, right = value.partition(separator)
    if not sep or not left or (from_right and not right):
        raise ConfigurationError(
            f"Invalid {field} '{value}', expected LEFT{separator}RIGHT"
        )
    return left, right


def parse_pairs(
    values: Optional[List[str]], separator: str, field: str, from_right: bool = False
) -> List[Tuple[str, str]]:
    """Parse a list of pair strings, preserving order"""
    return [
        parse_pair(value, separator, field, from_right) for value in values or []
    ]


def log_request(request: Request, response_time: float, status_code: int):
    """Log request details with structured logging"""
    logger.info(
        "HTTP request",
        method=request.method,
        url=str(request.url),
        status_code=status_code,
        response_time=response_time,
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def log_container_operation(
    operation: str, container_name: str, status: str, details: Dict[str, Any] = None
):
    """Log container operations with structured logging"""
    logger.info(
        "Container operation",
        operation=operation,
        container_name=container_name,
        status=status,
        details=details or {},
    )
    CONTAINER_OPERATIONS.labels(operation=operation, status=status).inc()


def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()


def health_check(docker_available: bool) -> Dict[str, Any]:
    """Health check covering the Docker daemon and local disk"""
    try:
        disk_usage = os.statvfs("/")
        free_space_gb = (disk_usage.f_frsize * disk_usage.f_bavail) / (1024**3)

        return {
            "status": "healthy" if docker_available else "degraded",
            "timestamp": datetime.utcnow().isoformat(),
            "services": {
                "docker": "healthy" if docker_available else "unavailable",
            },
            "system": {
                "free_disk_gb": round(free_space_gb, 2),
                "checked_at": time.time(),
            },
        }
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "timestamp": datetime.utcnow().isoformat(),
            "error": str(e),
        }


# Error handling utilities
class DeployerException(Exception):
    """Base exception for the deployment agent"""

    def __init__(self, message: str, error_code: str = None, status_code: int = 500):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(self.message)


class ConfigurationError(DeployerException):
    """Missing or malformed deployment parameters, raised before any runtime call"""

    def __init__(self, message: str):
        super().__init__(message, "CONFIG_ERROR", 400)


class RuntimeCallError(DeployerException):
    """A container runtime operation failed unexpectedly"""

    def __init__(self, message: str, diagnostic: str = ""):
        self.diagnostic = diagnostic
        super().__init__(message, "RUNTIME_ERROR", 502)


class DeploymentError(DeployerException):
    """A deployment ended in a non-running state"""

    def __init__(
        self, message: str, reason: str, diagnostic: str = "", outcome=None
    ):
        self.reason = reason
        self.diagnostic = diagnostic
        self.outcome = outcome
        super().__init__(message, "DEPLOYMENT_FAILED", 500)


class BuildError(DeployerException):
    """Exception for image build and push errors"""

    def __init__(self, message: str, diagnostic: str = ""):
        self.diagnostic = diagnostic
        super().__init__(message, "BUILD_FAILED", 500)

