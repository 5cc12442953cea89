from fastapi import (
    FastAPI,
    HTTPException,
    Depends,
    Header,
    Request,
    Response,
)
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from models import (
    CleanupRequest,
    ComposeBuildRequest,
    ComposeDeployRequest,
    DeploymentRequest,
    ImageBuildRequest,
    TagRequest,
)
from docker_service import (
    DOCKER_AVAILABLE,
    deploy_container,
    deploy_compose,
    get_container_status,
    get_container_logs,
    stop_container,
    remove_container,
    build_image,
    build_compose,
    tag_image,
    cleanup_images,
)
from utils import (
    logger,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    DEPLOYER_TOKEN,
    DEPLOY_LOG_TAIL,
    log_request,
    log_container_operation,
    get_metrics,
    health_check,
    DeployerException,
    DeploymentError,
)
import os
import time
from typing import Optional
from prometheus_client import CONTENT_TYPE_LATEST

# Initialize rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
)

app = FastAPI(
    title="Container Deployer",
    description="Deploy containers on this Docker host and confirm they are running",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def verify_deployer_token(authorization: Optional[str] = Header(None)):
    """Verify that the request carries the deployer token"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if authorization != f"Bearer {DEPLOYER_TOKEN}":
        raise HTTPException(status_code=403, detail="Invalid deployer token")

    return True


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    response_time = time.time() - start_time
    log_request(request, response_time, response.status_code)
    REQUEST_COUNT.labels(
        method=request.method, endpoint=request.url.path, status=response.status_code
    ).inc()
    REQUEST_LATENCY.observe(response_time)

    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error("Validation error", errors=exc.errors())
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation error",
            "errors": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError):
    # pydantic error contexts may hold exception objects
    return [
        {
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]


@app.exception_handler(DeployerException)
async def deployer_exception_handler(request: Request, exc: DeployerException):
    logger.error(
        "Deployer exception",
        error_code=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
    )
    content = {"detail": exc.message, "error_code": exc.error_code}
    if isinstance(exc, DeploymentError):
        content["reason"] = exc.reason
        content["diagnostic"] = exc.diagnostic
        if exc.outcome is not None:
            content["outcome"] = exc.outcome.model_dump(mode="json")
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unexpected error", error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_code": "INTERNAL_ERROR"},
    )


@app.post("/deploy")
@limiter.limit("10/minute")
def deploy(
    deployment: DeploymentRequest,
    request: Request,
    abort: bool = False,
    _: bool = Depends(verify_deployer_token),
):
    """Deploy a single container and wait for it to be running

    With ?abort=true a non-running outcome is returned as an error response.
    """
    logger.info("Deploying container", deployment=deployment.model_dump())
    outcome = deploy_container(deployment, abort_on_failure=abort)
    return outcome.model_dump(mode="json")


@app.post("/deploy/compose")
@limiter.limit("5/minute")
def deploy_with_compose(
    deployment: ComposeDeployRequest,
    request: Request,
    _: bool = Depends(verify_deployer_token),
):
    """Deploy a docker compose stack"""
    return deploy_compose(deployment)


@app.post("/build")
@limiter.limit("5/minute")
def build(
    build_request: ImageBuildRequest,
    request: Request,
    _: bool = Depends(verify_deployer_token),
):
    """Build an image from a Dockerfile, pushing it when a registry is given"""
    return build_image(build_request).model_dump()


@app.post("/build/compose")
@limiter.limit("5/minute")
def build_with_compose(
    build_request: ComposeBuildRequest,
    request: Request,
    _: bool = Depends(verify_deployer_token),
):
    return build_compose(
        build_request.compose_file, build_request.services, build_request.no_cache
    )


@app.post("/images/tag")
@limiter.limit("10/minute")
def tag(
    tag_request: TagRequest,
    request: Request,
    _: bool = Depends(verify_deployer_token),
):
    return tag_image(tag_request.source_image, tag_request.target_image)


@app.post("/images/cleanup")
@limiter.limit("5/minute")
def cleanup(
    cleanup_request: CleanupRequest,
    request: Request,
    _: bool = Depends(verify_deployer_token),
):
    """Prune dangling images and old versions of a named image"""
    return cleanup_images(cleanup_request)


@app.get("/containers/{name}/status")
@limiter.limit("30/minute")
def get_status(name: str, request: Request, _: bool = Depends(verify_deployer_token)):
    logger.info("Getting container status", container_name=name)
    return get_container_status(name)


@app.get("/containers/{name}/logs")
@limiter.limit("30/minute")
def get_logs(
    name: str,
    request: Request,
    lines: int = DEPLOY_LOG_TAIL,
    _: bool = Depends(verify_deployer_token),
):
    """Get the last lines of a container's logs"""
    logger.info("Getting container logs", container_name=name, lines=lines)
    return get_container_logs(name, lines)


@app.post("/containers/{name}/stop")
@limiter.limit("10/minute")
def stop(name: str, request: Request, _: bool = Depends(verify_deployer_token)):
    result = stop_container(name)
    log_container_operation("stop", name, "failed" if "error" in result else "success")
    return result


@app.delete("/containers/{name}")
@limiter.limit("10/minute")
def remove(
    name: str,
    request: Request,
    force: bool = False,
    _: bool = Depends(verify_deployer_token),
):
    result = remove_container(name, force=force)
    log_container_operation(
        "remove", name, "failed" if "error" in result else "success"
    )
    return result


@app.get("/health", status_code=200)
async def health_endpoint():
    return health_check(DOCKER_AVAILABLE)


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": "Container Deployer",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
