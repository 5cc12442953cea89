import os

# Rate limits would trip across tests sharing one TestClient
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest

from models import ContainerSpec, DeploymentRequest, ResultKind, RuntimeResult
from runtime import ContainerRuntime


class FakeRuntime(ContainerRuntime):
    """Scripted runtime recording every call

    inspect_status replays `statuses` in order and keeps returning the last one.
    """

    def __init__(
        self,
        statuses=("running",),
        stop=ResultKind.OK,
        remove=ResultKind.OK,
        network=ResultKind.OK,
        create=ResultKind.OK,
        create_output="container-id",
    ):
        self.calls = []
        self.statuses = list(statuses)
        self.results = {"stop": stop, "remove": remove, "create_network": network}
        self.create_result = RuntimeResult(kind=create, output=create_output)
        self.specs = []

    def _record(self, operation, name):
        self.calls.append((operation, name))
        return RuntimeResult(kind=self.results[operation])

    def stop(self, name):
        return self._record("stop", name)

    def remove(self, name, force=False):
        return self._record("remove", name)

    def create_network(self, name):
        return self._record("create_network", name)

    def create_and_start(self, spec: ContainerSpec):
        self.calls.append(("create_and_start", spec.name))
        self.specs.append(spec)
        return self.create_result

    def inspect_status(self, name):
        self.calls.append(("inspect_status", name))
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, RuntimeResult):
            return status
        return RuntimeResult(kind=ResultKind.OK, output=status)

    def logs(self, name, tail_lines=100):
        self.calls.append(("logs", name))
        return RuntimeResult(kind=ResultKind.OK, output="")

    def count(self, operation):
        return sum(1 for call in self.calls if call[0] == operation)


@pytest.fixture
def make_request():
    def _make(**overrides):
        fields = {"image_reference": "nginx:latest", "container_name": "web"}
        fields.update(overrides)
        return DeploymentRequest(**fields)

    return _make


@pytest.fixture
def sleeps():
    return []
