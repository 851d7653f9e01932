import pathlib as pl
import threading
import time
import typing as tp

import pytest

from cluster_deployer.cluster_management import lease_client
from cluster_deployer.cluster_management import resources
from cluster_deployer.utils import build
from cluster_deployer.utils import cluster_scripts
from cluster_deployer.utils import configuration
from cluster_deployer.utils import http_client

RUN_ID = "09a2565a-7ac6-11eb-a603-2218f636630c"


class FakeResponse:
    def __init__(self, status_code: int, payload: tp.Any = None, text: str = "") -> None:
        self.status_code = status_code
        self.payload = payload
        self.text = text
        self.reason = "fake"

    def json(self) -> tp.Any:
        if self.payload is None:
            msg = "No JSON"
            raise ValueError(msg)
        return self.payload


class FakeSession:
    """Session replacement, answers with `handler(endpoint, params)`."""

    def __init__(self, handler: tp.Callable[[str, dict], tp.Any]) -> None:
        self.handler = handler
        self.requests: list[tuple[str, dict, float]] = []

    def post(self, url: str, *, params: dict, timeout: float) -> tp.Any:
        endpoint = url.rsplit("/", maxsplit=1)[-1]
        self.requests.append((endpoint, dict(params), timeout))
        result = self.handler(endpoint, params)
        if isinstance(result, Exception):
            raise result
        return result

    def endpoints(self) -> list[str]:
        return [r[0] for r in self.requests]


class FakePoolClient:
    """In-memory resource broker."""

    def __init__(
        self,
        *,
        project: str = "leased-proj",
        acquire_delay: float = 0.0,
        acquire_error: Exception | None = None,
        heartbeat_error: Exception | None = None,
        release_result: bool = True,
    ) -> None:
        self.project = project
        self.acquire_delay = acquire_delay
        self.acquire_error = acquire_error
        self.heartbeat_error = heartbeat_error
        self.release_result = release_result

        self.acquire_calls = 0
        self.release_calls = 0
        self.heartbeat_times: list[float] = []
        self._lock = threading.Lock()

    @property
    def total_calls(self) -> int:
        return self.acquire_calls + self.release_calls + len(self.heartbeat_times)

    def acquire(self, pool_kind: str, timeout: int) -> resources.Lease:
        self.acquire_calls += 1
        if self.acquire_delay > timeout:
            time.sleep(timeout)
            msg = f"No '{pool_kind}' in {timeout}s"
            raise lease_client.AcquisitionTimeoutError(msg)
        time.sleep(self.acquire_delay)
        if self.acquire_error is not None:
            raise self.acquire_error
        return resources.Lease(pool_kind=pool_kind, name=self.project, owner="tester")

    def heartbeat(self, lease: resources.Lease) -> None:
        with self._lock:
            self.heartbeat_times.append(time.monotonic())
        if self.heartbeat_error is not None:
            raise self.heartbeat_error

    def release(self, lease: resources.Lease) -> bool:
        self.release_calls += 1
        return self.release_result


class FakeScripts:
    def __init__(
        self, *, up_rc: int = 0, down_rc: int = 0, healthy: bool = True, dump_rc: int = 0
    ) -> None:
        self.up_rc = up_rc
        self.down_rc = down_rc
        self.healthy = healthy
        self.dump_rc = dump_rc
        self.calls: list[str] = []
        self.targets: list[cluster_scripts.ClusterTarget] = []
        self.up_hook: tp.Callable[[], None] | None = None

    def up(
        self, *, target: cluster_scripts.ClusterTarget, cancel: threading.Event | None = None
    ) -> int:
        self.calls.append("up")
        self.targets.append(target)
        if self.up_hook is not None:
            self.up_hook()
        return self.up_rc

    def down(self, *, target: cluster_scripts.ClusterTarget) -> int:
        self.calls.append("down")
        self.targets.append(target)
        return self.down_rc

    def is_up(self) -> bool:
        self.calls.append("is_up")
        return self.healthy

    def dump_logs(self, *, target: cluster_scripts.ClusterTarget, logs_dir: pl.Path) -> int:
        self.calls.append("dump_logs")
        return self.dump_rc

    def enable_compute_api(self, *, project: str) -> None:
        self.calls.append("enable_compute_api")

    def terminate(self) -> None:
        self.calls.append("terminate")


class FakeBuilder:
    def __init__(self, *, image: str = "kindest/node:test", fail: bool = False) -> None:
        self.image = image
        self.fail = fail
        self.calls = 0

    def build(self) -> build.BuildResult:
        self.calls += 1
        if self.fail:
            msg = "Failed to build node image."
            raise build.BuildError(msg)
        return build.BuildResult(image=self.image)


@pytest.fixture
def options(tmp_path: pl.Path) -> configuration.DeployerOptions:
    return configuration.DeployerOptions(
        gcp_project="",
        gcp_zone="us-central1-b",
        owner="tester",
        repo_root=tmp_path / "repo",
        run_dir=tmp_path / "run",
        artifacts_dir=tmp_path / "artifacts",
    )


@pytest.fixture
def identity() -> resources.RunIdentity:
    return resources.RunIdentity.from_run_id(RUN_ID)


@pytest.fixture
def fake_session(monkeypatch: pytest.MonkeyPatch) -> tp.Callable[..., FakeSession]:
    """Return factory that installs a fake session into the global HTTP client."""

    def _install(handler: tp.Callable[[str, dict], tp.Any]) -> FakeSession:
        session = FakeSession(handler)
        monkeypatch.setattr(http_client, "get_session", lambda: session)
        return session

    return _install
