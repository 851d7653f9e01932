"""Lifecycle of a test cluster: build, up, verify and down.

`LifecycleController` drives the phases in order and makes sure the leased project is returned
to the pool on every exit path, including failures in any of the phases.
"""

import dataclasses
import enum
import logging
import pathlib as pl
import threading
import typing as tp

from cluster_deployer.cluster_management import lease_client
from cluster_deployer.cluster_management import resource_manager
from cluster_deployer.cluster_management import resources
from cluster_deployer.utils import artifacts
from cluster_deployer.utils import build
from cluster_deployer.utils import cluster_scripts
from cluster_deployer.utils import configuration
from cluster_deployer.utils import framework_log
from cluster_deployer.utils import helpers
from cluster_deployer.utils import locking

LOGGER = logging.getLogger(__name__)


class LifecycleState(enum.StrEnum):
    NOT_STARTED = "not_started"
    BUILDING = "building"
    UP = "up"
    VERIFIED = "verified"
    TEARING_DOWN = "tearing_down"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({LifecycleState.DONE, LifecycleState.FAILED})


class PhaseFailedError(Exception):
    def __init__(self, phase: str, returncode: int | None = None, msg: str = "") -> None:
        self.phase = phase
        self.returncode = returncode
        msg = msg or f"Phase '{phase}' failed" + (
            f" with exit status {returncode}." if returncode is not None else "."
        )
        super().__init__(msg)


class Builder(tp.Protocol):
    def build(self) -> build.BuildResult: ...


class Scripts(tp.Protocol):
    def up(
        self, *, target: cluster_scripts.ClusterTarget, cancel: threading.Event | None = None
    ) -> int: ...

    def down(self, *, target: cluster_scripts.ClusterTarget) -> int: ...

    def is_up(self) -> bool: ...

    def dump_logs(self, *, target: cluster_scripts.ClusterTarget, logs_dir: pl.Path) -> int: ...

    def enable_compute_api(self, *, project: str) -> None: ...

    def terminate(self) -> None: ...


@dataclasses.dataclass(frozen=True)
class RunResult:
    """Outcome of a whole run: the first fatal error and whether the project went back."""

    state: LifecycleState
    error: BaseException | None
    released: bool

    @property
    def ok(self) -> bool:
        return self.error is None


class LifecycleController:
    """State machine of a single cluster run."""

    def __init__(
        self,
        *,
        options: configuration.DeployerOptions,
        manager: resource_manager.ResourceManager,
        scripts: Scripts,
        builder: Builder | None = None,
        identity: resources.RunIdentity | None = None,
    ) -> None:
        self.options = options
        self.manager = manager
        self.scripts = scripts
        self.builder = builder or build.NoopBuilder(options)
        self.identity = identity or resources.RunIdentity.from_run_id(configuration.get_run_id())

        self.state = LifecycleState.NOT_STARTED
        self.image = options.node_image
        self._cluster_up_attempted = False
        self._lost_error: lease_client.LeaseLostError | None = None
        self._lost_event = threading.Event()
        self._abort_lock = threading.Lock()
        self._up_running = False

        self.manager.on_lease_lost(self._on_lease_lost)

    @classmethod
    def from_options(cls, options: configuration.DeployerOptions) -> "LifecycleController":
        build.set_repo_path_if_not_set(options)
        builder: Builder = (
            build.NodeImageBuilder(options)
            if options.build_type or options.kube_root
            else build.NoopBuilder(options)
        )
        return cls(
            options=options,
            manager=resource_manager.ResourceManager.from_options(options),
            scripts=cluster_scripts.ClusterScripts(options),
            builder=builder,
        )

    def _on_lease_lost(self, err: lease_client.LeaseLostError) -> None:
        # Called from the heartbeat thread. A running up script is terminated, other phases
        # notice the loss at their next check.
        with self._abort_lock:
            self._lost_error = err
            self._lost_event.set()
            if self._up_running:
                LOGGER.error("Lease lost while bringing the cluster up, terminating the script.")
                self.scripts.terminate()

    def _fail(self, msg: str) -> None:
        self.state = LifecycleState.FAILED
        framework_log.framework_logger(self.options.artifacts_dir).error(msg)

    def _check_lease(self, phase: str) -> None:
        if self._lost_error is None:
            return
        self._fail(f"Phase '{phase}' aborted, lease lost: {self._lost_error}")
        raise self._lost_error

    def _check_not_terminal(self, phase: str) -> None:
        if self.state in TERMINAL_STATES:
            msg = f"Cannot run phase '{phase}' in state '{self.state}'."
            raise RuntimeError(msg)

    def _get_target(self) -> cluster_scripts.ClusterTarget:
        return cluster_scripts.ClusterTarget(
            project=self.manager.resolved_project,
            network=self.identity.network,
            instance_prefix=self.identity.instance_prefix,
        )

    def build(self) -> build.BuildResult:
        """Build the node image. Doesn't tear anything down on failure."""
        self._check_not_terminal("build")
        self.state = LifecycleState.BUILDING
        try:
            result = self.builder.build()
        except build.BuildError as err:
            self._fail(f"Build failed: {err}")
            raise PhaseFailedError("build", msg=str(err)) from err

        self.image = result.image
        return result

    def up(self) -> None:
        """Bring the cluster up in the resolved project."""
        self._check_not_terminal("up")
        self._check_lease("up")

        try:
            project = self.manager.acquire()
        except lease_client.PoolError as err:
            self._fail(f"Failed to get project: {err}")
            raise

        LOGGER.info(
            f"Bringing cluster up in project '{project}', "
            f"network '{self.identity.network}', prefix '{self.identity.instance_prefix}'."
        )
        self.options.kubeconfig_path.parent.mkdir(parents=True, exist_ok=True)

        with locking.get_cluster_lock(self.options.run_dir):
            if self.options.enable_compute_api:
                try:
                    self.scripts.enable_compute_api(project=project)
                except RuntimeError as err:
                    self._fail(f"Failed to enable compute API: {err}")
                    raise PhaseFailedError("up", msg=str(err)) from err

            self._cluster_up_attempted = True
            with self._abort_lock:
                self._up_running = True
            try:
                retcode = self.scripts.up(target=self._get_target(), cancel=self._lost_event)
            finally:
                with self._abort_lock:
                    self._up_running = False

        self._check_lease("up")
        if retcode != 0:
            self._fail(f"Up failed with exit status {retcode}")
            raise PhaseFailedError("up", retcode)

        self.state = LifecycleState.UP

    def is_up(self) -> bool:
        """Check health of the running cluster. Doesn't change state."""
        return self.scripts.is_up()

    def verify(self) -> None:
        """Check that the cluster that was brought up is healthy."""
        self._check_lease("verify")
        if self.state not in (LifecycleState.UP, LifecycleState.VERIFIED):
            msg = f"Cannot verify cluster in state '{self.state}'."
            raise RuntimeError(msg)

        if not self.is_up():
            self._fail("Cluster is not up")
            raise PhaseFailedError("verify", msg="Cluster is not up.")

        self.state = LifecycleState.VERIFIED

    def dump_cluster_logs(self) -> bool:
        """Dump cluster logs into the logs dir. Best effort."""
        if not self.manager.has_project:
            LOGGER.info("No project, nothing to dump logs from.")
            return False

        try:
            logs_dir = artifacts.prepare_logs_dir(
                logs_dir=self.options.logs_dir, overwrite=self.options.overwrite_logs_dir
            )
        except FileExistsError as err:
            LOGGER.warning(f"Not dumping cluster logs: {err}")
            return False

        retcode = self.scripts.dump_logs(target=self._get_target(), logs_dir=logs_dir)
        if retcode != 0:
            LOGGER.warning(f"Failed to dump cluster logs, exit status {retcode}.")
            return False
        return True

    def down(self) -> None:
        """Tear the cluster down and return the project.

        The project is returned even when the down script fails. Calling this when nothing was
        brought up is fine.
        """
        self.state = LifecycleState.TEARING_DOWN
        retcode = 0
        try:
            if self.manager.has_project:
                with locking.get_cluster_lock(self.options.run_dir):
                    retcode = self.scripts.down(target=self._get_target())
            else:
                LOGGER.info("No project was resolved, no cluster to bring down.")
        finally:
            with helpers.ignore_interrupt():
                released = self.manager.teardown()
            if not released:
                LOGGER.warning("Project was not returned to the pool.")

        if retcode != 0:
            self._fail(f"Down failed with exit status {retcode}")
            raise PhaseFailedError("down", retcode)

        self.state = LifecycleState.DONE

    def kubeconfig(self) -> pl.Path:
        """Return path to kubeconfig of the cluster."""
        kubeconfig_path = self.options.kubeconfig_path
        if not kubeconfig_path.exists():
            msg = f"Kubeconfig does not exist at: {kubeconfig_path}"
            raise FileNotFoundError(msg)
        return kubeconfig_path

    def run(
        self,
        *,
        do_build: bool = False,
        do_up: bool = True,
        do_down: bool = True,
        dump_logs: bool = False,
    ) -> RunResult:
        """Run the requested phases and always return the project at the end.

        The first fatal error is recorded in the result, the following phases are skipped, except
        for the down phase when requested. Cluster logs are dumped before the cluster is brought
        down, when requested.

        When interrupted (e.g. `KeyboardInterrupt`), a partially started cluster is brought down
        and the project is returned before the interruption is re-raised.
        """
        error: BaseException | None = None
        released = False
        try:
            try:
                if do_build:
                    self.build()
                if do_up:
                    self.up()
                    self.verify()
            except Exception as err:
                LOGGER.error(f"Run failed: {err}")  # noqa: TRY400
                error = err

            if dump_logs:
                try:
                    self.dump_cluster_logs()
                except Exception:
                    LOGGER.exception("Failed to dump cluster logs")
        except BaseException as err:
            LOGGER.error(f"Run interrupted: {err!r}")  # noqa: TRY400
            error = err
            raise
        finally:
            if do_down or (error is not None and self._cluster_up_attempted):
                try:
                    self.down()
                except Exception as down_err:
                    LOGGER.error(f"Down failed: {down_err}")  # noqa: TRY400
                    error = error or down_err

            with helpers.ignore_interrupt():
                released = self.manager.teardown()

            if error is not None:
                self.state = LifecycleState.FAILED
            LOGGER.info(
                f"Run finished in state '{self.state}', "
                f"project {'returned' if released else 'NOT returned'} to the pool."
            )

        return RunResult(state=self.state, error=error, released=released)
