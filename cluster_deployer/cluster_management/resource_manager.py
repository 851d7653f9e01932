"""Management of the cloud project the cluster runs in.

The project is either configured explicitly, or leased from a shared pool. A leased project is
kept alive by a background heartbeat while the cluster is in use and released exactly once when
the run is over.
"""

import logging
import pathlib as pl
import threading
import types
import typing as tp

from cluster_deployer.cluster_management import heartbeat
from cluster_deployer.cluster_management import lease_client
from cluster_deployer.cluster_management import resources
from cluster_deployer.utils import configuration
from cluster_deployer.utils import framework_log

LOGGER = logging.getLogger(__name__)


class PoolClient(heartbeat.HeartbeatSender, tp.Protocol):
    def acquire(self, pool_kind: str, timeout: int) -> resources.Lease: ...

    def release(self, lease: resources.Lease) -> bool: ...


class ResourceManager:
    """Owner of the lease on the project for a single run.

    Lease and heartbeat state is kept on the instance only, so multiple managers in one process
    don't interfere with each other.
    """

    def __init__(
        self,
        *,
        project: str = "",
        pool_kind: str = resources.PoolKinds.GCE_PROJECT,
        acquire_timeout: int = configuration.BOSKOS_ACQUIRE_TIMEOUT_SECONDS,
        heartbeat_interval: float = configuration.BOSKOS_HEARTBEAT_INTERVAL_SECONDS,
        client: PoolClient | None = None,
        client_factory: tp.Callable[[], PoolClient] | None = None,
        artifacts_dir: pl.Path | None = None,
    ) -> None:
        self.project = project
        self.pool_kind = pool_kind
        self.acquire_timeout = acquire_timeout
        self.heartbeat_interval = heartbeat_interval
        self.artifacts_dir = artifacts_dir

        self._client = client
        self._client_factory = client_factory

        self._resolved_project = project
        self._lease: resources.Lease | None = None
        self._heartbeat: heartbeat.HeartbeatLoop | None = None
        self._lost_callbacks: list[heartbeat.LostCallback] = []
        self._lost_error: lease_client.LeaseLostError | None = None

        self._teardown_lock = threading.Lock()
        self._teardown_result: bool | None = None

    @classmethod
    def from_options(cls, options: configuration.DeployerOptions) -> "ResourceManager":
        def _factory() -> PoolClient:
            return lease_client.LeaseClient(options.boskos_location, owner=options.owner)

        return cls(
            project=options.gcp_project,
            pool_kind=options.boskos_resource_type,
            acquire_timeout=options.boskos_acquire_timeout_seconds,
            heartbeat_interval=options.boskos_heartbeat_interval_seconds,
            client_factory=_factory,
            artifacts_dir=options.artifacts_dir,
        )

    @property
    def client(self) -> PoolClient:
        """Return the pool client, created only when the pool is really needed."""
        if self._client is None:
            if self._client_factory is None:
                msg = "No pool client configured."
                raise RuntimeError(msg)
            self._client = self._client_factory()
        return self._client

    @property
    def has_project(self) -> bool:
        return bool(self._resolved_project)

    @property
    def resolved_project(self) -> str:
        if not self._resolved_project:
            msg = "Project not resolved."
            raise RuntimeError(msg)
        return self._resolved_project

    @property
    def lease(self) -> resources.Lease | None:
        return self._lease

    @property
    def lease_lost(self) -> bool:
        return self._lost_error is not None

    @property
    def heartbeat_ticks(self) -> int:
        return self._heartbeat.ticks if self._heartbeat else 0

    def on_lease_lost(self, callback: heartbeat.LostCallback) -> None:
        """Register callback to be called when the lease is lost."""
        self._lost_callbacks.append(callback)
        if self._lost_error is not None:
            callback(self._lost_error)

    def check_lease(self) -> None:
        """Raise `LeaseLostError` if the lease was lost."""
        if self._lost_error is not None:
            raise self._lost_error

    def acquire(self) -> str:
        """Return project to use, acquire it from the pool if not configured explicitly."""
        # A released lease is never handed out again, an explicit project is still usable
        if self._teardown_result is not None and (self._lease or not self._resolved_project):
            msg = "Cannot acquire project, the manager was already torn down."
            raise RuntimeError(msg)
        if self._resolved_project:
            return self._resolved_project

        LOGGER.info(
            f"No project configured, acquiring '{self.pool_kind}' from the pool "
            f"(timeout {self.acquire_timeout}s)."
        )
        try:
            lease = self.client.acquire(self.pool_kind, self.acquire_timeout)
        except lease_client.PoolError as err:
            framework_log.framework_logger(self.artifacts_dir).error(
                "Failed to acquire '%s' project: %s", self.pool_kind, err
            )
            raise

        self._lease = lease
        self._resolved_project = lease.name

        if self.heartbeat_interval > 0:
            self._heartbeat = heartbeat.HeartbeatLoop(
                self.client,
                lease,
                interval=self.heartbeat_interval,
                on_lost=self._on_lost,
            )
            self._heartbeat.start()

        return self._resolved_project

    def _on_lost(self, err: lease_client.LeaseLostError) -> None:
        if self._lost_error is not None:
            return
        self._lost_error = err
        framework_log.framework_logger(self.artifacts_dir).error(
            "Lease on project '%s' lost: %s", self._resolved_project, err
        )
        for callback in self._lost_callbacks:
            try:
                callback(err)
            except Exception:
                LOGGER.exception("Lost lease callback failed")

    def teardown(self) -> bool:
        """Stop the heartbeat and release the lease.

        Only the first call does the work, the following calls return the same result. Return
        `True` when no lease is left held by this manager.
        """
        with self._teardown_lock:
            if self._teardown_result is not None:
                return self._teardown_result

            if self._heartbeat is not None:
                self._heartbeat.stop()

            released = True
            if self._lease is not None:
                if self._lost_error is not None:
                    LOGGER.warning(
                        f"Releasing '{self._lease.name}' even though the lease was lost."
                    )
                try:
                    released = self.client.release(self._lease)
                except Exception:
                    LOGGER.exception(f"Failed to release '{self._lease.name}'")
                    released = False
                if not released:
                    framework_log.framework_logger(self.artifacts_dir).warning(
                        "Failed to release project '%s'", self._lease.name
                    )

            self._teardown_result = released
            return released

    def __enter__(self) -> "ResourceManager":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        self.teardown()
