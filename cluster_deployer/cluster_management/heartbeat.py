"""Background heartbeat that keeps an acquired lease alive."""

import logging
import threading
import typing as tp

from cluster_deployer.cluster_management import common
from cluster_deployer.cluster_management import lease_client
from cluster_deployer.cluster_management import resources

LOGGER = logging.getLogger(__name__)


class HeartbeatSender(tp.Protocol):
    def heartbeat(self, lease: resources.Lease) -> None: ...


LostCallback = tp.Callable[[lease_client.LeaseLostError], None]


class HeartbeatLoop:
    """Periodic heartbeat running in its own thread until stopped.

    The first heartbeat is sent right after start, the following ones every `interval` seconds.
    A lost lease is reported through `on_lost` and ends the loop. Other heartbeat failures are
    tolerated up to `max_failures` consecutive times, after that the lease is considered lost too.
    """

    def __init__(
        self,
        client: HeartbeatSender,
        lease: resources.Lease,
        *,
        interval: float,
        on_lost: LostCallback,
        max_failures: int = common.HEARTBEAT_MAX_FAILURES,
    ) -> None:
        if interval <= 0:
            msg = "Heartbeat `interval` must be positive"
            raise ValueError(msg)
        self.client = client
        self.lease = lease
        self.interval = interval
        self.on_lost = on_lost
        self.max_failures = max_failures

        self.ticks = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            msg = "Heartbeat loop was already started"
            raise RuntimeError(msg)
        self._thread = threading.Thread(
            target=self._loop, name=f"heartbeat-{self.lease.name}", daemon=True
        )
        self._thread.start()
        LOGGER.debug(f"Heartbeat for '{self.lease.name}' started, interval {self.interval}s.")

    def stop(self) -> None:
        """Stop the loop and wait until the thread exits. Safe to call multiple times."""
        self._stop_event.set()
        if self._thread is None or self._thread is threading.current_thread():
            return
        self._thread.join()
        LOGGER.debug(f"Heartbeat for '{self.lease.name}' stopped after {self.ticks} ticks.")

    def _loop(self) -> None:
        failures = 0
        while True:
            self.ticks += 1
            try:
                self.client.heartbeat(self.lease)
            except lease_client.LeaseLostError as err:
                LOGGER.error(f"Lease on '{self.lease.name}' lost: {err}")  # noqa: TRY400
                self._report_lost(err)
                return
            except Exception as err:
                failures += 1
                LOGGER.warning(
                    f"Heartbeat for '{self.lease.name}' failed ({failures}/{self.max_failures}): "
                    f"{err}"
                )
                if failures >= self.max_failures:
                    msg = (
                        f"Lease on '{self.lease.name}' considered lost after {failures} "
                        "failed heartbeats."
                    )
                    lost_err = lease_client.LeaseLostError(msg)
                    lost_err.__cause__ = err
                    self._report_lost(lost_err)
                    return
            else:
                failures = 0

            if self._stop_event.wait(self.interval):
                return

    def _report_lost(self, err: lease_client.LeaseLostError) -> None:
        try:
            self.on_lost(err)
        except Exception:
            LOGGER.exception("Lost lease callback failed")
