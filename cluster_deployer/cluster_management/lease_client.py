"""Client for the resource broker (Boskos REST API).

The broker hands out resources (cloud projects) from a pool. A resource is acquired by moving it
from the "free" state to the "busy" state under our owner name, kept by periodic updates
(heartbeats), and released by moving it to the "dirty" state, so the broker's janitor cleans it
before it is handed out again.
"""

import logging
import random
import time

import requests

from cluster_deployer.cluster_management import common
from cluster_deployer.cluster_management import resources
from cluster_deployer.utils import http_client

LOGGER = logging.getLogger(__name__)

# Status codes meaning that the broker doesn't consider us the owner of the resource anymore
LOST_LEASE_CODES = frozenset({401, 403, 404, 409})


class PoolError(Exception):
    pass


class AcquisitionTimeoutError(PoolError, TimeoutError):
    pass


class PoolUnavailableError(PoolError):
    pass


class LeaseLostError(PoolError):
    pass


def _is_transient(response: requests.Response) -> bool:
    return response.status_code >= 500 or response.status_code == 429


class LeaseClient:
    """Utility class for interacting with the resource broker via REST API."""

    def __init__(
        self,
        location: str,
        *,
        owner: str,
        poll_interval: float = common.ACQUIRE_POLL_INTERVAL,
        max_transient_retries: int = common.ACQUIRE_MAX_TRANSIENT_RETRIES,
    ) -> None:
        if not owner:
            msg = "`owner` cannot be empty"
            raise ValueError(msg)
        self.base_url = location.rstrip("/")
        self.owner = owner
        self.poll_interval = poll_interval
        self.max_transient_retries = max_transient_retries

    def _post(self, endpoint: str, *, params: dict[str, str], timeout: float) -> requests.Response:
        url = f"{self.base_url}/{endpoint}"
        return http_client.get_session().post(url, params=params, timeout=timeout)

    def acquire(self, pool_kind: str, timeout: int) -> resources.Lease:
        """Acquire a free resource of `pool_kind`, waiting at most `timeout` seconds.

        Transient broker errors are retried within the timeout budget. Nothing is retried once the
        budget is spent.
        """
        params = {
            "type": pool_kind,
            "state": common.STATE_FREE,
            "dest": common.STATE_BUSY,
            "owner": self.owner,
        }
        end_time = time.monotonic() + timeout
        transient_failures = 0
        attempt = 0

        while True:
            attempt += 1
            remaining = end_time - time.monotonic()
            if remaining <= 0:
                msg = (
                    f"Failed to acquire '{pool_kind}' resource in {timeout}s "
                    f"({attempt - 1} attempts)."
                )
                raise AcquisitionTimeoutError(msg)

            err_str = ""
            try:
                response = self._post(
                    "acquire",
                    params=params,
                    timeout=min(remaining, common.ACQUIRE_REQUEST_TIMEOUT),
                )
            except requests.exceptions.RequestException as err:
                err_str = f"request failed: {err}"
            else:
                if response.status_code == 200:
                    try:
                        lease = resources.Lease.from_response(response.json(), owner=self.owner)
                    except (ValueError, KeyError) as err:
                        msg = f"Unexpected response to acquire: {response.text}"
                        raise PoolUnavailableError(msg) from err
                    LOGGER.info(f"Acquired '{lease.name}' ({pool_kind}) as '{self.owner}'.")
                    return lease

                if response.status_code == 404:
                    # No free resource at the moment
                    transient_failures = 0
                    LOGGER.debug(f"No free '{pool_kind}' resource, waiting.")
                    self._sleep(self.poll_interval, end_time=end_time)
                    continue

                if not _is_transient(response):
                    msg = (
                        f"Broker refused to acquire '{pool_kind}' resource.\n"
                        f"  status: {response.status_code}\n"
                        f"  reason: {response.reason}\n"
                        f"  error: {response.text}"
                    )
                    raise PoolUnavailableError(msg)

                err_str = f"status {response.status_code}: {response.text}"

            transient_failures += 1
            if transient_failures > self.max_transient_retries:
                msg = (
                    f"Broker at '{self.base_url}' unavailable after {transient_failures} "
                    f"attempts, last error: {err_str}"
                )
                raise PoolUnavailableError(msg)

            sleep_time = min(
                2 + transient_failures * transient_failures, common.ACQUIRE_MAX_BACKOFF
            )
            LOGGER.warning(
                f"Acquire of '{pool_kind}' failed ({err_str}), "
                f"sleeping {sleep_time}s before repeating for the {transient_failures} time."
            )
            self._sleep(sleep_time, end_time=end_time)

    def _sleep(self, secs: float, *, end_time: float) -> None:
        """Sleep, but not past the end of the acquisition budget."""
        remaining = end_time - time.monotonic()
        time.sleep(max(0.0, min(secs + random.random() * 0.1 * secs, remaining)))

    def heartbeat(self, lease: resources.Lease) -> None:
        """Tell the broker that the resource is still in use."""
        params = {"name": lease.name, "owner": lease.owner, "state": common.STATE_BUSY}
        try:
            response = self._post("update", params=params, timeout=common.HEARTBEAT_TIMEOUT)
        except requests.exceptions.RequestException as err:
            msg = f"Heartbeat for '{lease.name}' failed: {err}"
            raise PoolUnavailableError(msg) from err

        if response.status_code in LOST_LEASE_CODES:
            msg = (
                f"Lease on '{lease.name}' is lost, "
                f"status {response.status_code}: {response.text}"
            )
            raise LeaseLostError(msg)
        if response.status_code != 200:
            msg = f"Heartbeat for '{lease.name}' failed, status {response.status_code}"
            raise PoolUnavailableError(msg)

        LOGGER.debug(f"Sent heartbeat for '{lease.name}'.")

    def release(self, lease: resources.Lease) -> bool:
        """Release the resource. Best effort, failure is only logged."""
        params = {"name": lease.name, "owner": lease.owner, "dest": common.STATE_DIRTY}
        try:
            response = self._post("release", params=params, timeout=common.RELEASE_TIMEOUT)
        except requests.exceptions.RequestException as err:
            LOGGER.warning(f"Failed to release '{lease.name}': {err}")
            return False

        if response.status_code != 200:
            LOGGER.warning(
                f"Failed to release '{lease.name}', "
                f"status {response.status_code}: {response.text}"
            )
            return False

        LOGGER.info(f"Released '{lease.name}'.")
        return True
