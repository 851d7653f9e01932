import logging
import pathlib as pl

from filelock import FileLock

# Suppress messages from filelock
logging.getLogger("filelock").setLevel(logging.WARNING)

CLUSTER_LOCK = ".cluster.lock"
# How long to wait for another deployer process using the same run dir
LOCK_TIMEOUT = 60 * 60


def get_cluster_lock(run_dir: pl.Path, timeout: float = LOCK_TIMEOUT) -> FileLock:
    """Return lock that serializes cluster scripts running out of the same run dir.

    Only one process at a time can bring up or tear down the cluster that has its kubeconfig
    in `run_dir`.
    """
    run_dir.mkdir(parents=True, exist_ok=True)
    return FileLock(run_dir / CLUSTER_LOCK, timeout=timeout)
