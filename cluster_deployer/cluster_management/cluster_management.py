"""Module for exposing useful components of cluster management.

The cluster deployer brings a test cluster up in a cloud project and tears it down again. The
project is either configured explicitly, or leased from a shared pool of projects managed by
a resource broker.

Key concepts:
    - **Lease**: A claim on a project from the pool. The lease is acquired with a timeout, kept
      alive by a background heartbeat while the cluster is in use, and released exactly once when
      the run is over, no matter how the run ended.
    - **`ResourceManager`**: Owns the lease of a single run. It decides whether the pool is needed
      at all, starts and stops the heartbeat and releases the lease on teardown. A lost lease is
      reported to registered callbacks.
    - **`LifecycleController`**: Drives the build, up, verify and down phases of the cluster and
      makes sure the `ResourceManager` is torn down on every exit path.
    - **Run identity**: Names of the cluster network and instances are derived from the run ID,
      so resources of concurrent runs in the same project don't collide.
"""

# flake8: noqa
from cluster_deployer.cluster_management.lease_client import AcquisitionTimeoutError
from cluster_deployer.cluster_management.lease_client import LeaseClient
from cluster_deployer.cluster_management.lease_client import LeaseLostError
from cluster_deployer.cluster_management.lease_client import PoolError
from cluster_deployer.cluster_management.lease_client import PoolUnavailableError
from cluster_deployer.cluster_management.lifecycle import LifecycleController
from cluster_deployer.cluster_management.lifecycle import LifecycleState
from cluster_deployer.cluster_management.lifecycle import PhaseFailedError
from cluster_deployer.cluster_management.lifecycle import RunResult
from cluster_deployer.cluster_management.resource_manager import ResourceManager
from cluster_deployer.cluster_management.resources import Lease
from cluster_deployer.cluster_management.resources import RunIdentity
