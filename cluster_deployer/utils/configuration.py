"""Deployer and cluster environment configuration."""

import dataclasses
import functools
import os
import pathlib as pl
import uuid

from cluster_deployer.utils import helpers
from cluster_deployer.utils import types as ttypes

LAUNCH_PATH = pl.Path.cwd()

DEPLOYER_NAME = "gce"
GIT_TAG = os.environ.get("GIT_TAG") or "dev"

# Both `KUBETEST2_RUN_ID` and `PROW_JOB_ID` are RFC 4122 UUIDs, e.g.
# 09a2565a-7ac6-11eb-a603-2218f636630c
RUN_ID = os.environ.get("KUBETEST2_RUN_ID") or os.environ.get("PROW_JOB_ID") or ""

# Owner name reported to the resource broker
JOB_NAME = os.environ.get("JOB_NAME") or "cluster-deployer"

ARTIFACTS_DIR = pl.Path(os.environ.get("ARTIFACTS") or LAUNCH_PATH / "_artifacts").expanduser()
RUN_DIR_BASE = pl.Path(os.environ.get("KUBETEST2_RUN_DIR") or LAUNCH_PATH / "_rundir").expanduser()

BOSKOS_LOCATION = (
    os.environ.get("BOSKOS_LOCATION") or "http://boskos.test-pods.svc.cluster.local."
)
BOSKOS_RESOURCE_TYPE = os.environ.get("BOSKOS_RESOURCE_TYPE") or "gce-project"

BOSKOS_ACQUIRE_TIMEOUT_SECONDS = int(os.environ.get("BOSKOS_ACQUIRE_TIMEOUT_SECONDS") or 5 * 60)
if BOSKOS_ACQUIRE_TIMEOUT_SECONDS < 0:
    msg = f"Invalid BOSKOS_ACQUIRE_TIMEOUT_SECONDS: {BOSKOS_ACQUIRE_TIMEOUT_SECONDS}"
    raise RuntimeError(msg)

# 0 means no heartbeat
BOSKOS_HEARTBEAT_INTERVAL_SECONDS = int(
    os.environ.get("BOSKOS_HEARTBEAT_INTERVAL_SECONDS") or 5 * 60
)
if BOSKOS_HEARTBEAT_INTERVAL_SECONDS < 0:
    msg = f"Invalid BOSKOS_HEARTBEAT_INTERVAL_SECONDS: {BOSKOS_HEARTBEAT_INTERVAL_SECONDS}"
    raise RuntimeError(msg)

NUM_NODES = int(os.environ.get("NUM_NODES") or 3)
if NUM_NODES < 1:
    msg = f"Invalid NUM_NODES '{NUM_NODES}': must be >= 1"
    raise RuntimeError(msg)

# Explicitly specified project, pool is not used when set
GCP_PROJECT = os.environ.get("GCP_PROJECT") or ""
GCP_ZONE = os.environ.get("GCP_ZONE") or ""

KIND_DEFAULT_BUILT_IMAGE = "kindest/node:latest"


@functools.cache
def get_run_id() -> str:
    """Return ID of the current run.

    Generated once per process when not supplied by the environment.
    """
    return RUN_ID or str(uuid.uuid1())


def get_run_dir() -> pl.Path:
    """Return directory for files (kubeconfig, lock files) of the current run."""
    return RUN_DIR_BASE / get_run_id()


@dataclasses.dataclass
class DeployerOptions:
    """Options of a single deployer run."""

    gcp_project: str = GCP_PROJECT
    gcp_zone: str = GCP_ZONE
    boskos_location: str = BOSKOS_LOCATION
    boskos_resource_type: str = BOSKOS_RESOURCE_TYPE
    boskos_acquire_timeout_seconds: int = BOSKOS_ACQUIRE_TIMEOUT_SECONDS
    boskos_heartbeat_interval_seconds: int = BOSKOS_HEARTBEAT_INTERVAL_SECONDS
    owner: str = JOB_NAME
    repo_root: ttypes.FileType = ""
    legacy_mode: bool = False
    num_nodes: int = NUM_NODES
    env: ttypes.EnvListType = ()
    enable_compute_api: bool = False
    overwrite_logs_dir: bool = False

    # Cluster feature flags, passed to the up/down scripts
    enable_cache_mutation_detector: bool = False
    enable_pod_security_policy: bool = False
    create_custom_network: bool = False
    runtime_config: str = ""
    node_scopes: str = ""
    node_service_account: str = ""
    cloud_provider: str = ""
    feature_gates: str = ""
    master_size: str = ""
    node_size: str = ""
    ingress_gce_image: str = ""

    # Node image build
    build_type: str = ""
    kube_root: ttypes.FileType = ""
    node_image: str = ""

    run_dir: pl.Path = dataclasses.field(default_factory=get_run_dir)
    artifacts_dir: pl.Path = ARTIFACTS_DIR

    def __post_init__(self) -> None:
        if self.boskos_acquire_timeout_seconds < 0:
            msg = "`boskos_acquire_timeout_seconds` cannot be negative"
            raise ValueError(msg)
        if self.boskos_heartbeat_interval_seconds < 0:
            msg = "`boskos_heartbeat_interval_seconds` cannot be negative"
            raise ValueError(msg)
        if self.num_nodes < 1:
            msg = "`num_nodes` must be >= 1"
            raise ValueError(msg)
        # Fail early on malformed `KEY=VALUE` records, before any project is acquired
        helpers.parse_env_list(self.env)

    @property
    def kubeconfig_path(self) -> pl.Path:
        return self.run_dir / "kubetest2-kubeconfig"

    @property
    def logs_dir(self) -> pl.Path:
        return self.artifacts_dir / "cluster-logs"
