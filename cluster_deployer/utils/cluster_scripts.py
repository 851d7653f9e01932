"""Functionality for cluster scripts (bringing clusters up and down).

* building environment for the `kube-up.sh` / `kube-down.sh` scripts
* running the scripts out of the repo root
* checking that the cluster nodes are registered
"""

import dataclasses
import logging
import os
import pathlib as pl
import subprocess
import threading
import typing as tp

import cluster_deployer.utils.types as ttypes
from cluster_deployer.utils import artifacts
from cluster_deployer.utils import configuration
from cluster_deployer.utils import helpers

LOGGER = logging.getLogger(__name__)

UP_SCRIPT = "cluster/kube-up.sh"
DOWN_SCRIPT = "cluster/kube-down.sh"
LOG_DUMP_SCRIPT = "cluster/log-dump/log-dump.sh"
# kubectl wrapper in the kubernetes/kubernetes repo, used in legacy mode
KUBECTL_SCRIPT = "cluster/kubectl.sh"


@dataclasses.dataclass(frozen=True, order=True)
class ClusterTarget:
    """Where the cluster lives: project, network and prefix for instance names."""

    project: str
    network: str
    instance_prefix: str


def _bool_env(value: bool) -> str:
    return "true" if value else "false"


def build_env(
    *,
    options: configuration.DeployerOptions,
    target: ClusterTarget,
    base_env: tp.Mapping[str, str] | None = None,
) -> ttypes.EnvType:
    """Build environment for the cluster scripts.

    Values from `options.env` (`KEY=VALUE` records) override everything else.
    """
    env: ttypes.EnvType = dict(os.environ if base_env is None else base_env)

    env["CLOUDSDK_CORE_PROJECT"] = target.project
    env["PROJECT"] = target.project
    env["KUBE_GCE_NETWORK"] = target.network
    env["KUBE_GCE_INSTANCE_PREFIX"] = target.instance_prefix
    env["NUM_NODES"] = str(options.num_nodes)
    env["KUBECONFIG"] = str(options.kubeconfig_path)

    if options.gcp_zone:
        env["KUBE_GCE_ZONE"] = options.gcp_zone

    env["ENABLE_CACHE_MUTATION_DETECTOR"] = _bool_env(options.enable_cache_mutation_detector)
    env["ENABLE_POD_SECURITY_POLICY"] = _bool_env(options.enable_pod_security_policy)
    if options.create_custom_network:
        env["CREATE_CUSTOM_NETWORK"] = "true"

    optional_vars = {
        "KUBE_RUNTIME_CONFIG": options.runtime_config,
        "NODE_SCOPES": options.node_scopes,
        "KUBE_GCE_NODE_SERVICE_ACCOUNT": options.node_service_account,
        "CLOUD_PROVIDER": options.cloud_provider,
        "KUBE_FEATURE_GATES": options.feature_gates,
        "MASTER_SIZE": options.master_size,
        "NODE_SIZE": options.node_size,
        "GCE_GLBC_IMAGE": options.ingress_gce_image,
    }
    env.update({k: v for k, v in optional_vars.items() if v})

    env.update(helpers.parse_env_list(options.env))
    return env


class ClusterScripts:
    """Scripts for bringing a cluster up and down, found in the repo root."""

    def __init__(self, options: configuration.DeployerOptions) -> None:
        self.options = options

        self._proc_lock = threading.Lock()
        self._proc: subprocess.Popen | None = None

    @property
    def repo_root(self) -> pl.Path:
        if not self.options.repo_root:
            msg = "Repo root is not set."
            raise RuntimeError(msg)
        return pl.Path(self.options.repo_root)

    def _run_script(
        self,
        script: str,
        *,
        phase: str,
        env: ttypes.EnvType,
        args: tp.Iterable[str] = (),
        cancel: threading.Event | None = None,
    ) -> int:
        script_path = self.repo_root / script
        if not script_path.exists():
            LOGGER.error(f"Script '{script_path}' doesn't exist.")
            return 127

        log_file = artifacts.get_phase_log_file(
            artifacts_dir=self.options.artifacts_dir, phase=phase
        )

        def _track(proc: subprocess.Popen) -> None:
            with self._proc_lock:
                self._proc = proc
                if cancel is not None and cancel.is_set():
                    LOGGER.warning(f"Terminating `{script}` right after start.")
                    proc.terminate()

        try:
            return helpers.run_logged(
                [str(script_path), *args],
                log_file=log_file,
                env=env,
                workdir=self.repo_root,
                on_start=_track,
            )
        finally:
            with self._proc_lock:
                self._proc = None

    def terminate(self) -> None:
        """Terminate the script that is running right now, if any."""
        with self._proc_lock:
            if self._proc is not None and self._proc.poll() is None:
                LOGGER.warning(f"Terminating `{self._proc.args}`.")
                self._proc.terminate()

    def up(self, *, target: ClusterTarget, cancel: threading.Event | None = None) -> int:
        """Run `kube-up.sh` and return its exit status.

        The script is terminated right after start when `cancel` is already set.
        """
        env = build_env(options=self.options, target=target)
        return self._run_script(UP_SCRIPT, phase="up", env=env, cancel=cancel)

    def down(self, *, target: ClusterTarget) -> int:
        """Run `kube-down.sh` and return its exit status."""
        env = build_env(options=self.options, target=target)
        return self._run_script(DOWN_SCRIPT, phase="down", env=env)

    def dump_logs(self, *, target: ClusterTarget, logs_dir: pl.Path) -> int:
        """Run `log-dump.sh` into `logs_dir` and return its exit status."""
        env = build_env(options=self.options, target=target)
        return self._run_script(LOG_DUMP_SCRIPT, phase="log-dump", env=env, args=[str(logs_dir)])

    def enable_compute_api(self, *, project: str) -> None:
        """Enable the compute API on the project, needed when the project wasn't used before."""
        LOGGER.info(f"Enabling compute API for project '{project}'.")
        helpers.run_command(
            ["gcloud", "services", "enable", "compute.googleapis.com", f"--project={project}"]
        )

    def get_kubectl(self) -> str:
        """Return kubectl command, the repo wrapper script in legacy mode."""
        if self.options.legacy_mode:
            return str(self.repo_root / KUBECTL_SCRIPT)
        return "kubectl"

    def get_nodes(self) -> list[str]:
        """Return names of nodes registered in the cluster."""
        out = helpers.run_command(
            [
                self.get_kubectl(),
                f"--kubeconfig={self.options.kubeconfig_path}",
                "get",
                "nodes",
                "-o=name",
            ]
        )
        return [n for n in out.decode().strip().splitlines() if n.strip()]

    def is_up(self) -> bool:
        """Check that the cluster answers and has registered nodes."""
        try:
            nodes = self.get_nodes()
        except RuntimeError as err:
            LOGGER.warning(f"Cluster is not reachable: {err}")
            return False

        if not nodes:
            LOGGER.warning("Cluster has no registered nodes.")
            return False

        LOGGER.debug(f"Cluster nodes: {nodes}")
        return True
