#!/usr/bin/env python3
"""Bring a test cluster up in a cloud project and tear it down again.

For defaults it uses the same env variables as the rest of the deployer.
"""

import argparse
import logging
import pathlib as pl
import sys

from cluster_deployer.cluster_management import cluster_management
from cluster_deployer.utils import configuration

LOGGER = logging.getLogger(__name__)


def get_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Get command line arguments."""
    parser = argparse.ArgumentParser(description=__doc__.split("\n", maxsplit=1)[0])

    phases = parser.add_argument_group("phases")
    phases.add_argument(
        "--build",
        action="store_true",
        help="Build the node image before bringing the cluster up.",
    )
    phases.add_argument(
        "--up",
        action="store_true",
        help="Bring the cluster up.",
    )
    phases.add_argument(
        "--down",
        action="store_true",
        help="Tear the cluster down and return the project to the pool.",
    )
    phases.add_argument(
        "--dump-logs",
        action="store_true",
        help="Dump cluster logs into the artifacts dir before tearing the cluster down.",
    )

    project = parser.add_argument_group("project")
    project.add_argument(
        "--gcp-project",
        default=configuration.GCP_PROJECT,
        help="Project to use; when not set, a project is acquired from the pool.",
    )
    project.add_argument(
        "--gcp-zone",
        default=configuration.GCP_ZONE,
        help="Zone of the cluster.",
    )
    project.add_argument(
        "--boskos-location",
        default=configuration.BOSKOS_LOCATION,
        help=f"URL of the resource broker (default: {configuration.BOSKOS_LOCATION}).",
    )
    project.add_argument(
        "--boskos-resource-type",
        default=configuration.BOSKOS_RESOURCE_TYPE,
        help=f"Kind of project to acquire (default: {configuration.BOSKOS_RESOURCE_TYPE}).",
    )
    project.add_argument(
        "--boskos-acquire-timeout-seconds",
        type=int,
        default=configuration.BOSKOS_ACQUIRE_TIMEOUT_SECONDS,
        help="How long to wait for a project from the pool "
        f"(default: {configuration.BOSKOS_ACQUIRE_TIMEOUT_SECONDS}).",
    )
    project.add_argument(
        "--boskos-heartbeat-interval-seconds",
        type=int,
        default=configuration.BOSKOS_HEARTBEAT_INTERVAL_SECONDS,
        help="How often to send heartbeats for the acquired project, 0 disables heartbeats "
        f"(default: {configuration.BOSKOS_HEARTBEAT_INTERVAL_SECONDS}).",
    )
    project.add_argument(
        "--enable-compute-api",
        action="store_true",
        help="Enable the compute API on the project before bringing the cluster up.",
    )

    cluster = parser.add_argument_group("cluster")
    cluster.add_argument(
        "--repo-root",
        default="",
        help="Path to the repo with the cluster scripts (default: current dir).",
    )
    cluster.add_argument(
        "--legacy-mode",
        action="store_true",
        help="The repo root is the kubernetes/kubernetes repo, not kubernetes/cloud-provider-gcp.",
    )
    cluster.add_argument(
        "--num-nodes",
        type=int,
        default=configuration.NUM_NODES,
        help=f"Number of nodes (default: {configuration.NUM_NODES}).",
    )
    cluster.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra environment variable for the cluster scripts, can be repeated.",
    )
    cluster.add_argument("--runtime-config", default="", help="KUBE_RUNTIME_CONFIG value.")
    cluster.add_argument("--node-scopes", default="", help="Scopes of the node instances.")
    cluster.add_argument(
        "--node-service-account", default="", help="Service account of the node instances."
    )
    cluster.add_argument("--cloud-provider", default="", help="Cloud provider of the cluster.")
    cluster.add_argument("--feature-gates", default="", help="Feature gates to enable.")
    cluster.add_argument("--master-size", default="", help="Machine type of the control plane.")
    cluster.add_argument("--node-size", default="", help="Machine type of the nodes.")
    cluster.add_argument("--ingress-gce-image", default="", help="Image of the GCE ingress.")
    cluster.add_argument(
        "--enable-cache-mutation-detector",
        action="store_true",
        help="Enable the cache mutation detector.",
    )
    cluster.add_argument(
        "--enable-pod-security-policy",
        action="store_true",
        help="Enable pod security policies.",
    )
    cluster.add_argument(
        "--create-custom-network",
        action="store_true",
        help="Create a custom network for the cluster.",
    )
    cluster.add_argument(
        "--overwrite-logs-dir",
        action="store_true",
        help="Replace existing cluster logs dir when dumping logs (default: false)",
    )

    build = parser.add_argument_group("build")
    build.add_argument("--build-type", default="", help="Type of the node image build.")
    build.add_argument("--kube-root", default="", help="Path to the sources to build from.")
    build.add_argument("--image-name", default="", help="Name of the node image.")

    parser.add_argument(
        "--artifacts",
        default=str(configuration.ARTIFACTS_DIR),
        help=f"Path to the artifacts dir (default: {configuration.ARTIFACTS_DIR}).",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the deployer provider and version and exit.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug messages.",
    )
    return parser.parse_args(argv)


def get_options(args: argparse.Namespace) -> configuration.DeployerOptions:
    """Create deployer options out of command line arguments."""
    return configuration.DeployerOptions(
        gcp_project=args.gcp_project,
        gcp_zone=args.gcp_zone,
        boskos_location=args.boskos_location,
        boskos_resource_type=args.boskos_resource_type,
        boskos_acquire_timeout_seconds=args.boskos_acquire_timeout_seconds,
        boskos_heartbeat_interval_seconds=args.boskos_heartbeat_interval_seconds,
        repo_root=args.repo_root,
        legacy_mode=args.legacy_mode,
        num_nodes=args.num_nodes,
        env=tuple(args.env),
        enable_compute_api=args.enable_compute_api,
        overwrite_logs_dir=args.overwrite_logs_dir,
        enable_cache_mutation_detector=args.enable_cache_mutation_detector,
        enable_pod_security_policy=args.enable_pod_security_policy,
        create_custom_network=args.create_custom_network,
        runtime_config=args.runtime_config,
        node_scopes=args.node_scopes,
        node_service_account=args.node_service_account,
        cloud_provider=args.cloud_provider,
        feature_gates=args.feature_gates,
        master_size=args.master_size,
        node_size=args.node_size,
        ingress_gce_image=args.ingress_gce_image,
        build_type=args.build_type,
        kube_root=args.kube_root,
        node_image=args.image_name,
        artifacts_dir=pl.Path(args.artifacts).expanduser(),
    )


def main(argv: list[str] | None = None) -> int:
    args = get_args(argv)
    logging.basicConfig(
        format="%(asctime)s %(levelname)s:%(name)s:%(message)s",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    if args.version:
        LOGGER.info(f"{configuration.DEPLOYER_NAME} {configuration.GIT_TAG}")
        return 0

    if not (args.build or args.up or args.down):
        LOGGER.error("Nothing to do, select at least one of `--build`, `--up`, `--down`.")
        return 1

    try:
        options = get_options(args)
    except ValueError as err:
        LOGGER.error(f"Invalid options: {err}")  # noqa: TRY400
        return 1

    controller = cluster_management.LifecycleController.from_options(options)

    result = controller.run(
        do_build=args.build, do_up=args.up, do_down=args.down, dump_logs=args.dump_logs
    )

    if result.error is not None:
        LOGGER.error(f"Run failed in state '{result.state}': {result.error}")
    if not result.released:
        LOGGER.error("The project was NOT returned to the pool.")
    return 0 if result.ok and result.released else 1


if __name__ == "__main__":
    sys.exit(main())
