"""Building of node images used by the cluster."""

import dataclasses
import logging
import pathlib as pl

from cluster_deployer.utils import artifacts
from cluster_deployer.utils import configuration
from cluster_deployer.utils import helpers

LOGGER = logging.getLogger(__name__)


class BuildError(Exception):
    pass


@dataclasses.dataclass(frozen=True, order=True)
class BuildResult:
    image: str


def set_repo_path_if_not_set(options: configuration.DeployerOptions) -> pl.Path:
    """Default the repo root to the current directory."""
    if not options.repo_root:
        options.repo_root = pl.Path.cwd().resolve()
        LOGGER.debug(f"Repo root not set, using '{options.repo_root}'.")
    return pl.Path(options.repo_root)


class NoopBuilder:
    """Builder that doesn't build anything, the explicitly specified image is used as is."""

    def __init__(self, options: configuration.DeployerOptions) -> None:
        self.options = options

    def build(self) -> BuildResult:
        return BuildResult(image=self.options.node_image)


class NodeImageBuilder:
    """Builder of kind node images."""

    def __init__(self, options: configuration.DeployerOptions, *, kind_bin: str = "kind") -> None:
        self.options = options
        self.kind_bin = kind_bin

    @property
    def image(self) -> str:
        """Return name of the image that gets built."""
        return self.options.node_image or configuration.KIND_DEFAULT_BUILT_IMAGE

    def get_args(self) -> list[str]:
        """Return arguments for `kind build node-image`."""
        args = ["build", "node-image"]
        if self.options.build_type:
            args.extend(["--type", self.options.build_type])
        if self.options.kube_root:
            args.extend(["--kube-root", str(self.options.kube_root)])
        args.extend(["--image", self.image])
        return args

    def build(self) -> BuildResult:
        """Build the node image."""
        LOGGER.info("Building node image.")
        log_file = artifacts.get_phase_log_file(
            artifacts_dir=self.options.artifacts_dir, phase="build"
        )
        retcode = helpers.run_logged([self.kind_bin, *self.get_args()], log_file=log_file)
        if retcode != 0:
            msg = f"Failed to build node image '{self.image}', exit status {retcode}."
            raise BuildError(msg)

        LOGGER.info(f"Built node image '{self.image}'.")
        return BuildResult(image=self.image)
