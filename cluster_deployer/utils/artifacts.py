"""Functionality for collecting deployment artifacts."""

import logging
import pathlib as pl
import shutil

from cluster_deployer.utils import helpers

LOGGER = logging.getLogger(__name__)

PHASE_LOGS_DIRNAME = "phase-logs"


def get_phase_log_file(*, artifacts_dir: pl.Path, phase: str) -> pl.Path:
    """Return a new log file for output of a lifecycle phase (e.g. `up`)."""
    logs_dir = artifacts_dir / PHASE_LOGS_DIRNAME
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir / f"{phase}_{helpers.get_timestamped_rand_str()}.log"


def prepare_logs_dir(*, logs_dir: pl.Path, overwrite: bool = False) -> pl.Path:
    """Create empty dir for cluster logs.

    Fails if the dir already exists, unless `overwrite` is set.
    """
    if logs_dir.exists():
        if not overwrite:
            msg = f"Logs dir '{logs_dir}' already exists, refusing to overwrite it."
            raise FileExistsError(msg)
        LOGGER.info(f"Removing existing logs dir '{logs_dir}'.")
        shutil.rmtree(logs_dir)

    logs_dir.mkdir(parents=True)
    return logs_dir
