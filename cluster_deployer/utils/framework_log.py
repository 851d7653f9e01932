import functools
import logging
import pathlib as pl
import time

from cluster_deployer.utils import configuration


def get_framework_log_path(artifacts_dir: pl.Path | None = None) -> pl.Path:
    return (artifacts_dir or configuration.ARTIFACTS_DIR) / "framework.log"


@functools.cache
def framework_logger(artifacts_dir: pl.Path | None = None) -> logging.Logger:
    """Get logger for the `framework.log` file.

    The logger is configured per artifacts dir. It is used for logging (and later reporting) events
    like a failure to acquire a project or a failure to release it.
    """

    class UTCFormatter(logging.Formatter):
        converter = time.gmtime  # type: ignore[assignment]

    log_path = get_framework_log_path(artifacts_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = UTCFormatter("%(asctime)s %(levelname)s %(message)s")
    handler = logging.FileHandler(log_path)
    handler.setFormatter(formatter)

    logger = logging.getLogger(f"framework.{log_path}")
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)

    return logger
