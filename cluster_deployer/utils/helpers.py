import contextlib
import datetime
import logging
import pathlib as pl
import random
import signal
import string
import subprocess
import typing as tp

import cluster_deployer.utils.types as ttypes

LOGGER = logging.getLogger(__name__)


@contextlib.contextmanager
def ignore_interrupt() -> tp.Iterator[None]:
    """Ignore the KeyboardInterrupt signal."""
    orig_handler = None
    try:
        orig_handler = signal.signal(signal.SIGINT, signal.SIG_IGN)
    except ValueError as exc:
        if "signal only works in main thread" not in str(exc):
            raise

    if orig_handler is None:
        yield
        return

    try:
        yield
    finally:
        signal.signal(signal.SIGINT, orig_handler)


def run_command(
    command: str | list,
    *,
    workdir: ttypes.FileType = "",
    ignore_fail: bool = False,
    shell: bool = False,
) -> bytes:
    """Run command."""
    cmd: str | list
    if isinstance(command, str):
        cmd = command if shell else command.split()
        cmd_str = command
    else:
        cmd = command
        cmd_str = " ".join(command)

    LOGGER.debug("Running `%s`", cmd_str)

    with subprocess.Popen(
        cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, shell=shell, cwd=workdir or None
    ) as p:
        stdout, stderr = p.communicate()
        retcode = p.returncode

    if not ignore_fail and retcode != 0:
        err_dec = stderr.decode()
        err_dec = err_dec or stdout.decode()
        msg = f"An error occurred while running `{cmd_str}`: {err_dec}"
        raise RuntimeError(msg)

    return stdout


def run_logged(
    command: list[str],
    *,
    log_file: ttypes.FileType,
    env: ttypes.EnvType | None = None,
    workdir: ttypes.FileType = "",
    on_start: tp.Callable[[subprocess.Popen], None] | None = None,
) -> int:
    """Run command with output appended to `log_file` and return its exit status.

    The command is expected to run for a long time (cluster scripts), so the output is not
    kept in memory. The started process is passed to `on_start`, so it can be terminated
    from another thread.
    """
    cmd_str = " ".join(command)
    LOGGER.info(f"Running `{cmd_str}`, output in '{log_file}'.")

    log_path = pl.Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with (
            open(log_path, "ab") as log_fp,
            subprocess.Popen(
                command,
                stdout=log_fp,
                stderr=subprocess.STDOUT,
                env=env,
                cwd=workdir or None,
            ) as proc,
        ):
            if on_start is not None:
                on_start(proc)
            retcode = proc.wait()
    except OSError as err:
        LOGGER.error(f"Failed to execute `{cmd_str}`: {err}")  # noqa: TRY400
        return 127

    if retcode != 0:
        LOGGER.warning(f"Command `{cmd_str}` exited with status {retcode}.")
    return retcode


def get_rand_str(length: int = 8) -> str:
    """Return random string."""
    if length < 1:
        return ""
    return "".join(random.choice(string.ascii_lowercase) for i in range(length))


def get_timestamped_rand_str(rand_str_length: int = 4) -> str:
    """Return random string prefixed with timestamp.

    >>> len(get_timestamped_rand_str()) == len("200801_002401314_cinf")
    True
    """
    timestamp = datetime.datetime.now(tz=datetime.UTC).strftime("%y%m%d_%H%M%S%f")[:-3]
    rand_str_component = get_rand_str(length=rand_str_length)
    rand_str_component = rand_str_component and f"_{rand_str_component}"
    return f"{timestamp}{rand_str_component}"


def parse_env_list(env_list: tp.Iterable[str]) -> ttypes.EnvType:
    """Parse list of `KEY=VALUE` strings into a dictionary.

    >>> parse_env_list(["FOO=1", "BAR=a=b"])
    {'FOO': '1', 'BAR': 'a=b'}
    """
    env: ttypes.EnvType = {}
    for record in env_list:
        key, sep, value = record.partition("=")
        if not (sep and key):
            msg = f"Invalid env record '{record}', expected `KEY=VALUE`"
            raise ValueError(msg)
        env[key] = value
    return env
