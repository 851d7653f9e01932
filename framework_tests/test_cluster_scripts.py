import pathlib as pl
import signal
import threading
import time

import pytest

from cluster_deployer.utils import cluster_scripts
from cluster_deployer.utils import helpers

TARGET = cluster_scripts.ClusterTarget(
    project="proj-1", network="kt2-09a2565a-7ac6", instance_prefix="kt2-09a2565a-7ac6"
)


def _write_script(repo_root: pl.Path, script: str, body: str) -> pl.Path:
    script_path = repo_root / script
    script_path.parent.mkdir(parents=True, exist_ok=True)
    script_path.write_text(f"#!/bin/sh\n{body}\n")
    script_path.chmod(0o755)
    return script_path


def test_build_env(options):
    options.num_nodes = 5
    options.enable_pod_security_policy = True
    options.feature_gates = "AllAlpha=true"
    options.env = ("NUM_NODES=7", "EXTRA=a=b")

    env = cluster_scripts.build_env(options=options, target=TARGET, base_env={"HOME": "/root"})

    assert env["HOME"] == "/root"
    assert env["CLOUDSDK_CORE_PROJECT"] == "proj-1"
    assert env["PROJECT"] == "proj-1"
    assert env["KUBE_GCE_NETWORK"] == "kt2-09a2565a-7ac6"
    assert env["KUBE_GCE_INSTANCE_PREFIX"] == "kt2-09a2565a-7ac6"
    assert env["KUBE_GCE_ZONE"] == "us-central1-b"
    assert env["KUBECONFIG"] == str(options.kubeconfig_path)
    assert env["ENABLE_POD_SECURITY_POLICY"] == "true"
    assert env["ENABLE_CACHE_MUTATION_DETECTOR"] == "false"
    assert env["KUBE_FEATURE_GATES"] == "AllAlpha=true"
    assert "CREATE_CUSTOM_NETWORK" not in env
    assert "NODE_SIZE" not in env
    # User supplied values win
    assert env["NUM_NODES"] == "7"
    assert env["EXTRA"] == "a=b"


def test_build_env_invalid_record(options):
    options.env = ("NOVALUE",)
    with pytest.raises(ValueError):
        cluster_scripts.build_env(options=options, target=TARGET, base_env={})


def test_up_runs_script(options):
    repo_root = pl.Path(options.repo_root)
    out_file = repo_root / "up.out"
    _write_script(
        repo_root,
        cluster_scripts.UP_SCRIPT,
        f'echo "$PROJECT $KUBE_GCE_INSTANCE_PREFIX" > {out_file}\necho "bringing up"',
    )
    scripts = cluster_scripts.ClusterScripts(options)

    assert scripts.up(target=TARGET) == 0
    assert out_file.read_text().strip() == "proj-1 kt2-09a2565a-7ac6"

    phase_logs = list((options.artifacts_dir / "phase-logs").glob("up_*.log"))
    assert len(phase_logs) == 1
    assert "bringing up" in phase_logs[0].read_text()


def test_down_exit_status(options):
    _write_script(pl.Path(options.repo_root), cluster_scripts.DOWN_SCRIPT, "exit 3")
    scripts = cluster_scripts.ClusterScripts(options)
    assert scripts.down(target=TARGET) == 3


def test_missing_script(options):
    scripts = cluster_scripts.ClusterScripts(options)
    assert scripts.up(target=TARGET) == 127


def test_dump_logs_args(options, tmp_path):
    logs_dir = tmp_path / "logs"
    logs_dir.mkdir()
    _write_script(
        pl.Path(options.repo_root), cluster_scripts.LOG_DUMP_SCRIPT, 'touch "$1/dumped"'
    )
    scripts = cluster_scripts.ClusterScripts(options)

    assert scripts.dump_logs(target=TARGET, logs_dir=logs_dir) == 0
    assert (logs_dir / "dumped").exists()


def test_repo_root_not_set(options):
    options.repo_root = ""
    scripts = cluster_scripts.ClusterScripts(options)
    with pytest.raises(RuntimeError):
        scripts.up(target=TARGET)


def test_is_up(options, monkeypatch):
    scripts = cluster_scripts.ClusterScripts(options)

    monkeypatch.setattr(helpers, "run_command", lambda *args, **kwargs: b"node/n1\nnode/n2\n")
    assert scripts.get_nodes() == ["node/n1", "node/n2"]
    assert scripts.is_up()

    monkeypatch.setattr(helpers, "run_command", lambda *args, **kwargs: b"\n")
    assert not scripts.is_up()

    def _fail(*args, **kwargs):
        msg = "connection refused"
        raise RuntimeError(msg)

    monkeypatch.setattr(helpers, "run_command", _fail)
    assert not scripts.is_up()


def test_terminate_running_script(options):
    _write_script(pl.Path(options.repo_root), cluster_scripts.UP_SCRIPT, "exec sleep 30")
    scripts = cluster_scripts.ClusterScripts(options)
    # Nothing is running yet
    scripts.terminate()

    def _terminate_later():
        time.sleep(1)
        scripts.terminate()

    terminator = threading.Thread(target=_terminate_later)
    start = time.monotonic()
    terminator.start()
    retcode = scripts.up(target=TARGET)
    terminator.join()

    assert retcode == -signal.SIGTERM
    assert time.monotonic() - start < 15


def test_up_cancelled_before_start(options):
    repo_root = pl.Path(options.repo_root)
    _write_script(repo_root, cluster_scripts.UP_SCRIPT, "exec sleep 30")
    scripts = cluster_scripts.ClusterScripts(options)
    cancel = threading.Event()
    cancel.set()

    start = time.monotonic()
    assert scripts.up(target=TARGET, cancel=cancel) == -signal.SIGTERM
    assert time.monotonic() - start < 15

    # An unset event doesn't interfere
    _write_script(repo_root, cluster_scripts.UP_SCRIPT, "exit 0")
    assert scripts.up(target=TARGET, cancel=threading.Event()) == 0


@pytest.mark.parametrize(
    ("legacy_mode", "kubectl"),
    (
        (False, "kubectl"),
        (True, cluster_scripts.KUBECTL_SCRIPT),
    ),
)
def test_get_kubectl(options, monkeypatch, legacy_mode, kubectl):
    options.legacy_mode = legacy_mode
    scripts = cluster_scripts.ClusterScripts(options)
    commands = []

    def _run_command(command, **kwargs):
        commands.append(command)
        return b"node/n1\n"

    monkeypatch.setattr(helpers, "run_command", _run_command)

    assert scripts.get_nodes() == ["node/n1"]
    assert commands[0][0].endswith(kubectl)
    if legacy_mode:
        assert commands[0][0] == str(pl.Path(options.repo_root) / kubectl)
