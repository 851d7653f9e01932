import logging

import pytest

from cluster_deployer import deploy_cluster
from cluster_deployer.cluster_management import lifecycle
from cluster_deployer.utils import configuration


def test_get_options(tmp_path):
    args = deploy_cluster.get_args(
        [
            "--up",
            "--gcp-project",
            "my-proj",
            "--num-nodes",
            "2",
            "--env",
            "FOO=1",
            "--env",
            "BAR=2",
            "--boskos-heartbeat-interval-seconds",
            "0",
            "--image-name",
            "node:mine",
            "--artifacts",
            str(tmp_path),
        ]
    )
    options = deploy_cluster.get_options(args)

    assert options.gcp_project == "my-proj"
    assert options.num_nodes == 2
    assert options.env == ("FOO=1", "BAR=2")
    assert options.boskos_heartbeat_interval_seconds == 0
    assert options.boskos_acquire_timeout_seconds == configuration.BOSKOS_ACQUIRE_TIMEOUT_SECONDS
    assert options.node_image == "node:mine"
    assert options.artifacts_dir == tmp_path


def test_nothing_to_do():
    assert deploy_cluster.main([]) == 1


def test_invalid_options(tmp_path):
    assert deploy_cluster.main(["--up", "--num-nodes", "0", "--artifacts", str(tmp_path)]) == 1


@pytest.mark.parametrize(
    ("error", "released", "retcode"),
    (
        (None, True, 0),
        (lifecycle.PhaseFailedError("up", 1), True, 1),
        (None, False, 1),
    ),
)
def test_main_exit_status(monkeypatch, tmp_path, error, released, retcode):
    calls = []

    class _Controller:
        def run(self, **kwargs):
            calls.append(kwargs)
            state = lifecycle.LifecycleState.FAILED if error else lifecycle.LifecycleState.DONE
            return lifecycle.RunResult(state=state, error=error, released=released)

    monkeypatch.setattr(
        lifecycle.LifecycleController, "from_options", classmethod(lambda cls, o: _Controller())
    )

    assert (
        deploy_cluster.main(
            ["--up", "--down", "--gcp-project", "my-proj", "--artifacts", str(tmp_path)]
        )
        == retcode
    )
    assert calls == [{"do_build": False, "do_up": True, "do_down": True, "dump_logs": False}]


def test_version(caplog, monkeypatch):
    monkeypatch.setattr(configuration, "GIT_TAG", "v1.2.3")
    caplog.set_level(logging.INFO)

    assert deploy_cluster.main(["--version"]) == 0
    assert f"{configuration.DEPLOYER_NAME} v1.2.3" in caplog.text


def test_legacy_mode(tmp_path):
    args = deploy_cluster.get_args(["--up", "--artifacts", str(tmp_path)])
    assert not deploy_cluster.get_options(args).legacy_mode

    args = deploy_cluster.get_args(["--up", "--legacy-mode", "--artifacts", str(tmp_path)])
    assert deploy_cluster.get_options(args).legacy_mode


def test_invalid_env_no_lease(monkeypatch, tmp_path):
    def _from_options(cls, options):
        msg = "Controller must not be created for invalid options."
        raise AssertionError(msg)

    monkeypatch.setattr(
        lifecycle.LifecycleController, "from_options", classmethod(_from_options)
    )

    assert deploy_cluster.main(["--up", "--env", "FOO", "--artifacts", str(tmp_path)]) == 1
