from __future__ import annotations

import pytest

from stackdeploy.deployer import DeploymentOrchestrator, DeployPhase, DeployReport
from stackdeploy.errors import PullError, RecreateError
from stackdeploy.models import ImageRef
from stackdeploy.topology import default_topology


TOPOLOGY = default_topology(ImageRef("example/api", "1"), ImageRef("example/web", "1"))


def _compose_args(runner) -> list:
    # Drop "docker compose -f <file>" so assertions read as compose subcommands.
    return [call[4:] for call in runner.calls if call[:2] == ["docker", "compose"]]


def test_deploy_pulls_in_startup_order_then_recreates_and_prunes(docker, runner) -> None:
    report = DeploymentOrchestrator(docker).deploy(TOPOLOGY)

    assert _compose_args(runner) == [
        ["pull", "mongo"],
        ["pull", "backend"],
        ["pull", "frontend"],
        ["up", "-d", "--remove-orphans"],
    ]
    assert runner.calls[-1] == ["docker", "image", "prune", "-f"]
    assert report.phase is DeployPhase.RUNNING_NEW
    assert report.pulled == ["mongo", "backend", "frontend"]
    assert report.recreated and report.pruned


def test_failed_pull_recreates_nothing(docker, runner) -> None:
    runner.fail("pull", "backend", stderr="manifest unknown")
    report = DeployReport()

    with pytest.raises(PullError, match="backend"):
        DeploymentOrchestrator(docker).deploy(TOPOLOGY, report)

    assert runner.matching("up") == []
    assert runner.matching("prune") == []
    assert runner.matching("pull", "frontend") == []
    assert report.phase is DeployPhase.FAILED
    assert report.pulled == ["mongo"]


def test_failed_recreate_is_fatal_and_skips_prune(docker, runner) -> None:
    runner.fail("up", "-d")
    report = DeployReport()

    with pytest.raises(RecreateError):
        DeploymentOrchestrator(docker).deploy(TOPOLOGY, report)

    assert report.phase is DeployPhase.FAILED
    assert report.recreated is False
    assert runner.matching("prune") == []


def test_prune_failure_is_only_a_warning(docker, runner) -> None:
    runner.fail("image", "prune", stderr="daemon busy")

    report = DeploymentOrchestrator(docker).deploy(TOPOLOGY)

    assert report.phase is DeployPhase.RUNNING_NEW
    assert report.pruned is False
    assert "daemon busy" in report.warnings[0]


def test_orphan_removal_and_prune_can_be_disabled(docker, runner) -> None:
    DeploymentOrchestrator(docker, remove_orphans=False, force_recreate=True, prune_images=False).deploy(TOPOLOGY)

    assert _compose_args(runner)[-1] == ["up", "-d", "--force-recreate"]
    assert runner.matching("prune") == []
