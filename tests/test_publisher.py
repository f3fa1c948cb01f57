from __future__ import annotations

import pytest

from stackdeploy.errors import AuthError, PushError
from stackdeploy.models import Credential, ImageRef
from stackdeploy.publisher import PublishReport, RegistryPublisher


CREDENTIAL = Credential("deployer", "hunter2")
IMAGES = [ImageRef("example/api", "1"), ImageRef("example/web", "1")]


def test_publish_logs_in_pushes_in_order_then_logs_out(docker, runner) -> None:
    report = RegistryPublisher(docker).publish(CREDENTIAL, IMAGES)

    assert [call[1] for call in runner.calls] == ["login", "push", "push", "logout"]
    assert runner.calls[1] == ["docker", "push", "example/api:1"]
    assert runner.calls[2] == ["docker", "push", "example/web:1"]
    assert report.pushed == IMAGES
    assert report.logged_out is True
    assert report.warnings == []


def test_secret_is_sent_on_stdin_only(docker, runner) -> None:
    RegistryPublisher(docker, registry="registry.example.com").publish(CREDENTIAL, IMAGES)

    login = runner.matching("login")[0]
    assert "hunter2" not in login
    assert login[-1] == "registry.example.com"
    assert runner.inputs[0] == "hunter2"
    assert runner.matching("logout")[0] == ["docker", "logout", "registry.example.com"]


def test_rejected_login_pushes_nothing_and_still_logs_out(docker, runner) -> None:
    runner.fail("login", stderr="unauthorized: incorrect username or password")

    with pytest.raises(AuthError, match="unauthorized"):
        RegistryPublisher(docker).publish(CREDENTIAL, IMAGES)

    assert runner.matching("push") == []
    assert len(runner.matching("logout")) == 1


def test_failed_push_aborts_remaining_pushes_and_logs_out(docker, runner) -> None:
    runner.fail("push", "example/api:1")
    report = PublishReport(registry=None)

    with pytest.raises(PushError):
        RegistryPublisher(docker).publish(CREDENTIAL, IMAGES, report)

    assert runner.matching("push", "example/web:1") == []
    assert report.pushed == []
    assert report.logged_out is True


def test_logout_failure_does_not_fail_publish(docker, runner) -> None:
    runner.fail("logout", stderr="not logged in")

    report = RegistryPublisher(docker).publish(CREDENTIAL, IMAGES)

    assert report.pushed == IMAGES
    assert report.logged_out is False
    assert len(report.warnings) == 1
    assert "not logged in" in report.warnings[0]
