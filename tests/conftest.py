from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pytest
import yaml

from stackdeploy.docker import DockerClient
from stackdeploy.models import ImageRef
from stackdeploy.topology import default_topology, render_compose


BACKEND_IMAGE = ImageRef("example/app-backend", "1.0")
FRONTEND_IMAGE = ImageRef("example/app-frontend", "1.0")


def _contains(command: Sequence[str], fragment: Sequence[str]) -> bool:
    size = len(fragment)
    return any(list(command[i : i + size]) == list(fragment) for i in range(len(command) - size + 1))


class FakeRunner:
    """Records docker invocations and fails the ones registered with ``fail``."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self._failures: List[Tuple[Tuple[str, ...], int, str]] = []
        self._tags: Dict[str, List[str]] = {}

    def fail(self, *fragment: str, returncode: int = 1, stderr: str = "simulated failure") -> None:
        self._failures.append((fragment, returncode, stderr))

    def set_tags(self, image: str, tags: List[str]) -> None:
        self._tags[image] = tags

    def __call__(
        self,
        command: Sequence[str],
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        command = list(command)
        self.calls.append(command)
        self.inputs.append(input)
        for fragment, returncode, stderr in self._failures:
            if _contains(command, fragment):
                return subprocess.CompletedProcess(command, returncode, "", stderr)
        if _contains(command, ["image", "inspect"]):
            image = command[-1]
            return subprocess.CompletedProcess(command, 0, json.dumps(self._tags.get(image, [image])), "")
        return subprocess.CompletedProcess(command, 0, "", "")

    def matching(self, *fragment: str) -> List[List[str]]:
        return [call for call in self.calls if _contains(call, fragment)]


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def docker(runner: FakeRunner, tmp_path: Path) -> DockerClient:
    return DockerClient(compose_file=tmp_path / "docker-compose.yml", runner=runner)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A deployment checkout: two build contexts, a compose file and a config."""

    for name in ("backend", "frontend"):
        (tmp_path / name).mkdir()
        (tmp_path / name / "Dockerfile").write_text("FROM scratch\n")
    render_compose(default_topology(BACKEND_IMAGE, FRONTEND_IMAGE), tmp_path / "docker-compose.yml")
    config = {
        "compose_file": "docker-compose.yml",
        "images": {
            "backend": {"repository": BACKEND_IMAGE.repository, "tag": BACKEND_IMAGE.tag},
            "frontend": {"repository": FRONTEND_IMAGE.repository, "tag": FRONTEND_IMAGE.tag},
        },
        "credentials": {"username_env": "TEST_REGISTRY_USER", "secret_env": "TEST_REGISTRY_SECRET"},
    }
    config_path = tmp_path / "stackdeploy.yaml"
    config_path.write_text(yaml.safe_dump(config))
    return config_path


@pytest.fixture(autouse=True)
def _restore_package_logger():
    package_logger = logging.getLogger("stackdeploy")
    handlers = list(package_logger.handlers)
    propagate = package_logger.propagate
    level = package_logger.level
    yield
    for handler in package_logger.handlers:
        if handler not in handlers:
            handler.close()
    package_logger.handlers[:] = handlers
    package_logger.propagate = propagate
    package_logger.setLevel(level)
