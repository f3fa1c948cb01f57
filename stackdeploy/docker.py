from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import EngineUnavailableError
from .models import Credential, ImageRef
from .utils import CommandRunner, run_command


logger = logging.getLogger(__name__)


class DockerClient:
    """Docker CLI invocations used by the pipeline stages.

    Every method returns the completed process; the stages decide which exit
    codes are fatal.
    """

    def __init__(
        self,
        executable: str = "docker",
        *,
        compose_command: Sequence[str] = ("docker", "compose"),
        compose_file: Optional[str | Path] = None,
        project_name: Optional[str] = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self.executable = executable
        self.compose_command = list(compose_command)
        self.compose_file = Path(compose_file) if compose_file else None
        self.project_name = project_name
        self._runner = runner

    def _run(
        self,
        command: Sequence[str],
        *,
        cwd: str | Path | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        logger.debug("Running: %s", " ".join(command))
        try:
            result = self._runner(command, cwd=cwd, input=input)
        except OSError as exc:
            raise EngineUnavailableError(f"Cannot execute {command[0]!r}: {exc}") from exc
        logger.debug("Exit code %s: %s", result.returncode, " ".join(command))
        return result

    def build(
        self, context_dir: Path, image: ImageRef, dockerfile: str = "Dockerfile"
    ) -> subprocess.CompletedProcess[str]:
        return self._run(
            [
                self.executable,
                "build",
                "-t",
                str(image),
                "-f",
                str(context_dir / dockerfile),
                str(context_dir),
            ]
        )

    def image_tags(self, image: ImageRef) -> List[str]:
        result = self._run(
            [self.executable, "image", "inspect", "--format", "{{json .RepoTags}}", str(image)]
        )
        if result.returncode != 0:
            return []
        try:
            tags = json.loads(result.stdout.strip() or "[]")
        except json.JSONDecodeError:
            return []
        return [str(tag) for tag in tags or []]

    def login(self, credential: Credential, registry: Optional[str] = None) -> subprocess.CompletedProcess[str]:
        command = [self.executable, "login", "--username", credential.username, "--password-stdin"]
        if registry:
            command.append(registry)
        return self._run(command, input=credential.secret)

    def push(self, image: ImageRef) -> subprocess.CompletedProcess[str]:
        return self._run([self.executable, "push", str(image)])

    def logout(self, registry: Optional[str] = None) -> subprocess.CompletedProcess[str]:
        command = [self.executable, "logout"]
        if registry:
            command.append(registry)
        return self._run(command)

    def compose(self, *args: str) -> subprocess.CompletedProcess[str]:
        command = list(self.compose_command)
        if self.compose_file is not None:
            command.extend(["-f", str(self.compose_file)])
        if self.project_name:
            command.extend(["-p", self.project_name])
        command.extend(args)
        cwd = self.compose_file.parent if self.compose_file is not None else None
        return self._run(command, cwd=cwd)

    def compose_pull(self, service: str) -> subprocess.CompletedProcess[str]:
        return self.compose("pull", service)

    def compose_up(self, *, remove_orphans: bool = True, force_recreate: bool = False) -> subprocess.CompletedProcess[str]:
        args = ["up", "-d"]
        if remove_orphans:
            args.append("--remove-orphans")
        if force_recreate:
            args.append("--force-recreate")
        return self.compose(*args)

    def prune_images(self) -> subprocess.CompletedProcess[str]:
        return self._run([self.executable, "image", "prune", "-f"])
