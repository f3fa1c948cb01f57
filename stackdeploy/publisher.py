from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .docker import DockerClient
from .errors import AuthError, EngineUnavailableError, LogoutError, PushError
from .models import Credential, ImageRef
from .utils import tail


logger = logging.getLogger(__name__)


@dataclass
class PublishReport:
    registry: Optional[str]
    pushed: List[ImageRef] = field(default_factory=list)
    logged_out: bool = False
    warnings: List[str] = field(default_factory=list)


class RegistryPublisher:
    """Login, push each image in order, then always log out.

    A failed logout never changes the outcome of the publish; it is logged
    and kept in the report's warnings.
    """

    def __init__(self, docker: DockerClient, registry: Optional[str] = None) -> None:
        self.docker = docker
        self.registry = registry

    @property
    def registry_label(self) -> str:
        return self.registry or "default registry"

    def publish(
        self,
        credential: Credential,
        images: Sequence[ImageRef],
        report: Optional[PublishReport] = None,
    ) -> PublishReport:
        # Callers that pass their own report can still read it after a raise.
        if report is None:
            report = PublishReport(registry=self.registry)
        try:
            self._login(credential)
            for image in images:
                self._push(image)
                report.pushed.append(image)
        finally:
            self._logout(report)
        return report

    def _login(self, credential: Credential) -> None:
        logger.info("Logging in to %s as %s", self.registry_label, credential.username)
        result = self.docker.login(credential, self.registry)
        if result.returncode != 0:
            raise AuthError(f"Login to {self.registry_label} was rejected\n{tail(result.stderr)}")

    def _push(self, image: ImageRef) -> None:
        logger.info("Pushing %s", image)
        result = self.docker.push(image)
        if result.returncode != 0:
            raise PushError(f"Push of {image} exited with code {result.returncode}\n{tail(result.stderr)}")

    def _logout(self, report: PublishReport) -> None:
        try:
            result = self.docker.logout(self.registry)
        except EngineUnavailableError as exc:
            error = LogoutError(f"Logout from {self.registry_label} failed: {exc}")
        else:
            if result.returncode == 0:
                report.logged_out = True
                logger.info("Logged out of %s", self.registry_label)
                return
            error = LogoutError(f"Logout from {self.registry_label} failed: {tail(result.stderr, 3)}")
        logger.warning("%s", error)
        report.warnings.append(str(error))
