from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .docker import DockerClient
from .errors import EngineUnavailableError, PipelineError, PruneError, PullError, RecreateError
from .topology import ServiceTopology
from .utils import tail


logger = logging.getLogger(__name__)


class DeployPhase(str, Enum):
    RUNNING_OLD = "running_old"
    PULLING = "pulling"
    RECREATING = "recreating"
    RUNNING_NEW = "running_new"
    FAILED = "failed"


@dataclass
class DeployReport:
    phase: DeployPhase = DeployPhase.RUNNING_OLD
    pulled: List[str] = field(default_factory=list)
    recreated: bool = False
    pruned: bool = False
    warnings: List[str] = field(default_factory=list)


class DeploymentOrchestrator:
    """Pull every image, recreate the stack, then prune on a best-effort basis.

    Containers are only touched once every pull has succeeded. A failed
    recreate is reported as-is; there is no rollback to the previous images.
    """

    def __init__(
        self,
        docker: DockerClient,
        *,
        remove_orphans: bool = True,
        force_recreate: bool = False,
        prune_images: bool = True,
    ) -> None:
        self.docker = docker
        self.remove_orphans = remove_orphans
        self.force_recreate = force_recreate
        self.prune_images = prune_images

    def deploy(self, topology: ServiceTopology, report: Optional[DeployReport] = None) -> DeployReport:
        if report is None:
            report = DeployReport()
        try:
            self._pull_all(topology, report)
            self._recreate(report)
        except PipelineError:
            report.phase = DeployPhase.FAILED
            raise
        if self.prune_images:
            self._prune(report)
        return report

    def _pull_all(self, topology: ServiceTopology, report: DeployReport) -> None:
        report.phase = DeployPhase.PULLING
        for service in topology.pullable():
            logger.info("Pulling %s for service %s", service.image, service.name)
            result = self.docker.compose_pull(service.name)
            if result.returncode != 0:
                raise PullError(
                    f"Pull of {service.image} for service {service.name} failed; "
                    f"no containers were recreated\n{tail(result.stderr)}"
                )
            report.pulled.append(service.name)

    def _recreate(self, report: DeployReport) -> None:
        report.phase = DeployPhase.RECREATING
        logger.info("Recreating containers (remove orphans: %s)", self.remove_orphans)
        result = self.docker.compose_up(
            remove_orphans=self.remove_orphans, force_recreate=self.force_recreate
        )
        if result.returncode != 0:
            raise RecreateError(
                f"Container recreate exited with code {result.returncode}; "
                f"the running stack may mix old and new containers\n{tail(result.stderr)}"
            )
        report.recreated = True
        report.phase = DeployPhase.RUNNING_NEW

    def _prune(self, report: DeployReport) -> None:
        logger.info("Pruning dangling images")
        try:
            result = self.docker.prune_images()
        except EngineUnavailableError as exc:
            error = PruneError(f"Image prune failed: {exc}")
        else:
            if result.returncode == 0:
                report.pruned = True
                return
            error = PruneError(f"Image prune failed: {tail(result.stderr, 3)}")
        logger.warning("%s", error)
        report.warnings.append(str(error))
