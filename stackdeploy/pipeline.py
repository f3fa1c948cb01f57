from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .builder import ImageBuilder
from .config import PipelineConfig
from .deployer import DeploymentOrchestrator, DeployReport
from .docker import DockerClient
from .errors import PipelineError
from .models import Credential, ImageRef, Outcome, StageResult
from .publisher import PublishReport, RegistryPublisher
from .topology import ServiceTopology


logger = logging.getLogger(__name__)


class Stage(Enum):
    BUILD_BACKEND = auto()
    BUILD_FRONTEND = auto()
    PUBLISH = auto()
    DEPLOY = auto()

    @property
    def label(self) -> str:
        return self.name.lower()


CredentialProvider = Callable[[], Credential]


@dataclass
class PipelineContext:
    """Everything a run needs, passed explicitly to each stage."""

    config: PipelineConfig
    docker: DockerClient
    credentials: CredentialProvider
    topology: Optional[ServiceTopology] = None
    results: Dict[Stage, StageResult] = field(default_factory=dict)

    def images_from(self, stages: Sequence[Stage]) -> List[ImageRef]:
        images: List[ImageRef] = []
        for stage in stages:
            images.extend(self.results[stage].images)
        return images

    def load_topology(self) -> ServiceTopology:
        if self.topology is None:
            self.topology = ServiceTopology.from_compose_file(self.config.compose_file)
        return self.topology


StageHandler = Callable[[PipelineContext, StageResult], None]
Preflight = Callable[[PipelineContext], None]


@dataclass(frozen=True)
class StageNode:
    stage: Stage
    handler: StageHandler
    requires: Tuple[Stage, ...] = ()
    # Checked before the first stage of a run; must not change anything.
    preflight: Optional[Preflight] = None


def _build_handler(target_name: str) -> StageHandler:
    def handler(context: PipelineContext, result: StageResult) -> None:
        target = context.config.target(target_name)
        builder = ImageBuilder(context.docker)
        image = builder.build(target.source_dir, target.image, target.dockerfile)
        result.images.append(image)
        result.details.update(
            {
                "source_dir": str(target.source_dir),
                "dockerfile": target.dockerfile,
            }
        )

    return handler


def _stage_publish(context: PipelineContext, result: StageResult) -> None:
    images = context.images_from((Stage.BUILD_BACKEND, Stage.BUILD_FRONTEND))
    publisher = RegistryPublisher(context.docker, context.config.registry)
    report = PublishReport(registry=context.config.registry)
    try:
        publisher.publish(context.credentials(), images, report)
    finally:
        result.images.extend(report.pushed)
        result.warnings.extend(report.warnings)
        result.details.update(
            {
                "registry": publisher.registry_label,
                "pushed": [str(image) for image in report.pushed],
                "logged_out": report.logged_out,
            }
        )


def _check_topology(context: PipelineContext) -> None:
    context.load_topology()


def _stage_deploy(context: PipelineContext, result: StageResult) -> None:
    published = context.images_from((Stage.PUBLISH,))
    topology = context.load_topology()
    referenced = {service.image for service in topology.services if service.image is not None}
    for image in published:
        if image not in referenced:
            logger.warning("Published image %s is not referenced by %s", image, context.config.compose_file)

    settings = context.config.deploy
    orchestrator = DeploymentOrchestrator(
        context.docker,
        remove_orphans=settings.remove_orphans,
        force_recreate=settings.force_recreate,
        prune_images=settings.prune_images,
    )
    report = DeployReport()
    try:
        orchestrator.deploy(topology, report)
    finally:
        result.warnings.extend(report.warnings)
        result.details.update(
            {
                "phase": report.phase.value,
                "pulled": list(report.pulled),
                "recreated": report.recreated,
                "pruned": report.pruned,
            }
        )


DEFAULT_GRAPH: Tuple[StageNode, ...] = (
    StageNode(Stage.BUILD_BACKEND, _build_handler("backend")),
    StageNode(Stage.BUILD_FRONTEND, _build_handler("frontend"), requires=(Stage.BUILD_BACKEND,)),
    StageNode(Stage.PUBLISH, _stage_publish, requires=(Stage.BUILD_BACKEND, Stage.BUILD_FRONTEND)),
    StageNode(Stage.DEPLOY, _stage_deploy, requires=(Stage.PUBLISH,), preflight=_check_topology),
)


@dataclass
class PipelineRun:
    """Results of one execution, in the order the stages ran."""

    target: Stage
    results: List[StageResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return (
            bool(self.results)
            and all(result.succeeded for result in self.results)
            and self.results[-1].name == self.target.label
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def failed_stage(self) -> Optional[StageResult]:
        return next((result for result in self.results if not result.succeeded), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.label,
            "outcome": (Outcome.SUCCESS if self.succeeded else Outcome.FAILURE).value,
            "stages": [result.to_dict() for result in self.results],
        }


class DeployPipeline:
    """Runs the stage graph in order and stops at the first fatal failure."""

    def __init__(self, context: PipelineContext, graph: Sequence[StageNode] = DEFAULT_GRAPH) -> None:
        seen: List[Stage] = []
        for node in graph:
            early = [stage.label for stage in node.requires if stage not in seen]
            if early:
                raise ValueError(f"Stage {node.stage.label} requires stages that do not run before it: {early}")
            seen.append(node.stage)
        self.context = context
        self.graph = tuple(graph)
        self._nodes = {node.stage: node for node in self.graph}

    def plan(self) -> List[Dict[str, Any]]:
        return [
            {"stage": node.stage.label, "requires": [stage.label for stage in node.requires]}
            for node in self.graph
        ]

    def run(self) -> PipelineRun:
        return self.run_until(self.graph[-1].stage)

    def run_until(self, target_stage: Stage) -> PipelineRun:
        if target_stage not in self._nodes:
            raise ValueError(f"Stage {target_stage.label} is not part of this pipeline")
        run = PipelineRun(target=target_stage)
        stages = [node.stage for node in self.graph]
        planned = self.graph[: stages.index(target_stage) + 1]
        failed = self._preflight(planned)
        if failed is not None:
            run.results.append(failed)
            logger.error("Pipeline not started: %s", failed.diagnostic)
            return run
        for node in planned:
            result = self.run_stage(node.stage)
            run.results.append(result)
            if not result.succeeded:
                logger.error("Pipeline halted at %s", node.stage.label)
                break
        logger.info("Pipeline %s", "succeeded" if run.succeeded else "failed")
        return run

    def _preflight(self, nodes: Sequence[StageNode]) -> Optional[StageResult]:
        for node in nodes:
            if node.preflight is None:
                continue
            try:
                node.preflight(self.context)
            except PipelineError as exc:
                result = StageResult(
                    name=node.stage.label,
                    outcome=Outcome.FAILURE,
                    diagnostic=f"Preflight check failed: {exc}",
                    details={"error": type(exc).__name__, "preflight": True},
                )
                self.context.results[node.stage] = result
                return result
        return None

    def run_stage(self, stage: Stage) -> StageResult:
        node = self._nodes[stage]
        result = StageResult(name=stage.label, outcome=Outcome.SUCCESS)
        unmet = [
            required.label
            for required in node.requires
            if required not in self.context.results or not self.context.results[required].succeeded
        ]
        if unmet:
            result.outcome = Outcome.FAILURE
            result.diagnostic = f"Required stages have not succeeded: {', '.join(unmet)}"
            logger.error("Stage %s cannot start: %s", stage.label, result.diagnostic)
            self.context.results[stage] = result
            return result

        logger.info("Stage %s started", stage.label)
        start = time.perf_counter()
        try:
            node.handler(self.context, result)
        except PipelineError as exc:
            if exc.fatal:
                result.outcome = Outcome.FAILURE
                result.diagnostic = str(exc)
                result.details["error"] = type(exc).__name__
                logger.error("Stage %s failed: %s", stage.label, exc)
            else:
                logger.warning("Stage %s: %s", stage.label, exc)
                result.warnings.append(str(exc))
        result.details["duration_s"] = round(time.perf_counter() - start, 3)
        if result.succeeded:
            logger.info("Stage %s succeeded", stage.label)
        self.context.results[stage] = result
        return result
