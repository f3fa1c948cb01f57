"""Build, publish and deploy pipeline for a two-image Docker Compose stack."""

from .config import PipelineConfig
from .pipeline import DeployPipeline, PipelineContext, PipelineRun, Stage

__all__ = ["PipelineConfig", "DeployPipeline", "PipelineContext", "PipelineRun", "Stage"]
