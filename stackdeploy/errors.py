from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for every failure raised while running the deployment pipeline."""

    fatal = True


class ConfigError(PipelineError):
    """Raised when the pipeline configuration or injected credentials are invalid."""


class TopologyError(PipelineError):
    """Raised when a compose topology cannot be parsed or violates its invariants."""


class EngineUnavailableError(PipelineError):
    """Raised when the container engine executable cannot be started."""


class BuildError(PipelineError):
    """Raised when an image build fails or produces an unexpected tag."""


class AuthError(PipelineError):
    """Raised when the registry rejects the login credential."""


class PushError(PipelineError):
    """Raised when an image push fails."""


class PullError(PipelineError):
    """Raised when an image cannot be pulled; nothing has been recreated yet."""


class RecreateError(PipelineError):
    """Raised when containers cannot be recreated. The running stack may be mixed."""


class PruneError(PipelineError):
    fatal = False


class LogoutError(PipelineError):
    fatal = False
