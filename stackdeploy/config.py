from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigError
from .models import ImageRef


TARGET_NAMES = ("backend", "frontend")
DEFAULT_CONFIG_PATH = "stackdeploy.yaml"


def _section(data: Mapping[str, Any], key: str, where: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{where}: '{key}' must be a mapping, got {type(value).__name__}")
    return value


def _text(data: Mapping[str, Any], key: str, default: str, where: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{where}: '{key}' must be a non-empty string")
    return value


def _flag(data: Mapping[str, Any], key: str, default: bool, where: str) -> bool:
    # Quoted "false" would otherwise read as true.
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}: '{key}' must be true or false, got {value!r}")
    return value


@dataclass
class BuildTarget:
    """A source directory and the image it builds."""

    name: str
    source_dir: Path
    image: ImageRef
    dockerfile: str = "Dockerfile"

    @classmethod
    def from_dict(cls, name: str, data: Any, base_dir: Path) -> "BuildTarget":
        where = f"Image '{name}'"
        if not isinstance(data, Mapping):
            raise ConfigError(f"{where} must be a mapping with a 'repository' key")
        try:
            image = ImageRef.from_dict(data)
        except ValueError as exc:
            raise ConfigError(f"{where}: {exc}") from exc
        return cls(
            name=name,
            source_dir=base_dir / _text(data, "context", name, where),
            image=image,
            dockerfile=_text(data, "dockerfile", "Dockerfile", where),
        )


@dataclass
class CredentialSource:
    """Names of the variables the automation host injects the login through."""

    username_env: str = "REGISTRY_USERNAME"
    secret_env: str = "REGISTRY_PASSWORD"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CredentialSource":
        return cls(
            username_env=_text(data, "username_env", "REGISTRY_USERNAME", "credentials"),
            secret_env=_text(data, "secret_env", "REGISTRY_PASSWORD", "credentials"),
        )


@dataclass
class DeploySettings:
    remove_orphans: bool = True
    force_recreate: bool = False
    prune_images: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeploySettings":
        return cls(
            remove_orphans=_flag(data, "remove_orphans", True, "deploy"),
            force_recreate=_flag(data, "force_recreate", False, "deploy"),
            prune_images=_flag(data, "prune_images", True, "deploy"),
        )


@dataclass
class PipelineConfig:
    """Static configuration for one deployment target."""

    targets: List[BuildTarget]
    compose_file: Path
    registry: Optional[str] = None
    project_name: Optional[str] = None
    docker: str = "docker"
    compose_command: List[str] = field(default_factory=lambda: ["docker", "compose"])
    credentials: CredentialSource = field(default_factory=CredentialSource)
    deploy: DeploySettings = field(default_factory=DeploySettings)

    @classmethod
    def from_file(cls, path: str | Path) -> "PipelineConfig":
        path = Path(path)
        try:
            raw_data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Cannot parse configuration {path}: {exc}") from exc
        return cls.from_dict(raw_data, base_dir=path.resolve().parent)

    @classmethod
    def from_dict(cls, data: Any, base_dir: str | Path = ".") -> "PipelineConfig":
        if not isinstance(data, Mapping):
            raise ConfigError("Configuration must be a mapping")
        base_dir = Path(base_dir)

        images = data.get("images")
        if not isinstance(images, Mapping):
            raise ConfigError("Configuration must contain an 'images' mapping")
        missing = [name for name in TARGET_NAMES if name not in images]
        if missing:
            raise ConfigError(f"Configuration is missing images: {', '.join(missing)}")
        unexpected = sorted(set(images) - set(TARGET_NAMES))
        if unexpected:
            raise ConfigError(f"Unsupported images: {', '.join(unexpected)}")
        # Build order is fixed regardless of the order in the file.
        targets = [
            BuildTarget.from_dict(name, images[name] or {}, base_dir) for name in TARGET_NAMES
        ]

        compose_command = data.get("compose_command", ["docker", "compose"])
        if isinstance(compose_command, str):
            compose_command = compose_command.split()
        if (
            not isinstance(compose_command, list)
            or not compose_command
            or not all(isinstance(part, str) for part in compose_command)
        ):
            raise ConfigError("'compose_command' must be a string or a list of strings")

        registry = data.get("registry")
        project_name = data.get("project_name")
        for key, value in (("registry", registry), ("project_name", project_name)):
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"'{key}' must be a string or null")

        return cls(
            targets=targets,
            compose_file=base_dir / _text(data, "compose_file", "docker-compose.yml", "configuration"),
            registry=registry,
            project_name=project_name,
            docker=_text(data, "docker", "docker", "configuration"),
            compose_command=list(compose_command),
            credentials=CredentialSource.from_dict(_section(data, "credentials", "configuration")),
            deploy=DeploySettings.from_dict(_section(data, "deploy", "configuration")),
        )

    def target(self, name: str) -> BuildTarget:
        for target in self.targets:
            if target.name == name:
                return target
        raise ConfigError(f"Unknown build target: {name}")

    def images(self) -> Dict[str, ImageRef]:
        return {target.name: target.image for target in self.targets}
