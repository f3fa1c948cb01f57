from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigError


DEFAULT_TAG = "latest"
DOCKER_HUB_PREFIXES = ("docker.io/", "index.docker.io/", "registry-1.docker.io/")


@dataclass(frozen=True)
class ImageRef:
    """A container image identified by repository and tag."""

    repository: str
    tag: str = DEFAULT_TAG
    digest: Optional[str] = None

    def __post_init__(self) -> None:
        repository = (self.repository or "").strip()
        if not repository:
            raise ValueError("Image repository cannot be empty")
        object.__setattr__(self, "repository", repository)
        tag = (self.tag or "").strip()
        object.__setattr__(self, "tag", tag or DEFAULT_TAG)
        if self.digest is not None and not self.digest.strip():
            raise ValueError("Image digest cannot be empty")

    @classmethod
    def parse(cls, value: str) -> "ImageRef":
        value = value.strip()
        name, _, digest = value.partition("@")
        # A colon before the last slash belongs to a registry port, not a tag.
        slash = name.rfind("/")
        colon = name.rfind(":")
        if colon > slash:
            return cls(repository=name[:colon], tag=name[colon + 1 :], digest=digest or None)
        return cls(repository=name, digest=digest or None)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImageRef":
        # YAML reads unquoted tags such as 2 or 1.5 as numbers.
        tag = data.get("tag")
        return cls(
            repository=str(data.get("repository") or ""),
            tag=str(tag) if tag is not None else DEFAULT_TAG,
        )

    def to_dict(self) -> Dict[str, str]:
        payload = {"repository": self.repository, "tag": self.tag}
        if self.digest:
            payload["digest"] = self.digest
        return payload

    def short_name(self) -> str:
        """The reference as Docker lists it in ``RepoTags`` for Docker Hub images."""

        repository = self.repository
        for prefix in DOCKER_HUB_PREFIXES:
            if repository.startswith(prefix):
                repository = repository[len(prefix) :]
                break
        if repository.startswith("library/"):
            repository = repository[len("library/") :]
        return f"{repository}:{self.tag}"

    def __str__(self) -> str:
        if self.digest:
            # The digest wins over the tag; the default tag is left out.
            if self.tag == DEFAULT_TAG:
                return f"{self.repository}@{self.digest}"
            return f"{self.repository}:{self.tag}@{self.digest}"
        return f"{self.repository}:{self.tag}"


@dataclass(frozen=True)
class Credential:
    """Registry login injected for the publish stage only."""

    username: str
    secret: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.username:
            raise ConfigError("Registry username is empty")
        if not self.secret:
            raise ConfigError("Registry secret is empty")

    @classmethod
    def from_env(
        cls,
        username_var: str,
        secret_var: str,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Credential":
        environ = os.environ if environ is None else environ
        missing = [name for name in (username_var, secret_var) if not environ.get(name)]
        if missing:
            raise ConfigError(f"Missing registry credential variables: {', '.join(missing)}")
        return cls(username=environ[username_var], secret=environ[secret_var])


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class StageResult:
    """Summary emitted by a pipeline stage."""

    name: str
    outcome: Outcome
    diagnostic: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    images: List[ImageRef] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "stage": self.name,
            "outcome": self.outcome.value,
            "details": self.details,
        }
        if self.diagnostic:
            payload["diagnostic"] = self.diagnostic
        if self.images:
            payload["images"] = [str(image) for image in self.images]
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload
