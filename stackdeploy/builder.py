from __future__ import annotations

import logging
from pathlib import Path

from .docker import DockerClient
from .errors import BuildError
from .models import ImageRef
from .utils import tail


logger = logging.getLogger(__name__)


class ImageBuilder:
    """Builds one tagged image from a source directory."""

    def __init__(self, docker: DockerClient, *, verify_tags: bool = True) -> None:
        self.docker = docker
        self.verify_tags = verify_tags

    def build(self, source_dir: str | Path, image: ImageRef, dockerfile: str = "Dockerfile") -> ImageRef:
        source_dir = Path(source_dir)
        if not source_dir.is_dir():
            raise BuildError(f"Build context {source_dir} does not exist")
        if not (source_dir / dockerfile).is_file():
            raise BuildError(f"Build context {source_dir} has no {dockerfile}")

        logger.info("Building %s from %s", image, source_dir)
        result = self.docker.build(source_dir, image, dockerfile)
        if result.returncode != 0:
            raise BuildError(
                f"docker build for {image} exited with code {result.returncode}\n{tail(result.stderr)}"
            )

        if self.verify_tags:
            tags = self.docker.image_tags(image)
            # RepoTags drops the Docker Hub registry and "library/" prefixes.
            listed = {ImageRef.parse(tag).short_name() for tag in tags if tag.strip()}
            if image.short_name() not in listed:
                raise BuildError(f"Built image is not tagged {image} (tags: {', '.join(tags) or 'none'})")

        logger.info("Built %s", image)
        return image
