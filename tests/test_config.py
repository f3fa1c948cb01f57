from pathlib import Path

import pytest

from stackdeploy.config import PipelineConfig
from stackdeploy.errors import ConfigError
from stackdeploy.models import ImageRef


def test_config_resolves_paths_against_its_directory(tmp_path: Path) -> None:
    config_path = tmp_path / "stackdeploy.yaml"
    config_path.write_text(
        """
registry: registry.example.com
compose_command: docker-compose
images:
  frontend: {repository: example/web, context: web}
  backend: {repository: example/api, tag: "3", dockerfile: Dockerfile.prod}
deploy:
  prune_images: false
"""
    )
    config = PipelineConfig.from_file(config_path)

    assert [target.name for target in config.targets] == ["backend", "frontend"]
    backend = config.target("backend")
    assert backend.image == ImageRef("example/api", "3")
    assert backend.source_dir == tmp_path.resolve() / "backend"
    assert backend.dockerfile == "Dockerfile.prod"
    assert config.target("frontend").source_dir == tmp_path.resolve() / "web"
    assert config.compose_file == tmp_path.resolve() / "docker-compose.yml"
    assert config.compose_command == ["docker-compose"]
    assert config.registry == "registry.example.com"
    assert config.deploy.prune_images is False
    assert config.deploy.remove_orphans is True


def test_config_requires_both_images(tmp_path: Path) -> None:
    config_path = tmp_path / "stackdeploy.yaml"
    config_path.write_text("images:\n  backend: {repository: example/api}\n")
    with pytest.raises(ConfigError, match="frontend"):
        PipelineConfig.from_file(config_path)


def test_config_rejects_empty_repository() -> None:
    with pytest.raises(ConfigError):
        PipelineConfig.from_dict({"images": {"backend": {"repository": ""}, "frontend": {"repository": "web"}}})


def test_missing_config_file_is_a_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        PipelineConfig.from_file(tmp_path / "absent.yaml")


def test_image_entry_must_be_a_mapping() -> None:
    with pytest.raises(ConfigError, match="backend"):
        PipelineConfig.from_dict({"images": {"backend": "me/backend", "frontend": "me/frontend"}})


def test_null_build_context_is_rejected() -> None:
    images = {
        "backend": {"repository": "me/backend", "context": None},
        "frontend": {"repository": "me/frontend"},
    }
    with pytest.raises(ConfigError, match="context"):
        PipelineConfig.from_dict({"images": images})


def test_deploy_flags_must_be_booleans() -> None:
    images = {"backend": {"repository": "me/backend"}, "frontend": {"repository": "me/frontend"}}
    with pytest.raises(ConfigError, match="prune_images"):
        PipelineConfig.from_dict({"images": images, "deploy": {"prune_images": "false"}})


def test_credentials_section_must_be_a_mapping() -> None:
    images = {"backend": {"repository": "me/backend"}, "frontend": {"repository": "me/frontend"}}
    with pytest.raises(ConfigError, match="credentials"):
        PipelineConfig.from_dict({"images": images, "credentials": "REGISTRY_USERNAME"})
