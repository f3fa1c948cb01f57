from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .errors import TopologyError
from .models import ImageRef


DATABASE_IMAGE = "mongo:6"
DATABASE_VOLUME = "mongo_data"
BACKEND_PORT = 8080


@dataclass(frozen=True)
class ServiceSpec:
    """One service declared in a compose file."""

    name: str
    image: Optional[ImageRef] = None
    build_context: Optional[str] = None
    depends_on: Tuple[str, ...] = ()
    ports: Tuple[str, ...] = ()
    volumes: Tuple[str, ...] = ()
    environment: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "ServiceSpec":
        if not isinstance(data, Mapping):
            raise TopologyError(f"Service '{name}' must be a mapping")

        image = data.get("image")
        build = data.get("build")
        if isinstance(build, Mapping):
            build = build.get("context")

        # Compose accepts both a list of names and a mapping of name -> condition.
        depends_on = data.get("depends_on") or ()
        if isinstance(depends_on, Mapping):
            depends_on = list(depends_on.keys())

        environment = data.get("environment") or {}
        if not isinstance(environment, Mapping):
            environment = dict(item.split("=", 1) for item in environment if "=" in item)

        try:
            image_ref = ImageRef.parse(str(image)) if image else None
        except ValueError as exc:
            raise TopologyError(f"Service '{name}' has an invalid image: {exc}") from exc

        return cls(
            name=name,
            image=image_ref,
            build_context=str(build) if build else None,
            depends_on=tuple(str(dep) for dep in depends_on),
            ports=tuple(str(port) for port in data.get("ports") or ()),
            volumes=tuple(str(volume) for volume in data.get("volumes") or ()),
            environment={str(key): str(value) for key, value in environment.items()},
        )

    def to_compose(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {}
        if self.image is not None:
            entry["image"] = str(self.image)
        if self.build_context:
            entry["build"] = self.build_context
        if self.environment:
            entry["environment"] = dict(self.environment)
        if self.ports:
            entry["ports"] = list(self.ports)
        if self.volumes:
            entry["volumes"] = list(self.volumes)
        if self.depends_on:
            entry["depends_on"] = list(self.depends_on)
        return entry


@dataclass(frozen=True)
class ServiceTopology:
    """Ordered set of services with acyclic startup dependencies."""

    services: Tuple[ServiceSpec, ...]
    volumes: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        names = [service.name for service in self.services]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise TopologyError(f"Duplicate services: {', '.join(duplicates)}")
        for service in self.services:
            unknown = [dep for dep in service.depends_on if dep not in names]
            if unknown:
                raise TopologyError(
                    f"Service '{service.name}' depends on undeclared services: {', '.join(unknown)}"
                )
        # Raises on cycles.
        self.startup_order()

    @classmethod
    def from_compose_file(cls, path: str | Path) -> "ServiceTopology":
        path = Path(path)
        try:
            raw_data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise TopologyError(f"Cannot read compose file {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise TopologyError(f"Cannot parse compose file {path}: {exc}") from exc
        return cls.from_dict(raw_data)

    @classmethod
    def from_dict(cls, data: Any) -> "ServiceTopology":
        if not isinstance(data, Mapping) or not isinstance(data.get("services"), Mapping):
            raise TopologyError("Compose file must contain a top-level 'services' mapping")
        services = tuple(
            ServiceSpec.from_dict(str(name), entry or {})
            for name, entry in data["services"].items()
        )
        volumes = tuple(str(name) for name in (data.get("volumes") or {}))
        return cls(services=services, volumes=volumes)

    def get(self, name: str) -> ServiceSpec:
        for service in self.services:
            if service.name == name:
                return service
        raise TopologyError(f"Unknown service: {name}")

    def names(self) -> List[str]:
        return [service.name for service in self.services]

    def startup_order(self) -> List[ServiceSpec]:
        """Dependencies first; ties keep declaration order."""

        remaining = list(self.services)
        started: List[str] = []
        ordered: List[ServiceSpec] = []
        while remaining:
            ready = next(
                (service for service in remaining if all(dep in started for dep in service.depends_on)),
                None,
            )
            if ready is None:
                cycle = ", ".join(service.name for service in remaining)
                raise TopologyError(f"Dependency cycle between services: {cycle}")
            remaining.remove(ready)
            started.append(ready.name)
            ordered.append(ready)
        return ordered

    def pullable(self) -> List[ServiceSpec]:
        return [service for service in self.startup_order() if service.image is not None]

    def to_compose(self) -> Dict[str, Any]:
        compose: Dict[str, Any] = {
            "services": {service.name: service.to_compose() for service in self.services}
        }
        if self.volumes:
            compose["volumes"] = {name: {} for name in self.volumes}
        return compose

    def to_dict(self) -> Dict[str, Any]:
        return {
            "services": self.names(),
            "startup_order": [service.name for service in self.startup_order()],
            "images": {
                service.name: str(service.image) for service in self.services if service.image
            },
            "volumes": list(self.volumes),
        }


def default_topology(
    backend: ImageRef,
    frontend: ImageRef,
    *,
    database_name: str = "app_db",
    backend_port: int = BACKEND_PORT,
) -> ServiceTopology:
    """The fixed mongo -> backend -> frontend stack served on host port 80."""

    return ServiceTopology(
        services=(
            ServiceSpec(
                name="mongo",
                image=ImageRef.parse(DATABASE_IMAGE),
                volumes=(f"{DATABASE_VOLUME}:/data/db",),
            ),
            ServiceSpec(
                name="backend",
                image=backend,
                depends_on=("mongo",),
                environment={
                    "PORT": str(backend_port),
                    "MONGODB_URI": f"mongodb://mongo:27017/{database_name}",
                },
            ),
            ServiceSpec(
                name="frontend",
                image=frontend,
                depends_on=("backend",),
                ports=("80:80",),
            ),
        ),
        volumes=(DATABASE_VOLUME,),
    )


def render_compose(topology: ServiceTopology, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(topology.to_compose(), sort_keys=False), encoding="utf-8")
    return path
