from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from .config import DEFAULT_CONFIG_PATH, PipelineConfig
from .docker import DockerClient
from .errors import PipelineError
from .models import Credential
from .pipeline import DeployPipeline, PipelineContext, Stage
from .topology import ServiceTopology, default_topology, render_compose
from .utils import setup_logging


logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def _load_pipeline(args: argparse.Namespace) -> DeployPipeline:
    config = PipelineConfig.from_file(args.config)
    docker = DockerClient(
        config.docker,
        compose_command=config.compose_command,
        compose_file=config.compose_file,
        project_name=config.project_name,
    )
    source = config.credentials

    # The only place the process environment is read.
    def credentials() -> Credential:
        return Credential.from_env(source.username_env, source.secret_env, os.environ)

    context = PipelineContext(config=config, docker=docker, credentials=credentials)
    return DeployPipeline(context)


def cmd_plan(args: argparse.Namespace) -> int:
    pipeline = _load_pipeline(args)
    print(json.dumps(pipeline.plan(), indent=2))
    return 0


def cmd_topology(args: argparse.Namespace) -> int:
    config = PipelineConfig.from_file(args.config)
    if args.render:
        images = config.images()
        topology = default_topology(images["backend"], images["frontend"], database_name=args.database)
        path = render_compose(topology, args.render)
        logger.info("Wrote compose file %s", path)
    else:
        topology = ServiceTopology.from_compose_file(config.compose_file)
    print(json.dumps(topology.to_dict(), indent=2))
    return 0


def _run_to_stage(args: argparse.Namespace, stage: Stage) -> int:
    pipeline = _load_pipeline(args)
    run = pipeline.run_until(stage)
    print(json.dumps(run.to_dict(), indent=2))
    failed = run.failed_stage
    if failed is not None:
        print(f"{failed.name} failed: {failed.diagnostic}", file=sys.stderr)
    return run.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Build, publish and deploy the application stack")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to the pipeline configuration file.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level.",
    )
    parser.add_argument(
        "--log-dir",
        default=None,
        help="Directory for a full debug log of the run.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="Show the stage graph without running it")
    plan_parser.set_defaults(func=cmd_plan)

    topology_parser = subparsers.add_parser("topology", help="Validate and show the compose topology")
    topology_parser.add_argument(
        "--render",
        type=Path,
        default=None,
        help="Write the default three-service compose file to this path first.",
    )
    topology_parser.add_argument("--database", default="app_db", help="Database name used by the backend.")
    topology_parser.set_defaults(func=cmd_topology)

    for command, stage, help_text in (
        ("build", Stage.BUILD_FRONTEND, "Build both images"),
        ("publish", Stage.PUBLISH, "Build and push both images"),
        ("run", Stage.DEPLOY, "Build, push and deploy"),
    ):
        stage_parser = subparsers.add_parser(command, help=help_text)
        stage_parser.set_defaults(func=lambda args, stage=stage: _run_to_stage(args, stage))

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_dir)
    try:
        return args.func(args)
    except PipelineError as exc:
        logger.error("%s", exc)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
