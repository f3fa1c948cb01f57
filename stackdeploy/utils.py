from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


class CommandRunner(Protocol):
    def __call__(
        self,
        command: Sequence[str],
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        ...


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    input: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Execute a subprocess command and return the completed process.

    ``input`` is written to the child's stdin and is never echoed into logs.
    The exit status is left for the caller to interpret.
    """

    process_env = os.environ.copy()
    if env:
        process_env.update(env)

    return subprocess.run(
        list(command),
        cwd=str(cwd) if cwd else None,
        env=process_env,
        input=input,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )


def ensure_directory(path: str | Path) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def tail(text: str, lines: int = 20) -> str:
    """Return the last ``lines`` non-empty lines of command output."""

    kept = [line for line in text.splitlines() if line.strip()]
    return "\n".join(kept[-lines:])


def setup_logging(level: str | int = "INFO", log_dir: Optional[str | Path] = None) -> logging.Logger:
    """Configure the ``stackdeploy`` logger for a single pipeline run.

    Stage-level lines go to stderr. When ``log_dir`` is given the same lines,
    plus command-level debug output, are also written to ``pipeline.log``.
    """

    logger = logging.getLogger("stackdeploy")
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level.upper() if isinstance(level, str) else level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_dir is not None:
        log_file = ensure_directory(log_dir) / "pipeline.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.debug("Pipeline log file: %s", log_file)

    logger.propagate = False
    return logger
