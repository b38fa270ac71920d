"""Shared execution context passed to every build target."""

import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .config import BUILD_MODE, BUILD_MODES, Config

logger = logging.getLogger(__name__)


class BuildError(Exception):
    """Raised when a build target fails."""

    pass


class MissingDefineError(BuildError):
    """Raised when a target needs a define that was not provided."""

    def __init__(self, key: str, target_name: str) -> None:
        super().__init__(f"Target {target_name} required define {key} but it was not provided")
        self.key = key
        self.target_name = target_name


@dataclass(frozen=True)
class ProcessResult:
    """Exit status and captured output of a finished subprocess."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """Combined stdout and stderr, used as the failure diagnostic."""
        return self.stdout + self.stderr


ProcessRunner = Callable[[list[str], float | None], ProcessResult]


def run_process(command: list[str], timeout: float | None = None) -> ProcessResult:
    """Run ``command`` to completion and capture its output.

    Raises:
        subprocess.TimeoutExpired: If ``timeout`` elapses first.
        FileNotFoundError: If the executable does not exist.
    """
    logger.debug("Running %s", " ".join(command))
    completed = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
    return ProcessResult(
        exit_code=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


@dataclass(frozen=True)
class Environment:
    """Directories, defines and process handle for one build invocation.

    Targets read from the environment but never mutate it; targets joined by
    a dependency edge run strictly one after the other.
    """

    project_dir: Path
    build_dir: Path
    output_dir: Path
    defines: dict[str, str] = field(default_factory=dict)
    web_sdk_dir: Path | None = None
    dart_binary: str = "dart"
    dart2js_snapshot: str = "dart2js.dart.snapshot"
    process_runner: ProcessRunner = run_process

    def build_mode(self, target_name: str) -> str:
        """Return the build mode define, failing fast when it is absent."""
        mode = self.defines.get(BUILD_MODE)
        if mode is None:
            raise MissingDefineError(BUILD_MODE, target_name)
        if mode not in BUILD_MODES:
            raise BuildError(f"Unknown build mode '{mode}'. Must be one of: {BUILD_MODES}")
        return mode

    def flag(self, key: str) -> bool:
        """Return True if a boolean define is set to ``"true"``."""
        return self.defines.get(key) == "true"

    def prepare(self) -> None:
        """Create the build and output directories."""
        self.build_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)


def environment_from_config(config: Config, process_runner: ProcessRunner = run_process) -> Environment:
    """Build an Environment from a loaded configuration.

    Relative directories are resolved against the project directory.
    """
    project_dir = Path(config.project_dir).resolve()

    def _resolve(value: str) -> Path:
        path = Path(value)
        return path if path.is_absolute() else project_dir / path

    return Environment(
        project_dir=project_dir,
        build_dir=_resolve(config.build_dir),
        output_dir=_resolve(config.output_dir),
        defines=config.to_defines(),
        web_sdk_dir=_resolve(config.sdk.web_sdk) if config.sdk.web_sdk else None,
        dart_binary=config.sdk.dart,
        dart2js_snapshot=config.sdk.dart2js_snapshot,
        process_runner=process_runner,
    )
