"""Two-stage dart2js invocation.

The compiler runs twice: first to a kernel file (so later tooling can tree
shake resources from it), then from that kernel file to JavaScript.
"""

import logging
import subprocess
from pathlib import Path

from .config import (
    COMPILER_TIMEOUT,
    CSP_MODE,
    DART2JS_OPTIMIZATION,
    DART_DEFINES,
    EXTRA_FRONT_END_OPTIONS,
    NATIVE_NULL_ASSERTIONS,
    PACKAGES_PATH,
    SOURCE_MAPS_ENABLED,
    decode_list,
)
from .depfile import parse_compiler_deps, write_depfile
from .environment import BuildError, Environment, ProcessResult

logger = logging.getLogger(__name__)

DEFAULT_OPTIMIZATION = "O4"

ENTRYPOINT_FILE = "main.dart"
KERNEL_FILE = "app.dill"
KERNEL_DEPS_FILE = "app.dill.deps"
MAIN_BUNDLE = "main.dart.js"
COMPILER_DEPFILE = "dart2js.d"


class CompilerError(BuildError):
    """Raised when the compiler exits with a non-zero status or times out."""

    def __init__(self, stage: str, message: str, exit_code: int | None = None) -> None:
        super().__init__(f"dart2js {stage} stage failed: {message}")
        self.stage = stage
        self.exit_code = exit_code


def shared_command_options(environment: Environment, build_mode: str) -> list[str]:
    """Return the command prefix and flags common to both stages."""
    if environment.web_sdk_dir is not None:
        libraries_spec = environment.web_sdk_dir / "libraries.json"
    else:
        libraries_spec = Path("libraries.json")

    options = [
        environment.dart_binary,
        "--disable-dart-dev",
        environment.dart2js_snapshot,
        f"--libraries-spec={libraries_spec}",
        *decode_list(environment.defines, EXTRA_FRONT_END_OPTIONS),
    ]
    if environment.flag(NATIVE_NULL_ASSERTIONS):
        options.append("--native-null-assertions")
    if build_mode == "profile":
        options.append("-Ddart.vm.profile=true")
    else:
        options.append("-Ddart.vm.product=true")
    options.extend(f"-D{dart_define}" for dart_define in decode_list(environment.defines, DART_DEFINES))
    if not environment.flag(SOURCE_MAPS_ENABLED):
        options.append("--no-source-maps")
    return options


def kernel_command(environment: Environment, build_mode: str) -> list[str]:
    """Return the command line for the kernel stage."""
    packages = environment.defines.get(PACKAGES_PATH, ".packages")
    return [
        *shared_command_options(environment, build_mode),
        "-o",
        str(environment.build_dir / KERNEL_FILE),
        f"--packages={packages}",
        "--cfe-only",
        str(environment.build_dir / ENTRYPOINT_FILE),
    ]


def codegen_command(environment: Environment, build_mode: str) -> list[str]:
    """Return the command line for the JavaScript stage."""
    optimization = environment.defines.get(DART2JS_OPTIMIZATION, DEFAULT_OPTIMIZATION)
    command = [*shared_command_options(environment, build_mode), f"-{optimization}"]
    if build_mode == "profile":
        command.append("--no-minify")
    if environment.flag(CSP_MODE):
        command.append("--csp")
    command.extend(
        [
            "-o",
            str(environment.build_dir / MAIN_BUNDLE),
            str(environment.build_dir / KERNEL_FILE),
        ]
    )
    return command


def _timeout(environment: Environment) -> float | None:
    raw = environment.defines.get(COMPILER_TIMEOUT)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise BuildError(f"Invalid {COMPILER_TIMEOUT} define: {raw!r}") from e


def _run_stage(environment: Environment, stage: str, command: list[str]) -> ProcessResult:
    timeout = _timeout(environment)
    try:
        result = environment.process_runner(command, timeout)
    except subprocess.TimeoutExpired as e:
        raise CompilerError(stage, f"timed out after {timeout:g}s") from e
    except FileNotFoundError as e:
        raise CompilerError(stage, f"compiler not found: {e}") from e
    if result.exit_code != 0:
        raise CompilerError(stage, result.output, exit_code=result.exit_code)
    logger.debug("dart2js %s stage finished", stage)
    return result


def compile_bundle(environment: Environment, target_name: str = "dart2js") -> Path | None:
    """Compile the synthesized entry point to ``{BUILD_DIR}/main.dart.js``.

    Returns:
        Path of the depfile written, or None when the compiler did not list
        its dependencies.

    Raises:
        MissingDefineError: If the build mode define is absent. Raised before
            any subprocess runs.
        CompilerError: If either stage fails.
    """
    build_mode = environment.build_mode(target_name)

    _run_stage(environment, "kernel", kernel_command(environment, build_mode))
    _run_stage(environment, "codegen", codegen_command(environment, build_mode))

    deps_file = environment.build_dir / KERNEL_DEPS_FILE
    depfile_path = environment.build_dir / COMPILER_DEPFILE
    if not deps_file.exists():
        logger.warning("Warning: dart2js did not produce expected deps list at %s", deps_file)
        # A depfile from an earlier run no longer describes this output.
        depfile_path.unlink(missing_ok=True)
        return None

    write_depfile(parse_compiler_deps(deps_file, environment.build_dir / MAIN_BUNDLE), depfile_path)
    return depfile_path
