"""Build targets for the web release and the driver that runs them.

The graph is fixed:

    web_entrypoint -> dart2js -> web_release_bundle -> web_fingerprint --+
                                                                          +-> web_service_worker
    web_static_assets ----------------------------------------------------+

Each target declares its dependencies, input and output patterns and the
depfiles it writes under the build directory. Targets pass information to
each other only through files, never through shared in-memory state.
"""

import logging
import re
import shutil
import time
from pathlib import Path

from ._worker import (
    SERVICE_WORKER_FILE,
    build_manifest,
    generate_service_worker,
    manifest_files,
    strategy_from_string,
)
from .bundle import FLUTTER_ASSETS_DEPFILE, WEB_RESOURCES_DEPFILE, assemble_bundle
from .compiler import COMPILER_DEPFILE, ENTRYPOINT_FILE, MAIN_BUNDLE, compile_bundle
from .config import APP_NAME, HAS_WEB_PLUGINS, LANGUAGE_VERSION, SERVICE_WORKER_STRATEGY, TARGET_FILE
from .depfile import Depfile, read_depfile, write_depfile
from .environment import BuildError, Environment, MissingDefineError
from .fingerprint import FINGERPRINT_DEPFILE, fingerprint_output
from .models import ResourceKind

logger = logging.getLogger(__name__)

SERVICE_WORKER_DEPFILE = "service_worker.d"
CANVASKIT_DIR = "canvaskit"

_HASHED_MAIN_BUNDLE = re.compile(r"main\.dart\.[0-9a-f]+\.js")


class TargetCycleError(BuildError):
    """Raised when target dependencies do not form a DAG."""

    pass


class MissingOutputError(BuildError):
    """Raised when a target's depfile lists an output that was not produced."""

    pass


def resolve_pattern(pattern: str, environment: Environment) -> Path:
    """Expand the directory placeholders of a source pattern."""
    web_sdk = environment.web_sdk_dir if environment.web_sdk_dir is not None else Path("web_sdk")
    return Path(
        pattern.replace("{BUILD_DIR}", str(environment.build_dir))
        .replace("{OUTPUT_DIR}", str(environment.output_dir))
        .replace("{PROJECT_DIR}", str(environment.project_dir))
        .replace("{WEB_SDK}", str(web_sdk))
    )


class BuildTarget:
    """A named step in the build graph.

    Subclasses set the class attributes and implement build(). Targets hold
    no state, so two instances with the same name are the same step.
    """

    name: str = ""
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    depfiles: tuple[str, ...] = ()

    @property
    def dependencies(self) -> list["BuildTarget"]:
        return []

    def build(self, environment: Environment) -> None:
        raise NotImplementedError

    def resolve_inputs(self, environment: Environment) -> list[Path]:
        return [resolve_pattern(pattern, environment) for pattern in self.inputs]

    def resolve_outputs(self, environment: Environment) -> list[Path]:
        return [resolve_pattern(pattern, environment) for pattern in self.outputs]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, BuildTarget) and other.name == self.name

    def __hash__(self) -> int:
        return hash(self.name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class WebEntrypointTarget(BuildTarget):
    """Generates the entry point that initializes the platform and calls the app's main()."""

    name = "web_entrypoint"
    outputs = ("{BUILD_DIR}/main.dart",)

    def build(self, environment: Environment) -> None:
        target_file = environment.defines.get(TARGET_FILE)
        if target_file is None:
            raise MissingDefineError(TARGET_FILE, self.name)
        language_version = environment.defines.get(LANGUAGE_VERSION, "2.12")
        main_import = _import_uri(environment, Path(target_file))

        if environment.flag(HAS_WEB_PLUGINS):
            registrant = _import_uri(environment, Path("lib") / "generated_plugin_registrant.dart")
            contents = f"""// @dart={language_version}

import 'dart:ui' as ui;

import 'package:flutter_web_plugins/flutter_web_plugins.dart';

import '{registrant}';
import '{main_import}' as entrypoint;

Future<void> main() async {{
  registerPlugins(webPluginRegistrar);
  await ui.webOnlyInitializePlatform();
  entrypoint.main();
}}
"""
        else:
            contents = f"""// @dart={language_version}

import 'dart:ui' as ui;

import '{main_import}' as entrypoint;

Future<void> main() async {{
  await ui.webOnlyInitializePlatform();
  entrypoint.main();
}}
"""
        (environment.build_dir / ENTRYPOINT_FILE).write_text(contents, encoding="utf-8")


def _import_uri(environment: Environment, path: Path) -> str:
    """Return a ``package:`` URI for files under lib/, else a ``file:`` URI.

    Importing a library by two different URIs makes it two distinct
    libraries, so package URIs are preferred whenever the app name is known.
    """
    absolute = path if path.is_absolute() else environment.project_dir / path
    app_name = environment.defines.get(APP_NAME)
    lib_dir = environment.project_dir / "lib"
    if app_name and absolute.is_relative_to(lib_dir):
        return f"package:{app_name}/{absolute.relative_to(lib_dir).as_posix()}"
    return absolute.resolve().as_uri()


class Dart2JSTarget(BuildTarget):
    """Compiles the web entry point with dart2js."""

    name = "dart2js"
    inputs = ("{BUILD_DIR}/main.dart", "{WEB_SDK}/libraries.json")
    outputs = ("{BUILD_DIR}/main.dart.js",)
    depfiles = (COMPILER_DEPFILE,)

    @property
    def dependencies(self) -> list[BuildTarget]:
        return [WebEntrypointTarget()]

    def build(self, environment: Environment) -> None:
        compile_bundle(environment, self.name)


class WebReleaseBundle(BuildTarget):
    """Unpacks the dart2js compilation, the asset bundle and web resources into the output directory."""

    name = "web_release_bundle"
    inputs = ("{BUILD_DIR}/main.dart.js", "{PROJECT_DIR}/web")
    outputs = ("{OUTPUT_DIR}/main.dart.js", "{OUTPUT_DIR}/version.json")
    depfiles = (WEB_RESOURCES_DEPFILE, FLUTTER_ASSETS_DEPFILE)

    @property
    def dependencies(self) -> list[BuildTarget]:
        return [Dart2JSTarget()]

    def build(self, environment: Environment) -> None:
        assemble_bundle(environment)


class WebFingerprintTarget(BuildTarget):
    """Embeds content hashes in the names of images, chunks and the main bundle."""

    name = "web_fingerprint"
    inputs = ("{OUTPUT_DIR}",)
    depfiles = (FINGERPRINT_DEPFILE,)

    @property
    def dependencies(self) -> list[BuildTarget]:
        return [WebReleaseBundle()]

    def build(self, environment: Environment) -> None:
        resources, result = fingerprint_output(environment.output_dir)
        outputs: list[Path] = []
        for _, new_path in result.renamed:
            outputs.append(new_path)
            source_map = new_path.with_name(f"{new_path.name}.map")
            if source_map.exists():
                outputs.append(source_map)
        outputs.extend(path for path in resources.paths(ResourceKind.HTML) if path.exists())
        write_depfile(
            Depfile(inputs=resources.all_paths(), outputs=outputs),
            environment.build_dir / FINGERPRINT_DEPFILE,
        )


class WebBuiltInAssets(BuildTarget):
    """Copies static SDK assets, such as CanvasKit, that never change between builds.

    These are only invalidated by an SDK upgrade, so they are copied verbatim
    and never fingerprinted.
    """

    name = "web_static_assets"
    inputs = ("{WEB_SDK}/canvaskit",)
    outputs = ("{OUTPUT_DIR}/canvaskit",)

    def build(self, environment: Environment) -> None:
        if environment.web_sdk_dir is None:
            logger.debug("No web SDK configured, skipping %s", CANVASKIT_DIR)
            return
        canvaskit = environment.web_sdk_dir / CANVASKIT_DIR
        if not canvaskit.is_dir():
            logger.debug("No %s directory in %s", CANVASKIT_DIR, environment.web_sdk_dir)
            return
        for source in sorted(canvaskit.rglob("*")):
            if not source.is_file():
                continue
            destination = environment.output_dir / CANVASKIT_DIR / source.relative_to(canvaskit)
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)


class WebServiceWorker(BuildTarget):
    """Generates the service worker for the fingerprinted bundle."""

    name = "web_service_worker"
    outputs = ("{OUTPUT_DIR}/flutter_service_worker.js",)
    depfiles = (SERVICE_WORKER_DEPFILE,)

    @property
    def dependencies(self) -> list[BuildTarget]:
        return [Dart2JSTarget(), WebFingerprintTarget(), WebBuiltInAssets()]

    def build(self, environment: Environment) -> None:
        contents = manifest_files(environment.output_dir)
        manifest = build_manifest(environment.output_dir, hashed_main_bundle(environment))
        strategy = strategy_from_string(environment.defines.get(SERVICE_WORKER_STRATEGY))

        worker_file = environment.output_dir / SERVICE_WORKER_FILE
        worker_file.write_text(
            generate_service_worker(manifest.resources, manifest.core, strategy),
            encoding="utf-8",
        )
        logger.info("Service worker caches %d resources (%s)", len(manifest.resources), strategy.value)
        write_depfile(
            Depfile(inputs=contents, outputs=[worker_file]),
            environment.build_dir / SERVICE_WORKER_DEPFILE,
        )


def hashed_main_bundle(environment: Environment) -> str:
    """Return the hashed main bundle name recorded by the fingerprint step.

    Falls back to the unhashed name when the step produced no main bundle.
    """
    depfile = read_depfile(environment.build_dir / FINGERPRINT_DEPFILE)
    for path in depfile.outputs:
        if path.parent == environment.output_dir and _HASHED_MAIN_BUNDLE.fullmatch(path.name):
            return path.name
    return MAIN_BUNDLE


class BuildSystem:
    """Runs a target after all of its dependencies.

    Each target runs at most once per build() call, dependencies first in
    the order they are declared. The first failure aborts the build; outputs
    already written are left in place.

    Example:
        BuildSystem().build(WebServiceWorker(), environment)
    """

    @staticmethod
    def plan(target: BuildTarget) -> list[BuildTarget]:
        """Return ``target`` and its transitive dependencies in execution order.

        Raises:
            TargetCycleError: If the dependencies contain a cycle.
        """
        order: list[BuildTarget] = []
        done: set[BuildTarget] = set()
        visiting: list[BuildTarget] = []

        def _visit(node: BuildTarget) -> None:
            if node in done:
                return
            if node in visiting:
                cycle = visiting[visiting.index(node):] + [node]
                raise TargetCycleError("Dependency cycle: " + " -> ".join(t.name for t in cycle))
            visiting.append(node)
            for dependency in node.dependencies:
                _visit(dependency)
            visiting.pop()
            done.add(node)
            order.append(node)

        _visit(target)
        return order

    def build(self, target: BuildTarget, environment: Environment) -> list[str]:
        """Run ``target`` and everything it depends on.

        Returns:
            Names of the targets that ran, in order.

        Raises:
            BuildError: If any target fails. Errors that are not BuildErrors
                are wrapped, with the original exception chained.
        """
        order = self.plan(target)
        environment.prepare()
        started = time.monotonic()
        for node in order:
            self._run_target(node, environment)
        logger.info("Built %s in %.1fs", target.name, time.monotonic() - started)
        return [node.name for node in order]

    def _run_target(self, target: BuildTarget, environment: Environment) -> None:
        logger.info("Running target %s", target.name)
        started = time.monotonic()
        try:
            target.build(environment)
        except BuildError:
            logger.error("Target %s failed", target.name)
            raise
        except Exception as e:
            logger.error("Target %s failed: %s", target.name, e)
            raise BuildError(f"Target {target.name} failed: {e}") from e

        for name in target.depfiles:
            missing = read_depfile(environment.build_dir / name).missing_outputs()
            if missing:
                raise MissingOutputError(
                    f"Target {target.name} did not produce {', '.join(str(path) for path in missing)}"
                )
        logger.debug("Target %s finished in %.2fs", target.name, time.monotonic() - started)
