"""Assembles the compiled bundle and project web resources into the output directory."""

import json
import logging
import random
import shutil
from pathlib import Path

from ._worker import SERVICE_WORKER_FILE
from .compiler import MAIN_BUNDLE
from .config import APP_NAME, APP_VERSION, ASSETS_DIR, BASE_HREF, BASE_HREF_PLACEHOLDER, BUILD_NUMBER
from .depfile import Depfile, read_depfile, write_depfile
from .environment import Environment
from .fingerprint import FINGERPRINT_DEPFILE

logger = logging.getLogger(__name__)

HTML_ENTRY = "index.html"
WEB_RESOURCES_DIR = "web"
WEB_RESOURCES_DEPFILE = "web_resources.d"
ASSETS_OUTPUT_DIR = "assets"
FLUTTER_ASSETS_DEPFILE = "flutter_assets.d"
VERSION_FILE = "version.json"

SERVICE_WORKER_VERSION_PLACEHOLDER = "var serviceWorkerVersion = null"
LEGACY_REGISTRATION = f"navigator.serviceWorker.register('{SERVICE_WORKER_FILE}')"


def generate_cache_buster() -> str:
    """Return a random 32-bit unsigned integer as a decimal string."""
    return str(random.randrange(4294967296))


def patch_index_html(contents: str, cache_buster: str, base_href: str | None) -> str:
    """Insert the cache buster and base href into the HTML entry point."""
    contents = contents.replace(
        SERVICE_WORKER_VERSION_PLACEHOLDER,
        f"var serviceWorkerVersion = '{cache_buster}'",
        1,
    )
    # Older entry points register the worker directly instead of reading
    # serviceWorkerVersion.
    contents = contents.replace(
        LEGACY_REGISTRATION,
        f"navigator.serviceWorker.register('{SERVICE_WORKER_FILE}?v={cache_buster}')",
        1,
    )
    return contents.replace(BASE_HREF_PLACEHOLDER, base_href if base_href is not None else "/")


def copy_compiled_output(environment: Environment) -> list[Path]:
    """Copy the compiled bundle, its chunks and source maps to the output directory."""
    copied: list[Path] = []
    for source in sorted(environment.build_dir.rglob("*")):
        if not source.is_file():
            continue
        if MAIN_BUNDLE not in source.name:
            continue
        if source.name.endswith(".deps"):
            continue
        destination = environment.output_dir / source.name
        shutil.copyfile(source, destination)
        copied.append(destination)
    logger.debug("Copied %d compiled files", len(copied))
    return copied


def write_version_info(environment: Environment) -> Path:
    """Write version.json describing the application."""
    info = {"app_name": environment.defines.get(APP_NAME, environment.project_dir.name)}
    if APP_VERSION in environment.defines:
        info["version"] = environment.defines[APP_VERSION]
    if BUILD_NUMBER in environment.defines:
        info["build_number"] = environment.defines[BUILD_NUMBER]
    path = environment.output_dir / VERSION_FILE
    path.write_text(json.dumps(info), encoding="utf-8")
    return path


def copy_web_resources(environment: Environment, cache_buster: str | None = None) -> Depfile:
    """Copy ``{PROJECT_DIR}/web`` into the output directory.

    The HTML entry point is patched on the way; everything else is copied
    byte for byte.
    """
    web_resources = environment.project_dir / WEB_RESOURCES_DIR
    if not web_resources.is_dir():
        logger.warning("No web resources directory at %s", web_resources)
        return Depfile()

    if cache_buster is None:
        cache_buster = generate_cache_buster()
    base_href = environment.defines.get(BASE_HREF)

    inputs: list[Path] = []
    outputs: list[Path] = []
    for input_file in sorted(web_resources.rglob("*")):
        if not input_file.is_file():
            continue
        output_file = environment.output_dir / input_file.relative_to(web_resources)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        inputs.append(input_file)
        outputs.append(output_file)
        if input_file.name == HTML_ENTRY:
            contents = input_file.read_text(encoding="utf-8")
            output_file.write_text(patch_index_html(contents, cache_buster, base_href), encoding="utf-8")
            continue
        shutil.copyfile(input_file, output_file)

    logger.debug("Copied %d web resources", len(outputs))
    return Depfile(inputs=inputs, outputs=outputs)


def copy_assets(environment: Environment) -> Depfile:
    """Copy the configured asset bundle into ``{OUTPUT_DIR}/assets``."""
    configured = environment.defines.get(ASSETS_DIR)
    if configured is None:
        return Depfile()
    assets = environment.project_dir / configured
    if not assets.is_dir():
        logger.warning("No assets directory at %s", assets)
        return Depfile()

    inputs: list[Path] = []
    outputs: list[Path] = []
    for input_file in sorted(assets.rglob("*")):
        if not input_file.is_file():
            continue
        output_file = environment.output_dir / ASSETS_OUTPUT_DIR / input_file.relative_to(assets)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(input_file, output_file)
        inputs.append(input_file)
        outputs.append(output_file)

    logger.debug("Copied %d assets", len(outputs))
    return Depfile(inputs=inputs, outputs=outputs)


def remove_previous_fingerprints(environment: Environment) -> list[Path]:
    """Delete the hashed files recorded by the last fingerprinting run.

    They would otherwise be classified and hashed a second time.
    """
    removed: list[Path] = []
    for path in read_depfile(environment.build_dir / FINGERPRINT_DEPFILE).outputs:
        if not path.is_relative_to(environment.output_dir) or not path.is_file():
            continue
        path.unlink()
        removed.append(path)
    if removed:
        logger.debug("Removed %d previously fingerprinted files", len(removed))
    return removed


def assemble_bundle(environment: Environment) -> Depfile:
    """Populate the output directory and record the copied resources."""
    environment.output_dir.mkdir(parents=True, exist_ok=True)
    remove_previous_fingerprints(environment)
    copy_compiled_output(environment)
    write_version_info(environment)
    write_depfile(copy_assets(environment), environment.build_dir / FLUTTER_ASSETS_DEPFILE)
    depfile = copy_web_resources(environment)
    write_depfile(depfile, environment.build_dir / WEB_RESOURCES_DEPFILE)
    return depfile
