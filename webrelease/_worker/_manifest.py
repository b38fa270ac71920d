"""Resource manifest embedded in the service worker.

Keys are URLs relative to the site root without a leading slash
(``assets/NOTICES``), which is how the worker derives keys from request URLs.
The root URL ``/`` is an extra key aliasing the HTML entry point.
"""

import hashlib
from pathlib import Path

from ..models import ServiceWorkerManifest

SERVICE_WORKER_FILE = "flutter_service_worker.js"
HTML_ENTRY = "index.html"
ROOT_URL = "/"

ASSET_MANIFEST = "assets/AssetManifest.json"
FONT_MANIFEST = "assets/FontManifest.json"
NOTICES = "assets/NOTICES"


def _md5(path: Path) -> str:
    return hashlib.md5(path.read_bytes()).hexdigest()


def manifest_files(output_dir: Path) -> list[Path]:
    """Return the files considered for the manifest, in sorted order.

    Dotfiles and the worker script itself are never part of the bundle the
    worker manages.
    """
    return [
        path
        for path in sorted(output_dir.rglob("*"))
        if path.is_file() and not path.name.startswith(".") and path.name != SERVICE_WORKER_FILE
    ]


def build_resources(output_dir: Path, files: list[Path] | None = None) -> dict[str, str]:
    """Hash every cacheable file under ``output_dir``.

    Source maps are listed by manifest_files() but never forced into the
    offline cache.
    """
    if files is None:
        files = manifest_files(output_dir)
    resources: dict[str, str] = {}
    for path in files:
        if path.name.endswith(".map"):
            continue
        url = path.relative_to(output_dir).as_posix()
        digest = _md5(path)
        resources[url] = digest
        if url == HTML_ENTRY:
            resources[ROOT_URL] = digest
    return resources


def core_bundle(resources: dict[str, str], main_bundle: str) -> list[str]:
    """Return the files the worker downloads during install.

    Optional files are listed only when the manifest has them; a missing
    core file would fail the whole install.
    """
    core = [ROOT_URL, main_bundle, HTML_ENTRY]
    core.extend(url for url in (NOTICES, ASSET_MANIFEST, FONT_MANIFEST) if url in resources)
    return core


def build_manifest(output_dir: Path, main_bundle: str) -> ServiceWorkerManifest:
    """Build the resource manifest and core list for ``output_dir``."""
    resources = build_resources(output_dir)
    return ServiceWorkerManifest(resources=resources, core=core_bundle(resources, main_bundle))
