"""Service worker generation for the web release bundle.

This package builds the resource manifest and renders the worker script.

Worker features:
- Application shell downloaded during install, bypassing the HTTP cache
- Manifest diffing on activate: only changed or removed resources are evicted
- Online-first for the site root, cache-first for every other resource
- ``skipWaiting`` and ``downloadOffline`` control messages
"""

from ._manifest import SERVICE_WORKER_FILE, build_manifest, build_resources, core_bundle, manifest_files
from ._script import ServiceWorkerStrategy, generate_service_worker, strategy_from_string

__all__ = [
    "SERVICE_WORKER_FILE",
    "ServiceWorkerStrategy",
    "build_manifest",
    "build_resources",
    "core_bundle",
    "generate_service_worker",
    "manifest_files",
    "strategy_from_string",
]
