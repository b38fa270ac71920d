"""Data models shared by the fingerprinting and service worker stages."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ResourceKind(str, Enum):
    """Classification of a file in the output directory."""

    JS = "js"
    IMAGE = "image"
    HTML = "html"


@dataclass(frozen=True)
class ResourceEntry:
    """A classified file in the output directory.

    Attributes:
        kind: Classification tag.
        path: Absolute path of the file.
    """

    kind: ResourceKind
    path: Path


@dataclass(frozen=True)
class Resources:
    """Result of a classification pass, grouped by kind.

    Built fresh on every fingerprinting run and passed explicitly to each
    pipeline stage.
    """

    root: Path
    entries: dict[ResourceKind, list[ResourceEntry]] = field(default_factory=dict)

    def paths(self, kind: ResourceKind) -> list[Path]:
        """Return the paths classified as ``kind``, in walk order."""
        return [entry.path for entry in self.entries.get(kind, [])]

    def all_paths(self) -> list[Path]:
        """Return every classified path."""
        return [entry.path for kind in ResourceKind for entry in self.entries.get(kind, [])]


@dataclass(frozen=True)
class FingerprintResult:
    """Outcome of a fingerprinting run.

    Attributes:
        main_hash: Short hash of the main bundle, or None if there was none.
        main_bundle: Hashed main bundle file name (e.g. ``main.dart.1a2b3c.js``),
            or None if there was no main bundle.
        renamed: (old path, new path) pairs for every file that moved.
    """

    main_hash: str | None
    main_bundle: str | None
    renamed: list[tuple[Path, Path]] = field(default_factory=list)


@dataclass(frozen=True)
class ServiceWorkerManifest:
    """Resources cached by the generated service worker.

    Attributes:
        resources: Relative URL -> full content hash. ``/`` aliases the
            HTML entry point.
        core: URLs fetched during install, in order.
    """

    resources: dict[str, str]
    core: list[str]
