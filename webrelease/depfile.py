"""Depfiles: the observed inputs and outputs of a build step.

A depfile is written as a single make rule::

    build/web/main.dart.js: lib/main.dart lib/src/app.dart

Spaces inside paths are escaped as ``\\ ``. Identical lists always produce
byte-identical files so an external scheduler can compare them directly.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

logger = logging.getLogger(__name__)

# Splits on spaces that are not escaped with a backslash.
_SEPARATOR = re.compile(r"(?<!\\) ")


@dataclass(frozen=True)
class Depfile:
    """Input and output files of one build step."""

    inputs: list[Path] = field(default_factory=list)
    outputs: list[Path] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.inputs or not self.outputs

    def missing_outputs(self) -> list[Path]:
        """Return the listed outputs that do not exist on disk."""
        return [path for path in self.outputs if not path.exists()]


def _escape(path: Path) -> str:
    text = str(path)
    if os.sep == "\\":
        text = text.replace("\\", "\\\\")
    return text.replace(" ", "\\ ")


def _unescape(text: str) -> str:
    text = text.replace("\\ ", " ")
    if os.sep == "\\":
        text = text.replace("\\\\", "\\")
    return text


def _parse_list(text: str) -> list[Path]:
    return [Path(_unescape(item)) for item in _SEPARATOR.split(text.strip()) if item]


def render_depfile(depfile: Depfile) -> str:
    """Render a depfile as a make rule."""
    outputs = " ".join(_escape(path) for path in depfile.outputs)
    inputs = " ".join(_escape(path) for path in depfile.inputs)
    return f"{outputs}: {inputs}\n"


def write_depfile(depfile: Depfile, path: Path) -> None:
    """Write ``depfile`` to ``path``.

    A depfile without inputs or outputs carries no staleness information, so
    any existing file at ``path`` is removed instead.
    """
    if depfile.is_empty:
        if path.exists():
            path.unlink()
        logger.debug("Depfile %s is empty, not written", path.name)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_depfile(depfile), encoding="utf-8")
    logger.debug(
        "Wrote %s (%d inputs, %d outputs)",
        path.name,
        len(depfile.inputs),
        len(depfile.outputs),
    )


def read_depfile(path: Path) -> Depfile:
    """Read a depfile written by write_depfile().

    Returns an empty Depfile when the file is missing or malformed.
    """
    if not path.exists():
        return Depfile()
    contents = path.read_text(encoding="utf-8")
    parts = contents.split(": ")
    if len(parts) != 2:
        logger.error("Invalid depfile: %s", path)
        return Depfile()
    return Depfile(inputs=_parse_list(parts[1]), outputs=_parse_list(parts[0]))


def parse_compiler_deps(deps_file: Path, output: Path) -> Depfile:
    """Translate the compiler's ``.deps`` listing into a Depfile.

    The listing holds one URI per line. Only ``file:`` URIs name inputs on
    disk; SDK-internal schemes are skipped.
    """
    inputs: list[Path] = []
    for line in deps_file.read_text(encoding="utf-8").splitlines():
        raw_uri = line.strip()
        if not raw_uri:
            continue
        parsed = urlparse(raw_uri)
        if parsed.scheme != "file":
            continue
        inputs.append(Path(url2pathname(parsed.path)))
    return Depfile(inputs=inputs, outputs=[output])
