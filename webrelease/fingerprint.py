"""Content fingerprinting for the assembled web bundle.

Every cacheable file gets its content hash embedded in its name, and every
reference to the old name is rewritten, so the bundle behaves exactly as
before while its URLs change whenever its content does:

    images/search.png          -> images/search.360e06.png
    main.dart.js_1.part.js     -> main.dart.js_1.part.8c1f2a.js
    main.dart.js               -> main.dart.b41d97.js

The pipeline runs in four stages over an explicit Resources value:
classify, fingerprint images, fingerprint JavaScript, patch the HTML entry.
"""

import hashlib
import logging
import re
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .compiler import MAIN_BUNDLE
from .models import FingerprintResult, ResourceEntry, ResourceKind, Resources

logger = logging.getLogger(__name__)

# Trailing hex digits of the MD5 embedded in file names.
SHORT_HASH_LENGTH = 6

# Upper bound on concurrent chunk rewrites.
MAX_WORKERS = 4

IMAGES_DIR = "images"
HTML_ENTRY = "index.html"
FINGERPRINT_DEPFILE = "web_fingerprint.d"

_JS_PATTERN = re.compile(r"main\.(.+)\.js")
_CHUNK_PATTERN = re.compile(r"main\.(.+)\.part\.js$")


def file_hash(path: Path) -> str:
    """Return the MD5 hex digest of a file's raw bytes."""
    digest = hashlib.md5()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def short_hash(path: Path, length: int = SHORT_HASH_LENGTH) -> str:
    """Return the trailing ``length`` hex digits of file_hash()."""
    return file_hash(path)[-length:]


def hashed_name(name: str, digest: str) -> str:
    """Insert ``digest`` before the extension of a file name.

    >>> hashed_name("search.png", "360e06")
    'search.360e06.png'
    """
    stem, dot, extension = name.rpartition(".")
    if not dot or not stem:
        return f"{name}.{digest}"
    return f"{stem}.{digest}.{extension}"


def classify_resources(output_dir: Path) -> Resources:
    """Walk ``output_dir`` and classify the files the pipeline rewrites.

    Files that are neither compiled JavaScript, images nor the HTML entry
    point are not returned and are never touched.
    """
    entries: dict[ResourceKind, list[ResourceEntry]] = {}
    if not output_dir.is_dir():
        return Resources(root=output_dir, entries=entries)

    for path in sorted(output_dir.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(output_dir)
        if _JS_PATTERN.search(path.name):
            kind = ResourceKind.JS
        elif IMAGES_DIR in relative.parts[:-1]:
            kind = ResourceKind.IMAGE
        elif relative == Path(HTML_ENTRY):
            kind = ResourceKind.HTML
        else:
            continue
        entries.setdefault(kind, []).append(ResourceEntry(kind=kind, path=path))

    logger.debug(
        "Classified %d js, %d image, %d html files",
        len(entries.get(ResourceKind.JS, [])),
        len(entries.get(ResourceKind.IMAGE, [])),
        len(entries.get(ResourceKind.HTML, [])),
    )
    return Resources(root=output_dir, entries=entries)


def _replace_in_file(path: Path, replacements: list[tuple[str, str]]) -> bool:
    """Apply textual replacements to a file in place.

    Returns True if the file changed.
    """
    content = path.read_bytes()
    updated = content
    for old, new in replacements:
        updated = updated.replace(old.encode(), new.encode())
    if updated == content:
        return False
    path.write_bytes(updated)
    return True


def _split_js(resources: Resources) -> tuple[Path | None, list[Path]]:
    """Return the main bundle (if present) and the chunk files."""
    main_bundle: Path | None = None
    chunks: list[Path] = []
    for path in resources.paths(ResourceKind.JS):
        if _CHUNK_PATTERN.search(path.name):
            chunks.append(path)
        elif path.name == MAIN_BUNDLE and path.parent == resources.root:
            main_bundle = path
    return main_bundle, chunks


def fingerprint_images(resources: Resources) -> tuple[dict[str, str], list[tuple[Path, Path]]]:
    """Rename every image to embed its hash.

    Returns:
        The fingerprint map, keyed by the last two path segments of each
        image (``images/search.png -> images/search.360e06.png``), and the
        (old, new) paths of every renamed image.
    """
    image_map: dict[str, str] = {}
    renamed: list[tuple[Path, Path]] = []
    for image in resources.paths(ResourceKind.IMAGE):
        if not image.exists():
            continue
        digest = short_hash(image)
        new_path = image.with_name(hashed_name(image.name, digest))
        shutil.copyfile(image, new_path)
        image.unlink()
        renamed.append((image, new_path))

        parts = image.relative_to(resources.root).parts
        key = "/".join(parts[-2:])
        image_map.setdefault(key, "/".join([*parts[-2:-1], new_path.name]))
        logger.debug("Fingerprinted image %s -> %s", key, image_map[key])
    return image_map, renamed


def rewrite_image_references(resources: Resources, image_map: dict[str, str]) -> list[Path]:
    """Point the main bundle and every chunk at the hashed image names.

    Returns the files that changed.
    """
    if not image_map:
        return []
    main_bundle, chunks = _split_js(resources)
    targets = ([main_bundle] if main_bundle is not None else []) + chunks
    replacements = list(image_map.items())
    changed = [path for path in targets if path.exists() and _replace_in_file(path, replacements)]
    logger.debug("Rewrote image references in %d files", len(changed))
    return changed


def _fingerprint_source_map(js_path: Path, hashed_js_path: Path) -> None:
    """Point ``js_path`` at the hashed source map name and copy the map there."""
    old_reference = f"{js_path.name}.map"
    new_reference = f"{hashed_js_path.name}.map"
    if js_path.exists():
        _replace_in_file(js_path, [(old_reference, new_reference)])
    source_map = js_path.with_name(old_reference)
    if source_map.exists():
        shutil.copyfile(source_map, hashed_js_path.with_name(new_reference))


def _fingerprint_chunk(chunk: Path) -> tuple[Path, Path] | None:
    """Hash, patch and rename one chunk file.

    Touches only the chunk and its own source map, so chunks can be
    processed in parallel.
    """
    if not chunk.exists():
        return None
    new_path = chunk.with_name(hashed_name(chunk.name, short_hash(chunk)))
    _fingerprint_source_map(chunk, new_path)
    chunk.rename(new_path)
    logger.debug("Fingerprinted chunk %s -> %s", chunk.name, new_path.name)
    return chunk, new_path


def fingerprint_js(resources: Resources) -> FingerprintResult:
    """Fingerprint the main bundle and its chunks.

    Chunks are renamed concurrently. Their new names are substituted into the
    main bundle only after every chunk task has finished; the main bundle is
    then written under its own hashed name and the original removed.
    """
    main_bundle, chunks = _split_js(resources)

    main_hash: str | None = None
    new_main: Path | None = None
    main_content = b""
    if main_bundle is not None and main_bundle.exists():
        main_hash = short_hash(main_bundle)
        new_main = main_bundle.with_name(hashed_name(main_bundle.name, main_hash))
        _fingerprint_source_map(main_bundle, new_main)
        main_content = main_bundle.read_bytes()

    renamed: list[tuple[Path, Path]] = []
    if chunks:
        with ThreadPoolExecutor(max_workers=MAX_WORKERS) as executor:
            futures = [executor.submit(_fingerprint_chunk, chunk) for chunk in chunks]
        # Leaving the executor joins every task; result() re-raises failures.
        for future in futures:
            result = future.result()
            if result is not None:
                renamed.append(result)

    if new_main is None:
        return FingerprintResult(main_hash=None, main_bundle=None, renamed=renamed)

    for old_path, new_path in renamed:
        main_content = main_content.replace(old_path.name.encode(), new_path.name.encode())
    new_main.write_bytes(main_content)
    main_bundle.unlink()
    renamed.append((main_bundle, new_main))
    logger.debug("Fingerprinted main bundle -> %s", new_main.name)
    return FingerprintResult(main_hash=main_hash, main_bundle=new_main.name, renamed=renamed)


def patch_html_entry(resources: Resources, main_bundle_name: str) -> list[Path]:
    """Replace references to the unhashed main bundle in the HTML entry point."""
    patched = []
    for html in resources.paths(ResourceKind.HTML):
        if html.exists() and _replace_in_file(html, [(MAIN_BUNDLE, main_bundle_name)]):
            patched.append(html)
    return patched


def fingerprint_output(output_dir: Path) -> tuple[Resources, FingerprintResult]:
    """Run the whole fingerprinting pipeline over ``output_dir``.

    Returns the classification the run worked from and the result, which
    lists every renamed file and the hashed main bundle name.
    """
    resources = classify_resources(output_dir)

    image_map, renamed_images = fingerprint_images(resources)
    rewrite_image_references(resources, image_map)

    js_result = fingerprint_js(resources)
    if js_result.main_bundle is not None:
        patch_html_entry(resources, js_result.main_bundle)
    else:
        logger.debug("No main bundle in %s, HTML entry left unchanged", output_dir)

    result = FingerprintResult(
        main_hash=js_result.main_hash,
        main_bundle=js_result.main_bundle,
        renamed=renamed_images + js_result.renamed,
    )
    logger.info(
        "Fingerprinted %d files (main bundle: %s)",
        len(result.renamed),
        result.main_bundle or "none",
    )
    return resources, result
