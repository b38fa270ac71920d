"""Tests for the fingerprint module."""

import hashlib
import re
import shutil
from pathlib import Path

import pytest

from webrelease.fingerprint import (
    classify_resources,
    fingerprint_images,
    fingerprint_output,
    hashed_name,
    rewrite_image_references,
    short_hash,
)
from webrelease.models import ResourceKind

IMAGE_BYTES = b"\x89PNG\r\n\x1a\nfake image data"
MAIN_JS = (
    b'var logo="assets/images/logo.png";\n'
    b'loadChunk("main.dart.js_1.part.js");\n'
    b"//# sourceMappingURL=main.dart.js.map\n"
)
CHUNK_JS = (
    b'icon("images/logo.png");\n'
    b"//# sourceMappingURL=main.dart.js_1.part.js.map\n"
)
INDEX_HTML = b'<html><body><script src="main.dart.js"></script></body></html>\n'


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Create an assembled output directory."""
    root = tmp_path / "web"
    (root / "assets" / "images").mkdir(parents=True)
    (root / "assets" / "images" / "logo.png").write_bytes(IMAGE_BYTES)
    (root / "assets" / "NOTICES").write_text("licenses")
    (root / "main.dart.js").write_bytes(MAIN_JS)
    (root / "main.dart.js.map").write_text('{"version":3}')
    (root / "main.dart.js_1.part.js").write_bytes(CHUNK_JS)
    (root / "main.dart.js_1.part.js.map").write_text('{"version":3,"chunk":1}')
    (root / "index.html").write_bytes(INDEX_HTML)
    return root


def _find(root: Path, pattern: str) -> Path:
    matches = [path for path in root.iterdir() if re.fullmatch(pattern, path.name)]
    assert len(matches) == 1, f"expected one match for {pattern}, got {matches}"
    return matches[0]


class TestHashing:
    """Tests for hashing helpers."""

    def test_hashed_name_inserts_before_extension(self) -> None:
        """The hash goes before the last extension."""
        assert hashed_name("search.png", "360e06") == "search.360e06.png"
        assert hashed_name("main.dart.js", "b41d97") == "main.dart.b41d97.js"
        assert hashed_name("main.dart.js_1.part.js", "8c1f2a") == "main.dart.js_1.part.8c1f2a.js"

    def test_hashed_name_without_extension(self) -> None:
        """Names without an extension get the hash appended."""
        assert hashed_name("LICENSE", "abcdef") == "LICENSE.abcdef"

    def test_short_hash_is_md5_suffix(self, tmp_path: Path) -> None:
        """The short hash is the last six hex digits of the MD5."""
        path = tmp_path / "file.bin"
        path.write_bytes(b"hello")
        assert short_hash(path) == _md5(b"hello")[-6:]


class TestClassifyResources:
    """Tests for classify_resources function."""

    def test_classifies_kinds(self, output_dir: Path) -> None:
        """JavaScript, images and the root HTML entry are classified."""
        resources = classify_resources(output_dir)

        js_names = {path.name for path in resources.paths(ResourceKind.JS)}
        assert js_names == {
            "main.dart.js",
            "main.dart.js.map",
            "main.dart.js_1.part.js",
            "main.dart.js_1.part.js.map",
        }
        assert resources.paths(ResourceKind.IMAGE) == [output_dir / "assets" / "images" / "logo.png"]
        assert resources.paths(ResourceKind.HTML) == [output_dir / "index.html"]

    def test_other_files_are_not_classified(self, output_dir: Path) -> None:
        """Unrelated files are left out."""
        resources = classify_resources(output_dir)
        assert output_dir / "assets" / "NOTICES" not in resources.all_paths()

    def test_nested_index_is_not_the_entry_point(self, output_dir: Path) -> None:
        """Only the root index.html is the HTML entry."""
        (output_dir / "docs").mkdir()
        (output_dir / "docs" / "index.html").write_text("<html></html>")

        resources = classify_resources(output_dir)

        assert resources.paths(ResourceKind.HTML) == [output_dir / "index.html"]

    def test_missing_directory(self, tmp_path: Path) -> None:
        """A missing output directory classifies nothing."""
        resources = classify_resources(tmp_path / "missing")
        assert resources.all_paths() == []


class TestFingerprintImages:
    """Tests for image fingerprinting."""

    def test_image_renamed_with_identical_bytes(self, output_dir: Path) -> None:
        """The hashed copy has the same bytes and the original is gone."""
        resources = classify_resources(output_dir)
        image_map, renamed = fingerprint_images(resources)

        digest = _md5(IMAGE_BYTES)[-6:]
        new_path = output_dir / "assets" / "images" / f"logo.{digest}.png"
        assert renamed == [(output_dir / "assets" / "images" / "logo.png", new_path)]
        assert new_path.read_bytes() == IMAGE_BYTES
        assert not (output_dir / "assets" / "images" / "logo.png").exists()
        assert image_map == {"images/logo.png": f"images/logo.{digest}.png"}

    def test_references_rewritten_in_js(self, output_dir: Path) -> None:
        """The main bundle and chunks point at the hashed image."""
        resources = classify_resources(output_dir)
        image_map, _ = fingerprint_images(resources)

        changed = rewrite_image_references(resources, image_map)

        digest = _md5(IMAGE_BYTES)[-6:]
        assert set(changed) == {output_dir / "main.dart.js", output_dir / "main.dart.js_1.part.js"}
        main = (output_dir / "main.dart.js").read_text()
        assert f"assets/images/logo.{digest}.png" in main
        assert "images/logo.png" not in main

    def test_colliding_keys_keep_first_mapping(self, output_dir: Path) -> None:
        """Images sharing their last two segments map to the first one walked."""
        other = output_dir / "packages" / "images"
        other.mkdir(parents=True)
        (other / "logo.png").write_bytes(b"different image")

        image_map, renamed = fingerprint_images(classify_resources(output_dir))

        assert len(renamed) == 2
        assert image_map == {"images/logo.png": f"images/logo.{_md5(IMAGE_BYTES)[-6:]}.png"}


class TestFingerprintOutput:
    """Tests for the whole pipeline."""

    def test_main_bundle_renamed(self, output_dir: Path) -> None:
        """The main bundle is written under its hashed name."""
        _, result = fingerprint_output(output_dir)

        assert result.main_hash is not None
        assert re.fullmatch(r"[0-9a-f]{6}", result.main_hash)
        assert result.main_bundle == f"main.dart.{result.main_hash}.js"
        assert (output_dir / result.main_bundle).exists()
        assert not (output_dir / "main.dart.js").exists()

    def test_chunk_hash_covers_rewritten_content(self, output_dir: Path) -> None:
        """A chunk is hashed after its image references are rewritten."""
        fingerprint_output(output_dir)

        image_digest = _md5(IMAGE_BYTES)[-6:]
        rewritten = CHUNK_JS.replace(b"images/logo.png", f"images/logo.{image_digest}.png".encode())
        chunk_digest = _md5(rewritten)[-6:]
        chunk = output_dir / f"main.dart.js_1.part.{chunk_digest}.js"
        assert chunk.exists()
        assert not (output_dir / "main.dart.js_1.part.js").exists()

    def test_main_bundle_references_hashed_chunk(self, output_dir: Path) -> None:
        """Chunk renames are applied to the main bundle."""
        _, result = fingerprint_output(output_dir)

        chunk = _find(output_dir, r"main\.dart\.js_1\.part\.[0-9a-f]{6}\.js")
        main = (output_dir / result.main_bundle).read_text()
        assert f'loadChunk("{chunk.name}")' in main
        assert "main.dart.js_1.part.js\"" not in main

    def test_source_maps_follow_their_scripts(self, output_dir: Path) -> None:
        """Each script points at a hashed source map that exists."""
        _, result = fingerprint_output(output_dir)

        main = (output_dir / result.main_bundle).read_text()
        assert f"sourceMappingURL={result.main_bundle}.map" in main
        assert (output_dir / f"{result.main_bundle}.map").read_text() == '{"version":3}'

        chunk = _find(output_dir, r"main\.dart\.js_1\.part\.[0-9a-f]{6}\.js")
        assert f"sourceMappingURL={chunk.name}.map" in chunk.read_text()
        assert (output_dir / f"{chunk.name}.map").exists()

    def test_html_points_at_hashed_main_bundle(self, output_dir: Path) -> None:
        """The HTML entry loads the hashed main bundle."""
        _, result = fingerprint_output(output_dir)

        html = (output_dir / "index.html").read_text()
        assert f'src="{result.main_bundle}"' in html
        assert 'src="main.dart.js"' not in html

    def test_untouched_files_stay(self, output_dir: Path) -> None:
        """Files outside the classification are left alone."""
        fingerprint_output(output_dir)
        assert (output_dir / "assets" / "NOTICES").read_text() == "licenses"

    def test_result_lists_every_rename(self, output_dir: Path) -> None:
        """Images, chunks and the main bundle are all reported."""
        _, result = fingerprint_output(output_dir)

        old_names = {old.name for old, _ in result.renamed}
        assert old_names == {"logo.png", "main.dart.js_1.part.js", "main.dart.js"}
        assert all(new.exists() for _, new in result.renamed)

    def test_many_chunks(self, output_dir: Path) -> None:
        """Every chunk is renamed and referenced from the main bundle."""
        loads = b""
        for index in range(2, 12):
            name = f"main.dart.js_{index}.part.js"
            (output_dir / name).write_text(f"chunk {index}\n")
            loads += f'loadChunk("{name}");\n'.encode()
        (output_dir / "main.dart.js").write_bytes(MAIN_JS + loads)

        _, result = fingerprint_output(output_dir)

        main = (output_dir / result.main_bundle).read_text()
        for index in range(2, 12):
            digest = _md5(f"chunk {index}\n".encode())[-6:]
            new_name = f"main.dart.js_{index}.part.{digest}.js"
            assert (output_dir / new_name).exists()
            assert f'loadChunk("{new_name}")' in main

    def test_missing_main_bundle(self, output_dir: Path) -> None:
        """Without a main bundle, chunks are still renamed and HTML is untouched."""
        (output_dir / "main.dart.js").unlink()

        _, result = fingerprint_output(output_dir)

        assert result.main_bundle is None
        assert result.main_hash is None
        assert (output_dir / "index.html").read_bytes() == INDEX_HTML
        _find(output_dir, r"main\.dart\.js_1\.part\.[0-9a-f]{6}\.js")

    def test_empty_directory(self, tmp_path: Path) -> None:
        """An empty output directory is a no-op."""
        _, result = fingerprint_output(tmp_path)
        assert result.main_bundle is None
        assert result.renamed == []

    def test_deterministic(self, output_dir: Path, tmp_path: Path) -> None:
        """Fingerprinting identical trees gives identical trees."""
        copy = tmp_path / "copy"
        shutil.copytree(output_dir, copy)

        _, first = fingerprint_output(output_dir)
        _, second = fingerprint_output(copy)

        assert first.main_bundle == second.main_bundle
        first_files = {path.relative_to(output_dir): path.read_bytes() for path in output_dir.rglob("*") if path.is_file()}
        second_files = {path.relative_to(copy): path.read_bytes() for path in copy.rglob("*") if path.is_file()}
        assert first_files == second_files
