"""Tests for the configuration module."""

from pathlib import Path

import pytest

from webrelease.config import (
    ASSETS_DIR,
    BASE_HREF,
    BUILD_MODE,
    CSP_MODE,
    DART_DEFINES,
    EXTRA_FRONT_END_OPTIONS,
    SERVICE_WORKER_STRATEGY,
    SOURCE_MAPS_ENABLED,
    Config,
    ConfigError,
    WebConfig,
    decode_list,
    encode_list,
    load_config,
)


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for config files."""
    return tmp_path


@pytest.fixture
def valid_config_content() -> str:
    """Return a valid configuration YAML content."""
    return """project_dir: .
build_dir: build/.webrelease
output_dir: build/web
target: lib/main.dart
assets_dir: build/flutter_assets
build_mode: release

app:
  name: demo
  version: 1.2.0
  build_number: 7

web:
  base_href: /app/
  service_worker: offline-first
  source_maps: true
  csp: true
  optimization: O2

dart_defines:
  API_URL: https://example.com/api?a=1,b=2
  FLAVOR: prod

extra_front_end_options:
  - --enable-experiment=non-nullable
"""


def _write(config_dir: Path, content: str) -> str:
    path = config_dir / "webrelease.yaml"
    path.write_text(content)
    return str(path)


class TestWebConfig:
    """Tests for WebConfig dataclass."""

    def test_defaults(self) -> None:
        """WebConfig defaults to offline-first without base href."""
        web = WebConfig()
        assert web.service_worker == "offline-first"
        assert web.base_href is None
        assert web.optimization is None

    def test_rejects_base_href_without_leading_slash(self) -> None:
        """Base href must start with a slash."""
        with pytest.raises(ConfigError, match="must start with '/'"):
            WebConfig(base_href="app/")

    def test_rejects_base_href_without_trailing_slash(self) -> None:
        """Base href must end with a slash."""
        with pytest.raises(ConfigError, match="must end with '/'"):
            WebConfig(base_href="/app")

    def test_rejects_unknown_strategy(self) -> None:
        """Unknown service worker strategies are rejected."""
        with pytest.raises(ConfigError, match="Invalid service_worker strategy"):
            WebConfig(service_worker="network-first")

    def test_rejects_unknown_optimization(self) -> None:
        """Optimization must be one of O1..O4."""
        with pytest.raises(ConfigError, match="Invalid optimization level"):
            WebConfig(optimization="O5")


class TestConfig:
    """Tests for Config dataclass."""

    def test_build_mode_may_be_absent(self) -> None:
        """A missing build mode is left for the compile target to report."""
        config = Config()
        assert config.build_mode is None
        assert BUILD_MODE not in config.to_defines()

    def test_rejects_unknown_build_mode(self) -> None:
        """Unknown build modes are rejected."""
        with pytest.raises(ConfigError, match="Invalid build_mode"):
            Config(build_mode="fast")

    def test_rejects_same_build_and_output_dir(self) -> None:
        """Build and output directories must differ."""
        with pytest.raises(ConfigError, match="must be different"):
            Config(build_dir="out", output_dir="out")

    def test_rejects_output_dir_equal_to_project(self) -> None:
        """The output directory cannot be the project itself."""
        with pytest.raises(ConfigError, match="must not be the project directory"):
            Config(output_dir=".")

    def test_rejects_non_positive_timeout(self) -> None:
        """Compiler timeout must be at least one second."""
        with pytest.raises(ConfigError, match="compiler_timeout"):
            Config(compiler_timeout=0)

    def test_to_defines_renders_booleans_as_strings(self) -> None:
        """Boolean options become "true"/"false" defines."""
        defines = Config(web=WebConfig(csp=True)).to_defines()
        assert defines[CSP_MODE] == "true"
        assert defines[SOURCE_MAPS_ENABLED] == "false"
        assert defines[SERVICE_WORKER_STRATEGY] == "offline-first"
        assert BASE_HREF not in defines


class TestDefineLists:
    """Tests for comma-separated define values."""

    def test_values_with_commas_survive(self) -> None:
        """Items containing commas are escaped and decoded intact."""
        values = ["API=a,b", "PLAIN=x"]
        encoded = encode_list(values)
        assert encoded.count(",") == 1
        assert decode_list({"k": encoded}, "k") == values

    def test_missing_key_decodes_to_empty_list(self) -> None:
        """An absent define is an empty list."""
        assert decode_list({}, "k") == []


class TestLoadConfig:
    """Tests for load_config function."""

    def test_loads_valid_config(self, config_dir: Path, valid_config_content: str) -> None:
        """Valid configuration file is loaded successfully."""
        config = load_config(_write(config_dir, valid_config_content))

        assert config.build_mode == "release"
        assert config.app.name == "demo"
        assert config.app.build_number == "7"
        assert config.web.base_href == "/app/"
        assert config.web.optimization == "O2"
        assert config.dart_defines == {"API_URL": "https://example.com/api?a=1,b=2", "FLAVOR": "prod"}
        assert config.extra_front_end_options == ["--enable-experiment=non-nullable"]

    def test_defines_round_trip(self, config_dir: Path, valid_config_content: str) -> None:
        """Dart defines and front-end options decode back from the defines map."""
        defines = load_config(_write(config_dir, valid_config_content)).to_defines()

        assert decode_list(defines, DART_DEFINES) == [
            "API_URL=https://example.com/api?a=1,b=2",
            "FLAVOR=prod",
        ]
        assert decode_list(defines, EXTRA_FRONT_END_OPTIONS) == ["--enable-experiment=non-nullable"]
        assert defines[BASE_HREF] == "/app/"

    def test_assets_dir(self, config_dir: Path, valid_config_content: str) -> None:
        """The asset bundle directory becomes the AssetsDirectory define."""
        config = load_config(_write(config_dir, valid_config_content))

        assert config.assets_dir == "build/flutter_assets"
        assert config.to_defines()[ASSETS_DIR] == "build/flutter_assets"
        assert ASSETS_DIR not in Config().to_defines()

    def test_empty_file_uses_defaults(self, config_dir: Path) -> None:
        """An empty file yields the default configuration."""
        config = load_config(_write(config_dir, ""))
        assert config == Config()

    def test_raises_on_missing_file(self, config_dir: Path) -> None:
        """Missing file raises ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(config_dir / "missing.yaml"))

    def test_raises_on_invalid_yaml(self, config_dir: Path) -> None:
        """Unparseable YAML raises ConfigError."""
        with pytest.raises(ConfigError, match="Failed to parse YAML"):
            load_config(_write(config_dir, "web: [unclosed"))

    def test_raises_on_non_dict_root(self, config_dir: Path) -> None:
        """A YAML list at the root is rejected."""
        with pytest.raises(ConfigError, match="must be a YAML dictionary"):
            load_config(_write(config_dir, "- a\n- b\n"))

    def test_raises_on_non_dict_web_section(self, config_dir: Path) -> None:
        """The web section must be a mapping."""
        with pytest.raises(ConfigError, match="'web' section must be a dictionary"):
            load_config(_write(config_dir, "web: offline\n"))

    def test_raises_on_invalid_timeout(self, config_dir: Path) -> None:
        """A non-numeric compiler timeout is a configuration error."""
        with pytest.raises(ConfigError, match="Invalid configuration value"):
            load_config(_write(config_dir, "compiler_timeout: soon\n"))


class TestEnvOverrides:
    """Tests for environment variable overrides."""

    def test_overrides_build_mode(self, config_dir: Path, monkeypatch) -> None:
        """WEBRELEASE_BUILD_MODE overrides build_mode."""
        monkeypatch.setenv("WEBRELEASE_BUILD_MODE", "profile")
        config = load_config(_write(config_dir, "build_mode: release\n"))
        assert config.build_mode == "profile"

    def test_overrides_base_href(self, config_dir: Path, monkeypatch) -> None:
        """WEBRELEASE_BASE_HREF overrides web.base_href."""
        monkeypatch.setenv("WEBRELEASE_BASE_HREF", "/other/")
        config = load_config(_write(config_dir, "web:\n  base_href: /app/\n"))
        assert config.web.base_href == "/other/"

    def test_overrides_service_worker(self, config_dir: Path, monkeypatch) -> None:
        """WEBRELEASE_SERVICE_WORKER overrides web.service_worker."""
        monkeypatch.setenv("WEBRELEASE_SERVICE_WORKER", "none")
        config = load_config(_write(config_dir, ""))
        assert config.web.service_worker == "none"

    def test_overrides_source_maps(self, config_dir: Path, monkeypatch) -> None:
        """WEBRELEASE_SOURCE_MAPS accepts true/1/yes."""
        monkeypatch.setenv("WEBRELEASE_SOURCE_MAPS", "yes")
        config = load_config(_write(config_dir, ""))
        assert config.web.source_maps is True

    def test_overrides_output_dir(self, config_dir: Path, monkeypatch) -> None:
        """WEBRELEASE_OUTPUT_DIR overrides output_dir."""
        monkeypatch.setenv("WEBRELEASE_OUTPUT_DIR", "dist")
        config = load_config(_write(config_dir, ""))
        assert config.output_dir == "dist"
