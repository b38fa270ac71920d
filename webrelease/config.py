"""Configuration loader with type-safe dataclasses.

The configuration is rendered into a flat, string-keyed ``defines`` map that
every build target reads from its environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote, unquote

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Define keys recognized by the build targets.
TARGET_FILE = "TargetFile"
BUILD_MODE = "BuildMode"
HAS_WEB_PLUGINS = "HasWebPlugins"
DART2JS_OPTIMIZATION = "Dart2jsOptimization"
CSP_MODE = "cspMode"
BASE_HREF = "baseHref"
SERVICE_WORKER_STRATEGY = "ServiceWorkerStrategy"
SOURCE_MAPS_ENABLED = "SourceMaps"
NATIVE_NULL_ASSERTIONS = "NativeNullAssertions"
DART_DEFINES = "DartDefines"
EXTRA_FRONT_END_OPTIONS = "ExtraFrontEndOptions"
PACKAGES_PATH = "PackagesPath"
LANGUAGE_VERSION = "LanguageVersion"
COMPILER_TIMEOUT = "CompilerTimeout"
APP_NAME = "AppName"
APP_VERSION = "AppVersion"
BUILD_NUMBER = "BuildNumber"
ASSETS_DIR = "AssetsDirectory"

# Placeholder for the base href inside the HTML entry point.
BASE_HREF_PLACEHOLDER = "$FLUTTER_BASE_HREF"

BUILD_MODES = ("debug", "profile", "release")
OPTIMIZATION_LEVELS = ("O1", "O2", "O3", "O4")
OFFLINE_FIRST = "offline-first"
NONE_WORKER = "none"
SERVICE_WORKER_STRATEGIES = (OFFLINE_FIRST, NONE_WORKER)


def encode_list(values: list[str]) -> str:
    """Encode a list of strings as a single comma-separated define value."""
    return ",".join(quote(value, safe="") for value in values)


def decode_list(defines: dict[str, str], key: str) -> list[str]:
    """Decode a comma-separated define value written by encode_list()."""
    raw = defines.get(key)
    if not raw:
        return []
    return [unquote(value) for value in raw.split(",")]


def _bool_define(value: bool) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class AppConfig:
    """Application identity written to version.json."""

    name: str | None = None
    version: str | None = None
    build_number: str | None = None


@dataclass(frozen=True)
class SdkConfig:
    """Locations of the compiler and the web SDK."""

    dart: str = "dart"
    dart2js_snapshot: str = "dart2js.dart.snapshot"
    web_sdk: str | None = None  # contains libraries.json and canvaskit/


@dataclass(frozen=True)
class WebConfig:
    """Options for the web release bundle."""

    base_href: str | None = None
    service_worker: str = OFFLINE_FIRST
    source_maps: bool = False
    csp: bool = False
    optimization: str | None = None  # compiler default is O4
    native_null_assertions: bool = False
    has_plugins: bool = False

    def __post_init__(self) -> None:
        if self.base_href is not None:
            if not self.base_href.startswith("/"):
                raise ConfigError(f"base_href must start with '/' (got '{self.base_href}')")
            if not self.base_href.endswith("/"):
                raise ConfigError(f"base_href must end with '/' (got '{self.base_href}')")
        if self.service_worker not in SERVICE_WORKER_STRATEGIES:
            raise ConfigError(
                f"Invalid service_worker strategy '{self.service_worker}'. "
                f"Must be one of: {SERVICE_WORKER_STRATEGIES}"
            )
        if self.optimization is not None and self.optimization not in OPTIMIZATION_LEVELS:
            raise ConfigError(
                f"Invalid optimization level '{self.optimization}'. Must be one of: {OPTIMIZATION_LEVELS}"
            )


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    project_dir: str = "."
    build_dir: str = "build/.webrelease"
    output_dir: str = "build/web"
    target: str = "lib/main.dart"
    assets_dir: str | None = None  # built asset bundle, copied to {OUTPUT_DIR}/assets
    packages: str = ".packages"
    language_version: str = "2.12"
    build_mode: str | None = None
    compiler_timeout: int | None = None
    app: AppConfig = field(default_factory=AppConfig)
    sdk: SdkConfig = field(default_factory=SdkConfig)
    web: WebConfig = field(default_factory=WebConfig)
    dart_defines: dict[str, str] = field(default_factory=dict)
    extra_front_end_options: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.build_mode is not None and self.build_mode not in BUILD_MODES:
            raise ConfigError(f"Invalid build_mode '{self.build_mode}'. Must be one of: {BUILD_MODES}")
        if self.compiler_timeout is not None and self.compiler_timeout < 1:
            raise ConfigError(f"compiler_timeout must be at least 1 second (got {self.compiler_timeout})")
        if not self.target:
            raise ConfigError("Target file cannot be empty")
        project = Path(self.project_dir).resolve()
        build_dir = (project / self.build_dir).resolve()
        output_dir = (project / self.output_dir).resolve()
        if build_dir == output_dir:
            raise ConfigError("build_dir and output_dir must be different directories")
        if project in (build_dir, output_dir):
            raise ConfigError("build_dir and output_dir must not be the project directory")

    def to_defines(self) -> dict[str, str]:
        """Render the configuration into the string-keyed defines map."""
        defines = {
            TARGET_FILE: self.target,
            PACKAGES_PATH: self.packages,
            LANGUAGE_VERSION: self.language_version,
            HAS_WEB_PLUGINS: _bool_define(self.web.has_plugins),
            CSP_MODE: _bool_define(self.web.csp),
            SOURCE_MAPS_ENABLED: _bool_define(self.web.source_maps),
            NATIVE_NULL_ASSERTIONS: _bool_define(self.web.native_null_assertions),
            SERVICE_WORKER_STRATEGY: self.web.service_worker,
        }
        if self.build_mode is not None:
            defines[BUILD_MODE] = self.build_mode
        if self.web.base_href is not None:
            defines[BASE_HREF] = self.web.base_href
        if self.web.optimization is not None:
            defines[DART2JS_OPTIMIZATION] = self.web.optimization
        if self.assets_dir is not None:
            defines[ASSETS_DIR] = self.assets_dir
        if self.compiler_timeout is not None:
            defines[COMPILER_TIMEOUT] = str(self.compiler_timeout)
        if self.dart_defines:
            defines[DART_DEFINES] = encode_list([f"{key}={value}" for key, value in self.dart_defines.items()])
        if self.extra_front_end_options:
            defines[EXTRA_FRONT_END_OPTIONS] = encode_list(self.extra_front_end_options)
        if self.app.name is not None:
            defines[APP_NAME] = self.app.name
        if self.app.version is not None:
            defines[APP_VERSION] = self.app.version
        if self.app.build_number is not None:
            defines[BUILD_NUMBER] = self.app.build_number
        return defines


def _optional_str(value: object) -> str | None:
    return str(value) if value is not None else None


def _parse_app_config(data: dict | None) -> AppConfig:
    """Parse app configuration section."""
    if data is None:
        return AppConfig()
    if not isinstance(data, dict):
        raise ConfigError("'app' section must be a dictionary")

    return AppConfig(
        name=_optional_str(data.get("name")),
        version=_optional_str(data.get("version")),
        build_number=_optional_str(data.get("build_number")),
    )


def _parse_sdk_config(data: dict | None) -> SdkConfig:
    """Parse sdk configuration section."""
    if data is None:
        return SdkConfig()
    if not isinstance(data, dict):
        raise ConfigError("'sdk' section must be a dictionary")

    return SdkConfig(
        dart=str(data.get("dart", "dart")),
        dart2js_snapshot=str(data.get("dart2js_snapshot", "dart2js.dart.snapshot")),
        web_sdk=_optional_str(data.get("web_sdk")),
    )


def _parse_web_config(data: dict | None) -> WebConfig:
    """Parse web configuration section."""
    if data is None:
        return WebConfig()
    if not isinstance(data, dict):
        raise ConfigError("'web' section must be a dictionary")

    return WebConfig(
        base_href=_optional_str(data.get("base_href")),
        service_worker=str(data.get("service_worker", OFFLINE_FIRST)),
        source_maps=bool(data.get("source_maps", False)),
        csp=bool(data.get("csp", False)),
        optimization=_optional_str(data.get("optimization")),
        native_null_assertions=bool(data.get("native_null_assertions", False)),
        has_plugins=bool(data.get("has_plugins", False)),
    )


def _parse_dart_defines(data: dict | None) -> dict[str, str]:
    """Parse the dart_defines mapping."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("'dart_defines' must be a dictionary")
    return {str(key): str(value) for key, value in data.items()}


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - WEBRELEASE_BUILD_MODE: Override build_mode
    - WEBRELEASE_OUTPUT_DIR: Override output_dir
    - WEBRELEASE_BASE_HREF: Override web.base_href
    - WEBRELEASE_SERVICE_WORKER: Override web.service_worker
    - WEBRELEASE_SOURCE_MAPS: Override web.source_maps (true/false)
    """
    if config_data.get("web") is None:
        config_data["web"] = {}

    build_mode = os.environ.get("WEBRELEASE_BUILD_MODE")
    if build_mode is not None:
        config_data["build_mode"] = build_mode

    output_dir = os.environ.get("WEBRELEASE_OUTPUT_DIR")
    if output_dir is not None:
        config_data["output_dir"] = output_dir

    # A malformed 'web' section is reported by _parse_web_config().
    if isinstance(config_data["web"], dict):
        base_href = os.environ.get("WEBRELEASE_BASE_HREF")
        if base_href is not None:
            config_data["web"]["base_href"] = base_href

        strategy = os.environ.get("WEBRELEASE_SERVICE_WORKER")
        if strategy is not None:
            config_data["web"]["service_worker"] = strategy

        source_maps = os.environ.get("WEBRELEASE_SOURCE_MAPS")
        if source_maps is not None:
            config_data["web"]["source_maps"] = source_maps.lower() in ("true", "1", "yes")

    return config_data


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    data = _apply_env_overrides(data)

    extra_options = data.get("extra_front_end_options", [])
    if not isinstance(extra_options, list):
        raise ConfigError("'extra_front_end_options' must be a list")

    compiler_timeout = data.get("compiler_timeout")
    build_mode = data.get("build_mode")
    assets_dir = data.get("assets_dir")

    try:
        return Config(
            project_dir=str(data.get("project_dir", ".")),
            build_dir=str(data.get("build_dir", "build/.webrelease")),
            output_dir=str(data.get("output_dir", "build/web")),
            target=str(data.get("target", "lib/main.dart")),
            assets_dir=str(assets_dir) if assets_dir is not None else None,
            packages=str(data.get("packages", ".packages")),
            language_version=str(data.get("language_version", "2.12")),
            build_mode=str(build_mode) if build_mode is not None else None,
            compiler_timeout=int(compiler_timeout) if compiler_timeout is not None else None,
            app=_parse_app_config(data.get("app")),
            sdk=_parse_sdk_config(data.get("sdk")),
            web=_parse_web_config(data.get("web")),
            dart_defines=_parse_dart_defines(data.get("dart_defines")),
            extra_front_end_options=[str(option) for option in extra_options],
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")
