"""webrelease - Fingerprinted, offline-capable web release bundles."""

import argparse
import logging
import shutil
import sys
from dataclasses import replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .environment import Environment
    from .targets import BuildTarget

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _load_environment(args: argparse.Namespace) -> "Environment":
    """Load configuration and build the environment, exiting on config errors."""
    from .config import ConfigError, load_config
    from .environment import environment_from_config

    try:
        config = load_config(args.config)
        if getattr(args, "mode", None) is not None:
            config = replace(config, build_mode=args.mode)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    logger.debug("Configuration loaded from %s", args.config)
    return environment_from_config(config)


def _run_targets(args: argparse.Namespace, target: "BuildTarget", with_dependencies: bool) -> None:
    """Run a target (and optionally its dependencies), exiting on build errors."""
    from .environment import BuildError
    from .targets import BuildSystem

    environment = _load_environment(args)
    try:
        if with_dependencies:
            BuildSystem().build(target, environment)
        else:
            environment.prepare()
            target.build(environment)
    except BuildError as e:
        logger.error("Build failed: %s", e)
        sys.exit(1)


def _cmd_build(args: argparse.Namespace) -> None:
    """Execute the build command - run the whole web release pipeline."""
    from .targets import WebServiceWorker

    _setup_logging(args.verbose)
    logger.info("webrelease %s starting...", __version__)
    _run_targets(args, WebServiceWorker(), with_dependencies=True)
    logger.info("Build complete")


def _cmd_fingerprint(args: argparse.Namespace) -> None:
    """Execute the fingerprint command - hash an already assembled output directory."""
    from .targets import WebFingerprintTarget

    _setup_logging(args.verbose)
    _run_targets(args, WebFingerprintTarget(), with_dependencies=False)


def _cmd_service_worker(args: argparse.Namespace) -> None:
    """Execute the service-worker command - regenerate the worker for the output directory."""
    from .targets import WebServiceWorker

    _setup_logging(args.verbose)
    _run_targets(args, WebServiceWorker(), with_dependencies=False)


def _cmd_clean(args: argparse.Namespace) -> None:
    """Execute the clean command - remove the build and output directories."""
    environment = _load_environment(args)

    for directory in (environment.build_dir, environment.output_dir):
        if not directory.exists():
            continue
        try:
            shutil.rmtree(directory)
        except OSError as e:
            print(f"Error: Failed to remove {directory}: {e}")
            sys.exit(1)
        print(f"Removed {directory}")


def _add_common_arguments(parser: argparse.ArgumentParser, verbose: bool = True) -> None:
    parser.add_argument(
        "-c", "--config",
        default="webrelease.yaml",
        help="Path to configuration file (default: webrelease.yaml)",
    )
    if verbose:
        parser.add_argument(
            "-v", "--verbose",
            action="store_true",
            help="Enable verbose (debug) logging",
        )


def main() -> None:
    """Main entry point for the webrelease package."""
    parser = argparse.ArgumentParser(
        description="webrelease - Fingerprinted, offline-capable web release bundles"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"webrelease {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Build subcommand (default behavior)
    build_parser = subparsers.add_parser(
        "build",
        help="Compile, bundle, fingerprint and generate the service worker (default)",
    )
    _add_common_arguments(build_parser)
    build_parser.add_argument(
        "--mode",
        choices=["debug", "profile", "release"],
        help="Build mode (overrides config)",
    )
    build_parser.set_defaults(func=_cmd_build)

    # Fingerprint subcommand
    fingerprint_parser = subparsers.add_parser(
        "fingerprint",
        help="Fingerprint an already assembled output directory",
    )
    _add_common_arguments(fingerprint_parser)
    fingerprint_parser.set_defaults(func=_cmd_fingerprint)

    # Service-worker subcommand
    worker_parser = subparsers.add_parser(
        "service-worker",
        help="Regenerate the service worker for the output directory",
    )
    _add_common_arguments(worker_parser)
    worker_parser.set_defaults(func=_cmd_service_worker)

    # Clean subcommand
    clean_parser = subparsers.add_parser(
        "clean",
        help="Remove the build and output directories",
    )
    _add_common_arguments(clean_parser, verbose=False)
    clean_parser.set_defaults(func=_cmd_clean)

    args = parser.parse_args()

    # Default to 'build' if no command specified
    if args.command is None:
        args.config = "webrelease.yaml"
        args.verbose = False
        args.mode = None
        args.func = _cmd_build

    args.func(args)
