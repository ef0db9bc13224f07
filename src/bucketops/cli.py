"""CLI entry point for BucketOps."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from bucketops.config import BucketOpsConfig, load_config
from bucketops.logging_config import configure_logging
from bucketops.server import create_app


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="bucketops",
        description="BucketOps - bulk operations and job tracking for object storage",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("bucketops.yaml"),
        help="Path to YAML configuration file (default: bucketops.yaml)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address to bind to (overrides config)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (overrides config)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=int,
        default=None,
        help="Graceful shutdown timeout in seconds (default: 30)",
    )
    parser.add_argument(
        "--storage-backend",
        type=str,
        default=None,
        choices=["local", "memory", "s3"],
        help="Object store backend (overrides config)",
    )
    parser.add_argument(
        "--storage-root",
        type=str,
        default=None,
        help="Root directory for the local backend (overrides config)",
    )
    parser.add_argument(
        "--metadata-path",
        type=str,
        default=None,
        help="SQLite database for jobs and audit (overrides config)",
    )
    parser.add_argument(
        "--public-base-url",
        type=str,
        default=None,
        help="Origin used when building signed download links",
    )
    return parser.parse_args(argv)


def apply_overrides(config: BucketOpsConfig, args: argparse.Namespace) -> None:
    """Copy every option given on the command line onto ``config``."""
    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.log_level is not None:
        config.server.log_level = args.log_level
    if args.log_format is not None:
        config.server.log_format = args.log_format
    if args.shutdown_timeout is not None:
        config.server.shutdown_timeout = args.shutdown_timeout
    if args.public_base_url is not None:
        config.server.public_base_url = args.public_base_url
    if args.storage_backend is not None:
        config.storage.backend = args.storage_backend
    if args.storage_root is not None:
        config.storage.local_root = args.storage_root
    if args.metadata_path is not None:
        config.metadata.engine = "sqlite"
        config.metadata.sqlite_path = args.metadata_path


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the BucketOps CLI.

    Loads configuration, applies CLI overrides, and starts the server
    using uvicorn.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    logger = logging.getLogger("bucketops")

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    apply_overrides(config, args)

    configure_logging(
        level=config.server.log_level,
        fmt=config.server.log_format,
    )

    logger.info(
        "Starting BucketOps on %s:%d (storage=%s, metadata=%s)",
        config.server.host,
        config.server.port,
        config.storage.backend,
        config.metadata.engine,
    )

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        timeout_graceful_shutdown=config.server.shutdown_timeout,
        timeout_keep_alive=5,
    )


if __name__ == "__main__":
    main()
