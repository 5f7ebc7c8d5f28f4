"""
Command-line entry point.

Usage:
    gcs-publish --source dist --target my-site/releases/v2
    gcs-publish --source dist --target my-site --gzip html --gzip css,js \\
        --acl allUsers:READER --cache-control "public, max-age=300"
    gcs-publish --config deploy/upload.yaml --env-file .env
    PLUGIN_SOURCE=dist PLUGIN_TARGET=my-site gcs-publish

Exit codes:
    0    every file uploaded
    1    at least one file failed after exhausting its retries
    2    configuration, credential, source tree or metrics server error
         (nothing uploaded)
    130  interrupted
"""

import argparse
import os
import sys
from typing import Any, Dict, List, Optional

import yaml

from gcs_publish import __version__
from gcs_publish.errors import ConfigurationError, CredentialsError, EnumerationError
from gcs_publish.uploader import (
    GCSObjectStore,
    InMemoryObjectStore,
    ObjectStore,
    RunResult,
    create_gcs_client,
    publish,
)
from gcs_publish.utils.config import SETTING_NAMES, PublishConfig, read_env
from gcs_publish.utils.config_loader import load_config, validate_config
from gcs_publish.utils.logging import get_logger, set_correlation_id, setup_logging
from gcs_publish.utils.metrics import start_metrics_server

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_UPLOAD_FAILED = 1
EXIT_SETUP_FAILED = 2
EXIT_INTERRUPTED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="gcs-publish",
        description="Upload a directory tree to Google Cloud Storage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Settings may also come from a YAML file (--config) and from PLUGIN_<NAME>
environment variables (e.g. PLUGIN_SOURCE, PLUGIN_TARGET, PLUGIN_GZIP).
Flags override environment variables, which override the YAML file.

Examples:
  # Upload dist/ under the releases/v2 prefix
  %(prog)s --source dist --target my-site/releases/v2

  # Compress text assets and make everything public
  %(prog)s --source dist --target my-site --gzip html,css,js --acl allUsers:READER

  # Skip source maps
  %(prog)s --source dist --target my-site --ignore "*.map"
        """,
    )

    parser.add_argument("-s", "--source", help="Directory to upload")
    parser.add_argument(
        "-t",
        "--target",
        help="Destination bucket, optionally followed by a key prefix (bucket/prefix)",
    )
    parser.add_argument(
        "-i",
        "--ignore",
        help="Skip files matching this glob, relative to source",
    )
    parser.add_argument(
        "--acl",
        action="append",
        metavar="ENTITY:ROLE",
        help="Access rule applied to every object (can specify multiple times)",
    )
    parser.add_argument(
        "--gzip",
        action="append",
        metavar="EXT",
        help="Gzip files with this extension and upload them with Content-Encoding: gzip",
    )
    parser.add_argument("--cache-control", dest="cache_control", help="Cache-Control header")
    parser.add_argument(
        "-m",
        "--metadata",
        help="JSON object of custom metadata applied to every object",
    )
    parser.add_argument(
        "--content-type",
        dest="content_types",
        action="append",
        metavar="EXT=TYPE",
        help="Content type for files with this extension (can specify multiple times)",
    )
    parser.add_argument(
        "--auth-key",
        dest="auth_key",
        help="Service account key file or JSON (default: GOOGLE_KEY or ADC)",
    )
    parser.add_argument(
        "-c",
        "--concurrency",
        type=int,
        help="Maximum uploads in flight (default: 100)",
    )
    parser.add_argument(
        "-r",
        "--max-retries",
        dest="max_retries",
        type=int,
        help="Retries per file after the first attempt (default: 5)",
    )
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--env-file", dest="env_file", help="Load environment variables from file")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Read and encode every file but store nothing",
    )
    parser.add_argument(
        "--metrics-port",
        dest="metrics_port",
        type=int,
        help="Expose Prometheus metrics on this port during the run",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return parser.parse_args(argv)


def _flag_values(args: argparse.Namespace) -> Dict[str, Any]:
    values = {}
    for name in SETTING_NAMES:
        value = getattr(args, name, None)
        if value is not None:
            values[name] = value
    return values


def build_config(args: argparse.Namespace) -> PublishConfig:
    """
    Merge YAML file, environment and flags into one validated config.

    Raises:
        ConfigurationError: If the merged settings are invalid
        FileNotFoundError, ValueError, yaml.YAMLError: If the YAML file
            cannot be loaded
    """
    values: Dict[str, Any] = {}

    if args.config:
        file_values = load_config(args.config)
        errors = validate_config(file_values)
        if errors:
            raise ConfigurationError(
                f"{args.config}: " + "; ".join(str(error) for error in errors)
            )
        values.update(file_values)

    values.update(read_env(args.env_file))
    values.update(_flag_values(args))
    return PublishConfig.from_mapping(values)


def build_store(config: PublishConfig, dry_run: bool = False) -> ObjectStore:
    """Object store for the configured bucket."""
    if dry_run:
        logger.info("Dry run: objects are read and encoded but not stored")
        return InMemoryObjectStore(keep_data=False)

    client = create_gcs_client(config.auth_key)
    return GCSObjectStore(client.bucket(config.bucket))


def report(result: RunResult) -> int:
    """Print per-file results and return the process exit code."""
    for outcome in result.outcomes:
        if outcome.success:
            print(outcome.key)
        else:
            print(f"❌ {outcome.key}: {outcome.error}")

    total = len(result.outcomes)
    print("\n📊 Upload Summary:")
    print(f"  Total: {total}")
    print(f"  ✅ Successful: {len(result.succeeded)}")
    print(f"  ❌ Failed: {len(result.failed)}")
    print(f"  📦 Total size: {result.bytes_uploaded:,} bytes")

    if not result.success:
        print(f"\n❌ First failure: {result.failed_key}: {result.first_error}")
        return EXIT_UPLOAD_FAILED
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the upload CLI."""
    args = parse_args(argv)

    setup_logging(level="DEBUG" if args.verbose else "INFO")
    build_number = os.getenv("DRONE_BUILD_NUMBER")
    if build_number:
        set_correlation_id(f"build-{build_number}")

    try:
        config = build_config(args)
    except (ConfigurationError, FileNotFoundError, ValueError, yaml.YAMLError) as e:
        print(f"❌ Configuration error: {e}")
        return EXIT_SETUP_FAILED

    print(f"📤 Uploading {config.source} to gs://{config.target}")
    if config.gzip:
        print(f"   Gzip: {', '.join(config.gzip)}")
    if config.ignore:
        print(f"   Ignore: {config.ignore}")

    if args.metrics_port:
        try:
            start_metrics_server(port=args.metrics_port)
        except OSError as e:
            logger.error(f"Cannot start metrics server on port {args.metrics_port}: {e}")
            print(f"❌ Metrics server error: {e}")
            return EXIT_SETUP_FAILED

    try:
        store = build_store(config, dry_run=args.dry_run)
        result = publish(
            config.source,
            config.to_upload_options(),
            store,
            ignore=config.ignore,
            concurrency=config.concurrency,
            max_retries=config.max_retries,
        )
    except KeyboardInterrupt:
        print("\n⚠️  Upload cancelled by user")
        return EXIT_INTERRUPTED
    except (CredentialsError, EnumerationError) as e:
        logger.error(str(e))
        print(f"❌ {e}")
        return EXIT_SETUP_FAILED

    return report(result)


if __name__ == "__main__":
    sys.exit(main())
