"""
gcs-publish

CI upload step that publishes a local directory tree to a Google Cloud
Storage bucket with per-object metadata, cache-control, content types, ACL
rules and optional on-the-fly gzip compression.

This package provides:
- uploader: enumeration, streaming, single-file upload, concurrent runs
- utils: logging, retry, configuration and metrics helpers
- cli: command-line entry point for CI pipelines
"""

__version__ = "0.1.0"

# Package-level imports
from gcs_publish.utils.logging import setup_logging

# Initialize default logging configuration
setup_logging()
