"""
Upload pipeline.

Enumerates a source tree, opens each file (gzip-compressing it when its
extension asks for it), and pushes it to an object store with bounded
concurrency and per-file retries.
"""

from .enumerator import UploadTask, compile_ignore_pattern, enumerate_files, matches_ignore
from .streams import GzipCompressingReader, file_extension, open_for_upload, should_gzip
from .store import (
    AclRule,
    GCSObjectStore,
    InMemoryObjectStore,
    ObjectAttributes,
    ObjectStore,
    StoredObject,
    create_gcs_client,
)
from .uploader import (
    UploadOptions,
    guess_content_type,
    parse_acl_rule,
    parse_acl_rules,
    string_metadata,
    upload_file,
)
from .coordinator import (
    FirstErrorCell,
    RunResult,
    UploadCoordinator,
    UploadOutcome,
    publish,
)

__all__ = [
    "AclRule",
    "FirstErrorCell",
    "GCSObjectStore",
    "GzipCompressingReader",
    "InMemoryObjectStore",
    "ObjectAttributes",
    "ObjectStore",
    "RunResult",
    "StoredObject",
    "UploadCoordinator",
    "UploadOptions",
    "UploadOutcome",
    "UploadTask",
    "compile_ignore_pattern",
    "create_gcs_client",
    "enumerate_files",
    "file_extension",
    "guess_content_type",
    "matches_ignore",
    "open_for_upload",
    "parse_acl_rule",
    "parse_acl_rules",
    "publish",
    "should_gzip",
    "string_metadata",
    "upload_file",
]
