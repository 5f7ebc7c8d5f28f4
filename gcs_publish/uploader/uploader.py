"""
Single-file upload to an object store.

Turns one local file plus the run-wide UploadOptions into one put_object
call: ACL rules are validated, the file is opened (gzip-compressed when its
extension asks for it), content type, metadata, cache-control and
content-encoding are resolved, and the bytes are streamed to the store.

Example usage:
    >>> from gcs_publish.uploader import UploadOptions, InMemoryObjectStore, upload_file
    >>> options = UploadOptions(
    ...     destination_prefix="site",
    ...     cache_control="public, max-age=300",
    ...     metadata={"commit": "abc123"},
    ...     acl=("allUsers:READER",),
    ...     gzip_extensions=frozenset({"html", "css", "js"}),
    ... )
    >>> store = InMemoryObjectStore()
    >>> upload_file("site/index.html", "dist/index.html", options, store)
    5120
"""

import mimetypes
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from gcs_publish.errors import InvalidACLError, OpenError, PublishError, TransferError
from gcs_publish.uploader.store import AclRule, ObjectAttributes, ObjectStore
from gcs_publish.uploader.streams import file_extension, open_for_upload
from gcs_publish.utils.logging import get_logger, log_function_call

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
GZIP_ENCODING = "gzip"


@dataclass(frozen=True)
class UploadOptions:
    """
    Settings shared by every upload of a run. Never mutated once built.

    Attributes:
        destination_prefix: Key prefix inside the bucket ("" for the root)
        cache_control: Cache-Control header ("" keeps the store default)
        metadata: Decoded custom metadata; only string values are applied
        acl: Access rules as "entity:role" strings
        gzip_extensions: Extensions (without dot) compressed during upload
        content_type_overrides: Extension (without dot) to MIME type,
            consulted before the standard table
    """

    destination_prefix: str = ""
    cache_control: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)
    acl: Tuple[str, ...] = ()
    gzip_extensions: frozenset = frozenset()
    content_type_overrides: Mapping[str, str] = field(default_factory=dict)


def parse_acl_rule(rule: str, key: Optional[str] = None) -> AclRule:
    """
    Parse an "entity:role" rule.

    Args:
        rule: Rule string such as "allUsers:READER"
        key: Destination key, named in the error message

    Returns:
        AclRule

    Raises:
        InvalidACLError: If the rule does not contain exactly one ":"

    Example:
        >>> parse_acl_rule("user-ci@example.com:OWNER")
        AclRule(entity='user-ci@example.com', role='OWNER')
    """
    if rule.count(":") != 1:
        raise InvalidACLError(rule, key)
    entity, role = rule.split(":")
    return AclRule(entity=entity, role=role)


def parse_acl_rules(rules: Iterable[str], key: Optional[str] = None) -> Tuple[AclRule, ...]:
    """Parse every rule, failing on the first malformed one."""
    return tuple(parse_acl_rule(rule, key) for rule in rules)


def string_metadata(metadata: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """
    Keep only the string-valued entries of ``metadata``.

    Non-string values (numbers, booleans, nested objects) are dropped
    without error.

    Example:
        >>> string_metadata({"a": "1", "b": 2})
        {'a': '1'}
    """
    if not metadata:
        return {}
    return {key: value for key, value in metadata.items() if isinstance(value, str)}


def guess_content_type(path: str, overrides: Optional[Mapping[str, str]] = None) -> str:
    """
    MIME type for ``path`` based on its extension alone.

    Args:
        path: File path
        overrides: Extension (without dot) to MIME type, checked first

    Returns:
        MIME type, "application/octet-stream" when unknown
    """
    extension = file_extension(path)
    if not extension:
        return DEFAULT_CONTENT_TYPE

    if overrides and extension in overrides:
        return overrides[extension]

    # Only the final extension counts: "bundle.tar.gz" is not a tarball
    content_type, _ = mimetypes.guess_type("file." + extension, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


@log_function_call
def upload_file(
    destination_key: str,
    source_path: str,
    options: UploadOptions,
    store: ObjectStore,
) -> int:
    """
    Upload one file, once.

    Args:
        destination_key: Object key to create or overwrite
        source_path: Local file to upload
        options: Run-wide upload settings
        store: Destination object store

    Returns:
        Size in bytes of the source file

    Raises:
        InvalidACLError: If an ACL rule is malformed (nothing is sent)
        OpenError: If the source file cannot be opened
        TransferError: If streaming the bytes fails
        CommitError: If the store fails to finalize the object
    """
    acl = parse_acl_rules(options.acl, destination_key)

    stream, compressed = open_for_upload(source_path, options.gzip_extensions)
    with stream:
        try:
            size = os.path.getsize(source_path)
        except OSError as e:
            raise OpenError(f"cannot stat {source_path}: {e}") from e

        attributes = ObjectAttributes(
            cache_control=options.cache_control,
            metadata=string_metadata(options.metadata),
            acl=acl,
            content_type=guess_content_type(source_path, options.content_type_overrides),
            content_encoding=GZIP_ENCODING if compressed else None,
        )

        logger.debug(
            f"Putting {destination_key} ({size} bytes, {attributes.content_type}"
            f"{', gzip' if compressed else ''})"
        )
        try:
            store.put_object(destination_key, stream, attributes)
        except PublishError:
            raise
        except OSError as e:
            raise TransferError(f"{destination_key}: {e}") from e

    return size
