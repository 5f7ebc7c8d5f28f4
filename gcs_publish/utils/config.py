"""
Run configuration for gcs-publish.

Settings come from three layers, later ones winning: a YAML settings file,
environment variables (the CI plugin convention ``PLUGIN_<NAME>``, loadable
from an env file) and command-line flags. Each layer produces a plain dict
with the keys below; PublishConfig.from_mapping validates the merged result.

    source          directory to upload
    target          "bucket" or "bucket/prefix"
    ignore          shell glob, relative to source
    acl             list of "entity:role" rules
    gzip            list of extensions compressed during upload
    cache_control   Cache-Control header
    metadata        JSON object (string) or mapping of custom metadata
    content_types   extension to MIME type overrides: JSON object, mapping
                    or list of "ext=type" entries
    auth_key        service account key file path or JSON document
    concurrency     maximum uploads in flight
    max_retries     retries per file after the first attempt
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from gcs_publish.errors import ConfigurationError
from gcs_publish.uploader.coordinator import DEFAULT_CONCURRENCY
from gcs_publish.uploader.uploader import UploadOptions
from gcs_publish.utils.logging import get_logger
from gcs_publish.utils.retry import DEFAULT_MAX_ATTEMPTS

logger = get_logger(__name__)

# Setting name -> environment variables, first match wins
ENV_VARS: Dict[str, Tuple[str, ...]] = {
    "source": ("PLUGIN_SOURCE",),
    "target": ("PLUGIN_TARGET",),
    "ignore": ("PLUGIN_IGNORE",),
    "acl": ("PLUGIN_ACL",),
    "gzip": ("PLUGIN_GZIP",),
    "cache_control": ("PLUGIN_CACHE_CONTROL",),
    "metadata": ("PLUGIN_METADATA",),
    "content_types": ("PLUGIN_CONTENT_TYPES",),
    "auth_key": ("PLUGIN_AUTH_KEY", "GOOGLE_KEY"),
    "concurrency": ("PLUGIN_CONCURRENCY",),
    "max_retries": ("PLUGIN_MAX_RETRIES",),
}

SETTING_NAMES = tuple(ENV_VARS)


def split_target(target: str) -> Tuple[str, str]:
    """
    Split "bucket/prefix" on the first "/".

    Args:
        target: Bucket name optionally followed by a key prefix

    Returns:
        ``(bucket, prefix)``; prefix is "" when the target has no "/"

    Raises:
        ConfigurationError: If the bucket name is empty

    Example:
        >>> split_target("my-site/releases/v2")
        ('my-site', 'releases/v2')
        >>> split_target("my-site")
        ('my-site', '')
    """
    bucket, _, prefix = target.partition("/")
    bucket = bucket.strip("/")
    if not bucket:
        raise ConfigurationError(f"target has no bucket name: {target!r}")
    return bucket, prefix


def parse_metadata(raw: Any) -> Dict[str, Any]:
    """
    Decode the metadata setting.

    Args:
        raw: JSON object text, an already decoded mapping, or None/""

    Returns:
        Decoded mapping ({} when unset)

    Raises:
        ConfigurationError: If the text is not a JSON object
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str):
        raise ConfigurationError(f"metadata must be a JSON object, got {type(raw).__name__}")

    try:
        decoded = json.loads(raw)
    except ValueError as e:
        raise ConfigurationError(f"metadata is not valid JSON: {e}") from e

    if not isinstance(decoded, dict):
        raise ConfigurationError(
            f"metadata must be a JSON object, got {type(decoded).__name__}"
        )
    return decoded


def parse_content_types(raw: Any) -> Dict[str, str]:
    """
    Decode the content type override table.

    Args:
        raw: JSON object text, a mapping, or a list of "ext=type" entries
            (as given by repeated --content-type flags); None/"" for none

    Returns:
        Extension (without leading dot) to MIME type

    Raises:
        ConfigurationError: If an entry is malformed

    Example:
        >>> parse_content_types(["wasm=application/wasm", ".md=text/markdown"])
        {'wasm': 'application/wasm', 'md': 'text/markdown'}
    """
    if raw is None or raw == "":
        return {}

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ConfigurationError(f"content_types is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"content_types must be a JSON object, got {type(raw).__name__}"
            )

    if isinstance(raw, Mapping):
        items = list(raw.items())
    elif isinstance(raw, (list, tuple)):
        items = []
        for entry in raw:
            extension, sep, content_type = str(entry).partition("=")
            if not sep:
                raise ConfigurationError(
                    f"content type entry must be ext=type, got {entry!r}"
                )
            items.append((extension, content_type))
    else:
        raise ConfigurationError(
            f"content_types must be a mapping, got {type(raw).__name__}"
        )

    overrides: Dict[str, str] = {}
    for extension, content_type in items:
        extension = str(extension).strip().lstrip(".")
        if not extension or not isinstance(content_type, str) or not content_type.strip():
            raise ConfigurationError(
                f"invalid content type override {extension!r}: {content_type!r}"
            )
        overrides[extension] = content_type.strip()
    return overrides


def split_list(value: Any) -> List[str]:
    """
    Accept a comma-separated string or a list of them; blanks are dropped.

    Example:
        >>> split_list(["html,css", "js"])
        ['html', 'css', 'js']
    """
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    items = [part for item in value for part in str(item).split(",")]
    return [item.strip() for item in items if item.strip()]


def _parse_int(name: str, value: Any, minimum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e
    if number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    return number


def read_env(env_file: Optional[str] = None) -> Dict[str, str]:
    """
    Collect settings from the environment.

    Args:
        env_file: Optional dotenv file loaded first; variables already set
            in the environment are not overridden

    Returns:
        Mapping of setting name to raw string, for variables that are set
        and non-empty
    """
    if env_file:
        if not os.path.isfile(env_file):
            raise ConfigurationError(f"env file not found: {env_file}")
        load_dotenv(env_file, override=False)
        logger.info(f"Loaded environment from {env_file}")

    values: Dict[str, str] = {}
    for name, variables in ENV_VARS.items():
        for variable in variables:
            value = os.getenv(variable)
            if value:
                values[name] = value
                break
    return values


@dataclass
class PublishConfig:
    """Validated settings for one upload run."""

    source: str
    bucket: str
    prefix: str = ""
    ignore: str = ""
    acl: List[str] = field(default_factory=list)
    gzip: List[str] = field(default_factory=list)
    cache_control: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    content_types: Dict[str, str] = field(default_factory=dict)
    auth_key: Optional[str] = None
    concurrency: int = DEFAULT_CONCURRENCY
    max_retries: int = DEFAULT_MAX_ATTEMPTS

    @property
    def target(self) -> str:
        if not self.prefix:
            return self.bucket
        return f"{self.bucket}/{self.prefix}"

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "PublishConfig":
        """
        Build a config from merged setting values.

        Raises:
            ConfigurationError: If a required setting is missing or a value
                cannot be parsed
        """
        source = values.get("source")
        if not source:
            raise ConfigurationError("source is required")
        target = values.get("target")
        if not target:
            raise ConfigurationError("target is required")

        bucket, prefix = split_target(str(target))

        return cls(
            source=str(source),
            bucket=bucket,
            prefix=prefix,
            ignore=str(values.get("ignore") or ""),
            acl=split_list(values.get("acl")),
            gzip=[ext.lstrip(".") for ext in split_list(values.get("gzip"))],
            cache_control=str(values.get("cache_control") or ""),
            metadata=parse_metadata(values.get("metadata")),
            content_types=parse_content_types(values.get("content_types")),
            auth_key=values.get("auth_key") or None,
            concurrency=_parse_int(
                "concurrency", values.get("concurrency", DEFAULT_CONCURRENCY), 1
            ),
            max_retries=_parse_int(
                "max_retries", values.get("max_retries", DEFAULT_MAX_ATTEMPTS), 0
            ),
        )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "PublishConfig":
        """
        Load configuration from environment variables.

        Example:
            >>> os.environ["PLUGIN_SOURCE"] = "dist"
            >>> os.environ["PLUGIN_TARGET"] = "my-site/v2"
            >>> PublishConfig.from_env().prefix
            'v2'
        """
        return cls.from_mapping(read_env(env_file))

    def to_upload_options(self) -> UploadOptions:
        """Freeze the upload-relevant settings for the worker pool."""
        return UploadOptions(
            destination_prefix=self.prefix,
            cache_control=self.cache_control,
            metadata=dict(self.metadata),
            acl=tuple(self.acl),
            gzip_extensions=frozenset(self.gzip),
            content_type_overrides=dict(self.content_types),
        )
