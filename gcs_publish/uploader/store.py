"""
Object store backends.

The upload pipeline talks to storage only through ObjectStore.put_object.
GCSObjectStore implements it on top of google-cloud-storage; the in-memory
store backs dry runs and tests.

Example usage:
    >>> client = create_gcs_client("/secrets/sa.json")
    >>> store = GCSObjectStore(client.bucket("my-site"))
    >>> with open("index.html", "rb") as stream:
    ...     store.put_object("v2/index.html", stream, ObjectAttributes())
"""

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, Mapping, Optional, Tuple

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage

from gcs_publish.errors import CommitError, CredentialsError, TransferError
from gcs_publish.utils.logging import get_logger

logger = get_logger(__name__)

# Resumable upload chunk; must be a multiple of 256 KiB
UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024

# Read size used when draining a stream into memory
_READ_SIZE = 64 * 1024


@dataclass(frozen=True)
class AclRule:
    """Grant ``role`` (e.g. READER) to ``entity`` (e.g. allUsers)."""

    entity: str
    role: str

    def to_dict(self) -> Dict[str, str]:
        return {"entity": self.entity, "role": self.role}


@dataclass(frozen=True)
class ObjectAttributes:
    """
    Headers and metadata attached to one stored object.

    Attributes:
        cache_control: Cache-Control header ("" leaves the store default)
        metadata: Custom string metadata
        acl: Access rules applied to the object
        content_type: MIME type of the stored bytes
        content_encoding: "gzip" for compressed uploads, None otherwise
    """

    cache_control: str = ""
    metadata: Mapping[str, str] = field(default_factory=dict)
    acl: Tuple[AclRule, ...] = ()
    content_type: str = "application/octet-stream"
    content_encoding: Optional[str] = None


class ObjectStore(ABC):
    """Key-addressed storage accepting streamed writes."""

    @abstractmethod
    def put_object(self, key: str, stream: BinaryIO, attributes: ObjectAttributes) -> None:
        """
        Store everything read from ``stream`` under ``key``.

        Readers never see a partially written object: the object appears
        only once the whole stream has been accepted and committed.

        Raises:
            TransferError: If reading the stream or sending bytes fails
            CommitError: If the store fails to finalize the object
        """


class GCSObjectStore(ObjectStore):
    """
    ObjectStore backed by a Google Cloud Storage bucket.

    Bytes go through a resumable upload that is finalized only after the
    last chunk, so an interrupted transfer leaves no object behind. ACL
    rules are applied to the object once it exists.
    """

    def __init__(
        self,
        bucket: storage.Bucket,
        chunk_size: int = UPLOAD_CHUNK_SIZE,
        timeout: float = 300.0,
    ) -> None:
        self.bucket = bucket
        self.chunk_size = chunk_size
        self.timeout = timeout

    def put_object(self, key: str, stream: BinaryIO, attributes: ObjectAttributes) -> None:
        blob = self.bucket.blob(key, chunk_size=self.chunk_size)
        if attributes.cache_control:
            blob.cache_control = attributes.cache_control
        if attributes.metadata:
            blob.metadata = dict(attributes.metadata)
        if attributes.content_encoding:
            blob.content_encoding = attributes.content_encoding

        logger.debug(f"Streaming gs://{self.bucket.name}/{key} ({attributes.content_type})")
        try:
            blob.upload_from_file(
                stream,
                content_type=attributes.content_type,
                timeout=self.timeout,
                retry=None,
            )
        except (OSError, GoogleAPIError) as e:
            raise TransferError(f"{key}: upload failed: {e}") from e

        if attributes.acl:
            try:
                blob.acl.save(acl=[rule.to_dict() for rule in attributes.acl])
            except (OSError, GoogleAPIError) as e:
                raise CommitError(f"{key}: saving ACL failed: {e}") from e


@dataclass(frozen=True)
class StoredObject:
    """Object held by InMemoryObjectStore."""

    data: bytes
    size: int
    attributes: ObjectAttributes


class InMemoryObjectStore(ObjectStore):
    """
    Thread-safe dict-backed store.

    Args:
        keep_data: Keep object bytes; when False only the size is recorded
    """

    def __init__(self, keep_data: bool = True) -> None:
        self.keep_data = keep_data
        self.objects: Dict[str, StoredObject] = {}
        self._lock = threading.Lock()

    def put_object(self, key: str, stream: BinaryIO, attributes: ObjectAttributes) -> None:
        chunks = []
        size = 0
        try:
            while True:
                chunk = stream.read(_READ_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if self.keep_data:
                    chunks.append(chunk)
        except OSError as e:
            raise TransferError(f"{key}: reading source failed: {e}") from e

        stored = StoredObject(data=b"".join(chunks), size=size, attributes=attributes)
        with self._lock:
            self.objects[key] = stored

    def keys(self):
        with self._lock:
            return sorted(self.objects)


def create_gcs_client(auth_key: Optional[str] = None) -> storage.Client:
    """
    Build an authenticated storage client.

    Args:
        auth_key: Service account key, either a path to the JSON key file or
            the JSON document itself. Application Default Credentials are
            used when omitted.

    Returns:
        google.cloud.storage.Client

    Raises:
        CredentialsError: If the key cannot be read or is rejected
    """
    try:
        if not auth_key:
            logger.info("Using Application Default Credentials")
            return storage.Client()
        if auth_key.lstrip().startswith("{"):
            logger.info("Using inline service account key")
            return storage.Client.from_service_account_info(json.loads(auth_key))
        logger.info(f"Using service account key file {auth_key}")
        return storage.Client.from_service_account_json(auth_key)
    except (OSError, ValueError, GoogleAuthError) as e:
        raise CredentialsError(f"cannot create storage client: {e}") from e
