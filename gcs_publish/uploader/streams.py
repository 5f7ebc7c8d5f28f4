"""
Upload stream selection and on-the-fly gzip compression.

Files whose extension appears in the gzip set are compressed while they are
read, chunk by chunk, so memory use stays constant regardless of file size.
Everything else is streamed as-is.
"""

import io
import os
import zlib
from typing import BinaryIO, Collection, Optional, Tuple

from gcs_publish.errors import OpenError
from gcs_publish.utils.logging import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024

# wbits offset that makes zlib emit a gzip header and trailer
_GZIP_WBITS = 16 + zlib.MAX_WBITS


def file_extension(path: str) -> str:
    """
    Extension of ``path`` without the leading dot.

    Only the text after the last "." of the base name counts, and case is
    preserved.

    Example:
        >>> file_extension("dist/app.min.JS")
        'JS'
        >>> file_extension("Makefile")
        ''
    """
    name = os.path.basename(path)
    dot = name.rfind(".")
    if dot < 0:
        return ""
    return name[dot + 1:]


def should_gzip(path: str, gzip_extensions: Collection[str]) -> bool:
    """Report whether ``path`` is compressed during upload."""
    extension = file_extension(path)
    return bool(extension) and extension in gzip_extensions


class GzipCompressingReader(io.RawIOBase):
    """
    Read-only stream producing the gzip encoding of another stream.

    Source data is pulled in ``chunk_size`` pieces only when the consumer
    asks for more output. Errors raised by the source's ``read`` reach the
    consumer unchanged.

    Example:
        >>> with GzipCompressingReader(open("notes.txt", "rb")) as stream:
        ...     compressed = stream.read()
    """

    def __init__(
        self,
        source: BinaryIO,
        chunk_size: int = CHUNK_SIZE,
        level: int = zlib.Z_DEFAULT_COMPRESSION,
    ) -> None:
        super().__init__()
        self._source = source
        self._chunk_size = chunk_size
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, _GZIP_WBITS)
        self._pending = bytearray()
        self._eof = False
        self._position = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        while not self._pending and not self._eof:
            chunk = self._source.read(self._chunk_size)
            if chunk:
                self._pending += self._compressor.compress(chunk)
            else:
                self._pending += self._compressor.flush()
                self._eof = True

        size = min(len(view), len(self._pending))
        view[:size] = self._pending[:size]
        del self._pending[:size]
        self._position += size
        return size

    def tell(self) -> int:
        return self._position

    def close(self) -> None:
        if not self.closed:
            try:
                self._source.close()
            finally:
                super().close()


def open_for_upload(
    path: str, gzip_extensions: Optional[Collection[str]] = None
) -> Tuple[BinaryIO, bool]:
    """
    Open ``path`` for upload, compressing it when its extension asks for it.

    Args:
        path: Local file to read
        gzip_extensions: Extensions (without dot) that are gzip-compressed

    Returns:
        ``(stream, is_compressed)``; the caller owns and must close the stream

    Raises:
        OpenError: If the file cannot be opened
    """
    try:
        source = open(path, "rb")
    except OSError as e:
        raise OpenError(f"cannot open {path}: {e}") from e

    if not should_gzip(path, gzip_extensions or ()):
        return source, False

    logger.debug(f"Compressing {path} during upload")
    # Buffered so that read(n) only comes back short at end of stream
    return io.BufferedReader(GzipCompressingReader(source), CHUNK_SIZE), True
