"""
Source tree enumeration.

Walks the source directory once, up front, and turns every regular file
that survives the ignore pattern into an UploadTask. Uploading never starts
until the walk has finished; any filesystem error aborts the whole run.

Example usage:
    >>> from gcs_publish.uploader import enumerate_files
    >>> tasks = enumerate_files("dist", ignore="*.map")
    >>> [t.destination_key("site/v2") for t in tasks]
    ['site/v2/app.js', 'site/v2/index.html']
"""

import functools
import os
import posixpath
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Pattern, Tuple

from gcs_publish.errors import EnumerationError
from gcs_publish.utils.logging import get_logger, log_function_call

logger = get_logger(__name__)


@dataclass(frozen=True)
class UploadTask:
    """
    One file to upload.

    Attributes:
        absolute_path: Path of the file on the local filesystem
        relative_path: Path relative to the source root, using "/" separators
    """

    absolute_path: str
    relative_path: str

    def destination_key(self, prefix: str = "") -> str:
        """Object key for this file under ``prefix``."""
        if not prefix:
            return self.relative_path
        return posixpath.join(prefix, self.relative_path)


def _bad_pattern(pattern: str, reason: str) -> EnumerationError:
    return EnumerationError(f"invalid ignore pattern {pattern!r}: {reason}")


def _class_char(segment: str, i: int, pattern: str) -> Tuple[str, int]:
    """Read one (possibly escaped) character of a bracket class."""
    if i >= len(segment):
        raise _bad_pattern(pattern, "unterminated character class")
    char = segment[i]
    if char in "-]":
        raise _bad_pattern(pattern, f"unexpected {char!r} in character class")
    if char == "\\":
        i += 1
        if i >= len(segment):
            raise _bad_pattern(pattern, "trailing backslash")
        char = segment[i]
    return char, i + 1


def _translate_class(segment: str, i: int, pattern: str) -> Tuple[str, int]:
    """Translate the bracket class starting after "[" at ``segment[i]``."""
    negate = i < len(segment) and segment[i] in "^!"
    if negate:
        i += 1

    ranges: List[str] = []
    while True:
        if i < len(segment) and segment[i] == "]" and ranges:
            i += 1
            break
        lo, i = _class_char(segment, i, pattern)
        if i < len(segment) and segment[i] == "-":
            hi, i = _class_char(segment, i + 1, pattern)
            if hi < lo:
                raise _bad_pattern(pattern, f"reversed range {lo}-{hi}")
            ranges.append(f"{re.escape(lo)}-{re.escape(hi)}")
        else:
            ranges.append(re.escape(lo))

    return f"[{'^' if negate else ''}{''.join(ranges)}]", i


def _translate_segment(segment: str, pattern: str) -> str:
    parts: List[str] = []
    i = 0
    while i < len(segment):
        char = segment[i]
        i += 1
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char == "[":
            translated, i = _translate_class(segment, i, pattern)
            parts.append(translated)
        elif char == "\\":
            if i >= len(segment):
                raise _bad_pattern(pattern, "trailing backslash")
            parts.append(re.escape(segment[i]))
            i += 1
        else:
            parts.append(re.escape(char))
    return "".join(parts)


@functools.lru_cache(maxsize=32)
def compile_ignore_pattern(pattern: str) -> Tuple[Pattern, ...]:
    """
    Compile a shell glob into one regular expression per path segment.

    Supports ``*``, ``?``, bracket classes (``[abc]``, ``[a-z]``, negated
    with ``^`` or ``!``) and ``\\`` escapes. Segments are matched on their
    own, so wildcards never cross a "/".

    Raises:
        EnumerationError: If the pattern is malformed (unterminated
            class, empty class, trailing backslash)

    Example:
        >>> [p.pattern for p in compile_ignore_pattern("logs/*.log")]
        ['logs', '.*\\\\.log']
    """
    return tuple(
        re.compile(_translate_segment(segment, pattern), re.DOTALL)
        for segment in pattern.split("/")
    )


def matches_ignore(relative_path: str, pattern: Optional[str]) -> bool:
    """
    Report whether ``relative_path`` matches the shell glob ``pattern``.

    Wildcards never cross a "/" boundary: the pattern and the path must have
    the same number of segments and each segment must match on its own. An
    empty or missing pattern matches nothing.

    Raises:
        EnumerationError: If ``pattern`` is malformed

    Example:
        >>> matches_ignore("y.log", "*.log")
        True
        >>> matches_ignore("logs/y.log", "*.log")
        False
        >>> matches_ignore("*.log", "\\\\*.log")
        True
    """
    if not pattern:
        return False

    segments = compile_ignore_pattern(pattern)
    path_parts = relative_path.split("/")
    if len(path_parts) != len(segments):
        return False

    return all(
        segment.fullmatch(part) for segment, part in zip(segments, path_parts)
    )


def _walk(directory: str) -> Iterator[str]:
    """Yield non-directory entries below ``directory`` in lexical order."""
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        raise EnumerationError(f"cannot read directory {directory}: {e}") from e

    for entry in entries:
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
        except OSError as e:
            raise EnumerationError(f"cannot stat {entry.path}: {e}") from e

        if is_dir:
            yield from _walk(entry.path)
        else:
            yield entry.path


def _relative_path(path: str, source_root: str) -> str:
    try:
        relative = os.path.relpath(path, source_root)
    except ValueError as e:
        raise EnumerationError(f"cannot relativize {path} to {source_root}: {e}") from e

    if relative == os.curdir or relative.startswith(os.pardir + os.sep):
        raise EnumerationError(f"{path} is not inside {source_root}")

    return relative.replace(os.sep, "/")


@log_function_call
def enumerate_files(source_root: str, ignore: Optional[str] = None) -> List[UploadTask]:
    """
    List every file under ``source_root`` that does not match ``ignore``.

    Args:
        source_root: Directory to walk
        ignore: Shell glob tested against each path relative to the root

    Returns:
        UploadTasks in depth-first lexical order

    Raises:
        EnumerationError: If the root or any directory below it cannot be
            read, a path cannot be made relative to the root, or ``ignore``
            is malformed
    """
    if ignore:
        # Fail on a malformed glob before anything is walked or uploaded
        compile_ignore_pattern(ignore)

    if not os.path.isdir(source_root):
        raise EnumerationError(f"source is not a directory: {source_root}")

    root = os.path.abspath(source_root)
    tasks: List[UploadTask] = []
    skipped = 0

    for path in _walk(root):
        relative = _relative_path(path, root)
        if matches_ignore(relative, ignore):
            logger.debug(f"Ignoring {relative} (matches {ignore!r})")
            skipped += 1
            continue
        tasks.append(UploadTask(absolute_path=path, relative_path=relative))

    logger.info(f"Found {len(tasks)} file(s) to upload in {source_root} ({skipped} ignored)")
    return tasks
