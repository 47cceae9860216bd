from typing import BinaryIO, Iterator, List, Union
import fcntl
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from io import BytesIO
from pathlib import Path
from ..core.logging import get_logger

"""Filesystem helpers for naming, writing and listing uploaded images.

Every access to a stored file goes through a whole-file `flock`, so writers
and thumbnail readers coordinate even across separate processes sharing the
same upload directory.
"""

logger = get_logger(__name__)

COPY_CHUNK_SIZE = 64 * 1024
PLACEHOLDER_PREFIX = "untitled@"

# MIME subtypes whose usual extension differs from the subtype itself
SUBTYPE_EXTENSIONS = {
    "jpeg": "jpg",
    "pjpeg": "jpg",
    "svg+xml": "svg",
    "tiff": "tif",
    "vnd.microsoft.icon": "ico",
    "vnd.wap.wbmp": "wbmp",
    "*": "bin",
}

_stamp_lock = threading.Lock()
_last_stamp = datetime.min.replace(tzinfo=timezone.utc)


def extension_for(content_type: str) -> str:
    """Pick a file extension for a MIME type, `bin` for anything not `image/*`."""
    essence = (content_type or "").split(";", 1)[0].strip()
    parts = essence.split("/")
    if not essence.lower().startswith("image/") or len(parts) != 2 or not parts[1]:
        return "bin"
    subtype = parts[1]
    return SUBTYPE_EXTENSIONS.get(subtype.lower(), subtype)


def _placeholder_stamp() -> str:
    global _last_stamp
    with _stamp_lock:
        now = datetime.now(timezone.utc)
        if now <= _last_stamp:
            now = _last_stamp + timedelta(microseconds=1)
        _last_stamp = now
    return now.strftime("%y%m%d%H%M%S%f")


def normalize_image_filename(filename: str, content_type: str) -> str:
    """Make sure an image filename is usable on disk.

    A name without an extension gets one inferred from `content_type`; a
    missing name is replaced with an `untitled@<timestamp>` placeholder, also
    with an inferred extension. Names that already have an extension are
    returned unchanged.
    """
    if not filename or not filename.strip():
        result = f"{PLACEHOLDER_PREFIX}{_placeholder_stamp()}.{extension_for(content_type)}"
    elif "." not in filename:
        result = f"{filename}.{extension_for(content_type)}"
    else:
        result = filename

    logger.debug("normalize_image_filename(%r, %r) => %r", filename, content_type, result)
    return result


@contextmanager
def file_lock(handle: BinaryIO, *, exclusive: bool) -> Iterator[None]:
    """Hold a whole-file advisory lock on an open handle for the block.

    Acquisition errors propagate. Release errors are only logged, so they
    never mask the outcome of the guarded block.
    """
    kind = "exclusive" if exclusive else "shared"
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
    except OSError as e:
        logger.warning("I/O ERROR %r while placing %s lock on %s", str(e), kind, handle.name)
        raise
    try:
        yield
    finally:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            logger.warning("I/O ERROR %r while freeing %s lock on %s", str(e), kind, handle.name)


def _open_untruncated(path: str, flags: int) -> int:
    return os.open(path, flags & ~os.O_TRUNC, 0o644)


def write_image_data(source: Union[bytes, BinaryIO], target: Union[str, Path]) -> int:
    """Save image data to `target` under an exclusive lock.

    The file is created if absent and truncated only once the lock is held,
    so concurrent writers to the same path never interleave. Returns the
    number of bytes written; raises `OSError` on any I/O failure and
    `ValueError` for a path the OS cannot represent (e.g. a NUL byte).
    """
    target = Path(target)
    if isinstance(source, (bytes, bytearray, memoryview)):
        source = BytesIO(source)

    try:
        fh = open(target, "wb", opener=_open_untruncated)
    except (OSError, ValueError) as e:
        logger.warning("I/O ERROR %r while opening %s for write", str(e), target)
        raise

    with fh:
        with file_lock(fh, exclusive=True):
            try:
                fh.truncate(0)
                written = 0
                while True:
                    chunk = source.read(COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    fh.write(chunk)
                    written += len(chunk)
                # Buffered bytes must reach the file before the lock is released
                fh.flush()
            except OSError as e:
                logger.warning("I/O ERROR %r while saving image data to %s", str(e), target)
                raise

    logger.debug("write_image_data(%s) => %d bytes", target, written)
    return written


def list_uploads(upload_root: Union[str, Path]) -> List[str]:
    """Return the sorted entry names of the upload directory.

    Names that cannot be represented as UTF-8 are skipped.
    """
    names: List[str] = []
    with os.scandir(os.fsencode(upload_root)) as entries:
        for entry in entries:
            try:
                names.append(entry.name.decode("utf-8"))
            except UnicodeDecodeError:
                logger.warning("UTF-8 incompatible file name %r is ignored", entry.name)
    names.sort()
    return names
