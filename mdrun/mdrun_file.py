from __future__ import annotations

import errno
import logging
import os
import shutil
import tempfile

from mdrun.mdrun_datatypes import DocumentReadError, WriteBackError

logger = logging.getLogger(__name__)

TEMP_PREFIX = "md_exec_out_"
# Rename failures that the copy fallback can work around
_FALLBACK_ERRNOS = (errno.EXDEV, errno.EACCES, errno.EPERM)


def read_document(path: str) -> str:
    if not os.path.isfile(path):
        raise DocumentReadError(path)
    try:
        # newline="" keeps CRLF documents byte-identical on write-back
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise DocumentReadError(path, str(e)) from e


def write_document(path: str, text: str) -> None:
    """Replace path with text atomically: temp file in the same directory, then rename."""
    directory = os.path.dirname(os.path.abspath(path))
    ext = os.path.splitext(path)[1]
    try:
        fd, temp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=ext, dir=directory)
    except OSError as e:
        logger.error(f"Could not create temporary file next to {path}: {e}")
        raise WriteBackError(path, str(e)) from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        _move_into_place(temp_path, path)
    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        raise WriteBackError(path, str(e)) from e
    finally:
        if os.path.exists(temp_path):
            os.unlink(temp_path)


def _move_into_place(temp_path: str, path: str) -> None:
    try:
        os.replace(temp_path, path)
        return
    except OSError as e:
        if e.errno not in _FALLBACK_ERRNOS:
            raise
        logger.warning(f"Atomic move to {path} failed ({e}), falling back to copy.")
    shutil.copyfile(temp_path, path)
    os.unlink(temp_path)


async def run_file(path: str, *, executor=None, submit=None, processor=None) -> str:
    """Process the document at path in place; returns the new text."""
    from mdrun.mdrun_scanner import DocumentProcessor  # scanner pulls in the executor stack

    text = read_document(path)
    processor = processor or DocumentProcessor(executor, document_path=path, submit=submit)
    result = await processor.process_text(text)
    write_document(path, result)
    logger.info(f"Markdown processing complete. Output written to {path}")
    return result
