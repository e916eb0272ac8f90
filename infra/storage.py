"""Async spooling of uploaded evidence bytes to temporary files."""
import asyncio
import logging
import os
from pathlib import Path
from typing import Union
import aiofiles
import aiofiles.tempfile

from infra.errors import StorageError

logger = logging.getLogger(__name__)

TEMP_PREFIX = "threatlens_"


def _safe_suffix(filename_hint: str) -> str:
    """Keep the hint's extension so parsers can claim the spooled file."""
    name = os.path.basename(filename_hint or "")
    _, ext = os.path.splitext(name)
    if not ext or len(ext) > 12 or not ext[1:].isalnum():
        return ".tmp"
    return ext.lower()


async def spool_bytes(content: bytes, filename_hint: str = "") -> str:
    """Write bytes to a named temporary file and return its path.

    The stem of the hint is embedded in the name so that parsers sniffing on
    the file name (e.g. Windows event XML exports) still see it.
    """
    stem = os.path.splitext(os.path.basename(filename_hint or ""))[0]
    stem = "".join(ch for ch in stem if ch.isalnum() or ch in "-_")[:40]
    try:
        async with aiofiles.tempfile.NamedTemporaryFile(
            mode="wb",
            delete=False,
            suffix=_safe_suffix(filename_hint),
            prefix=f"{TEMP_PREFIX}{stem}_" if stem else TEMP_PREFIX,
        ) as temp_file:
            await temp_file.write(content)
            temp_path = temp_file.name
        logger.debug(f"Spooled {len(content)} bytes to {temp_path}")
        return temp_path
    except OSError as e:
        logger.error(f"Error creating temporary file: {e}")
        raise StorageError(f"Failed to spool evidence: {e}") from e


async def write_text_file(file_path: Union[str, Path], content: str, encoding: str = "utf-8") -> None:
    """Write text, creating parent directories."""
    try:
        parent = os.path.dirname(str(file_path))
        if parent:
            os.makedirs(parent, exist_ok=True)
        async with aiofiles.open(file_path, "w", encoding=encoding) as f:
            await f.write(content)
    except OSError as e:
        logger.error(f"Error writing file {file_path}: {e}")
        raise StorageError(f"Failed to write file {file_path}: {e}") from e


async def cleanup_temp_file(file_path: str, delay: float = 0.0) -> None:
    try:
        if delay > 0:
            await asyncio.sleep(delay)
        if os.path.exists(file_path):
            os.unlink(file_path)
            logger.debug(f"Cleaned up temporary file: {file_path}")
    except OSError as e:
        logger.warning(f"Failed to cleanup temporary file {file_path}: {e}")
