"""
naming.py — Identifier and Temp Name Allocation
=================================================
Generates namespaced unique ids (for clients and temp files) and
collision-free file paths inside the working directory.

Temp names look like ``tmp-file-<hex>-<epoch ms>`` with a numeric
``-1``, ``-2``, ... suffix appended while the name is taken.
"""

import logging
import time
import uuid
from pathlib import Path
from typing import Optional, Union

import aiofiles.os

logger = logging.getLogger(__name__)

TMP_FILE_NAMESPACE = "tmp-file"


def generate_id(namespace: str) -> str:
    """
    Generate a process-unique identifier.

    Args:
        namespace: Prefix placed in front of the random part.

    Returns:
        String of the form ``<namespace>-<32 hex chars>``.
    """
    return f"{namespace}-{uuid.uuid4().hex}"


async def ensure_dir(folder: Union[str, Path]) -> Path:
    """Create the folder (and parents) if it does not exist yet."""
    folder = Path(folder)
    if not await aiofiles.os.path.isdir(folder):
        await aiofiles.os.makedirs(folder, exist_ok=True)
        logger.info("Created working directory %s", folder)
    return folder


async def unique_path(
    folder: Union[str, Path], extension: Optional[str] = None
) -> Path:
    """
    Find a path inside ``folder`` that does not currently exist.

    The check is not atomic; callers open the result in exclusive
    create mode so a lost race fails loudly instead of overwriting.

    Args:
        folder: Directory the file should live in.
        extension: Optional suffix (with or without the leading dot),
                   added to the chosen name only.

    Returns:
        Absolute-or-relative Path, matching how ``folder`` was given.
    """
    folder = Path(folder)
    base = f"{generate_id(TMP_FILE_NAMESPACE)}-{int(time.time() * 1000)}"
    if extension and not extension.startswith("."):
        extension = "." + extension

    attempt = 0
    while True:
        name = base if attempt == 0 else f"{base}-{attempt}"
        candidate = folder / name
        if not await aiofiles.os.path.exists(candidate):
            break
        attempt += 1

    if attempt:
        logger.debug("Temp name %s taken %d time(s)", base, attempt)
    if extension:
        candidate = candidate.with_name(candidate.name + extension)
    return candidate
