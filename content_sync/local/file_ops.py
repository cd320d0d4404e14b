"""
Async file helpers behind the file-backed fallback store.

Every failure surfaces as ``FallbackStoreError`` naming the operation and
path. JSON writes land in a sibling temp file first and are then renamed
over the target, so another context reading the same directory sees either
the old list or the new one.
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import FallbackStoreError


async def ensure_directory(path: Path) -> None:
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as exc:
        raise FallbackStoreError("create_directory", str(path), exc) from exc


async def read_text(path: Path) -> str | None:
    """Return the file's text, or None when it is missing."""
    try:
        async with aiofiles.open(path, encoding="utf-8") as handle:
            return await handle.read()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise FallbackStoreError("read_text", str(path), exc) from exc


async def read_json(path: Path) -> Any | None:
    """Decode a JSON file. Missing and blank files both read as None."""
    text = await read_text(path)
    if text is None or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise FallbackStoreError("parse_json", str(path), exc) from exc


async def write_json_atomic(path: Path, data: Any) -> None:
    """Replace ``path`` with ``data`` serialized as JSON."""
    try:
        payload = json.dumps(data, default=str)
    except (TypeError, ValueError) as exc:
        raise FallbackStoreError("serialize_json", str(path), exc) from exc
    await ensure_directory(path.parent)

    fd, staging = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
    os.close(fd)
    try:
        async with aiofiles.open(staging, "w", encoding="utf-8") as handle:
            await handle.write(payload)
            await handle.flush()
            os.fsync(handle.fileno())
        await aiofiles.os.replace(staging, path)
    except OSError as exc:
        with contextlib.suppress(OSError):
            await aiofiles.os.remove(staging)
        raise FallbackStoreError("write_json", str(path), exc) from exc


async def remove_file(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise FallbackStoreError("remove", str(path), exc) from exc
