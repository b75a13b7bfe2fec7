from __future__ import annotations

import os
from pathlib import Path
import uuid

import aiofiles
import aiofiles.os


async def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write text to a sibling temp file, then rename it over ``path``.

    Readers see either the old or the new file, never a partial write.
    """
    await aiofiles.os.makedirs(path.parent, exist_ok=True)

    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        async with aiofiles.open(tmp_path, "w", encoding=encoding) as f:
            await f.write(content)
            await f.flush()
        await aiofiles.os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            try:
                await aiofiles.os.remove(tmp_path)
            except OSError:
                pass


async def read_text(path: Path, *, encoding: str = "utf-8") -> str:
    async with aiofiles.open(path, "r", encoding=encoding) as f:
        return await f.read()
