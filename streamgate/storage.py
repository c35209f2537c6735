"""
Byte-addressable media storage.

The streaming core only needs ``exists``, ``size`` and ``open`` on relative paths;
``put_text`` and ``url`` cover the persistence and addressing of generated
playlists. ``LocalFileStore`` keeps everything under one root directory.
"""

import logging
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol

import aiofiles
import aiofiles.os
from aiofiles.threadpool.binary import AsyncBufferedReader

from streamgate.configs import settings

logger = logging.getLogger(__name__)


class FileStore(Protocol):
    async def exists(self, path: str) -> bool: ...

    async def size(self, path: str) -> int: ...

    async def open(self, path: str) -> AsyncBufferedReader: ...

    async def put_text(self, path: str, content: str) -> None: ...

    async def read_text(self, path: str) -> str: ...

    def url(self, path: str, base_url: Optional[str] = None) -> str: ...


class LocalFileStore:
    def __init__(self, root: str, cdn_base_url: Optional[str] = None, public_base_url: Optional[str] = None):
        self.root = Path(root)
        self.cdn_base_url = cdn_base_url.rstrip("/") if cdn_base_url else None
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else ""

    @classmethod
    def from_settings(cls) -> "LocalFileStore":
        return cls(settings.media_root, settings.cdn_base_url, settings.public_base_url)

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Path escapes the media store: {path}")
        return self.root.joinpath(*relative.parts)

    async def exists(self, path: str) -> bool:
        try:
            return await aiofiles.os.path.isfile(self._resolve(path))
        except ValueError:
            logger.warning(f"Rejected storage path {path!r}")
            return False

    async def size(self, path: str) -> int:
        return await aiofiles.os.path.getsize(self._resolve(path))

    async def open(self, path: str) -> AsyncBufferedReader:
        return await aiofiles.open(self._resolve(path), "rb")

    async def put_text(self, path: str, content: str) -> None:
        file_path = self._resolve(path)
        temp_path = file_path.with_suffix(".tmp")
        await aiofiles.os.makedirs(file_path.parent, exist_ok=True)

        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(content)
        # readers never see a half-written playlist
        await aiofiles.os.rename(temp_path, file_path)

    async def read_text(self, path: str) -> str:
        async with aiofiles.open(self._resolve(path), "r", encoding="utf-8") as f:
            return await f.read()

    def url(self, path: str, base_url: Optional[str] = None) -> str:
        """Public URL of a stored file, rewritten to the CDN origin when one is configured."""
        if self.cdn_base_url:
            return f"{self.cdn_base_url}/{path}"
        base = self.public_base_url or (base_url or "").rstrip("/")
        return f"{base}/streaming/{path}"
