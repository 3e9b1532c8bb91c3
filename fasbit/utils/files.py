import asyncio
import hashlib
import os
from pathlib import Path
from typing import AsyncIterator, Iterable, Tuple

import aiofiles
import aiofiles.os
from fastapi import UploadFile
from loguru import logger


class FileTooLargeError(Exception):
    pass


SEM = asyncio.Semaphore(int(os.getenv("MAX_CONCURRENT_IO", "16")))


async def create_empty_file(path: Path) -> None:
    async with SEM:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "xb"):
            pass


async def write_at(path: Path, offset: int, data: bytes) -> None:
    async with SEM:
        async with aiofiles.open(path, "r+b") as f:
            await f.seek(offset)
            await f.write(data)
            await f.flush()


async def write_upload_file(file: UploadFile, path: Path, max_file_size: int) -> Tuple[int, str]:
    """Stream an uploaded file to ``path`` and return its size and SHA-256."""
    digest = hashlib.sha256()
    size = 0

    async with SEM:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "xb") as f:
            while chunk := await file.read(1024 * 1024):
                size += len(chunk)
                if size > max_file_size:
                    break
                digest.update(chunk)
                await f.write(chunk)

    if size > max_file_size:
        await delete_file(path)
        raise FileTooLargeError(f"File exceeds max file size: '{file.filename}'")

    return size, digest.hexdigest()


async def read_range(path: Path, offset: int, length: int) -> bytes:
    async with SEM:
        async with aiofiles.open(path, "rb") as f:
            await f.seek(offset)
            return await f.read(length)


async def read_segments(path: Path, lengths: Iterable[int]) -> AsyncIterator[bytes]:
    async with SEM:
        async with aiofiles.open(path, "rb") as f:
            for length in lengths:
                data = await f.read(length)
                if len(data) != length:
                    raise EOFError(f"Short read from '{path.name}': wanted {length} bytes, got {len(data)}.")
                yield data


async def read_file(path: Path) -> bytes:
    async with SEM:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()


def _link_or_keep(src: Path, dst: Path) -> bool:
    dst.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.link(src, dst)
    except FileExistsError:
        src.unlink(missing_ok=True)
        return False
    except OSError:
        # filesystem without hard links
        if dst.exists():
            src.unlink(missing_ok=True)
            return False
        os.replace(src, dst)
        return True

    src.unlink()
    return True


async def commit_file(src: Path, dst: Path) -> bool:
    """
    Atomically publish ``src`` at ``dst`` without clobbering.

    Returns False when ``dst`` already existed; the existing file is kept and
    ``src`` is discarded either way.
    """
    async with SEM:
        return await asyncio.to_thread(_link_or_keep, src, dst)


async def delete_file(path: Path) -> bool:
    async with SEM:
        try:
            await aiofiles.os.remove(path)
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning("Could not delete '{}': {}", path, e)
            return False
