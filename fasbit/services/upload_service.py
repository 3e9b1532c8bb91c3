import asyncio
import base64
import binascii
import hashlib
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Optional

from fastapi import Request, UploadFile
from loguru import logger

from fasbit.config import Config
from fasbit.errors import FasbitError, IntegrityError, ProtocolError, StateError, StorageError
from fasbit.services.session_store import UploadSession, UploadSessionStore
from fasbit.utils.files import (
    FileTooLargeError,
    commit_file,
    delete_file,
    read_range,
    read_segments,
    write_at,
    write_upload_file,
)
from fasbit.utils.hashing import digests_match, sha256_text_async
from fasbit.utils.media_paths import build_relative_path, mime_for, sanitize_filename
from fasbit.utils.security import verify_client_signature
from fasbit.utils.types import Purpose, SessionState


@dataclass(frozen=True)
class StoredFile:
    relative_path: str
    size: int
    mime: str
    original_name: str
    content_hash: str
    purpose: Purpose
    uploader_id: int


OnStored = Callable[[StoredFile], Awaitable[None]]


def decode_chunk(chunk_b64: str) -> bytes:
    try:
        data = base64.b64decode(chunk_b64, validate=True)
    except (binascii.Error, ValueError):
        raise ProtocolError("Chunk data is not valid base64.")

    # Finalize re-encodes each chunk to check the declared file hash.
    if base64.b64encode(data).decode("ascii") != chunk_b64:
        raise ProtocolError("Chunk data is not canonical base64.")

    return data


def _absorb(encoded_hash, content_hash, segment: bytes) -> None:
    encoded_hash.update(base64.b64encode(segment))
    content_hash.update(segment)


class UploadService:
    def __init__(
            self,
            store: UploadSessionStore,
            media_root: Path,
            public_keys: Mapping[str, bytes],
            chunk_size_cap: int = 1_000_000,
            default_chunk_size: int = 750_000,
            max_upload_size: int = 100 * 1024 * 1024,
            skew_tolerance_ms: int = 15 * 60 * 1000,
    ):
        self.store = store
        self.media_root = media_root
        self.public_keys = public_keys
        self.chunk_size_cap = chunk_size_cap
        self.default_chunk_size = min(default_chunk_size, chunk_size_cap)
        self.max_upload_size = max_upload_size
        self.skew_tolerance_ms = skew_tolerance_ms

    @classmethod
    def from_config(cls, config: Config, store: UploadSessionStore) -> "UploadService":
        return cls(
            store=store,
            media_root=config.MEDIA_ROOT,
            public_keys=config.PUBLIC_KEYS,
            chunk_size_cap=config.CHUNK_SIZE_CAP,
            default_chunk_size=config.DEFAULT_CHUNK_SIZE,
            max_upload_size=config.MAX_UPLOAD_SIZE,
            skew_tolerance_ms=config.SKEW_TOLERANCE_MS,
        )

    async def start(
            self,
            client_id: str,
            timestamp: int,
            signature_b64: str,
            original_name: str,
            total_chunks: int,
            file_sha256: str,
            purpose: Purpose,
            uploader_id: int,
            chunk_size: Optional[int] = None,
    ) -> UploadSession:
        verify_client_signature(
            self.public_keys,
            client_id,
            timestamp,
            signature_b64,
            original_name,
            now_ms=self.store.clock(),
            skew_tolerance_ms=self.skew_tolerance_ms,
        )

        try:
            purpose = Purpose(purpose)
            name = sanitize_filename(original_name)
        except ValueError as e:
            raise ProtocolError(str(e)) from e

        chunk_size = self.default_chunk_size if chunk_size is None else chunk_size
        if chunk_size <= 0 or chunk_size > self.chunk_size_cap:
            raise ProtocolError(f"chunkSize must be between 1 and {self.chunk_size_cap}.")

        if total_chunks <= 0:
            raise ProtocolError("totalChunks must be positive.")

        if total_chunks * chunk_size > self.max_upload_size:
            raise ProtocolError("Upload exceeds the maximum allowed size.")

        try:
            session = await self.store.create(
                uploader_id=uploader_id,
                purpose=purpose,
                original_name=name,
                total_chunks=total_chunks,
                chunk_size=chunk_size,
                expected_file_hash=file_sha256,
                client_id=client_id,
            )
        except OSError as e:
            logger.exception("Could not create temp file for upload from client '{}'", client_id)
            raise StorageError("Failed to start upload.") from e

        logger.info(
            "Chunked upload {} started: client={} uploader={} purpose={} name={} chunks={}",
            session.upload_id, client_id, uploader_id, purpose, name, total_chunks,
        )
        return session

    async def write_chunk(self, upload_id: str, chunk_index: int, chunk_sha256: str, chunk_b64: str) -> int:
        session = await self.store.get(upload_id)

        async with session.lock:
            if session.state != SessionState.OPEN:
                raise StateError(f"Upload is {session.state}, no more chunks accepted.")

            if not 0 <= chunk_index < session.total_chunks:
                raise ProtocolError(f"Invalid chunkIndex. Must be between 0 and {session.total_chunks - 1}.")

            actual = await sha256_text_async(chunk_b64)
            if not digests_match(chunk_sha256, actual):
                logger.warning(
                    "Chunk checksum mismatch for upload {} chunk {}: expected {}, got {}",
                    upload_id, chunk_index, chunk_sha256, actual,
                )
                raise IntegrityError("Chunk checksum mismatch.")

            if not chunk_b64:
                raise ProtocolError("Chunk data is empty.")

            if len(chunk_b64) > session.chunk_size:
                raise ProtocolError(f"Chunk exceeds the negotiated chunkSize of {session.chunk_size}.")

            data = await asyncio.to_thread(decode_chunk, chunk_b64)

            if chunk_index in session.received:
                await self._check_duplicate(session, chunk_index, data)
                self.store.touch(session)
                return len(session.received)

            await self._place(session, chunk_index, data)

            session.received.add(chunk_index)
            session.chunk_lengths[chunk_index] = len(data)
            self.store.touch(session)

        logger.debug(
            "Upload {} received chunk {}/{} ({} bytes)",
            upload_id, chunk_index + 1, session.total_chunks, len(data),
        )
        return len(session.received)

    async def _place(self, session: UploadSession, chunk_index: int, data: bytes) -> None:
        """
        Write a chunk at its final position in the temp file.

        Every chunk but the last decodes to the same size, so chunk ``i`` lives
        at ``i * stride`` whatever order the chunks arrive in. A last chunk
        that shows up before any other is held in memory until the stride is
        known.
        """
        writes = []

        if chunk_index < session.last_index:
            if session.stride is None:
                tail = session.pending_tail
                if tail is not None and len(tail) > len(data):
                    raise ProtocolError(f"Chunk {chunk_index} is shorter than the final chunk.")

                writes.append((chunk_index * len(data), data))
                if tail is not None:
                    writes.append((session.last_index * len(data), tail))

            elif len(data) != session.stride:
                raise ProtocolError(
                    f"Chunk {chunk_index} decodes to {len(data)} bytes; earlier chunks decode to {session.stride}."
                )

            else:
                writes.append((session.offset_of(chunk_index), data))

        elif session.total_chunks > 1 and session.stride is None:
            session.pending_tail = data
            return

        elif session.stride is not None and len(data) > session.stride:
            raise ProtocolError(f"Final chunk decodes to {len(data)} bytes, more than the {session.stride} of the others.")

        else:
            writes.append((session.offset_of(chunk_index), data))

        try:
            for offset, payload in writes:
                await write_at(session.temp_path, offset, payload)
        except OSError as e:
            await self.store.mark_failed(session, f"chunk write failed: {e}")
            raise StorageError("Failed to store chunk.") from e

        if session.stride is None and chunk_index < session.last_index:
            session.stride = len(data)
            session.pending_tail = None

    async def _check_duplicate(self, session: UploadSession, chunk_index: int, data: bytes) -> None:
        if chunk_index == session.last_index and session.pending_tail is not None:
            if session.pending_tail != data:
                logger.warning("Upload {} chunk {} resent with different content", session.upload_id, chunk_index)
                raise IntegrityError(f"Chunk {chunk_index} was already received with different content.")
            return

        try:
            stored = await read_range(session.temp_path, session.offset_of(chunk_index), session.chunk_lengths[chunk_index])
        except OSError as e:
            await self.store.mark_failed(session, f"chunk read failed: {e}")
            raise StorageError("Failed to read stored chunk.") from e

        if stored != data:
            logger.warning("Upload {} chunk {} resent with different content", session.upload_id, chunk_index)
            raise IntegrityError(f"Chunk {chunk_index} was already received with different content.")

    async def complete(self, upload_id: str, on_stored: Optional[OnStored] = None) -> StoredFile:
        session = await self.store.get(upload_id)

        async with session.lock:
            self.store.begin_complete(session)

            if not session.is_fully_received:
                missing = session.missing_chunks()
                self.store.reopen(session)
                raise ProtocolError(f"Missing chunks: {missing[:50]}")

            try:
                stored = await self._finalize(session)
                if on_stored is not None:
                    await on_stored(stored)

            except FasbitError as e:
                await self.store.mark_failed(session, e.message)
                raise

            except Exception as e:
                logger.exception("Finalizing upload {} failed", upload_id)
                await self.store.mark_failed(session, f"finalize failed: {e}")
                raise StorageError("Failed to store upload.") from e

            self.store.mark_done(session)

        logger.info(
            "Chunked upload {} completed: {} ({} bytes, {})",
            upload_id, stored.relative_path, stored.size, stored.mime,
        )
        return stored

    async def _finalize(self, session: UploadSession) -> StoredFile:
        encoded_hash = hashlib.sha256()
        content_hash = hashlib.sha256()
        size = 0

        lengths = [session.chunk_lengths[i] for i in range(session.total_chunks)]
        async for segment in read_segments(session.temp_path, lengths):
            await asyncio.to_thread(_absorb, encoded_hash, content_hash, segment)
            size += len(segment)

        if not digests_match(session.expected_file_hash, encoded_hash.hexdigest()):
            logger.warning(
                "Final SHA256 mismatch on upload {}: expected {}, got {}",
                session.upload_id, session.expected_file_hash, encoded_hash.hexdigest(),
            )
            raise IntegrityError("Final checksum mismatch.")

        digest = content_hash.hexdigest()
        relative_path = build_relative_path(session.purpose, session.uploader_id, digest, session.original_name)

        created = await commit_file(session.temp_path, self.media_root.joinpath(*relative_path.split("/")))
        if not created:
            logger.info("Upload {} deduplicated onto existing {}", session.upload_id, relative_path)

        return StoredFile(
            relative_path=relative_path,
            size=size,
            mime=mime_for(session.original_name),
            original_name=session.original_name,
            content_hash=digest,
            purpose=session.purpose,
            uploader_id=session.uploader_id,
        )

    async def status(self, upload_id: str) -> UploadSession:
        return await self.store.get(upload_id)

    async def store_file(
            self,
            client_id: str,
            timestamp: int,
            signature_b64: str,
            purpose: Purpose,
            uploader_id: int,
            file: UploadFile,
            on_stored: Optional[OnStored] = None,
    ) -> StoredFile:
        """Single-request upload of a small file, signed the same way as a chunked one."""
        original_name = file.filename or ""

        verify_client_signature(
            self.public_keys,
            client_id,
            timestamp,
            signature_b64,
            original_name,
            now_ms=self.store.clock(),
            skew_tolerance_ms=self.skew_tolerance_ms,
        )

        try:
            purpose = Purpose(purpose)
            name = sanitize_filename(original_name)
        except ValueError as e:
            raise ProtocolError(str(e)) from e

        temp_path = self.store.temp_dir / f"{secrets.token_hex(16)}.upload"
        try:
            try:
                size, digest = await write_upload_file(file, temp_path, self.max_upload_size)
            except FileTooLargeError as e:
                raise ProtocolError("Upload exceeds the maximum allowed size.") from e

            if size == 0:
                raise ProtocolError("Uploaded file is empty.")

            relative_path = build_relative_path(purpose, uploader_id, digest, name)
            created = await commit_file(temp_path, self.media_root.joinpath(*relative_path.split("/")))

            stored = StoredFile(
                relative_path=relative_path,
                size=size,
                mime=mime_for(name),
                original_name=name,
                content_hash=digest,
                purpose=purpose,
                uploader_id=uploader_id,
            )
            if on_stored is not None:
                await on_stored(stored)

        except FasbitError:
            raise

        except Exception as e:
            logger.exception("Single upload from client '{}' failed", client_id)
            raise StorageError("Failed to store upload.") from e

        finally:
            await delete_file(temp_path)

        logger.info(
            "Upload stored: {} ({} bytes, {}, {})",
            relative_path, size, stored.mime, "new" if created else "deduplicated",
        )
        return stored


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service
