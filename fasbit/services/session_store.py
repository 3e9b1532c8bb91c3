import asyncio
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from loguru import logger

from fasbit.errors import NotFoundError, StateError
from fasbit.utils.files import create_empty_file, delete_file
from fasbit.utils.types import Purpose, SessionState

Clock = Callable[[], int]


def system_clock() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class UploadSession:
    upload_id: str
    uploader_id: int
    purpose: Purpose
    original_name: str
    total_chunks: int
    chunk_size: int
    expected_file_hash: str
    temp_path: Path
    created_at: int
    last_activity_at: int
    client_id: Optional[str] = None
    state: SessionState = SessionState.OPEN
    received: Set[int] = field(default_factory=set)
    chunk_lengths: Dict[int, int] = field(default_factory=dict)
    # decoded size of every non-final chunk, learned from the first one written
    stride: Optional[int] = None
    # final chunk that arrived before the stride was known
    pending_tail: Optional[bytes] = None
    failure_reason: Optional[str] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def last_index(self) -> int:
        return self.total_chunks - 1

    def offset_of(self, chunk_index: int) -> int:
        return chunk_index * (self.stride or 0)

    @property
    def is_fully_received(self) -> bool:
        return len(self.received) == self.total_chunks

    def missing_chunks(self) -> List[int]:
        return [i for i in range(self.total_chunks) if i not in self.received]


class UploadSessionStore:
    """
    In-process registry of chunked uploads.

    The map itself is guarded by ``_lock``; every mutation of a single session
    happens under that session's own lock, so uploads proceed in parallel.
    """

    def __init__(self, temp_dir: Path, ttl_ms: int, clock: Clock = system_clock):
        self.temp_dir = temp_dir
        self.ttl_ms = ttl_ms
        self.clock = clock
        self._sessions: Dict[str, UploadSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def create(
            self,
            uploader_id: int,
            purpose: Purpose,
            original_name: str,
            total_chunks: int,
            chunk_size: int,
            expected_file_hash: str,
            client_id: Optional[str] = None,
    ) -> UploadSession:
        upload_id = secrets.token_hex(16)
        temp_path = self.temp_dir / f"{upload_id}.part"
        await create_empty_file(temp_path)

        now = self.clock()
        session = UploadSession(
            upload_id=upload_id,
            uploader_id=uploader_id,
            purpose=purpose,
            original_name=original_name,
            total_chunks=total_chunks,
            chunk_size=chunk_size,
            expected_file_hash=expected_file_hash.lower(),
            temp_path=temp_path,
            created_at=now,
            last_activity_at=now,
            client_id=client_id,
        )

        async with self._lock:
            self._sessions[upload_id] = session

        return session

    async def get(self, upload_id: str) -> UploadSession:
        async with self._lock:
            session = self._sessions.get(upload_id)

        if session is None:
            raise NotFoundError("Unknown uploadId.")

        return session

    def touch(self, session: UploadSession) -> None:
        session.last_activity_at = self.clock()

    def begin_complete(self, session: UploadSession) -> None:
        """Move ``open -> finalizing``. The caller holds ``session.lock``."""
        if session.state != SessionState.OPEN:
            raise StateError(f"Upload is {session.state}, cannot complete.")

        session.state = SessionState.FINALIZING
        self.touch(session)

    def reopen(self, session: UploadSession) -> None:
        if session.state == SessionState.FINALIZING:
            session.state = SessionState.OPEN
            self.touch(session)

    def mark_done(self, session: UploadSession) -> None:
        if session.state != SessionState.FINALIZING:
            raise StateError(f"Upload is {session.state}, cannot mark done.")

        session.state = SessionState.DONE
        self.touch(session)

    async def mark_failed(self, session: UploadSession, reason: str) -> None:
        if session.state.is_terminal:
            return

        session.state = SessionState.FAILED
        session.failure_reason = reason
        session.pending_tail = None
        self.touch(session)
        await delete_file(session.temp_path)
        logger.warning("Upload {} failed: {}", session.upload_id, reason)

    async def sweep(self, now: Optional[int] = None) -> List[str]:
        """Fail idle sessions and forget terminal ones past the TTL."""
        now = self.clock() if now is None else now
        cutoff = now - self.ttl_ms

        async with self._lock:
            candidates = [s for s in self._sessions.values() if s.last_activity_at < cutoff]

        evicted: List[str] = []
        for session in candidates:
            async with session.lock:
                if session.last_activity_at >= cutoff:
                    continue

                if not session.state.is_terminal:
                    await self.mark_failed(session, "expired")
                    evicted.append(session.upload_id)

            async with self._lock:
                self._sessions.pop(session.upload_id, None)

        if evicted:
            logger.info("Swept {} expired upload session(s)", len(evicted))

        return evicted

    async def run_sweeper(self, interval_ms: int) -> None:
        while True:
            await asyncio.sleep(interval_ms / 1000)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Upload session sweep failed")

    async def shutdown(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for session in sessions:
            async with session.lock:
                await self.mark_failed(session, "server shutdown")
