import time
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from fasbit.config import Config
from fasbit.utils.chunking import PreparedUpload, sign_upload
from fasbit.services.session_store import UploadSessionStore
from fasbit.services.upload_service import UploadService

CLIENT_ID = "client-1"


class FakeClock:
    def __init__(self, now: int = 1_730_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def raw_public_key(private_key: Ed25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


@pytest.fixture
def private_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def store(media_root: Path, clock: FakeClock) -> UploadSessionStore:
    return UploadSessionStore(media_root / ".tmp", ttl_ms=30 * 60 * 1000, clock=clock)


@pytest.fixture
def upload_service(store: UploadSessionStore, media_root: Path, private_key: Ed25519PrivateKey) -> UploadService:
    return UploadService(
        store=store,
        media_root=media_root,
        public_keys={CLIENT_ID: raw_public_key(private_key)},
        chunk_size_cap=1_000_000,
        default_chunk_size=750_000,
    )


@pytest.fixture
def config(tmp_path: Path, media_root: Path, private_key: Ed25519PrivateKey) -> Config:
    return Config(
        MEDIA_ROOT=media_root,
        PUBLIC_KEYS={CLIENT_ID: raw_public_key(private_key)},
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'fasbit.db'}",
        JWT_SECRET="test-secret",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def start_kwargs(private_key: Ed25519PrivateKey, clock: FakeClock):
    """Keyword arguments for ``UploadService.start`` signed at the fake clock's time."""

    def make(
            prepared: PreparedUpload,
            original_name: str = "hi.txt",
            purpose: str = "chat",
            uploader_id: int = 7,
            chunk_size: int = 100,
            timestamp: int | None = None,
            key: Ed25519PrivateKey | None = None,
    ) -> dict:
        timestamp = clock() if timestamp is None else timestamp
        return dict(
            client_id=CLIENT_ID,
            timestamp=timestamp,
            signature_b64=sign_upload(key or private_key, timestamp, original_name),
            original_name=original_name,
            total_chunks=len(prepared.chunks),
            file_sha256=prepared.file_sha256,
            purpose=purpose,
            uploader_id=uploader_id,
            chunk_size=chunk_size,
        )

    return make


@pytest.fixture
def start_body(private_key: Ed25519PrivateKey):
    """JSON body for ``POST /upload-chunk-start`` signed at wall-clock time."""

    def make(
            prepared: PreparedUpload,
            original_name: str = "hi.txt",
            purpose: str = "chat",
            uploader_id: int = 7,
            chunk_size: int = 100,
            key: Ed25519PrivateKey | None = None,
    ) -> dict:
        timestamp = int(time.time() * 1000)
        return {
            "clientId": CLIENT_ID,
            "timestamp": timestamp,
            "signatureBase64": sign_upload(key or private_key, timestamp, original_name),
            "originalName": original_name,
            "totalChunks": len(prepared.chunks),
            "fileSha256": prepared.file_sha256,
            "purpose": purpose,
            "uploaderId": uploader_id,
            "chunkSize": chunk_size,
        }

    return make
