import base64
from dataclasses import dataclass
from typing import List

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from fasbit.utils.hashing import sha256_text
from fasbit.utils.security import signed_message


@dataclass(frozen=True)
class Chunk:
    index: int
    data_base64: str
    sha256: str


@dataclass(frozen=True)
class PreparedUpload:
    chunks: List[Chunk]
    file_sha256: str


def prepare_chunks(data: bytes, chunk_size: int) -> PreparedUpload:
    """
    Split ``data`` the way the mobile client does: base64 the whole payload,
    cut the text into ``chunk_size`` pieces and hash each piece and the whole.

    ``chunk_size`` is rounded down to a multiple of 4 so every piece decodes on
    its own.
    """
    step = chunk_size - chunk_size % 4
    if step <= 0:
        raise ValueError("chunk_size must be at least 4.")

    encoded = base64.b64encode(data).decode("ascii")
    pieces = [encoded[i:i + step] for i in range(0, len(encoded), step)] or [""]

    return PreparedUpload(
        chunks=[Chunk(index=i, data_base64=p, sha256=sha256_text(p)) for i, p in enumerate(pieces)],
        file_sha256=sha256_text(encoded),
    )


def sign_upload(private_key: Ed25519PrivateKey, timestamp: int, original_name: str) -> str:
    return base64.b64encode(private_key.sign(signed_message(timestamp, original_name))).decode("ascii")
