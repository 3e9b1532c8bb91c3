import argparse
import asyncio
import base64
import time
from pathlib import Path

import httpx
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from fasbit.utils.chunking import prepare_chunks, sign_upload


async def upload_file(
        base_url: str,
        file_path: Path,
        client_id: str,
        secret_key_b64: str,
        uploader_id: int,
        purpose: str,
        chunk_size: int = 750_000,
        retries: int = 3,
) -> dict:
    # a 64-byte NaCl secret key is seed + public key
    private_key = Ed25519PrivateKey.from_private_bytes(base64.b64decode(secret_key_b64)[:32])

    print(f"[upload] reading {file_path}")
    prepared = prepare_chunks(file_path.read_bytes(), chunk_size)
    print(f"[upload] chunks={len(prepared.chunks)} file_sha256={prepared.file_sha256[:16]}...")

    timestamp = int(time.time() * 1000)

    async with httpx.AsyncClient(base_url=base_url, timeout=60) as client:
        r = await client.post("/upload-chunk-start", json={
            "clientId": client_id,
            "timestamp": timestamp,
            "signatureBase64": sign_upload(private_key, timestamp, file_path.name),
            "originalName": file_path.name,
            "totalChunks": len(prepared.chunks),
            "fileSha256": prepared.file_sha256,
            "purpose": purpose,
            "uploaderId": uploader_id,
            "chunkSize": chunk_size,
        })
        r.raise_for_status()
        upload_id = r.json()["uploadId"]
        print(f"[upload] session={upload_id}")

        for chunk in prepared.chunks:
            for attempt in range(1, retries + 1):
                r = await client.post("/upload-chunk", json={
                    "uploadId": upload_id,
                    "chunkIndex": chunk.index,
                    "chunkSha256": chunk.sha256,
                    "chunkDataBase64": chunk.data_base64,
                })
                if r.status_code < 500:
                    break
                print(f"[chunk {chunk.index}] attempt {attempt} failed: {r.status_code} {r.text}")
            r.raise_for_status()
            print(f"[chunk {chunk.index}] ok received={r.json()['received']}")

        r = await client.post("/upload-chunk-complete", json={"uploadId": upload_id})
        r.raise_for_status()

    result = r.json()["file"]
    print(f"[upload] done path={result['relativePath']} size={result['size']} mime={result['mime']}")
    return result


if __name__ == '__main__':
    parser = argparse.ArgumentParser(
        description="Upload a file to a fasbit server using the signed chunked upload protocol."
    )
    parser.add_argument("file", type=Path, help="File to upload.")
    parser.add_argument("--url", default="http://localhost:8000", help="Server base URL.")
    parser.add_argument("--client-id", required=True, help="Client id registered on the server.")
    parser.add_argument("--secret-key", required=True, help="Base64 Ed25519 secret key for the client.")
    parser.add_argument("--uploader-id", type=int, required=True, help="User id the upload belongs to.")
    parser.add_argument("--purpose", choices=["chat", "avatar"], default="chat")
    parser.add_argument("--chunk-size", type=int, default=750_000, help="Base64 characters per chunk.")
    args = parser.parse_args()

    asyncio.run(upload_file(
        args.url,
        args.file,
        client_id=args.client_id,
        secret_key_b64=args.secret_key,
        uploader_id=args.uploader_id,
        purpose=args.purpose,
        chunk_size=args.chunk_size,
    ))
