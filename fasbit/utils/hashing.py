import asyncio
import hashlib
import hmac


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8"))


async def sha256_text_async(text: str) -> str:
    return await asyncio.to_thread(sha256_text, text)


def digests_match(expected_hex: str, actual_hex: str) -> bool:
    return hmac.compare_digest(expected_hex.lower().encode(), actual_hex.lower().encode())
