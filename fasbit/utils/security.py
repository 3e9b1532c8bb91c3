import base64
import binascii
from typing import Mapping

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from loguru import logger

from fasbit.errors import AuthError


def signed_message(timestamp: int, original_name: str) -> bytes:
    return f"{timestamp}:{original_name}".encode("utf-8")


def verify_client_signature(
        public_keys: Mapping[str, bytes],
        client_id: str,
        timestamp: int,
        signature_b64: str,
        original_name: str,
        now_ms: int,
        skew_tolerance_ms: int,
) -> None:
    key_bytes = public_keys.get(client_id)
    if key_bytes is None:
        logger.warning("Unknown clientId '{}'", client_id)
        raise AuthError("Invalid signature or client.")

    if abs(now_ms - timestamp) > skew_tolerance_ms:
        logger.warning("Signed timestamp for client '{}' is {} ms from server time", client_id, now_ms - timestamp)
        raise AuthError("Signature timestamp outside the accepted window.")

    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError):
        raise AuthError("Invalid signature or client.")

    try:
        Ed25519PublicKey.from_public_bytes(key_bytes).verify(signature, signed_message(timestamp, original_name))
    except (InvalidSignature, ValueError):
        logger.warning("Invalid signature from client '{}'", client_id)
        raise AuthError("Invalid signature or client.")
