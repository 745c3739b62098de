"""Symmetric encryption for values kept in the config store."""
import base64
import binascii
import hashlib
import hmac
import os
import secrets
import string

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import NodectlError

NONCE_SIZE = 12
PASSWORD_ALPHABET = string.ascii_letters + string.digits


class DecryptionError(NodectlError):
    """Stored ciphertext could not be decrypted with the given key material."""


def _key(key_material: str) -> bytes:
    return hashlib.sha256(key_material.encode("utf-8")).digest()


def account_key(account_id: str, secret: str) -> str:
    """Derive stable per-account key material from a server-side secret."""
    return hmac.new(secret.encode("utf-8"), account_id.encode("utf-8"), hashlib.sha256).hexdigest()


def encrypt(plaintext: str, key_material: str) -> str:
    """AES-256-GCM encrypt with a key derived from ``key_material``.

    Returns:
        base64(nonce || ciphertext)
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(_key(key_material)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt(encoded: str, key_material: str) -> str:
    """Reverse ``encrypt``.

    Raises:
        DecryptionError: On malformed input or a key mismatch
    """
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(f"Ciphertext is not valid base64: {e}") from e
    if len(raw) <= NONCE_SIZE:
        raise DecryptionError("Ciphertext too short")
    nonce, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    try:
        return AESGCM(_key(key_material)).decrypt(nonce, ciphertext, None).decode("utf-8")
    except InvalidTag as e:
        raise DecryptionError("Ciphertext does not match the key material") from e


def generate_password(length: int = 24) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
