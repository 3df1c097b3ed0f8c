"""Cryptographic helpers for device API keys."""

from __future__ import annotations

import hashlib
import hmac
import secrets

_API_KEY_PREFIX = "vk_"


class Crypto:
    """Static helpers for key generation, hashing and comparison."""

    @staticmethod
    def generate_api_key() -> str:
        """Generate a plaintext device API key with the ``vk_`` prefix."""
        return _API_KEY_PREFIX + secrets.token_urlsafe(32)

    @staticmethod
    def generate_device_uuid() -> str:
        """32 lowercase hex characters."""
        return secrets.token_hex(16)

    @staticmethod
    def hash_key(plaintext: str) -> str:
        """SHA-256 hash of a plaintext API key. Only the hash is stored."""
        return hashlib.sha256(plaintext.encode()).hexdigest()

    @staticmethod
    def matches(provided: str, expected: str) -> bool:
        """Constant-time string comparison."""
        return hmac.compare_digest(provided.encode(), expected.encode())
