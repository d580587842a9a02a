"""AES-256-GCM encryption for stored credentials and webhook endpoints.

Encrypted values are four base64 fields joined by colons:
``salt:iv:tag:ciphertext``. The key is derived per value from the process
secret with PBKDF2-SHA256, so two encryptions of the same text never match.
"""

from __future__ import annotations

import base64
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from statusdeck.errors import CredentialError


SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


class CredentialCipher:
    def __init__(self, secret: str):
        if not secret:
            raise CredentialError("A secret is required for credential encryption")
        self._secret = secret.encode("utf-8")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(self._secret)

    def encrypt(self, text: str) -> str:
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, text.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ":".join([_b64(salt), _b64(iv), _b64(tag), _b64(ciphertext)])

    def decrypt(self, encrypted: str) -> str:
        parts = str(encrypted or "").split(":")
        if len(parts) != 4 or not all(parts[:3]):
            raise CredentialError("Decryption failed: invalid encrypted text format")
        try:
            salt, iv, tag, ciphertext = (_unb64(p) for p in parts)
            plain = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
            return plain.decode("utf-8")
        except InvalidTag as e:
            raise CredentialError("Decryption failed: authentication tag mismatch") from e
        except (ValueError, UnicodeDecodeError) as e:
            raise CredentialError(f"Decryption failed: {e}") from e

    def encrypt_json(self, obj: Any) -> str:
        return self.encrypt(json.dumps(obj))

    def decrypt_json(self, encrypted: str) -> Any:
        text = self.decrypt(encrypted)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise CredentialError(f"Decrypted credentials are not valid JSON: {e}") from e
