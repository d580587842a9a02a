from __future__ import annotations

import pytest

from statusdeck.crypto import CredentialCipher
from statusdeck.errors import CredentialError


def test_encrypt_decrypt_roundtrip(cipher: CredentialCipher) -> None:
    token = cipher.encrypt("https://discord.com/api/webhooks/1/abc")
    assert token.count(":") == 3
    assert cipher.decrypt(token) == "https://discord.com/api/webhooks/1/abc"


def test_same_plaintext_encrypts_differently(cipher: CredentialCipher) -> None:
    assert cipher.encrypt("secret") != cipher.encrypt("secret")


def test_json_credentials(cipher: CredentialCipher) -> None:
    creds = {"url": "http://kuma:3001", "apiKey": "k"}
    assert cipher.decrypt_json(cipher.encrypt_json(creds)) == creds


def test_wrong_secret_fails(cipher: CredentialCipher) -> None:
    token = cipher.encrypt("hello")
    with pytest.raises(CredentialError, match="authentication tag mismatch"):
        CredentialCipher("other-secret").decrypt(token)


@pytest.mark.parametrize("bad", ["", "abc", "a:b:c", "::x:y"])
def test_malformed_input_is_rejected(cipher: CredentialCipher, bad: str) -> None:
    with pytest.raises(CredentialError):
        cipher.decrypt(bad)


def test_tampered_ciphertext_is_rejected(cipher: CredentialCipher) -> None:
    salt, iv, tag, ct = cipher.encrypt("payload").split(":")
    other = cipher.encrypt("PAYLOAD").split(":")[3]
    with pytest.raises(CredentialError):
        cipher.decrypt(":".join([salt, iv, tag, other]))


def test_empty_secret_rejected() -> None:
    with pytest.raises(CredentialError):
        CredentialCipher("")
