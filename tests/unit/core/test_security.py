"""
Tests for wpfleet/shared/core/security.py - credential encryption
"""
import pytest

from wpfleet.shared.core.exceptions import CredentialError
from wpfleet.shared.core.security import (
    EncryptionKeyManager,
    decrypt_credential,
    encrypt_string,
)


def test_stored_credential_decrypts():
    ciphertext = encrypt_string("abcd efgh ijkl mnop")

    assert ciphertext != "abcd efgh ijkl mnop"
    assert decrypt_credential(ciphertext) == "abcd efgh ijkl mnop"


@pytest.mark.parametrize("ciphertext", ["", "not-a-token", "gAAAAABinvalid"])
def test_undecryptable_credential_raises_credential_error(ciphertext):
    with pytest.raises(CredentialError) as exc:
        decrypt_credential(ciphertext)
    assert exc.value.code == "credential_error"


def test_encrypting_empty_value_is_rejected():
    with pytest.raises(ValueError):
        encrypt_string("")


def test_fallback_keys_decrypt_after_rotation():
    old_key = "old-master-key-that-is-32-chars!"
    new_key = "new-master-key-that-is-32-chars!"
    token = EncryptionKeyManager.create_multi_fernet(old_key).encrypt(b"app-password")

    rotated = EncryptionKeyManager.create_multi_fernet(new_key, (old_key,))

    assert rotated.decrypt(token) == b"app-password"


def test_derive_key_rejects_bad_salt():
    with pytest.raises(ValueError, match="salt"):
        EncryptionKeyManager.derive_key("k" * 32, "c2hvcnQ=")
