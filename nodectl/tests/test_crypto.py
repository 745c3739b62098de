import pytest

from nodectl.modules.crypto import (
    PASSWORD_ALPHABET,
    DecryptionError,
    account_key,
    decrypt,
    encrypt,
    generate_password,
)


def test_decrypt_with_same_key_material():
    ciphertext = encrypt("hunter2-hunter2", "key-a")
    assert ciphertext != encrypt("hunter2-hunter2", "key-a")
    assert decrypt(ciphertext, "key-a") == "hunter2-hunter2"


def test_decrypt_with_other_key_material_fails():
    ciphertext = encrypt("hunter2-hunter2", "key-a")
    with pytest.raises(DecryptionError):
        decrypt(ciphertext, "key-b")


@pytest.mark.parametrize("garbage", ["not base64!!", "c2hvcnQ="])
def test_decrypt_rejects_malformed_input(garbage):
    with pytest.raises(DecryptionError):
        decrypt(garbage, "key-a")


def test_generate_password():
    password = generate_password()
    assert len(password) == 24
    assert set(password) <= set(PASSWORD_ALPHABET)
    assert generate_password(32) != generate_password(32)


def test_account_key_is_stable_per_account():
    assert account_key("acct-a", "server-secret") == account_key("acct-a", "server-secret")
    assert account_key("acct-a", "server-secret") != account_key("acct-b", "server-secret")
    assert account_key("acct-a", "server-secret") != account_key("acct-a", "other-secret")
