# backend/tests/unit/test_crypt.py
import pytest
from cryptography.fernet import Fernet

from flowcore.config.settings import settings
from flowcore.services.crypt_service import CredentialError, decrypt, encrypt, resolve_api_key


@pytest.fixture
def crypt_key():
    return Fernet.generate_key().decode()


def test_decrypts_what_was_encrypted(crypt_key):
    assert decrypt(encrypt("sk-test", crypt_key), crypt_key) == "sk-test"


def test_wrong_key_is_a_credential_error(crypt_key):
    secret = encrypt("sk-test", crypt_key)
    with pytest.raises(CredentialError):
        decrypt(secret, Fernet.generate_key().decode())


def test_resolve_api_key_decrypts_when_crypt_key_is_set(mocker, crypt_key):
    mocker.patch.object(settings, "crypt_key", crypt_key)
    mocker.patch.object(settings, "ai_key", encrypt("sk-default", crypt_key))

    assert resolve_api_key(encrypt("sk-model", crypt_key)) == "sk-model"
    assert resolve_api_key(None) == "sk-default"


def test_resolve_api_key_passes_plain_keys_without_crypt_key(mocker):
    mocker.patch.object(settings, "crypt_key", None)
    mocker.patch.object(settings, "ai_key", None)

    assert resolve_api_key("sk-plain") == "sk-plain"
    assert resolve_api_key(None) is None
