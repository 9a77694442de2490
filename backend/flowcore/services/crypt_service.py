# /flowcore/services/crypt_service.py

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from flowcore.config.settings import settings

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """A stored model credential could not be decrypted."""


def encrypt(plaintext: str, key: str) -> str:
    return Fernet(key.encode()).encrypt(plaintext.encode()).decode()


def decrypt(secret: str, key: str) -> str:
    try:
        return Fernet(key.encode()).decrypt(secret.encode()).decode()
    except (InvalidToken, ValueError) as e:
        raise CredentialError("Unable to decrypt credential") from e


def resolve_api_key(secret: Optional[str]) -> Optional[str]:
    """Returns the plaintext key for a model; keys are stored encrypted when a crypt key is set."""
    secret = secret or settings.ai_key
    if not secret:
        return None
    if not settings.crypt_key:
        return secret
    return decrypt(secret, settings.crypt_key)
