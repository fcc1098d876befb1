import secrets
from functools import lru_cache

from cryptography.fernet import Fernet

from qms_webhooks.core.config import settings


@lru_cache(maxsize=1)
def _fernet() -> Fernet:
    return Fernet(settings.secret_encryption_key.get_secret_value().encode("utf-8"))


def generate_webhook_secret() -> str:
    # 32 random bytes, hex encoded
    return secrets.token_hex(32)


def encrypt_secret(plain: str) -> str:
    return _fernet().encrypt(plain.encode("utf-8")).decode("utf-8")


def decrypt_secret(token: str) -> str:
    return _fernet().decrypt(token.encode("utf-8")).decode("utf-8")
