import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


def _fernet(secret=None):
    secret = secret if secret is not None else getattr(settings, 'ENCRYPTION_KEY', '')
    if not secret:
        raise ImproperlyConfigured('ENCRYPTION_KEY is not configured')
    key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())
    return Fernet(key)


def encrypt_text(value: str, secret=None) -> str:
    return _fernet(secret).encrypt(value.encode()).decode()


def decrypt_text(value: str, secret=None) -> str:
    try:
        return _fernet(secret).decrypt(value.encode()).decode()
    except InvalidToken as e:
        raise ImproperlyConfigured('Stored key cannot be decrypted with the configured ENCRYPTION_KEY') from e


def generate_rsa_keypair(key_size=2048):
    """Return (private_pem, public_pem) as text."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem.decode(), public_pem.decode()
