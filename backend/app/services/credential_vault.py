from __future__ import annotations

import base64
import binascii
import logging
import secrets
from dataclasses import dataclass, field

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.core.config import Settings
from app.core.errors import ConfigurationError, CredentialVaultError


KEY_SIZE = 32
NONCE_SIZE = 12
SALT_SIZE = 16
TAG_SIZE = 16


@dataclass(frozen=True)
class SealedCredentials:
    certificate_pem: str
    private_key: str


@dataclass(frozen=True)
class OpenedCredentials:
    certificate_pem: str = field(repr=False)
    private_key: str = field(repr=False)


def generate_encryption_key(length: int = KEY_SIZE) -> str:
    return secrets.token_hex(length)


class CredentialVault:
    def __init__(self, *, settings: Settings) -> None:
        self._secret = settings.encryption_key
        self._iterations = settings.encryption_kdf_iterations
        self._logger = logging.getLogger("app.credential_vault")

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def encrypt(self, plaintext: str) -> str:
        salt = secrets.token_bytes(SALT_SIZE)
        nonce = secrets.token_bytes(NONCE_SIZE)
        ciphertext = AESGCM(self._derive_key(salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(salt + nonce + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            blob = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise CredentialVaultError("Sealed credential is not valid base64") from exc
        if len(blob) < SALT_SIZE + NONCE_SIZE + TAG_SIZE:
            raise CredentialVaultError("Sealed credential is truncated")

        salt = blob[:SALT_SIZE]
        nonce = blob[SALT_SIZE : SALT_SIZE + NONCE_SIZE]
        ciphertext = blob[SALT_SIZE + NONCE_SIZE :]
        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            self._logger.warning("sealed credential failed authentication")
            raise CredentialVaultError(
                "Sealed credential failed authentication (wrong key or tampered data)"
            ) from exc
        return plaintext.decode("utf-8")

    def seal(self, *, certificate_pem: str, private_key: str) -> SealedCredentials:
        return SealedCredentials(
            certificate_pem=self.encrypt(certificate_pem),
            private_key=self.encrypt(private_key),
        )

    def open(self, *, certificate_pem: str, private_key: str) -> OpenedCredentials:
        return OpenedCredentials(
            certificate_pem=self.decrypt(certificate_pem),
            private_key=self.decrypt(private_key),
        )

    def _derive_key(self, salt: bytes) -> bytes:
        if not self._secret:
            raise ConfigurationError(
                "Encryption key not configured; set ENCRYPTION_KEY before storing credentials"
            )
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(self._secret.encode("utf-8"))
