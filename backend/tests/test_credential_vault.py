import base64
from unittest import TestCase

from app.core.config import Settings
from app.core.errors import ConfigurationError, CredentialVaultError
from app.services.credential_vault import (
    NONCE_SIZE,
    SALT_SIZE,
    TAG_SIZE,
    CredentialVault,
    generate_encryption_key,
)

PEM = "-----BEGIN CERTIFICATE-----\nMIIBszCCAVmgAwIBAgIU\n-----END CERTIFICATE-----\n"


def _vault(key: str | None = "vault-test-secret") -> CredentialVault:
    return CredentialVault(settings=Settings(encryption_key=key, encryption_kdf_iterations=1000))


class CredentialVaultTests(TestCase):
    def test_sealed_value_opens_to_plaintext(self) -> None:
        vault = _vault()

        token = vault.encrypt(PEM)

        self.assertNotIn("BEGIN CERTIFICATE", token)
        self.assertEqual(vault.decrypt(token), PEM)

    def test_token_layout_is_salt_nonce_ciphertext(self) -> None:
        blob = base64.b64decode(_vault().encrypt("abc"))

        self.assertEqual(len(blob), SALT_SIZE + NONCE_SIZE + len("abc") + TAG_SIZE)

    def test_each_encryption_uses_fresh_salt_and_nonce(self) -> None:
        vault = _vault()

        first = base64.b64decode(vault.encrypt(PEM))
        second = base64.b64decode(vault.encrypt(PEM))

        self.assertNotEqual(first[:SALT_SIZE], second[:SALT_SIZE])
        self.assertNotEqual(first, second)

    def test_tampered_ciphertext_is_rejected(self) -> None:
        vault = _vault()
        blob = bytearray(base64.b64decode(vault.encrypt(PEM)))
        blob[-1] ^= 0x01

        with self.assertRaises(CredentialVaultError):
            vault.decrypt(base64.b64encode(bytes(blob)).decode("ascii"))

    def test_wrong_key_is_rejected(self) -> None:
        token = _vault("first-secret").encrypt(PEM)

        with self.assertRaises(CredentialVaultError):
            _vault("second-secret").decrypt(token)

    def test_garbage_and_truncated_tokens_are_rejected(self) -> None:
        vault = _vault()

        with self.assertRaises(CredentialVaultError):
            vault.decrypt("not base64!!")
        with self.assertRaises(CredentialVaultError):
            vault.decrypt(base64.b64encode(b"short").decode("ascii"))

    def test_missing_key_is_a_configuration_error(self) -> None:
        vault = _vault(None)

        self.assertFalse(vault.configured)
        with self.assertRaises(ConfigurationError):
            vault.encrypt(PEM)

    def test_seal_and_open_pair(self) -> None:
        vault = _vault()

        sealed = vault.seal(certificate_pem=PEM, private_key="secret-key")
        opened = vault.open(certificate_pem=sealed.certificate_pem, private_key=sealed.private_key)

        self.assertEqual(opened.certificate_pem, PEM)
        self.assertEqual(opened.private_key, "secret-key")
        self.assertNotIn("secret-key", repr(opened))

    def test_generated_key_is_hex(self) -> None:
        key = generate_encryption_key()

        self.assertEqual(len(key), 64)
        int(key, 16)
